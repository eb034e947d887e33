"""Logging section of the configuration file."""

from typing import Literal
from pydantic import BaseModel, Field, ConfigDict, field_validator


class LoggingConfig(BaseModel):
    """Where scan logs go and how they look.

    The console always gets the chosen format; a log file, when set,
    always gets JSON lines and is rotated by size.
    """

    model_config = ConfigDict(extra='forbid')

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum level logged"
    )
    format: Literal["simple", "detailed", "json"] = Field(
        default="json",
        description="Console format"
    )
    file: str | None = Field(default=None, description="JSON log file, none by default")
    max_file_size_mb: int = Field(
        default=10,
        gt=0,
        description="Size at which the log file is rotated"
    )
    backup_count: int = Field(
        default=5,
        ge=0,
        description="Rotated log files kept"
    )

    @field_validator('level', 'format', mode='before')
    @classmethod
    def normalize_case(cls, v, info):
        """Accept level and format names in any case."""
        if not isinstance(v, str):
            return v
        return v.upper() if info.field_name == 'level' else v.lower()
