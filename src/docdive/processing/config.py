"""Configuration models for scanning."""

from pydantic import BaseModel, Field, ConfigDict, field_validator

from docdive.common import LoggingConfig
from docdive.common.config_utils import expand_path_variables


class ScanConfig(BaseModel):
    """Decomposition, reconciliation and cleanup settings."""
    
    model_config = ConfigDict(extra='forbid')
    
    temp_root: str = Field(
        default="${TEMP}/extract_text_from_file",
        validate_default=True,
        description="Root directory for materialized nested files"
    )
    delete_temp_files: bool = Field(
        default=True,
        description="Delete materialized files after processing (disable to inspect them)"
    )
    archive_password: str = Field(
        default="a4",
        description="Password tried for 7z archives"
    )
    assume_utf8: bool = Field(
        default=False,
        description="Treat text without a byte-order mark as UTF-8 without probing"
    )
    force_reextract: bool = Field(
        default=False,
        description="Extract text even when a prior result has the same fingerprint"
    )
    ocr_language: str = Field(
        default="eng",
        description="Language passed to tesseract"
    )

    @field_validator('temp_root', mode='after')
    @classmethod
    def expand_temp_root(cls, v: str) -> str:
        """Expand ${VAR} placeholders."""
        return expand_path_variables(v)


class ToolsConfig(BaseModel):
    """External executables, resolved through PATH unless given as paths."""
    
    model_config = ConfigDict(extra='forbid')
    
    pdfinfo: str = Field(default="pdfinfo", description="poppler/xpdf pdfinfo")
    pdftotext: str = Field(default="pdftotext", description="poppler/xpdf pdftotext")
    pdfimages: str = Field(default="pdfimages", description="poppler/xpdf pdfimages")
    tesseract: str = Field(default="tesseract", description="Tesseract OCR engine")


class ExtractTextConfig(BaseModel):
    """Root configuration."""
    
    model_config = ConfigDict(extra='forbid')
    
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
