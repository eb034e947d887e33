"""Base error definitions for docdive packages."""

from typing import Any, Dict


class DocDiveError(Exception):
    """Base exception for all docdive errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context


class FileProcessingError(DocDiveError):
    """Base exception for file processing errors."""
    pass


class CorruptedFileError(FileProcessingError):
    """File is corrupted or malformed."""
    pass


class ToolNotFoundError(FileProcessingError):
    """Required external tool is not available."""
    pass
