"""Common utilities for docdive packages."""

from .config import ConfigLoader
from .logging import setup_logging, LogContext
from .logging_config import LoggingConfig
from .errors import (
    DocDiveError, FileProcessingError, CorruptedFileError,
    ToolNotFoundError
)
from .path_utils import sanitize_filename, safe_member_path
from .checksums import compute_crc64

__all__ = [
    'ConfigLoader',
    'LoggingConfig',
    'setup_logging',
    'LogContext',
    'DocDiveError',
    'FileProcessingError',
    'CorruptedFileError',
    'ToolNotFoundError',
    'sanitize_filename',
    'safe_member_path',
    'compute_crc64',
]
