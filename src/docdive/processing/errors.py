"""Errors that abort a scan.

Malformed input data never raises out of a scan: it is logged and the
affected container yields no children. The errors below are the other
class, conditions the engine has no defined handling for or a broken
deployment (missing external tools), and they end the scan.
"""

from enum import Enum

from docdive.common import DocDiveError, CorruptedFileError, ToolNotFoundError as _CommonToolNotFoundError


class ScanErrorKind(str, Enum):
    """Tag carried by every scan-aborting error."""
    MALFORMED_MESSAGE = "malformed_message"
    UNKNOWN_ATTACHMENT = "unknown_attachment"
    TOOL_FAILURE = "tool_failure"
    TOOL_MISSING = "tool_missing"
    FILE_METADATA = "file_metadata"


class ScanError(DocDiveError):
    """Base error for scan-aborting conditions."""
    kind: ScanErrorKind


class MalformedMessageError(ScanError):
    """A required stream is missing from a compound message."""
    kind = ScanErrorKind.MALFORMED_MESSAGE


class UnknownAttachmentError(ScanError):
    """A message attachment storage has neither known shape."""
    kind = ScanErrorKind.UNKNOWN_ATTACHMENT


class ExternalToolError(ScanError):
    """An external tool could not be launched or reported an error."""
    kind = ScanErrorKind.TOOL_FAILURE


class ToolNotFoundError(ScanError, _CommonToolNotFoundError):
    """A required external tool is not installed."""
    kind = ScanErrorKind.TOOL_MISSING


class FileMetadataError(ScanError):
    """Filesystem metadata for a discovered unit could not be read."""
    kind = ScanErrorKind.FILE_METADATA


def classify_error(exception: Exception) -> str:
    """
    Classify an exception by who has to act on it.
    
    Args:
        exception: The exception to classify
        
    Returns:
        'environment' for scan-aborting errors, 'data' for malformed input
        that is tolerated, 'unknown' otherwise
    """
    if isinstance(exception, ScanError):
        return 'environment'
    elif isinstance(exception, CorruptedFileError):
        return 'data'
    else:
        return 'unknown'
