"""Tests for standardized error handling."""

import pytest
from docdive.common import (
    DocDiveError, FileProcessingError, CorruptedFileError,
    ToolNotFoundError
)
from docdive.processing.errors import (
    ScanError, ScanErrorKind, MalformedMessageError, UnknownAttachmentError,
    ExternalToolError, FileMetadataError, classify_error,
    ToolNotFoundError as ScanToolNotFoundError,
)


class TestStandardizedErrors:
    """Test standardized error types."""
    
    def test_docdive_error_base(self):
        """Test base DocDiveError functionality."""
        error = DocDiveError("Test error", file="/test/path")
        
        assert str(error) == "Test error"
        assert error.message == "Test error"
        assert error.context == {"file": "/test/path"}
    
    def test_file_processing_error_inheritance(self):
        error = CorruptedFileError("File is corrupted", file="/test/path")
        
        assert isinstance(error, FileProcessingError)
        assert isinstance(error, DocDiveError)
        assert isinstance(ToolNotFoundError("x"), FileProcessingError)
    
    def test_errors_can_be_raised_and_caught(self):
        with pytest.raises(DocDiveError) as exc_info:
            raise CorruptedFileError("bad zip", file="a.zip")
        assert exc_info.value.context["file"] == "a.zip"


class TestScanErrors:
    """Test scan-aborting error kinds."""
    
    @pytest.mark.parametrize("error_class,kind", [
        (MalformedMessageError, ScanErrorKind.MALFORMED_MESSAGE),
        (UnknownAttachmentError, ScanErrorKind.UNKNOWN_ATTACHMENT),
        (ExternalToolError, ScanErrorKind.TOOL_FAILURE),
        (ScanToolNotFoundError, ScanErrorKind.TOOL_MISSING),
        (FileMetadataError, ScanErrorKind.FILE_METADATA),
    ])
    def test_kind_tags(self, error_class, kind):
        error = error_class("boom", file="x")
        
        assert isinstance(error, ScanError)
        assert error.kind == kind
        assert error.kind.value == kind.value
    
    def test_tool_not_found_is_both(self):
        """Test that the scan variant is still a common ToolNotFoundError."""
        error = ScanToolNotFoundError("missing", tools=["tesseract"])
        
        assert isinstance(error, ToolNotFoundError)
        assert isinstance(error, ScanError)


class TestClassifyError:
    """Test classify_error."""
    
    def test_scan_errors_are_environment(self):
        assert classify_error(ExternalToolError("x")) == 'environment'
        assert classify_error(MalformedMessageError("x")) == 'environment'
    
    def test_corruption_is_data(self):
        assert classify_error(CorruptedFileError("x")) == 'data'
    
    def test_other_is_unknown(self):
        assert classify_error(ValueError("x")) == 'unknown'
