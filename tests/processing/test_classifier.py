"""Tests for file type classification."""

import pytest
from pathlib import Path
from unittest.mock import patch

from docdive.processing.classifier import (
    MAGIC_BYTES, MIN_SNIFF_SIZE, classify, file_extension, match_magic
)


class TestFileExtension:
    """Tests for file_extension."""
    
    def test_lowercased_without_dot(self):
        assert file_extension(Path("Report.PDF")) == "pdf"
    
    def test_no_extension(self):
        assert file_extension(Path("README")) == ""
    
    def test_only_last_suffix(self):
        assert file_extension(Path("backup.tar.gz")) == "gz"


class TestMatchMagic:
    """Tests for match_magic."""
    
    @pytest.mark.parametrize("header,expected", [
        (b"7z\xBC\xAF\x27\x1C", "7z"),
        (b"%PDF-1", "pdf"),
        (b"PK\x03\x04\x14\x00", "zip"),
        (b"\xEF\xBB\xBFabc", "txt"),
        (b"\x1F\x8B\x08\x00\x00\x00", "gzip"),
        (b"\xFE\xFF\x00a\x00b", "txt"),
        (b"\xFF\xFEa\x00b\x00", "txt"),
    ])
    def test_known_signatures(self, header, expected):
        assert match_magic(header) == expected
    
    def test_no_match(self):
        assert match_magic(b"GIF89a") is None
    
    def test_table_order(self):
        """Test that the table is checked in priority order."""
        assert [m.extension for m in MAGIC_BYTES] == [
            "7z", "pdf", "zip", "txt", "gzip", "txt", "txt"
        ]


class TestClassify:
    """Tests for classify."""
    
    def test_supported_extension_trusted(self, tmp_path):
        """Test that a known extension wins over the content."""
        path = tmp_path / "Letter.DOCX"
        path.write_bytes(b"%PDF-1.4 this is not really a docx file")
        
        assert classify(path) == "docx"
    
    def test_unknown_extension_sniffed(self, tmp_path):
        path = tmp_path / "download.bin"
        path.write_bytes(b"%PDF-1.4" + b"\x00" * 32)
        
        assert classify(path) == "pdf"
    
    def test_extensionless_zip_sniffed(self, tmp_path):
        path = tmp_path / "attachment"
        path.write_bytes(b"PK\x03\x04" + b"\x00" * 32)
        
        assert classify(path) == "zip"
    
    def test_small_file_not_sniffed(self, tmp_path):
        """Test that files under the sniff threshold keep their extension."""
        path = tmp_path / "tiny.bin"
        path.write_bytes(b"%PDF-1.4")
        assert path.stat().st_size < MIN_SNIFF_SIZE
        
        assert classify(path) == "bin"
    
    def test_small_extensionless_file(self, tmp_path):
        path = tmp_path / "page 1"
        path.write_bytes(b"short")
        
        assert classify(path) == ""
    
    def test_unmatched_header_keeps_extension(self, tmp_path):
        path = tmp_path / "image.ppm"
        path.write_bytes(b"P6\n1 1\n255\n" + b"\x00" * 16)
        
        assert classify(path) == "ppm"
    
    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(OSError):
            classify(tmp_path / "missing.bin")
    
    def test_open_failure_falls_back(self, tmp_path):
        """Test that a header read failure is not fatal."""
        path = tmp_path / "locked.bin"
        path.write_bytes(b"%PDF-1.4" + b"\x00" * 32)
        
        with patch("builtins.open", side_effect=PermissionError("denied")):
            assert classify(path) == "bin"
