"""Tests for per-leaf text extraction."""

from unittest.mock import MagicMock

import pytest

from docdive.processing.external_tools import ExternalTools
from docdive.processing.models import LeafDescriptor
from docdive.processing.text_extraction import (
    detect_encoding,
    extract_docx_text,
    extract_leaf_text,
    extract_odt_text,
    fold_accents,
    keep_printable_ascii,
    ocr_text,
    read_text_from_file,
)

WORD_XML = (
    '<w:document xmlns:w="urn:w"><w:body>'
    '<w:p><w:r><w:t>Hello</w:t></w:r><w:r><w:t xml:space="preserve"> world</w:t></w:r></w:p>'
    '<w:p><w:r><w:instrText>PAGE</w:instrText></w:r><w:r><w:t>Second</w:t></w:r></w:p>'
    '</w:body></w:document>'
)

ODF_XML = (
    '<office:document-content xmlns:office="urn:o" xmlns:text="urn:t">'
    '<office:body><office:text>'
    '<text:p>First <text:span>bold</text:span> end</text:p>'
    '<text:p>Next</text:p>'
    '</office:text></office:body></office:document-content>'
)


def write(tmp_path, name, data):
    path = tmp_path / name
    path.write_bytes(data)
    return path


class TestDetectEncoding:
    """Tests for BOM and UTF-8/Windows-1252 detection."""
    
    def test_plain_utf8(self, tmp_path):
        path = write(tmp_path, "a.txt", "café\nline two\n".encode("utf-8"))
        assert detect_encoding(path) == "utf-8"
    
    def test_cp1252_fallback(self, tmp_path):
        path = write(tmp_path, "a.txt", b"first line\ncaf\xe9\n")
        assert detect_encoding(path) == "cp1252"
    
    def test_assume_utf8_skips_probe(self, tmp_path):
        path = write(tmp_path, "a.txt", b"caf\xe9 au lait")
        assert detect_encoding(path, assume_utf8=True) == "utf-8"
    
    @pytest.mark.parametrize("data,expected", [
        (b"\xef\xbb\xbfhello", "utf-8-sig"),
        (b"\xfe\xff\x00h\x00i", "utf-16-be"),
        (b"\xff\xfeh\x00i\x00", "utf-16-le"),
    ])
    def test_byte_order_marks(self, tmp_path, data, expected):
        path = write(tmp_path, "a.txt", data)
        assert detect_encoding(path) == expected
        assert detect_encoding(path, assume_utf8=True) == expected
    
    def test_bom_ignored_in_tiny_file(self, tmp_path):
        path = write(tmp_path, "a.txt", b"\xef\xbb\xbf")
        assert detect_encoding(path) == "utf-8"
    
    def test_missing_file(self, tmp_path):
        assert detect_encoding(tmp_path / "missing.txt") == "utf-8"


class TestReadTextFromFile:
    """Tests for decoding and cleanup."""
    
    def test_utf8_ascii_roundtrip(self, tmp_path):
        text = "Invoice 42\r\nTotal:\t$19.99 (incl. tax)\n"
        path = write(tmp_path, "a.txt", text.encode("utf-8"))
        
        assert read_text_from_file(path) == text
    
    def test_accents_folded(self, tmp_path):
        path = write(tmp_path, "a.txt", "Olá rápido, señor".encode("utf-8"))
        assert read_text_from_file(path) == "Ola rapido, senor"
    
    def test_cp1252_decoded_and_folded(self, tmp_path):
        path = write(tmp_path, "a.txt", b"caf\xe9 cr\xe8me")
        assert read_text_from_file(path) == "cafe creme"
    
    def test_binary_content_not_folded(self, tmp_path):
        path = write(tmp_path, "a.bin", "café\x00end".encode("utf-8"))
        assert read_text_from_file(path) == "cafend"
    
    def test_utf16_bom_removed(self, tmp_path):
        path = write(tmp_path, "a.txt", "\ufeffolá".encode("utf-16-le"))
        assert read_text_from_file(path) == "ola"
    
    def test_assume_utf8_replaces_invalid_bytes(self, tmp_path):
        path = write(tmp_path, "a.txt", b"caf\xe9 ok")
        assert read_text_from_file(path, assume_utf8=True) == "caf ok"
    
    def test_helpers(self):
        assert fold_accents("ÉÀ éà") == "ÉÀ ea"
        assert keep_printable_ascii("a\tb\nc\x07d€") == "a\tb\ncd"


class TestOfficeText:
    """Tests for streaming XML text extraction."""
    
    def test_docx(self, tmp_path, zip_builder):
        path = write(tmp_path, "a.docx", zip_builder({"word/document.xml": WORD_XML}))
        assert extract_docx_text(path) == "\n\nHello world\n\nSecond"
    
    def test_odt(self, tmp_path, zip_builder):
        path = write(tmp_path, "a.odt", zip_builder({"content.xml": ODF_XML}))
        assert extract_odt_text(path) == "\n\nFirst bold end\n\nNext"
    
    def test_malformed_xml_gives_empty_text(self, tmp_path, zip_builder):
        path = write(tmp_path, "a.docx", zip_builder({"word/document.xml": "<w:document><w:p><w:t>cut"}))
        assert extract_docx_text(path) == ""
    
    def test_missing_part_gives_empty_text(self, tmp_path, zip_builder):
        path = write(tmp_path, "a.docx", zip_builder({"other.xml": "<a/>"}))
        assert extract_docx_text(path) == ""
    
    def test_not_a_zip_gives_empty_text(self, tmp_path):
        path = write(tmp_path, "a.odt", b"plain bytes, not a document")
        assert extract_odt_text(path) == ""


def fake_ocr_tools(text):
    """ExternalTools whose tesseract writes text, or nothing if text is None."""
    tools = MagicMock(spec=ExternalTools)
    
    def ocr(image_path, output_prefix):
        if text is None:
            return None
        output = output_prefix.with_name(output_prefix.name + ".txt")
        output.write_bytes(text.encode("utf-8"))
        return output
    
    tools.ocr.side_effect = ocr
    return tools


class TestOcr:
    """Tests for OCR of raster images."""
    
    def test_output_read_and_removed(self, tmp_path, scratch_root):
        tools = fake_ocr_tools("Scanned página\n")
        
        text = ocr_text(tmp_path / "scan.png", tools, scratch_root)
        
        assert text == "Scanned pagina\n"
        assert list(scratch_root.iterdir()) == []
    
    def test_no_output(self, tmp_path, scratch_root):
        tools = fake_ocr_tools(None)
        assert ocr_text(tmp_path / "scan.png", tools, scratch_root) == ""


class TestExtractLeafText:
    """Tests for dispatch on the leaf's extension."""
    
    def test_non_extractable_leaf(self, tmp_path):
        path = write(tmp_path, "a.zip", b"whatever")
        leaf = LeafDescriptor(path=path, depth=0, extractable=False)
        
        assert extract_leaf_text(leaf) == ""
    
    def test_text_leaf(self, tmp_path, scan_config):
        path = write(tmp_path, "page 1", b"Page text\n")
        leaf = LeafDescriptor(path=path, depth=1, lineage=("doc.pdf",), extractable=True)
        
        assert extract_leaf_text(leaf, config=scan_config) == "Page text\n"
    
    def test_docx_leaf(self, tmp_path, scan_config, zip_builder):
        path = write(tmp_path, "a.DOCX", zip_builder({"word/document.xml": WORD_XML}))
        leaf = LeafDescriptor(path=path, depth=0, extractable=True)
        
        assert extract_leaf_text(leaf, config=scan_config) == "\n\nHello world\n\nSecond"
    
    def test_image_leaf_uses_ocr(self, tmp_path, scan_config):
        path = write(tmp_path, "photo.jpg", b"\xff\xd8\xff" + b"\x00" * 20)
        leaf = LeafDescriptor(path=path, depth=0, extractable=True)
        tools = fake_ocr_tools("receipt")
        
        assert extract_leaf_text(leaf, config=scan_config, tools=tools) == "receipt"
        tools.ocr.assert_called_once()
        assert tools.ocr.call_args[0][0] == path
