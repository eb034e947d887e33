"""Text extraction for individual leaves."""

import logging
import uuid
import xml.sax
import zipfile
from pathlib import Path
from typing import FrozenSet, List, Optional

from .classifier import file_extension
from .config import ScanConfig
from .external_tools import ExternalTools
from .models import LeafDescriptor

logger = logging.getLogger(__name__)

UTF8_BOM = b'\xEF\xBB\xBF'
UTF16_BE_BOM = b'\xFE\xFF'
UTF16_LE_BOM = b'\xFF\xFE'

# Codec names returned by detect_encoding
UTF8 = 'utf-8'
UTF8_SIG = 'utf-8-sig'
UTF16_BE = 'utf-16-be'
UTF16_LE = 'utf-16-le'
CP1252 = 'cp1252'

WORD_EXTENSIONS = frozenset({'docx', 'docm'})
ODF_TEXT_EXTENSIONS = frozenset({'odt'})
OCR_EXTENSIONS = frozenset({'jpeg', 'jpg', 'pgm', 'png', 'ppm'})

WORD_DOCUMENT_PART = 'word/document.xml'
ODF_CONTENT_PART = 'content.xml'

PARAGRAPH_SEPARATOR = "\n\n"

_ACCENT_FOLDING = str.maketrans({
    'á': 'a', 'à': 'a', 'ã': 'a', 'â': 'a',
    'é': 'e', 'è': 'e', 'ê': 'e',
    'í': 'i', 'ì': 'i', 'î': 'i', 'ï': 'i',
    'ó': 'o', 'ò': 'o', 'õ': 'o', 'ô': 'o',
    'ú': 'u', 'ù': 'u', 'ũ': 'u', 'û': 'u',
    'ñ': 'n',
})


def detect_encoding(path: Path, assume_utf8: bool = False) -> str:
    """
    Detect the encoding of a text file.
    
    Only tells UTF-8 and Windows-1252 apart (plus BOM-marked UTF-16),
    which general-purpose detectors regularly confuse.
    
    Args:
        path: File to inspect
        assume_utf8: Return UTF-8 for any file without a byte-order mark
        
    Returns:
        Python codec name: 'utf-8-sig', 'utf-16-be', 'utf-16-le', 'utf-8'
        or 'cp1252'. Missing or unreadable files give 'utf-8'.
    """
    path = Path(path)
    if not path.exists():
        return UTF8

    try:
        with open(path, 'rb') as f:
            if path.stat().st_size > 3:
                header = f.read(3)
                if header == UTF8_BOM:
                    return UTF8_SIG
                if header.startswith(UTF16_BE_BOM):
                    return UTF16_BE
                if header.startswith(UTF16_LE_BOM):
                    return UTF16_LE

            if assume_utf8:
                return UTF8

            f.seek(0)
            for line_number, line in enumerate(f, start=1):
                try:
                    line.decode('utf-8')
                except UnicodeDecodeError as e:
                    logger.debug(f"UTF-8 probe of {path} failed on line {line_number}: {e}")
                    return CP1252
    except OSError as e:
        logger.error(f"Error detecting encoding of {path}: {e}")
        return UTF8

    return UTF8


def fold_accents(text: str) -> str:
    """Replace common accented Latin letters with their base letter."""
    return text.translate(_ACCENT_FOLDING)


def keep_printable_ascii(text: str) -> str:
    """Drop everything except printable ASCII and whitespace."""
    return ''.join(c for c in text if ('!' <= c <= '~') or c.isspace())


def read_text_from_file(path: Path, assume_utf8: bool = False) -> str:
    """
    Decode a text file and reduce it to printable ASCII.
    
    Accents are folded first unless the decoded text contains NUL, which
    marks it as binary rather than text. (A decoded str can never hold
    a 0xFF byte, so NUL is the only marker left to test.)
    
    Args:
        path: File to read
        assume_utf8: Forwarded to detect_encoding
        
    Returns:
        Cleaned text
    """
    encoding = detect_encoding(path, assume_utf8=assume_utf8)
    logger.debug(f"Reading {path} as {encoding}")

    with open(path, 'rb') as f:
        contents = f.read().decode(encoding, errors='replace')

    if encoding in (UTF16_BE, UTF16_LE):
        contents = contents.lstrip('\ufeff')

    if '\x00' not in contents:
        contents = fold_accents(contents)
    return keep_printable_ascii(contents)


class OfficeTextHandler(xml.sax.ContentHandler):
    """Collects character data from a document's text elements.

    Args:
        paragraph_tags: Elements that start a new paragraph
        text_tags: Elements whose direct character data is document text
    """

    def __init__(self, paragraph_tags: FrozenSet[str], text_tags: FrozenSet[str]):
        super().__init__()
        self.paragraph_tags = paragraph_tags
        self.text_tags = text_tags
        self.parts: List[str] = []
        self._open: List[bool] = []

    def startElement(self, name, attrs):
        if name in self.paragraph_tags:
            self.parts.append(PARAGRAPH_SEPARATOR)
        self._open.append(name in self.text_tags)

    def endElement(self, name):
        if self._open:
            self._open.pop()

    def characters(self, content):
        if self._open and self._open[-1]:
            self.parts.append(content)

    @property
    def text(self) -> str:
        return ''.join(self.parts)


WORD_HANDLER_TAGS = (frozenset({'w:p'}), frozenset({'w:t'}))
ODF_HANDLER_TAGS = (frozenset({'text:p'}), frozenset({'text:p', 'text:span'}))


def extract_office_text(path: Path, part_name: str, paragraph_tags: FrozenSet[str], text_tags: FrozenSet[str]) -> str:
    """
    Stream-parse one XML part of a zip-based document and return its text.
    
    Malformed containers and XML give '' with a warning.
    """
    handler = OfficeTextHandler(paragraph_tags, text_tags)
    try:
        with zipfile.ZipFile(path, 'r') as archive:
            with archive.open(part_name) as part:
                xml.sax.parse(part, handler)
    except (zipfile.BadZipFile, KeyError, OSError, xml.sax.SAXException) as e:
        logger.warning(f"Error extracting text from {path}: {e}")
        return ''
    return handler.text


def extract_docx_text(path: Path) -> str:
    return extract_office_text(path, WORD_DOCUMENT_PART, *WORD_HANDLER_TAGS)


def extract_odt_text(path: Path) -> str:
    return extract_office_text(path, ODF_CONTENT_PART, *ODF_HANDLER_TAGS)


def ocr_text(image_path: Path, tools: ExternalTools, scratch_root: Path, assume_utf8: bool = False) -> str:
    """
    OCR an image and return its cleaned text.
    
    Tesseract's output file is deleted after reading. An image that
    yields no output gives ''.
    
    Raises:
        ExternalToolError: If tesseract cannot be launched
    """
    scratch_root.mkdir(parents=True, exist_ok=True)
    output_prefix = scratch_root / uuid.uuid4().hex
    output_path = tools.ocr(image_path, output_prefix)
    if output_path is None:
        return ''

    try:
        return read_text_from_file(output_path, assume_utf8=assume_utf8)
    finally:
        output_path.unlink(missing_ok=True)


def extract_leaf_text(
    leaf: LeafDescriptor,
    *,
    config: Optional[ScanConfig] = None,
    tools: Optional[ExternalTools] = None,
) -> str:
    """
    Produce the text of one leaf, dispatching on its extension.
    
    Non-extractable leaves give ''.
    
    Args:
        leaf: Leaf to extract
        config: Scan settings (temp root, UTF-8 assumption, OCR language)
        tools: External tool runner used for OCR
        
    Returns:
        Extracted text, possibly empty
    """
    if not leaf.extractable:
        return ''

    config = config or ScanConfig()
    extension = file_extension(leaf.path)

    if extension in WORD_EXTENSIONS:
        return extract_docx_text(leaf.path)
    if extension in ODF_TEXT_EXTENSIONS:
        return extract_odt_text(leaf.path)
    if extension in OCR_EXTENSIONS:
        tools = tools or ExternalTools(ocr_language=config.ocr_language)
        return ocr_text(leaf.path, tools, Path(config.temp_root), assume_utf8=config.assume_utf8)
    return read_text_from_file(leaf.path, assume_utf8=config.assume_utf8)
