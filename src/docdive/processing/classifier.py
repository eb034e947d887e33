"""File type classification by extension with magic-byte fallback."""

import logging
from collections import namedtuple
from pathlib import Path

logger = logging.getLogger(__name__)

# Extensions dispatched on as-is
SUPPORTED_EXTENSIONS = frozenset({
    'csv',
    'doc', 'docm', 'docx',
    'eml',
    'gz', 'gzip',
    'jpeg', 'jpg',
    'msg',
    'ods', 'odt',
    'pdf', 'png',
    'tar', 'tgz',
    'txt',
    'xlam', 'xls', 'xlsb', 'xlsm', 'xlsx',
})

MagicBytes = namedtuple('MagicBytes', ['extension', 'signature'])

# First prefix match wins, so order is priority.
# https://en.wikipedia.org/wiki/List_of_file_signatures
MAGIC_BYTES = (
    MagicBytes('7z', b'\x37\x7A\xBC\xAF\x27\x1C'),
    MagicBytes('pdf', b'\x25\x50\x44\x46\x2D'),
    MagicBytes('zip', b'\x50\x4B\x03\x04'),
    MagicBytes('txt', b'\xEF\xBB\xBF'),
    MagicBytes('gzip', b'\x1F\x8B'),
    MagicBytes('txt', b'\xFE\xFF'),
    MagicBytes('txt', b'\xFF\xFE'),
)

HEADER_SIZE = 6
MIN_SNIFF_SIZE = 16


def file_extension(path: Path) -> str:
    """Lowercase extension without the dot, '' if there is none."""
    return path.suffix[1:].lower()


def match_magic(header: bytes) -> str | None:
    """Return the extension of the first signature that prefixes header."""
    for magic in MAGIC_BYTES:
        if header.startswith(magic.signature):
            return magic.extension
    return None


def classify(path: Path) -> str:
    """
    Determine the effective format tag of a file.
    
    Known extensions are trusted. Anything else of at least 16 bytes is
    sniffed against MAGIC_BYTES; files shorter than that, and files whose
    header matches nothing, keep their raw extension (possibly '').
    
    Args:
        path: File to classify
        
    Returns:
        Lowercase format tag
        
    Raises:
        OSError: If the file's size cannot be read
    """
    extension = file_extension(path)
    if extension in SUPPORTED_EXTENSIONS:
        return extension

    if path.stat().st_size < MIN_SNIFF_SIZE:
        return extension

    try:
        with open(path, 'rb') as f:
            header = f.read(HEADER_SIZE)
    except OSError as e:
        logger.error(f"Error reading header bytes from {path}: {e}")
        return extension

    return match_magic(header) or extension
