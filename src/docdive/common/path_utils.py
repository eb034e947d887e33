"""Path utilities for naming materialized files."""

import logging
import re
from pathlib import PurePosixPath
from typing import Optional

logger = logging.getLogger(__name__)

# Characters removed from names taken from document internals
FILENAME_ILLEGAL_CHARS = '/?<>\\:*|"'

_ILLEGAL_RE = re.compile('[' + re.escape(FILENAME_ILLEGAL_CHARS) + '\x00-\x1f]')

WINDOWS_RESERVED_NAMES = {
    'CON', 'PRN', 'AUX', 'NUL',
    'COM1', 'COM2', 'COM3', 'COM4', 'COM5', 'COM6', 'COM7', 'COM8', 'COM9',
    'LPT1', 'LPT2', 'LPT3', 'LPT4', 'LPT5', 'LPT6', 'LPT7', 'LPT8', 'LPT9'
}


def sanitize_filename(name: str, fallback: str = "unnamed") -> str:
    """Drop characters that are not allowed in a single filename.

    Used for names that come from inside documents: attachment names,
    embedded message display names, sheet and macro module names.

    Args:
        name: Raw name
        fallback: Returned when nothing usable is left

    Returns:
        Name safe to use as one path component
    """
    cleaned = _ILLEGAL_RE.sub('', name).strip()

    # A bare "." or ".." would escape the directory
    if cleaned.strip('.') == '':
        cleaned = ''

    if cleaned.split('.')[0].upper() in WINDOWS_RESERVED_NAMES:
        cleaned = f"_{cleaned}"

    if not cleaned:
        return fallback

    if cleaned != name:
        logger.debug(f"Sanitized filename: '{name}' -> '{cleaned}'")
    return cleaned


def safe_member_path(member_name: str) -> Optional[PurePosixPath]:
    """Turn an archive member name into a relative path that stays inside
    the extraction directory.

    Absolute prefixes, drive letters and ".." components are dropped,
    backslashes are treated as separators.

    Args:
        member_name: Name as stored in the archive

    Returns:
        Relative path, or None if nothing usable is left (e.g. "../")
    """
    parts = []
    for part in member_name.replace('\\', '/').split('/'):
        if part in ('', '.', '..'):
            continue
        if len(part) == 2 and part[1] == ':':
            continue
        parts.append(sanitize_filename(part))

    if not parts:
        return None
    return PurePosixPath(*parts)
