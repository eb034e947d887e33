"""Checksum utilities for change detection."""

from pathlib import Path

import crcmod

# Constants for checksum calculation
CRC64_CHUNK_SIZE = 65536  # 64 KB chunks

# CRC-64/NVME: poly 0xAD93D23594C93659, reflected, init and xorout all ones.
# crcmod takes the poly with its implicit top bit and an init value already
# xored with xorout.
_CRC64_POLY = 0x1AD93D23594C93659
_CRC64_XOROUT = 0xFFFFFFFFFFFFFFFF

_crc64_nvme = crcmod.mkCrcFun(_CRC64_POLY, initCrc=0, rev=True, xorOut=_CRC64_XOROUT)


def to_signed64(value: int) -> int:
    """Reinterpret an unsigned 64-bit integer as two's-complement signed."""
    value &= 0xFFFFFFFFFFFFFFFF
    if value >= 1 << 63:
        return value - (1 << 64)
    return value


def compute_crc64_bytes(data: bytes) -> int:
    """CRC-64/NVME of an in-memory buffer, as an unsigned integer."""
    return _crc64_nvme(data)


def compute_crc64(file_path: Path) -> int:
    """
    Compute the CRC-64/NVME checksum of an entire file.
    
    Used for:
    - Change detection between scans (reconciler)
    
    Args:
        file_path: Path to the file
        
    Returns:
        Checksum as a signed 64-bit integer, the form persisted in records
        
    Raises:
        OSError: If file cannot be read
    """
    crc = 0
    
    with open(file_path, 'rb') as f:
        while chunk := f.read(CRC64_CHUNK_SIZE):
            crc = _crc64_nvme(chunk, crc)
    
    return to_signed64(crc)
