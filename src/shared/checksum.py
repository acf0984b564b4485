"""Checksum calculation for transcoded outputs.

XXHash64 is used instead of MD5: outputs are hashed on the worker right
before upload, and XXHash keeps that step cheap for multi-gigabyte files.
Streaming calculation keeps memory flat regardless of file size.
"""

from pathlib import Path
from typing import BinaryIO

import xxhash

DEFAULT_CHUNK_SIZE = 8 * 1024 * 1024


def calculate_xxhash(
    file_obj: BinaryIO,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> str:
    """Calculate XXHash64 checksum of a file-like object using streaming.

    Args:
        file_obj: File-like object to read from
        chunk_size: Bytes to read per chunk

    Returns:
        Lowercase hexadecimal XXHash64 string (16 characters)
    """
    hasher = xxhash.xxh64()

    while True:
        chunk = file_obj.read(chunk_size)
        if not chunk:
            break
        hasher.update(chunk)

    return hasher.hexdigest().lower()


def checksum_file(path: str | Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """Calculate XXHash64 checksum of a local file."""
    with open(path, "rb") as f:
        return calculate_xxhash(f, chunk_size)


def checksum_bytes(data: bytes) -> str:
    """Calculate XXHash64 checksum of an in-memory payload."""
    return xxhash.xxh64(data).hexdigest().lower()
