"""Adler-32 verification utilities for patch payload integrity checking."""

import logging
import zlib
from pathlib import Path

from patcher.models.errors import ChecksumMismatchError


def format_checksum(value: int) -> str:
    """Render a checksum as 8 lowercase hex digits."""
    return f"{value & 0xFFFFFFFF:08x}"


def compute_adler32(data: bytes) -> str:
    """Compute the Adler-32 checksum (modulus 65521) of a byte buffer.

    Args:
        data: Full byte sequence

    Returns:
        8-character lowercase hex string
    """
    return format_checksum(zlib.adler32(data))


def compute_file_adler32(file_path: Path, chunk_size: int = 64 * 1024) -> str:
    """Compute the Adler-32 of a file, rolling over fixed-size chunks.

    Args:
        file_path: Path to file to checksum
        chunk_size: Read buffer size

    Returns:
        8-character lowercase hex string

    Raises:
        FileNotFoundError: If file doesn't exist
        IOError: If file read fails
    """
    logger = logging.getLogger("patcher.verification")
    value = 1  # Adler-32 seed

    try:
        with open(file_path, "rb") as f:
            while chunk := f.read(chunk_size):
                value = zlib.adler32(chunk, value)
    except FileNotFoundError:
        logger.error(f"File not found: {file_path}")
        raise

    result = format_checksum(value)
    logger.debug(f"Computed Adler-32 for {file_path.name}: {result}")
    return result


def verify_checksum(data: bytes, expected: str) -> bool:
    """Verify a buffer against an expected checksum (case-insensitive).

    Args:
        data: Bytes to verify
        expected: Expected 8-hex-digit checksum

    Returns:
        True if the computed checksum equals ``expected``
    """
    return compute_adler32(data) == expected.strip().lower()


def verify_checksum_or_raise(name: str, data: bytes, expected: str) -> None:
    """Verify a buffer, raise on mismatch.

    Args:
        name: File name for the error report
        data: Bytes to verify
        expected: Expected 8-hex-digit checksum

    Raises:
        ChecksumMismatchError: If the checksum differs
    """
    actual = compute_adler32(data)
    if actual != expected.strip().lower():
        logging.getLogger("patcher.verification").error(
            f"Checksum mismatch for {name}: expected {expected}, got {actual}"
        )
        raise ChecksumMismatchError(name, expected, actual)
