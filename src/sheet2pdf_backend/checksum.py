"""
Content identifiers for uploaded documents.

The identifier is the hex SHA-256 of the exact upload bytes. It is the only
key used by the artifact cache, so identical uploads always land on the same
cached PDF.
"""

from __future__ import annotations

import hashlib
from typing import BinaryIO, Optional, Tuple

from .errors import UploadTooLarge

DEFAULT_CHUNK_SIZE = 1024 * 1024


def compute_checksum(
    stream: BinaryIO,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    max_bytes: Optional[int] = None,
) -> Tuple[str, int]:
    """
    Hash a binary stream chunk by chunk.

    Args:
        stream: Readable binary stream positioned at the start of the payload
        chunk_size: Number of bytes read per iteration
        max_bytes: Optional ceiling; crossing it aborts the read

    Returns:
        Tuple of (hex digest, number of bytes read)

    Raises:
        UploadTooLarge: If more than max_bytes were read
        OSError: Read errors from the stream are not caught
    """
    digest = hashlib.sha256()
    size = 0
    while chunk := stream.read(chunk_size):
        size += len(chunk)
        if max_bytes is not None and size > max_bytes:
            raise UploadTooLarge(max_bytes)
        digest.update(chunk)
    return digest.hexdigest(), size
