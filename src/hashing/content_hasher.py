# src/hashing/content_hasher.py — v1
"""SHA-256 content digests for exact file-level duplicate detection.

The digest depends on the raw bytes only. File name, mime type and any
other metadata never enter the hash.
"""

from __future__ import annotations

import hashlib
from typing import BinaryIO, Iterable

from docdedup.core.errors import InputError

DIGEST_HEX_LENGTH = 64
_DEFAULT_CHUNK_SIZE = 1024 * 1024


class ContentHasher:
    """Deterministic SHA-256 hasher (256-bit output)."""

    algorithm = "sha256"

    def hash(self, data: bytes) -> str:
        """Return the hex digest of *data*."""
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise InputError(
                f"Expected bytes, got {type(data).__name__}", field="content"
            )
        return hashlib.sha256(data).hexdigest()

    def hash_stream(
        self,
        stream: BinaryIO | Iterable[bytes],
        chunk_size: int = _DEFAULT_CHUNK_SIZE,
    ) -> tuple[str, int]:
        """Hash a file-like object or an iterable of byte chunks.

        Returns:
            (hex digest, total size in bytes).

        Raises:
            InputError: If a chunk is not bytes.
        """
        digest = hashlib.sha256()
        size = 0
        for chunk in _iter_chunks(stream, chunk_size):
            if not isinstance(chunk, (bytes, bytearray, memoryview)):
                raise InputError(
                    f"Stream yielded {type(chunk).__name__}, expected bytes",
                    field="content",
                )
            digest.update(chunk)
            size += len(chunk)
        return digest.hexdigest(), size


def is_valid_digest(value: str) -> bool:
    """True if *value* looks like a SHA-256 hex digest."""
    if not isinstance(value, str) or len(value) != DIGEST_HEX_LENGTH:
        return False
    try:
        int(value, 16)
    except ValueError:
        return False
    return True


def _iter_chunks(
    stream: BinaryIO | Iterable[bytes], chunk_size: int
) -> Iterable[bytes]:
    read = getattr(stream, "read", None)
    if read is None:
        yield from stream  # type: ignore[misc]
        return
    while True:
        chunk = read(chunk_size)
        if not chunk:
            return
        yield chunk
