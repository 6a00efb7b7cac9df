# src/detection/file_detector.py — v1
"""Stage 1: exact file-level duplicate detection.

A file is a duplicate when another file in the same tenant has the same
SHA-256 digest AND the same size. No fuzzy logic at this stage. When
several historical files match, the earliest-created one is reported as
the canonical original.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from docdedup.core.errors import InputError, StorageError
from docdedup.core.models import FileContentRecord, FileDuplicateResult, ProcessDecision
from docdedup.hashing.content_hasher import ContentHasher, is_valid_digest
from docdedup.store.base_record_store import to_utc

if TYPE_CHECKING:
    from docdedup.store.base_record_store import BaseRecordStore

logger = logging.getLogger(__name__)


class FileDuplicateDetector:
    """Tenant-scoped exact-match lookup by (content_hash, size_bytes)."""

    def __init__(
        self, record_store: BaseRecordStore, hasher: ContentHasher | None = None
    ) -> None:
        self._store = record_store
        self._hasher = hasher or ContentHasher()

    async def check_file_duplicate(
        self,
        content_hash: str,
        size_bytes: int,
        tenant_id: str,
        exclude_file_id: str | None = None,
    ) -> FileDuplicateResult:
        """Look for an earlier byte-identical file in *tenant_id*.

        Raises:
            InputError: If the digest is malformed or the size is negative.
            StorageError: If the record store lookup fails.
        """
        if not is_valid_digest(content_hash):
            raise InputError(f"Malformed content hash {content_hash!r}", "content_hash")
        if isinstance(size_bytes, bool) or not isinstance(size_bytes, int) or size_bytes < 0:
            raise InputError(f"Invalid size {size_bytes!r}", "size_bytes")
        content_hash = content_hash.lower()

        logger.debug(
            "Checking file duplicate: tenant=%s hash=%s size=%d exclude=%s",
            tenant_id, content_hash, size_bytes, exclude_file_id,
        )
        try:
            matches = await self._store.find_file_by_hash_and_size(
                tenant_id, content_hash, size_bytes, exclude_file_id
            )
        except Exception as e:
            logger.error("File duplicate lookup failed for hash %s", content_hash)
            if isinstance(e, StorageError):
                raise
            raise StorageError(
                f"file duplicate check failed: {e}", operation="find_file_by_hash_and_size"
            ) from e

        # The store is trusted for the query but not for the scope
        matches = [
            m for m in matches
            if m.tenant_id == tenant_id
            and m.content_hash == content_hash
            and m.size_bytes == size_bytes
            and m.file_id != exclude_file_id
        ]
        if not matches:
            logger.info("No file duplicate found for hash %s", content_hash)
            return FileDuplicateResult(
                is_duplicate=False,
                content_hash=content_hash,
                size_bytes=size_bytes,
            )

        original = min(matches, key=lambda m: (to_utc(m.created_at), m.file_id))
        logger.info(
            "File duplicate found for hash %s", content_hash,
            extra={"data": {"original": original.file_id, "matches": len(matches)}},
        )
        return FileDuplicateResult(
            is_duplicate=True,
            duplicate_type="exact",
            duplicate_candidate_id=original.file_id,
            confidence=1.0,
            content_hash=content_hash,
            size_bytes=size_bytes,
        )

    async def calculate_and_store_file_hash(
        self,
        file_id: str,
        tenant_id: str,
        content: bytes,
        file_name: str | None = None,
    ) -> FileContentRecord:
        """Hash *content* and record it for future lookups."""
        record = FileContentRecord(
            file_id=file_id,
            tenant_id=tenant_id,
            content_hash=self._hasher.hash(content),
            size_bytes=len(content),
            file_name=file_name,
        )
        await self._store.save_file_record(record)
        logger.info(
            "Stored file hash: file=%s hash=%s size=%d",
            file_id, record.content_hash, record.size_bytes,
        )
        return record

    async def should_process_file(
        self,
        file_id: str,
        content_hash: str,
        size_bytes: int,
        tenant_id: str,
    ) -> ProcessDecision:
        """Decide whether *file_id* still needs extraction.

        Lookup failures propagate; a failed check never turns into
        "go ahead and process".
        """
        result = await self.check_file_duplicate(
            content_hash, size_bytes, tenant_id, exclude_file_id=file_id
        )
        if result.is_duplicate:
            return ProcessDecision(
                should_process=False,
                reason="Duplicate file already processed",
                duplicate_file_id=result.duplicate_candidate_id,
            )
        return ProcessDecision(should_process=True)
