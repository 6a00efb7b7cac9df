# src/store/memory_store.py — v1
"""In-process record store (RECORD_STORE_BACKEND=memory).

Holds everything in dicts. Writes inside a transaction are journaled per
task and applied together on commit, so a failed transaction leaves no
trace. Suitable for tests and single-process embedding.
"""

from __future__ import annotations

import contextvars
import logging
from datetime import datetime
from typing import Callable

from docdedup.core.models import (
    DuplicateCandidateLink,
    DuplicateStatus,
    ExtractionRecord,
    FileContentRecord,
    InvoiceFingerprint,
    utc_now,
)
from docdedup.store.base_record_store import BaseRecordStore, to_utc

logger = logging.getLogger(__name__)

_Op = Callable[[], None]


class InMemoryRecordStore(BaseRecordStore):
    """Dict-backed record store."""

    def __init__(self) -> None:
        super().__init__()
        self._files: dict[str, FileContentRecord] = {}
        self._extractions: dict[str, ExtractionRecord] = {}
        self._links: dict[tuple[str, str], DuplicateCandidateLink] = {}
        self._journal: contextvars.ContextVar[list[_Op] | None] = contextvars.ContextVar(
            f"docdedup_memory_journal_{id(self)}", default=None
        )

    # --- File records ---

    async def save_file_record(self, record: FileContentRecord) -> None:
        self._write(lambda: self._files.__setitem__(record.file_id, record))

    async def find_file_by_hash_and_size(
        self,
        tenant_id: str,
        content_hash: str,
        size_bytes: int,
        exclude_file_id: str | None = None,
    ) -> list[FileContentRecord]:
        return [
            r
            for r in self._files.values()
            if r.tenant_id == tenant_id
            and r.content_hash == content_hash
            and r.size_bytes == size_bytes
            and r.file_id != exclude_file_id
        ]

    # --- Extractions ---

    async def save_fingerprint(
        self, fingerprint: InvoiceFingerprint, digest: str
    ) -> None:
        def op() -> None:
            now = utc_now()
            existing = self._extractions.get(fingerprint.extraction_id)
            if existing is None:
                self._extractions[fingerprint.extraction_id] = ExtractionRecord(
                    extraction_id=fingerprint.extraction_id,
                    tenant_id=fingerprint.tenant_id,
                    fingerprint=fingerprint,
                    fingerprint_digest=digest,
                    created_at=now,
                    updated_at=now,
                )
            else:
                self._extractions[fingerprint.extraction_id] = existing.model_copy(
                    update={
                        "fingerprint": fingerprint,
                        "fingerprint_digest": digest,
                        "updated_at": now,
                    }
                )

        self._write(op)

    async def get_extraction(self, extraction_id: str) -> ExtractionRecord | None:
        return self._extractions.get(extraction_id)

    async def find_fingerprint_candidates(
        self,
        tenant_id: str,
        exclude_extraction_id: str,
        limit: int | None = None,
        since: datetime | None = None,
    ) -> list[InvoiceFingerprint]:
        floor = to_utc(since) if since is not None else None
        rows = sorted(
            (
                r
                for r in self._extractions.values()
                if r.tenant_id == tenant_id
                and r.extraction_id != exclude_extraction_id
                and r.duplicate_status != "duplicate"
                and (floor is None or to_utc(r.created_at) >= floor)
            ),
            key=lambda r: (to_utc(r.created_at), r.extraction_id),
        )
        if limit is not None:
            rows = rows[-limit:] if limit > 0 else []
        return [r.fingerprint for r in rows]

    async def find_by_fingerprint_digest(
        self, tenant_id: str, digest: str, exclude_extraction_id: str
    ) -> list[InvoiceFingerprint]:
        rows = sorted(
            (
                r
                for r in self._extractions.values()
                if r.tenant_id == tenant_id
                and r.fingerprint_digest == digest
                and r.extraction_id != exclude_extraction_id
                and r.duplicate_status != "duplicate"
            ),
            key=lambda r: (to_utc(r.created_at), r.extraction_id),
        )
        return [r.fingerprint for r in rows]

    async def update_extraction_duplicate_status(
        self,
        extraction_id: str,
        status: DuplicateStatus,
        candidate_id: str | None,
        confidence: float,
    ) -> None:
        def op() -> None:
            existing = self._extractions.get(extraction_id)
            if existing is None:
                logger.warning("Status update for unknown extraction %s", extraction_id)
                return
            if existing.duplicate_status == "reviewing":
                logger.info("Extraction %s is under review, status kept", extraction_id)
                return
            self._extractions[extraction_id] = existing.model_copy(
                update={
                    "duplicate_status": status,
                    "duplicate_candidate_id": candidate_id,
                    "duplicate_confidence": confidence,
                    "updated_at": utc_now(),
                }
            )

        self._write(op)

    def set_status(self, extraction_id: str, status: DuplicateStatus) -> None:
        """Force a status, as the external review workflow would."""
        existing = self._extractions[extraction_id]
        self._extractions[extraction_id] = existing.model_copy(
            update={"duplicate_status": status}
        )

    # --- Links ---

    async def save_duplicate_link(self, link: DuplicateCandidateLink) -> None:
        key = (link.extraction_id, link.candidate_extraction_id)
        self._write(lambda: self._links.__setitem__(key, link))

    async def list_links(self, extraction_id: str) -> list[DuplicateCandidateLink]:
        return [link for (src, _), link in self._links.items() if src == extraction_id]

    # --- Transactions ---

    def _write(self, op: _Op) -> None:
        journal = self._journal.get()
        if journal is None:
            op()
        else:
            journal.append(op)

    async def _begin(self) -> None:
        self._journal.set([])

    async def _commit(self) -> None:
        journal = self._journal.get() or []
        self._journal.set(None)
        for op in journal:
            op()

    async def _rollback(self) -> None:
        self._journal.set(None)
