# src/store/base_record_store.py — v1
"""Abstract record store interface.

The store is the engine's only shared, mutable resource. Detectors read
file records and fingerprints from it and annotate extractions through it.
Backends wrap their native exceptions in StorageError.

Transactions are tracked per task with a ContextVar, so concurrent tasks
sharing one store instance never share a transaction. Nested
``transaction()`` blocks join the outermost one.
"""

from __future__ import annotations

import contextvars
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Iterator

from docdedup.core.errors import StorageError
from docdedup.core.models import (
    DuplicateCandidateLink,
    DuplicateStatus,
    ExtractionRecord,
    FileContentRecord,
    InvoiceFingerprint,
)


class BaseRecordStore(ABC):
    """Unified interface for record storage backends."""

    def __init__(self) -> None:
        self._tx_depth: contextvars.ContextVar[int] = contextvars.ContextVar(
            f"docdedup_tx_depth_{id(self)}", default=0
        )

    # --- File records ---

    @abstractmethod
    async def save_file_record(self, record: FileContentRecord) -> None:
        """Insert or replace a file content record."""

    @abstractmethod
    async def find_file_by_hash_and_size(
        self,
        tenant_id: str,
        content_hash: str,
        size_bytes: int,
        exclude_file_id: str | None = None,
    ) -> list[FileContentRecord]:
        """All records in *tenant_id* with this exact digest and size."""

    # --- Extractions / fingerprints ---

    @abstractmethod
    async def save_fingerprint(
        self, fingerprint: InvoiceFingerprint, digest: str
    ) -> None:
        """Create the extraction row, or refresh its fingerprint.

        An existing row keeps its status, candidate and created_at.
        """

    @abstractmethod
    async def get_extraction(self, extraction_id: str) -> ExtractionRecord | None:
        """Fetch one extraction row."""

    @abstractmethod
    async def find_fingerprint_candidates(
        self,
        tenant_id: str,
        exclude_extraction_id: str,
        limit: int | None = None,
        since: datetime | None = None,
    ) -> list[InvoiceFingerprint]:
        """Fingerprints to compare a new extraction against.

        Scoped to *tenant_id*, excluding *exclude_extraction_id* and every
        extraction already marked ``duplicate``. When *limit* is set the
        most recent rows are kept. Results are ordered oldest first.
        """

    @abstractmethod
    async def find_by_fingerprint_digest(
        self, tenant_id: str, digest: str, exclude_extraction_id: str
    ) -> list[InvoiceFingerprint]:
        """Fingerprints in *tenant_id* stored under exactly *digest*.

        Same exclusions and ordering as find_fingerprint_candidates, with
        no limit or age bound.
        """

    @abstractmethod
    async def update_extraction_duplicate_status(
        self,
        extraction_id: str,
        status: DuplicateStatus,
        candidate_id: str | None,
        confidence: float,
    ) -> None:
        """Annotate an extraction. Rows in ``reviewing`` are left untouched.

        A missing row is never created here; callers that need one to
        exist check with get_extraction first.
        """

    # --- Links ---

    @abstractmethod
    async def save_duplicate_link(self, link: DuplicateCandidateLink) -> None:
        """Insert or replace the link for (extraction_id, candidate_extraction_id)."""

    @abstractmethod
    async def list_links(self, extraction_id: str) -> list[DuplicateCandidateLink]:
        """Links written for *extraction_id* (outgoing direction)."""

    # --- Transactions ---

    @property
    def in_transaction(self) -> bool:
        return self._tx_depth.get() > 0

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Group writes into one atomic unit."""
        depth = self._tx_depth.get()
        if depth:
            token = self._tx_depth.set(depth + 1)
            try:
                yield
            finally:
                self._tx_depth.reset(token)
            return

        await self._begin()
        token = self._tx_depth.set(1)
        try:
            yield
        except BaseException:
            self._tx_depth.reset(token)
            await self._rollback()
            raise
        self._tx_depth.reset(token)
        await self._commit()

    async def _begin(self) -> None:
        """Open a backend transaction."""

    async def _commit(self) -> None:
        """Commit the backend transaction."""

    async def _rollback(self) -> None:
        """Discard the backend transaction."""

    def close(self) -> None:
        """Release backend resources."""


@contextmanager
def storage_errors(
    operation: str, *exc_types: type[BaseException]
) -> Iterator[None]:
    """Re-raise backend exceptions as StorageError."""
    try:
        yield
    except StorageError:
        raise
    except exc_types as e:
        raise StorageError(f"{operation} failed: {e}", operation=operation) from e


def to_utc(value: datetime) -> datetime:
    """Aware UTC datetime; naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
