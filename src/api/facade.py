# src/api/facade.py — v1
"""Public API facade: single entry point for both deduplication stages.

Usage:
    from docdedup.api.facade import create_facade, deduplicate_document
    facade = create_facade()
    result = await deduplicate_document(facade, file_id, content, tenant_id)

Both stages answer with the same verdict shape (DuplicateCheckResult).
Storage failures always surface as StorageError; a failed check is never
reported as "unique".
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Mapping

from docdedup.config.settings import Settings
from docdedup.core.errors import InputError
from docdedup.core.models import (
    ExtractionRecord,
    FileContentRecord,
    FileDuplicateResult,
    FullDeduplicationResult,
    InvoiceDuplicateResult,
    ProcessDecision,
)
from docdedup.detection.file_detector import FileDuplicateDetector
from docdedup.detection.invoice_detector import InvoiceDuplicateDetector
from docdedup.logging.context import check_context

if TYPE_CHECKING:
    from docdedup.store.base_record_store import BaseRecordStore

logger = logging.getLogger(__name__)

# Tiers that stop a document from going further down the pipeline
_BLOCKING_TYPES = frozenset({"likely", "exact"})


class DeduplicationFacade:
    """Wires both detectors around one shared record store."""

    def __init__(
        self, record_store: BaseRecordStore, settings: Settings | None = None
    ) -> None:
        self._settings = settings or Settings()
        self._store = record_store
        self._files = FileDuplicateDetector(record_store)
        self._invoices = InvoiceDuplicateDetector.from_settings(
            record_store, self._settings
        )

    @property
    def record_store(self) -> BaseRecordStore:
        return self._store

    @property
    def settings(self) -> Settings:
        return self._settings

    # --- Stage 1 ---

    async def check_file_duplicate(
        self,
        content_hash: str,
        size_bytes: int,
        tenant_id: str,
        exclude_file_id: str | None = None,
    ) -> FileDuplicateResult:
        with check_context(tenant_id, "file", file_id=exclude_file_id):
            return await self._files.check_file_duplicate(
                content_hash, size_bytes, tenant_id, exclude_file_id
            )

    async def calculate_and_store_file_hash(
        self,
        file_id: str,
        tenant_id: str,
        content: bytes,
        file_name: str | None = None,
    ) -> FileContentRecord:
        return await self._files.calculate_and_store_file_hash(
            file_id, tenant_id, content, file_name
        )

    async def should_process_file(
        self, file_id: str, content_hash: str, size_bytes: int, tenant_id: str
    ) -> ProcessDecision:
        with check_context(tenant_id, "file", file_id=file_id):
            return await self._files.should_process_file(
                file_id, content_hash, size_bytes, tenant_id
            )

    # --- Stage 2 ---

    async def check_invoice_duplicate(
        self,
        extraction_id: str,
        extracted_fields: Mapping[str, Any] | None,
        tenant_id: str,
    ) -> InvoiceDuplicateResult:
        with check_context(tenant_id, "invoice", extraction_id=extraction_id):
            return await self._invoices.check_invoice_duplicate(
                extraction_id, extracted_fields, tenant_id
            )

    async def update_invoice_duplicate_status(
        self, extraction_id: str, verdict: InvoiceDuplicateResult
    ) -> None:
        """Re-apply a verdict to an extraction that already has a fingerprint.

        Raises:
            InputError: If the verdict belongs to another extraction or a
                duplicate verdict names no candidate.
            StorageError: If the write fails.
        """
        if verdict.extraction_id != extraction_id:
            raise InputError(
                f"Verdict for {verdict.extraction_id} applied to {extraction_id}",
                "extraction_id",
            )
        with check_context(verdict.tenant_id, "invoice", extraction_id=extraction_id):
            await self._invoices.record_verdict(verdict)

    async def get_duplicate_chain(self, extraction_id: str) -> list[ExtractionRecord]:
        return await self._invoices.get_duplicate_chain(extraction_id)

    def close(self) -> None:
        self._store.close()


def create_facade(settings: Settings | None = None) -> DeduplicationFacade:
    """Build a facade with logging and the record store configured from settings."""
    from docdedup.logging.logger import setup_logging_from_settings
    from docdedup.store.store_factory import create_record_store

    settings = settings or Settings()
    setup_logging_from_settings(settings)
    return DeduplicationFacade(create_record_store(settings), settings)


async def deduplicate_document(
    facade: DeduplicationFacade,
    file_id: str,
    content: bytes,
    tenant_id: str,
    extracted_fields: Mapping[str, Any] | None = None,
    extraction_id: str | None = None,
    file_name: str | None = None,
) -> FullDeduplicationResult:
    """Run both stages for one uploaded document.

    Flow:
      1. Hash and record the file
      2. Look for an earlier byte-identical file; if found, stop there
      3. When extracted fields and an extraction id are given, run the
         invoice check; "likely" and "exact" verdicts stop processing

    Errors from either stage propagate unchanged.
    """
    with check_context(tenant_id, "document", file_id=file_id, extraction_id=extraction_id):
        record = await facade.calculate_and_store_file_hash(
            file_id, tenant_id, content, file_name
        )
        file_result = await facade.check_file_duplicate(
            record.content_hash, record.size_bytes, tenant_id, exclude_file_id=file_id
        )
        if file_result.is_duplicate:
            logger.info(
                "File %s duplicates %s, skipping processing",
                file_id, file_result.duplicate_candidate_id,
            )
            return FullDeduplicationResult(file_result=file_result, should_process=False)

        invoice_result = None
        if extracted_fields is not None and extraction_id is not None:
            invoice_result = await facade.check_invoice_duplicate(
                extraction_id, extracted_fields, tenant_id
            )

        should_process = (
            invoice_result is None
            or invoice_result.duplicate_type not in _BLOCKING_TYPES
        )
        logger.info(
            "Deduplication of file %s done: should_process=%s", file_id, should_process
        )
        return FullDeduplicationResult(
            file_result=file_result,
            invoice_result=invoice_result,
            should_process=should_process,
        )
