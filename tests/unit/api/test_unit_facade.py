# tests/unit/api/test_unit_facade.py — v1
"""Tests for api/facade.py: entry points and the full deduplication flow."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock

import pytest

from docdedup.api.facade import DeduplicationFacade, create_facade, deduplicate_document
from docdedup.config.settings import Settings
from docdedup.core.errors import InputError, StorageError
from docdedup.core.models import InvoiceDuplicateResult
from docdedup.hashing.content_hasher import ContentHasher
from docdedup.logging.context import get_context
from docdedup.store.memory_store import InMemoryRecordStore
from docdedup.store.sqlite_store import SqliteRecordStore

CONTENT = b"invoice INV-100 from Acme Ltd"


class TestFacadeEntryPoints:
    @pytest.mark.asyncio
    async def test_check_file_duplicate(self, facade):
        await facade.calculate_and_store_file_hash("f1", "tenant_1", CONTENT)
        digest = ContentHasher().hash(CONTENT)
        result = await facade.check_file_duplicate(digest, len(CONTENT), "tenant_1")
        assert result.duplicate_candidate_id == "f1"
        assert get_context().tenant_id is None

    @pytest.mark.asyncio
    async def test_should_process_file(self, facade):
        record = await facade.calculate_and_store_file_hash("f1", "tenant_1", CONTENT)
        decision = await facade.should_process_file(
            "f1", record.content_hash, record.size_bytes, "tenant_1"
        )
        assert decision.should_process is True

    @pytest.mark.asyncio
    async def test_check_invoice_duplicate(self, facade, acme_fields_a, acme_fields_b):
        await facade.check_invoice_duplicate("ext_a", acme_fields_a, "tenant_1")
        result = await facade.check_invoice_duplicate("ext_b", acme_fields_b, "tenant_1")
        assert result.duplicate_type == "exact"
        chain = await facade.get_duplicate_chain("ext_b")
        assert [r.extraction_id for r in chain] == ["ext_a", "ext_b"]

    @pytest.mark.asyncio
    async def test_log_context_during_check(self, memory_store, settings, acme_fields_a):
        seen = {}
        original = memory_store.find_fingerprint_candidates

        async def spy(*args, **kwargs):
            seen.update(get_context().as_dict())
            return await original(*args, **kwargs)

        memory_store.find_fingerprint_candidates = spy
        facade = DeduplicationFacade(memory_store, settings)
        await facade.check_invoice_duplicate("ext_a", acme_fields_a, "tenant_1")
        assert seen == {"tenant_id": "tenant_1", "extraction_id": "ext_a", "stage": "invoice"}
        assert get_context().as_dict() == {}

    @pytest.mark.asyncio
    async def test_storage_error_propagates(self, settings, acme_fields_a):
        store = AsyncMock()
        store.find_by_fingerprint_digest.return_value = []
        store.find_fingerprint_candidates.side_effect = TimeoutError("slow")
        facade = DeduplicationFacade(store, settings)
        with pytest.raises(StorageError):
            await facade.check_invoice_duplicate("ext_a", acme_fields_a, "tenant_1")


class TestUpdateInvoiceDuplicateStatus:
    @pytest.mark.asyncio
    async def test_reapply_verdict(self, facade, memory_store, acme_fields_a):
        await facade.check_invoice_duplicate("ext_a", acme_fields_a, "tenant_1")
        await facade.check_invoice_duplicate("ext_b", acme_fields_a, "tenant_1")
        verdict = InvoiceDuplicateResult(
            is_duplicate=True, duplicate_type="possible", duplicate_candidate_id="ext_a",
            confidence=0.75, extraction_id="ext_b", tenant_id="tenant_1",
        )
        await facade.update_invoice_duplicate_status("ext_b", verdict)
        record = await memory_store.get_extraction("ext_b")
        assert record.duplicate_status == "possible_duplicate"
        assert record.duplicate_confidence == 0.75
        links = await memory_store.list_links("ext_b")
        assert [link.duplicate_type for link in links] == ["possible"]

    @pytest.mark.asyncio
    async def test_mismatched_extraction(self, facade):
        verdict = InvoiceDuplicateResult(
            is_duplicate=False, extraction_id="ext_x", tenant_id="tenant_1",
        )
        with pytest.raises(InputError, match="ext_x"):
            await facade.update_invoice_duplicate_status("ext_b", verdict)

    @pytest.mark.asyncio
    async def test_unknown_extraction_leaves_no_link(self, facade, memory_store, acme_fields_a):
        await facade.check_invoice_duplicate("ext_a", acme_fields_a, "tenant_1")
        verdict = InvoiceDuplicateResult(
            is_duplicate=True, duplicate_type="exact", duplicate_candidate_id="ext_a",
            confidence=1.0, extraction_id="ext_ghost", tenant_id="tenant_1",
        )
        with pytest.raises(InputError, match="ext_ghost"):
            await facade.update_invoice_duplicate_status("ext_ghost", verdict)
        assert await memory_store.list_links("ext_ghost") == []
        assert await memory_store.get_extraction("ext_ghost") is None


class TestCreateFacade:
    def teardown_method(self):
        root = logging.getLogger("docdedup")
        for handler in root.handlers:
            handler.close()
        root.handlers.clear()
        root.setLevel(logging.NOTSET)

    def test_default_memory(self):
        facade = create_facade(Settings(_env_file=None))
        assert isinstance(facade.record_store, InMemoryRecordStore)
        assert logging.getLogger("docdedup").handlers

    def test_sqlite(self, tmp_path):
        facade = create_facade(
            Settings(
                _env_file=None,
                record_store_backend="sqlite",
                record_store_path=tmp_path / "records.db",
            )
        )
        try:
            assert isinstance(facade.record_store, SqliteRecordStore)
        finally:
            facade.close()


class TestDeduplicateDocument:
    @pytest.mark.asyncio
    async def test_first_upload(self, facade, acme_fields_a):
        result = await deduplicate_document(
            facade, "f1", CONTENT, "tenant_1",
            extracted_fields=acme_fields_a, extraction_id="ext_a",
        )
        assert result.should_process is True
        assert result.file_result.is_duplicate is False
        assert result.invoice_result.duplicate_type == "unique"

    @pytest.mark.asyncio
    async def test_invoice_stage_keeps_file_context(self, memory_store, settings, acme_fields_a):
        seen = {}
        original = memory_store.find_fingerprint_candidates

        async def spy(*args, **kwargs):
            seen.update(get_context().as_dict())
            return await original(*args, **kwargs)

        memory_store.find_fingerprint_candidates = spy
        facade = DeduplicationFacade(memory_store, settings)
        await deduplicate_document(
            facade, "f1", CONTENT, "tenant_1",
            extracted_fields=acme_fields_a, extraction_id="ext_a",
        )
        assert seen == {
            "tenant_id": "tenant_1",
            "stage": "invoice",
            "file_id": "f1",
            "extraction_id": "ext_a",
        }
        assert get_context().as_dict() == {}

    @pytest.mark.asyncio
    async def test_byte_identical_reupload(self, facade, acme_fields_a):
        await deduplicate_document(facade, "f1", CONTENT, "tenant_1")
        result = await deduplicate_document(
            facade, "f2", CONTENT, "tenant_1",
            extracted_fields=acme_fields_a, extraction_id="ext_b",
        )
        assert result.should_process is False
        assert result.file_result.duplicate_candidate_id == "f1"
        assert result.invoice_result is None

    @pytest.mark.asyncio
    async def test_rescanned_invoice(self, facade, acme_fields_a, acme_fields_b):
        await deduplicate_document(
            facade, "f1", CONTENT, "tenant_1",
            extracted_fields=acme_fields_a, extraction_id="ext_a",
        )
        result = await deduplicate_document(
            facade, "f2", CONTENT + b" (scan)", "tenant_1",
            extracted_fields=acme_fields_b, extraction_id="ext_b",
        )
        assert result.file_result.is_duplicate is False
        assert result.invoice_result.duplicate_type == "exact"
        assert result.should_process is False

    @pytest.mark.asyncio
    async def test_possible_still_processed(self, facade, acme_fields_a):
        await deduplicate_document(
            facade, "f1", CONTENT, "tenant_1",
            extracted_fields=acme_fields_a, extraction_id="ext_a",
        )
        shifted = {**acme_fields_a, "invoiceDate": {"value": "2024-02-20"}}
        result = await deduplicate_document(
            facade, "f2", b"other bytes", "tenant_1",
            extracted_fields=shifted, extraction_id="ext_b",
        )
        assert result.invoice_result.duplicate_type == "possible"
        assert result.should_process is True

    @pytest.mark.asyncio
    async def test_no_fields_skips_invoice_stage(self, facade):
        result = await deduplicate_document(facade, "f1", CONTENT, "tenant_1")
        assert result.invoice_result is None
        assert result.should_process is True

    @pytest.mark.asyncio
    async def test_errors_not_swallowed(self, settings):
        store = AsyncMock()
        store.save_file_record.side_effect = StorageError("write failed", "save_file_record")
        facade = DeduplicationFacade(store, settings)
        with pytest.raises(StorageError):
            await deduplicate_document(facade, "f1", CONTENT, "tenant_1")

    @pytest.mark.asyncio
    async def test_non_bytes_content(self, facade):
        with pytest.raises(InputError):
            await deduplicate_document(facade, "f1", "text", "tenant_1")  # type: ignore[arg-type]
