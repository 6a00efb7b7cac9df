# tests/unit/store/test_unit_redis_store.py — v1
"""Tests for store/redis_store.py: in-process fake Redis client."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

redis = pytest.importorskip("redis")

from docdedup.core.errors import InputError, StorageError  # noqa: E402
from docdedup.core.models import (  # noqa: E402
    DuplicateCandidateLink,
    FileContentRecord,
    InvoiceDuplicateResult,
)
from docdedup.detection.invoice_detector import InvoiceDuplicateDetector  # noqa: E402
from docdedup.store.redis_store import _STATUS_SCRIPT, RedisRecordStore  # noqa: E402


class FakeRedis:
    """Just enough of the redis-py client for the record store."""

    def __init__(self) -> None:
        self.strings: dict[str, str] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.sets: dict[str, set[str]] = {}

    def set(self, key, value):
        self.strings[key] = value

    def get(self, key):
        return self.strings.get(key)

    def zadd(self, key, mapping, nx=False):
        zset = self.zsets.setdefault(key, {})
        for member, score in mapping.items():
            if nx and member in zset:
                continue
            zset[member] = score

    def zrem(self, key, member):
        self.zsets.get(key, {}).pop(member, None)

    def zrange(self, key, start, end):
        zset = self.zsets.get(key, {})
        return [m for m, _ in sorted(zset.items(), key=lambda kv: (kv[1], kv[0]))]

    def zrangebyscore(self, key, low, high):
        low, high = float(low), float(high)
        return [m for m in self.zrange(key, 0, -1) if low <= self.zsets[key][m] <= high]

    def hsetnx(self, key, field, value):
        self.hashes.setdefault(key, {}).setdefault(field, value)

    def hset(self, key, mapping):
        self.hashes.setdefault(key, {}).update(mapping)

    def hget(self, key, field):
        return self.hashes.get(key, {}).get(field)

    def hmget(self, key, *fields):
        data = self.hashes.get(key, {})
        return [data.get(f) for f in fields]

    def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    def eval(self, script, numkeys, *keys_and_args):
        """Python rendering of the status-update script."""
        assert script == _STATUS_SCRIPT and numkeys == 1
        key, *args = keys_and_args
        data = self.hashes.get(key, {})
        if "fingerprint" not in data:
            return -1
        if data.get("duplicate_status") == "reviewing":
            return 0
        fields = ("duplicate_status", "duplicate_candidate_id", "duplicate_confidence", "updated_at")
        data.update(zip(fields, args))
        return 1

    def sadd(self, key, member):
        self.sets.setdefault(key, set()).add(member)

    def smembers(self, key):
        return set(self.sets.get(key, set()))

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    def close(self):
        pass


class FakePipeline:
    def __init__(self, client: FakeRedis) -> None:
        self._client = client
        self._queued: list = []

    def __getattr__(self, name):
        method = getattr(self._client, name)

        def queue(*args, **kwargs):
            self._queued.append((method, args, kwargs))

        return queue

    def execute(self):
        queued, self._queued = self._queued, []
        return [method(*args, **kwargs) for method, args, kwargs in queued]

    def reset(self):
        self._queued = []


@pytest.fixture
def client():
    return FakeRedis()


@pytest.fixture
def store(client):
    return RedisRecordStore(client=client)


class TestRedisRecordStore:
    def test_import_error_without_redis(self):
        """Clear ImportError when redis is not available."""
        import sys
        redis_mod = sys.modules.get("redis")
        sys.modules["redis"] = None  # type: ignore[assignment]
        try:
            with pytest.raises(ImportError, match="redis"):
                RedisRecordStore(redis_url="redis://localhost")
        finally:
            if redis_mod is not None:
                sys.modules["redis"] = redis_mod
            else:
                sys.modules.pop("redis", None)

    def test_requires_url_or_client(self):
        with pytest.raises(ValueError, match="redis_url"):
            RedisRecordStore()

    @pytest.mark.asyncio
    async def test_file_records(self, store):
        record = FileContentRecord(
            file_id="f1", tenant_id="tenant_1", content_hash="a" * 64, size_bytes=10,
            created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        await store.save_file_record(record)
        assert await store.find_file_by_hash_and_size("tenant_1", "a" * 64, 10) == [record]
        assert await store.find_file_by_hash_and_size("tenant_2", "a" * 64, 10) == []
        assert await store.find_file_by_hash_and_size("tenant_1", "a" * 64, 10, "f1") == []

    @pytest.mark.asyncio
    async def test_fingerprint_round_trip(self, store, fingerprint_factory):
        fp = fingerprint_factory("ext_1")
        await store.save_fingerprint(fp, "digest")
        record = await store.get_extraction("ext_1")
        assert record.fingerprint == fp
        assert record.duplicate_status == "unique"
        assert record.duplicate_candidate_id is None

    @pytest.mark.asyncio
    async def test_candidates(self, store, client, fingerprint_factory):
        for ext_id in ("ext_1", "ext_2", "ext_3"):
            await store.save_fingerprint(fingerprint_factory(ext_id), "d")
        await store.update_extraction_duplicate_status("ext_2", "duplicate", "ext_1", 1.0)
        candidates = await store.find_fingerprint_candidates("tenant_1", "ext_3")
        assert [c.extraction_id for c in candidates] == ["ext_1"]

    @pytest.mark.asyncio
    async def test_candidates_limit(self, store, fingerprint_factory):
        for ext_id in ("ext_1", "ext_2", "ext_3"):
            await store.save_fingerprint(fingerprint_factory(ext_id), "d")
        candidates = await store.find_fingerprint_candidates("tenant_1", "ext_9", limit=1)
        assert len(candidates) == 1

    @pytest.mark.asyncio
    async def test_reviewing_not_overwritten(self, store, client, fingerprint_factory):
        await store.save_fingerprint(fingerprint_factory("ext_1"), "d")
        client.hashes["docdedup:extraction:ext_1"]["duplicate_status"] = "reviewing"
        await store.update_extraction_duplicate_status("ext_1", "duplicate", "ext_0", 1.0)
        record = await store.get_extraction("ext_1")
        assert record.duplicate_status == "reviewing"

    @pytest.mark.asyncio
    async def test_unknown_extraction_ignored(self, store, client):
        await store.update_extraction_duplicate_status("nope", "duplicate", "ext_0", 1.0)
        assert "docdedup:extraction:nope" not in client.hashes

    @pytest.mark.asyncio
    async def test_review_started_before_commit_wins(self, store, client, fingerprint_factory):
        await store.save_fingerprint(fingerprint_factory("ext_1"), "d")
        async with store.transaction():
            await store.update_extraction_duplicate_status("ext_1", "duplicate", "ext_0", 1.0)
            # Another worker moves the row to review while the write is queued
            client.hashes["docdedup:extraction:ext_1"]["duplicate_status"] = "reviewing"
        record = await store.get_extraction("ext_1")
        assert record.duplicate_status == "reviewing"
        assert record.duplicate_candidate_id is None

    @pytest.mark.asyncio
    async def test_status_in_transaction_never_creates_row(self, store, client):
        async with store.transaction():
            await store.update_extraction_duplicate_status("nope", "duplicate", "ext_0", 1.0)
        assert "docdedup:extraction:nope" not in client.hashes
        assert await store.get_extraction("nope") is None

    @pytest.mark.asyncio
    async def test_verdict_for_unknown_extraction(self, store, client, fingerprint_factory):
        await store.save_fingerprint(fingerprint_factory("ext_a"), "d")
        verdict = InvoiceDuplicateResult(
            is_duplicate=True, duplicate_type="exact", duplicate_candidate_id="ext_a",
            confidence=1.0, extraction_id="ext_ghost", tenant_id="tenant_1",
        )
        with pytest.raises(InputError):
            await InvoiceDuplicateDetector(store).record_verdict(verdict)
        assert await store.list_links("ext_ghost") == []
        assert "docdedup:extraction:ext_ghost" not in client.hashes

    @pytest.mark.asyncio
    async def test_digest_lookup(self, store, fingerprint_factory):
        await store.save_fingerprint(fingerprint_factory("ext_1"), "same")
        await store.save_fingerprint(fingerprint_factory("ext_2"), "same")
        await store.save_fingerprint(fingerprint_factory("ext_x", tenant_id="tenant_2"), "same")
        await store.update_extraction_duplicate_status("ext_2", "duplicate", "ext_1", 1.0)
        matches = await store.find_by_fingerprint_digest("tenant_1", "same", "ext_9")
        assert [m.extraction_id for m in matches] == ["ext_1"]

    @pytest.mark.asyncio
    async def test_digest_index_follows_refresh(self, store, client, fingerprint_factory):
        await store.save_fingerprint(fingerprint_factory("ext_1"), "old")
        await store.save_fingerprint(fingerprint_factory("ext_1"), "new")
        assert "ext_1" not in client.zsets["docdedup:digest:tenant_1:old"]
        assert await store.find_by_fingerprint_digest("tenant_1", "old", "ext_9") == []
        matches = await store.find_by_fingerprint_digest("tenant_1", "new", "ext_9")
        assert [m.extraction_id for m in matches] == ["ext_1"]

    @pytest.mark.asyncio
    async def test_links(self, store):
        link = DuplicateCandidateLink(
            extraction_id="ext_2", candidate_extraction_id="ext_1",
            tenant_id="tenant_1", similarity_score=1.0, duplicate_type="exact",
        )
        await store.save_duplicate_link(link)
        await store.save_duplicate_link(link)
        assert await store.list_links("ext_2") == [link]

    @pytest.mark.asyncio
    async def test_transaction_commit(self, store, fingerprint_factory):
        async with store.transaction():
            await store.save_fingerprint(fingerprint_factory("ext_1"), "d")
            await store.update_extraction_duplicate_status("ext_1", "duplicate", "ext_0", 0.99)
        record = await store.get_extraction("ext_1")
        assert record.duplicate_status == "duplicate"
        assert record.duplicate_confidence == pytest.approx(0.99)

    @pytest.mark.asyncio
    async def test_transaction_rollback(self, store, client, fingerprint_factory):
        with pytest.raises(RuntimeError):
            async with store.transaction():
                await store.save_fingerprint(fingerprint_factory("ext_1"), "d")
                raise RuntimeError("boom")
        assert await store.get_extraction("ext_1") is None

    @pytest.mark.asyncio
    async def test_redis_error_wrapped(self):
        client = MagicMock()
        client.hgetall.side_effect = redis.ConnectionError("down")
        store = RedisRecordStore(client=client)
        with pytest.raises(StorageError) as exc:
            await store.get_extraction("ext_1")
        assert exc.value.operation == "get_extraction"
        assert isinstance(exc.value.__cause__, redis.ConnectionError)
