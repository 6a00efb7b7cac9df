# src/store/redis_store.py — v1
"""Redis-based record store (RECORD_STORE_BACKEND=redis).

Requires 'redis' package: pip install redis.
Suitable for distributed/multi-instance deployments.

Layout:
  docdedup:file:{file_id}                       JSON FileContentRecord
  docdedup:files:{tenant}:{hash}:{size}         ZSET file_id by created_at
  docdedup:extraction:{extraction_id}           HASH of ExtractionRecord fields
  docdedup:extractions:{tenant}                 ZSET extraction_id by created_at
  docdedup:digest:{tenant}:{digest}             ZSET extraction_id by created_at
  docdedup:link:{extraction_id}:{candidate_id}  JSON DuplicateCandidateLink
  docdedup:links:{extraction_id}                SET candidate ids

Writes inside ``transaction()`` are queued on a per-task MULTI/EXEC
pipeline and executed on commit.
Status updates run as a Lua script, so the "reviewing" check and the write
happen together on the server and a missing row is never created.
"""

from __future__ import annotations

import contextvars
import logging
from datetime import datetime
from typing import Any, Callable

from docdedup.core.models import (
    DuplicateCandidateLink,
    DuplicateStatus,
    ExtractionRecord,
    FileContentRecord,
    InvoiceFingerprint,
    utc_now,
)
from docdedup.store.base_record_store import BaseRecordStore, storage_errors, to_utc

logger = logging.getLogger(__name__)

_PREFIX = "docdedup"

# KEYS[1] extraction hash; ARGV status, candidate, confidence, updated_at.
# Returns -1 for a missing row, 0 when under review, 1 when written.
_STATUS_SCRIPT = """
if redis.call('HEXISTS', KEYS[1], 'fingerprint') == 0 then
  return -1
end
if redis.call('HGET', KEYS[1], 'duplicate_status') == 'reviewing' then
  return 0
end
redis.call('HSET', KEYS[1], 'duplicate_status', ARGV[1],
  'duplicate_candidate_id', ARGV[2], 'duplicate_confidence', ARGV[3],
  'updated_at', ARGV[4])
return 1
"""


class RedisRecordStore(BaseRecordStore):
    """Redis-backed record store for distributed deployments."""

    def __init__(self, redis_url: str | None = None, client: Any = None) -> None:
        super().__init__()
        try:
            import redis
        except ImportError as e:
            raise ImportError(
                "redis package required: pip install redis"
            ) from e

        self._errors: tuple[type[BaseException], ...] = (redis.RedisError,)
        if client is None:
            if not redis_url:
                raise ValueError("redis_url is required when no client is given")
            client = redis.Redis.from_url(redis_url, decode_responses=True)
        self._client = client
        self._pipe: contextvars.ContextVar[Any] = contextvars.ContextVar(
            f"docdedup_redis_pipe_{id(self)}", default=None
        )

    # --- File records ---

    async def save_file_record(self, record: FileContentRecord) -> None:
        def ops(pipe: Any) -> None:
            pipe.set(_file_key(record.file_id), record.model_dump_json())
            pipe.zadd(
                _content_key(record.tenant_id, record.content_hash, record.size_bytes),
                {record.file_id: to_utc(record.created_at).timestamp()},
            )

        self._write("save_file_record", ops)

    async def find_file_by_hash_and_size(
        self,
        tenant_id: str,
        content_hash: str,
        size_bytes: int,
        exclude_file_id: str | None = None,
    ) -> list[FileContentRecord]:
        with storage_errors("find_file_by_hash_and_size", *self._errors):
            file_ids = self._client.zrange(
                _content_key(tenant_id, content_hash, size_bytes), 0, -1
            )
            records: list[FileContentRecord] = []
            for file_id in file_ids:
                if file_id == exclude_file_id:
                    continue
                data = self._client.get(_file_key(file_id))
                if data is None:
                    continue
                record = FileContentRecord.model_validate_json(data)
                # Guard against a stale index entry pointing at a rewritten record
                if (
                    record.tenant_id == tenant_id
                    and record.content_hash == content_hash
                    and record.size_bytes == size_bytes
                ):
                    records.append(record)
        return records

    # --- Extractions ---

    async def save_fingerprint(
        self, fingerprint: InvoiceFingerprint, digest: str
    ) -> None:
        now = utc_now()
        key = _extraction_key(fingerprint.extraction_id)
        with storage_errors("save_fingerprint", *self._errors):
            created_at, previous_digest = self._client.hmget(
                key, "created_at", "fingerprint_digest"
            )
        since = datetime.fromisoformat(created_at) if created_at else now

        def ops(pipe: Any) -> None:
            if previous_digest and previous_digest != digest:
                pipe.zrem(
                    _digest_key(fingerprint.tenant_id, previous_digest),
                    fingerprint.extraction_id,
                )
            pipe.zadd(
                _digest_key(fingerprint.tenant_id, digest),
                {fingerprint.extraction_id: since.timestamp()},
                nx=True,
            )
            pipe.hsetnx(key, "created_at", now.isoformat())
            pipe.hsetnx(key, "duplicate_status", "unique")
            pipe.hsetnx(key, "duplicate_confidence", "0")
            pipe.hset(
                key,
                mapping={
                    "tenant_id": fingerprint.tenant_id,
                    "fingerprint": fingerprint.model_dump_json(),
                    "fingerprint_digest": digest,
                    "updated_at": now.isoformat(),
                },
            )
            # NX keeps the original insertion time on refresh
            pipe.zadd(
                _tenant_key(fingerprint.tenant_id),
                {fingerprint.extraction_id: now.timestamp()},
                nx=True,
            )

        self._write("save_fingerprint", ops)

    async def get_extraction(self, extraction_id: str) -> ExtractionRecord | None:
        with storage_errors("get_extraction", *self._errors):
            data = self._client.hgetall(_extraction_key(extraction_id))
        if not data:
            return None
        return _hash_to_extraction(extraction_id, data)

    async def find_fingerprint_candidates(
        self,
        tenant_id: str,
        exclude_extraction_id: str,
        limit: int | None = None,
        since: datetime | None = None,
    ) -> list[InvoiceFingerprint]:
        floor: float | str = "-inf" if since is None else to_utc(since).timestamp()
        candidates: list[InvoiceFingerprint] = []
        with storage_errors("find_fingerprint_candidates", *self._errors):
            ids = self._client.zrangebyscore(_tenant_key(tenant_id), floor, "+inf")
            for extraction_id in ids:
                if extraction_id == exclude_extraction_id:
                    continue
                status, fingerprint = self._client.hmget(
                    _extraction_key(extraction_id), "duplicate_status", "fingerprint"
                )
                if fingerprint is None or status == "duplicate":
                    continue
                candidates.append(InvoiceFingerprint.model_validate_json(fingerprint))
        if limit is not None:
            candidates = candidates[-limit:] if limit > 0 else []
        return candidates

    async def find_by_fingerprint_digest(
        self, tenant_id: str, digest: str, exclude_extraction_id: str
    ) -> list[InvoiceFingerprint]:
        matches: list[InvoiceFingerprint] = []
        with storage_errors("find_by_fingerprint_digest", *self._errors):
            for extraction_id in self._client.zrange(_digest_key(tenant_id, digest), 0, -1):
                if extraction_id == exclude_extraction_id:
                    continue
                status, stored_digest, fingerprint = self._client.hmget(
                    _extraction_key(extraction_id),
                    "duplicate_status", "fingerprint_digest", "fingerprint",
                )
                # Skip index entries left behind by a refreshed fingerprint
                if fingerprint is None or stored_digest != digest or status == "duplicate":
                    continue
                matches.append(InvoiceFingerprint.model_validate_json(fingerprint))
        return matches

    async def update_extraction_duplicate_status(
        self,
        extraction_id: str,
        status: DuplicateStatus,
        candidate_id: str | None,
        confidence: float,
    ) -> None:
        key = _extraction_key(extraction_id)
        args = (status, candidate_id or "", str(confidence), utc_now().isoformat())
        pipe = self._pipe.get()
        with storage_errors("update_extraction_duplicate_status", *self._errors):
            if pipe is not None:
                pipe.eval(_STATUS_SCRIPT, 1, key, *args)
                return
            outcome = self._client.eval(_STATUS_SCRIPT, 1, key, *args)
        if outcome == -1:
            logger.warning("Status update for unknown extraction %s", extraction_id)
        elif outcome == 0:
            logger.info("Extraction %s is under review, status kept", extraction_id)

    # --- Links ---

    async def save_duplicate_link(self, link: DuplicateCandidateLink) -> None:
        def ops(pipe: Any) -> None:
            pipe.set(
                _link_key(link.extraction_id, link.candidate_extraction_id),
                link.model_dump_json(),
            )
            pipe.sadd(_links_key(link.extraction_id), link.candidate_extraction_id)

        self._write("save_duplicate_link", ops)

    async def list_links(self, extraction_id: str) -> list[DuplicateCandidateLink]:
        links: list[DuplicateCandidateLink] = []
        with storage_errors("list_links", *self._errors):
            for candidate_id in self._client.smembers(_links_key(extraction_id)):
                data = self._client.get(_link_key(extraction_id, candidate_id))
                if data is not None:
                    links.append(DuplicateCandidateLink.model_validate_json(data))
        return sorted(links, key=lambda link: link.created_at)

    # --- Transactions ---

    def _write(self, operation: str, ops: Callable[[Any], None]) -> None:
        pipe = self._pipe.get()
        with storage_errors(operation, *self._errors):
            if pipe is not None:
                ops(pipe)
                return
            pipe = self._client.pipeline(transaction=True)
            ops(pipe)
            pipe.execute()

    async def _begin(self) -> None:
        self._pipe.set(self._client.pipeline(transaction=True))

    async def _commit(self) -> None:
        pipe = self._pipe.get()
        self._pipe.set(None)
        with storage_errors("commit", *self._errors):
            pipe.execute()

    async def _rollback(self) -> None:
        pipe = self._pipe.get()
        self._pipe.set(None)
        if pipe is not None:
            pipe.reset()

    def close(self) -> None:
        """Close the Redis connection."""
        self._client.close()


def _file_key(file_id: str) -> str:
    return f"{_PREFIX}:file:{file_id}"


def _content_key(tenant_id: str, content_hash: str, size_bytes: int) -> str:
    return f"{_PREFIX}:files:{tenant_id}:{content_hash}:{size_bytes}"


def _extraction_key(extraction_id: str) -> str:
    return f"{_PREFIX}:extraction:{extraction_id}"


def _tenant_key(tenant_id: str) -> str:
    return f"{_PREFIX}:extractions:{tenant_id}"


def _digest_key(tenant_id: str, digest: str) -> str:
    return f"{_PREFIX}:digest:{tenant_id}:{digest}"


def _link_key(extraction_id: str, candidate_id: str) -> str:
    return f"{_PREFIX}:link:{extraction_id}:{candidate_id}"


def _links_key(extraction_id: str) -> str:
    return f"{_PREFIX}:links:{extraction_id}"


def _hash_to_extraction(extraction_id: str, data: dict[str, str]) -> ExtractionRecord:
    return ExtractionRecord(
        extraction_id=extraction_id,
        tenant_id=data["tenant_id"],
        fingerprint=InvoiceFingerprint.model_validate_json(data["fingerprint"]),
        fingerprint_digest=data["fingerprint_digest"],
        duplicate_status=data.get("duplicate_status", "unique"),
        duplicate_candidate_id=data.get("duplicate_candidate_id") or None,
        duplicate_confidence=float(data.get("duplicate_confidence", "0")),
        created_at=datetime.fromisoformat(data["created_at"]),
        updated_at=datetime.fromisoformat(data["updated_at"]),
    )
