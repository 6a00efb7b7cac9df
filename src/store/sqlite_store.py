# src/store/sqlite_store.py — v1
"""SQLite-based record store (RECORD_STORE_BACKEND=sqlite).

Uses stdlib sqlite3, no external dependency. The connection runs in
autocommit mode; ``transaction()`` issues BEGIN IMMEDIATE / COMMIT /
ROLLBACK explicitly and holds an asyncio lock so writes from other tasks
cannot slip into an open transaction.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime
from pathlib import Path

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

_SCHEMA = """
CREATE TABLE IF NOT EXISTS file_records (
    file_id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    size_bytes INTEGER NOT NULL,
    file_name TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_file_content
    ON file_records(tenant_id, content_hash, size_bytes);

CREATE TABLE IF NOT EXISTS extractions (
    extraction_id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    fingerprint TEXT NOT NULL,
    fingerprint_digest TEXT NOT NULL,
    duplicate_status TEXT NOT NULL DEFAULT 'unique',
    duplicate_candidate_id TEXT,
    duplicate_confidence REAL NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_extraction_tenant
    ON extractions(tenant_id, created_at);
CREATE INDEX IF NOT EXISTS idx_extraction_tenant_digest
    ON extractions(tenant_id, fingerprint_digest);

CREATE TABLE IF NOT EXISTS duplicate_links (
    extraction_id TEXT NOT NULL,
    candidate_extraction_id TEXT NOT NULL,
    tenant_id TEXT NOT NULL,
    similarity_score REAL NOT NULL,
    duplicate_type TEXT NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (extraction_id, candidate_extraction_id)
);
"""

_EXTRACTION_COLUMNS = (
    "extraction_id, tenant_id, fingerprint, fingerprint_digest, duplicate_status, "
    "duplicate_candidate_id, duplicate_confidence, created_at, updated_at"
)


class SqliteRecordStore(BaseRecordStore):
    """SQLite-backed record store."""

    def __init__(self, db_path: Path | str) -> None:
        super().__init__()
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()
        with storage_errors("open", sqlite3.Error):
            self._conn = sqlite3.connect(str(self._db_path), isolation_level=None)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(_SCHEMA)

    # --- File records ---

    async def save_file_record(self, record: FileContentRecord) -> None:
        await self._write(
            "save_file_record",
            """INSERT OR REPLACE INTO file_records
               (file_id, tenant_id, content_hash, size_bytes, file_name, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                record.file_id,
                record.tenant_id,
                record.content_hash,
                record.size_bytes,
                record.file_name,
                to_utc(record.created_at).isoformat(),
            ),
        )

    async def find_file_by_hash_and_size(
        self,
        tenant_id: str,
        content_hash: str,
        size_bytes: int,
        exclude_file_id: str | None = None,
    ) -> list[FileContentRecord]:
        sql = (
            "SELECT file_id, tenant_id, content_hash, size_bytes, file_name, created_at "
            "FROM file_records WHERE tenant_id = ? AND content_hash = ? AND size_bytes = ?"
        )
        params: list[object] = [tenant_id, content_hash, size_bytes]
        if exclude_file_id is not None:
            sql += " AND file_id != ?"
            params.append(exclude_file_id)
        sql += " ORDER BY created_at, file_id"

        with storage_errors("find_file_by_hash_and_size", sqlite3.Error):
            rows = self._conn.execute(sql, params).fetchall()
        return [
            FileContentRecord(
                file_id=row[0],
                tenant_id=row[1],
                content_hash=row[2],
                size_bytes=row[3],
                file_name=row[4],
                created_at=datetime.fromisoformat(row[5]),
            )
            for row in rows
        ]

    # --- Extractions ---

    async def save_fingerprint(
        self, fingerprint: InvoiceFingerprint, digest: str
    ) -> None:
        now = utc_now().isoformat()
        await self._write(
            "save_fingerprint",
            """INSERT INTO extractions
               (extraction_id, tenant_id, fingerprint, fingerprint_digest,
                created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(extraction_id) DO UPDATE SET
                   fingerprint = excluded.fingerprint,
                   fingerprint_digest = excluded.fingerprint_digest,
                   updated_at = excluded.updated_at""",
            (
                fingerprint.extraction_id,
                fingerprint.tenant_id,
                fingerprint.model_dump_json(),
                digest,
                now,
                now,
            ),
        )

    async def get_extraction(self, extraction_id: str) -> ExtractionRecord | None:
        with storage_errors("get_extraction", sqlite3.Error):
            row = self._conn.execute(
                f"SELECT {_EXTRACTION_COLUMNS} FROM extractions WHERE extraction_id = ?",
                (extraction_id,),
            ).fetchone()
        return None if row is None else _row_to_extraction(row)

    async def find_fingerprint_candidates(
        self,
        tenant_id: str,
        exclude_extraction_id: str,
        limit: int | None = None,
        since: datetime | None = None,
    ) -> list[InvoiceFingerprint]:
        sql = (
            "SELECT fingerprint FROM extractions "
            "WHERE tenant_id = ? AND extraction_id != ? AND duplicate_status != 'duplicate'"
        )
        params: list[object] = [tenant_id, exclude_extraction_id]
        if since is not None:
            sql += " AND created_at >= ?"
            params.append(to_utc(since).isoformat())
        sql += " ORDER BY created_at DESC, extraction_id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(max(limit, 0))

        with storage_errors("find_fingerprint_candidates", sqlite3.Error):
            rows = self._conn.execute(sql, params).fetchall()
        rows.reverse()
        return [InvoiceFingerprint.model_validate_json(row[0]) for row in rows]

    async def find_by_fingerprint_digest(
        self, tenant_id: str, digest: str, exclude_extraction_id: str
    ) -> list[InvoiceFingerprint]:
        with storage_errors("find_by_fingerprint_digest", sqlite3.Error):
            rows = self._conn.execute(
                """SELECT fingerprint FROM extractions
                   WHERE tenant_id = ? AND fingerprint_digest = ?
                     AND extraction_id != ? AND duplicate_status != 'duplicate'
                   ORDER BY created_at, extraction_id""",
                (tenant_id, digest, exclude_extraction_id),
            ).fetchall()
        return [InvoiceFingerprint.model_validate_json(row[0]) for row in rows]

    async def update_extraction_duplicate_status(
        self,
        extraction_id: str,
        status: DuplicateStatus,
        candidate_id: str | None,
        confidence: float,
    ) -> None:
        rowcount = await self._write(
            "update_extraction_duplicate_status",
            """UPDATE extractions SET
                   duplicate_status = ?,
                   duplicate_candidate_id = ?,
                   duplicate_confidence = ?,
                   updated_at = ?
               WHERE extraction_id = ? AND duplicate_status != 'reviewing'""",
            (status, candidate_id, confidence, utc_now().isoformat(), extraction_id),
        )
        if rowcount == 0:
            logger.info(
                "Status of extraction %s not updated (missing or under review)",
                extraction_id,
            )

    # --- Links ---

    async def save_duplicate_link(self, link: DuplicateCandidateLink) -> None:
        await self._write(
            "save_duplicate_link",
            """INSERT OR REPLACE INTO duplicate_links
               (extraction_id, candidate_extraction_id, tenant_id,
                similarity_score, duplicate_type, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                link.extraction_id,
                link.candidate_extraction_id,
                link.tenant_id,
                link.similarity_score,
                link.duplicate_type,
                to_utc(link.created_at).isoformat(),
            ),
        )

    async def list_links(self, extraction_id: str) -> list[DuplicateCandidateLink]:
        with storage_errors("list_links", sqlite3.Error):
            rows = self._conn.execute(
                """SELECT extraction_id, candidate_extraction_id, tenant_id,
                          similarity_score, duplicate_type, created_at
                   FROM duplicate_links WHERE extraction_id = ?
                   ORDER BY created_at""",
                (extraction_id,),
            ).fetchall()
        return [
            DuplicateCandidateLink(
                extraction_id=row[0],
                candidate_extraction_id=row[1],
                tenant_id=row[2],
                similarity_score=row[3],
                duplicate_type=row[4],
                created_at=datetime.fromisoformat(row[5]),
            )
            for row in rows
        ]

    # --- Transactions ---

    async def _write(self, operation: str, sql: str, params: tuple) -> int:
        """Run one write statement, taking the lock unless a transaction holds it."""
        if self.in_transaction:
            with storage_errors(operation, sqlite3.Error):
                return self._conn.execute(sql, params).rowcount
        async with self._lock:
            with storage_errors(operation, sqlite3.Error):
                return self._conn.execute(sql, params).rowcount

    async def _begin(self) -> None:
        await self._lock.acquire()
        try:
            with storage_errors("begin", sqlite3.Error):
                self._conn.execute("BEGIN IMMEDIATE")
        except BaseException:
            self._lock.release()
            raise

    async def _commit(self) -> None:
        try:
            with storage_errors("commit", sqlite3.Error):
                self._conn.execute("COMMIT")
        except BaseException:
            self._safe_rollback()
            raise
        finally:
            self._lock.release()

    async def _rollback(self) -> None:
        try:
            self._safe_rollback()
        finally:
            self._lock.release()

    def _safe_rollback(self) -> None:
        if self._conn.in_transaction:
            try:
                self._conn.execute("ROLLBACK")
            except sqlite3.Error:
                logger.error("Rollback failed on %s", self._db_path, exc_info=True)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()


def _row_to_extraction(row: tuple) -> ExtractionRecord:
    return ExtractionRecord(
        extraction_id=row[0],
        tenant_id=row[1],
        fingerprint=InvoiceFingerprint.model_validate_json(row[2]),
        fingerprint_digest=row[3],
        duplicate_status=row[4],
        duplicate_candidate_id=row[5],
        duplicate_confidence=row[6],
        created_at=datetime.fromisoformat(row[7]),
        updated_at=datetime.fromisoformat(row[8]),
    )
