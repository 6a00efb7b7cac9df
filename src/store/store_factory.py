# src/store/store_factory.py — v1
"""Factory for record store instantiation."""

from __future__ import annotations

from docdedup.config.settings import Settings
from docdedup.store.base_record_store import BaseRecordStore


def create_record_store(settings: Settings | None = None) -> BaseRecordStore:
    """Instantiate the configured record store backend.

    Args:
        settings: Application settings. Defaults to the in-memory backend.

    Returns:
        Configured BaseRecordStore implementation.
    """
    backend = "memory" if settings is None else settings.record_store_backend

    if backend == "memory":
        from docdedup.store.memory_store import InMemoryRecordStore
        return InMemoryRecordStore()

    if backend == "sqlite":
        from docdedup.store.sqlite_store import SqliteRecordStore
        return SqliteRecordStore(db_path=settings.record_store_path)  # type: ignore[union-attr]

    if backend == "redis":
        from docdedup.store.redis_store import RedisRecordStore
        if settings is None or not settings.record_store_redis_url:
            raise ValueError(
                "RECORD_STORE_REDIS_URL must be set when RECORD_STORE_BACKEND=redis"
            )
        return RedisRecordStore(redis_url=settings.record_store_redis_url)

    raise ValueError(f"Unsupported record store backend: {backend!r}")
