# src/storage/store_factory.py - v1
"""Factory for registry store instantiation."""

from __future__ import annotations

from suitegate.config.settings import Settings
from suitegate.storage.base_run_store import BaseRunStore


def create_run_store(settings: Settings | None = None) -> BaseRunStore:
    """Instantiate the configured registry backend.

    Args:
        settings: Application settings. Defaults to the in-memory backend.

    Returns:
        Configured BaseRunStore implementation.
    """
    backend = "memory" if settings is None else settings.store_backend

    if backend == "memory":
        from suitegate.storage.memory_store import MemoryRunStore
        return MemoryRunStore()

    if backend == "sqlite":
        from suitegate.storage.sqlite_store import SqliteRunStore
        return SqliteRunStore(db_path=settings.store_path)  # type: ignore[union-attr]

    raise ValueError(f"Unsupported store backend: {backend!r}")
