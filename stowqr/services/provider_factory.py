from __future__ import annotations

from functools import lru_cache

from stowqr.config import settings
from stowqr.db import create_tables
from stowqr.services.storage_service import InventoryRepository, MemoryKeyValueStore, SqlKeyValueStore


@lru_cache(maxsize=1)
def get_repository() -> InventoryRepository:
    backend = settings.storage_backend.strip().lower()
    if backend == 'sql':
        create_tables()
        return InventoryRepository(SqlKeyValueStore(), retries=settings.write_retries)
    return InventoryRepository(MemoryKeyValueStore(), retries=settings.write_retries)
