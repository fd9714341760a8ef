from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Iterable
from typing import NamedTuple, Protocol, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from stowqr.db import SessionLocal
from stowqr.models import StoredBlob
from stowqr.services.inventory_service import InventoryState

logger = logging.getLogger(__name__)

STORAGE_KEY = 'inventory_data'
PRE_QR_STORAGE_KEY = 'pre_generated_qr_codes'
BLOB_KEYS = (STORAGE_KEY, PRE_QR_STORAGE_KEY)

T = TypeVar('T')


class StaleWriteError(RuntimeError):
    """Another writer saved a blob after it was read."""


class VersionedValue(NamedTuple):
    value: str | None
    # 0 means the key has never been written.
    revision: int


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def get_many(self, keys: Iterable[str]) -> dict[str, VersionedValue]: ...

    def set(self, key: str, value: str) -> None: ...

    def set_many(self, values: dict[str, str], expected: dict[str, int] | None = None) -> None: ...


class MemoryKeyValueStore:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, VersionedValue] = {
            key: VersionedValue(value, 1) for key, value in (initial or {}).items()
        }
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        return self._values.get(key, VersionedValue(None, 0)).value

    def get_many(self, keys: Iterable[str]) -> dict[str, VersionedValue]:
        with self._lock:
            return {key: self._values.get(key, VersionedValue(None, 0)) for key in keys}

    def set(self, key: str, value: str) -> None:
        self.set_many({key: value})

    def set_many(self, values: dict[str, str], expected: dict[str, int] | None = None) -> None:
        with self._lock:
            for key, revision in (expected or {}).items():
                current = self._values.get(key, VersionedValue(None, 0)).revision
                if current != revision:
                    raise StaleWriteError(f'{key} is at revision {current}, expected {revision}')
            for key, value in values.items():
                current = self._values.get(key, VersionedValue(None, 0)).revision
                self._values[key] = VersionedValue(value, current + 1)


class SqlKeyValueStore:
    def __init__(self, session_factory=None) -> None:
        self.session_factory = session_factory or SessionLocal

    def get(self, key: str) -> str | None:
        with self.session_factory() as db:
            return db.execute(select(StoredBlob.value).where(StoredBlob.key == key)).scalar_one_or_none()

    def get_many(self, keys: Iterable[str]) -> dict[str, VersionedValue]:
        keys = list(keys)
        with self.session_factory() as db:
            rows = db.execute(
                select(StoredBlob.key, StoredBlob.value, StoredBlob.revision).where(StoredBlob.key.in_(keys))
            ).all()
        found = {row.key: VersionedValue(row.value, row.revision) for row in rows}
        return {key: found.get(key, VersionedValue(None, 0)) for key in keys}

    def set(self, key: str, value: str) -> None:
        self.set_many({key: value})

    def set_many(self, values: dict[str, str], expected: dict[str, int] | None = None) -> None:
        # One transaction so the inventory and pool blobs never diverge.
        expected = expected or {}
        with self.session_factory() as db:
            try:
                for key, value in values.items():
                    if key not in expected:
                        self._upsert(db, key, value)
                    elif expected[key] == 0:
                        db.add(StoredBlob(key=key, value=value, revision=1))
                        db.flush()
                    else:
                        result = db.execute(
                            update(StoredBlob)
                            .where(StoredBlob.key == key, StoredBlob.revision == expected[key])
                            .values(value=value, revision=StoredBlob.revision + 1)
                        )
                        if result.rowcount != 1:
                            raise StaleWriteError(f'{key} changed since revision {expected[key]}')
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise StaleWriteError('A blob was created by another writer') from exc

    @staticmethod
    def _upsert(db, key: str, value: str) -> None:
        blob = db.get(StoredBlob, key)
        if blob is None:
            db.add(StoredBlob(key=key, value=value, revision=1))
        else:
            blob.value = value
            blob.revision = blob.revision + 1


def _parse_json(key: str, raw: str | None, expected: type):
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except ValueError as exc:
        raise ValueError(f'Stored {key} is not valid JSON') from exc
    if not isinstance(value, expected):
        raise ValueError(f'Stored {key} has an unexpected shape')
    return value


class InventoryRepository:
    """Loads and saves InventoryState through a key-value store.

    Both blobs are read together and written together. A save only lands if
    neither blob changed since it was read; otherwise the mutation is replayed
    on fresh state, up to ``retries`` times.
    """

    def __init__(self, store: KeyValueStore, *, retries: int = 3) -> None:
        self.store = store
        self.retries = max(1, retries)
        self._lock = threading.RLock()

    def _read(self) -> tuple[InventoryState, dict[str, int]]:
        blobs = self.store.get_many(BLOB_KEYS)
        inventory = _parse_json(STORAGE_KEY, blobs[STORAGE_KEY].value, dict)
        pool = _parse_json(PRE_QR_STORAGE_KEY, blobs[PRE_QR_STORAGE_KEY].value, list)
        revisions = {key: blob.revision for key, blob in blobs.items()}
        return InventoryState.from_dicts(inventory, pool), revisions

    def load(self) -> InventoryState:
        return self._read()[0]

    def save(self, state: InventoryState, expected: dict[str, int] | None = None) -> None:
        self.store.set_many(
            {
                STORAGE_KEY: json.dumps(state.to_inventory_dict(), ensure_ascii=False),
                PRE_QR_STORAGE_KEY: json.dumps(state.pool_dicts(), ensure_ascii=False),
            },
            expected,
        )

    def mutate(self, change: Callable[[InventoryState], tuple[InventoryState, T]]) -> T:
        with self._lock:
            for attempt in range(1, self.retries + 1):
                state, revisions = self._read()
                new_state, result = change(state)
                if new_state is state:
                    return result
                try:
                    self.save(new_state, revisions)
                except StaleWriteError:
                    if attempt == self.retries:
                        logger.warning('Gave up after %s conflicting writes', attempt)
                        raise
                    logger.info('Inventory changed underneath attempt %s; replaying', attempt)
                    continue
                return result
