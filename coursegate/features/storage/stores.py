"""
coursegate/features/storage/stores.py

Concrete key/value stores.

- SqlKeyValueStore: durable primary store (one row per key in kv_entries).
- MemoryKeyValueStore: session-scoped secondary store; lost when the
  process ends.

Stores raise StoreUnavailableError (or a subclass) on any fault and return
None for a missing key. They never decide what a fault means; that is the
composite's job.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional

from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from coursegate.core.database import create_all_tables, get_db_session, kv_entries, make_session_factory
from coursegate.core.errors import (
    StoreQuotaError,
    StoreSecurityError,
    StoreUnavailableError,
)
from coursegate.models.activation import utc_now


class KeyValueStore(ABC):
    """String key -> string value store."""

    name = "store"
    durable = True

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...


class SqlKeyValueStore(KeyValueStore):
    """Primary store backed by SQLAlchemy."""

    name = "primary"
    durable = True

    def __init__(self, engine: Engine):
        self.engine = engine
        self.session_factory = make_session_factory(engine)
        self._tables_ready = False

    def _ensure_tables(self) -> None:
        if self._tables_ready:
            return
        try:
            create_all_tables(self.engine)
        except SQLAlchemyError as exc:
            raise self._translate(exc) from exc
        self._tables_ready = True

    @staticmethod
    def _translate(exc: SQLAlchemyError) -> StoreUnavailableError:
        text = str(exc).lower()
        if isinstance(exc, OperationalError) and "full" in text:
            return StoreQuotaError(str(exc))
        if "readonly" in text or "permission" in text:
            return StoreSecurityError(str(exc))
        return StoreUnavailableError(str(exc))

    def get(self, key: str) -> Optional[str]:
        self._ensure_tables()
        try:
            with get_db_session(self.session_factory) as session:
                row = session.execute(
                    select(kv_entries.c.value).where(kv_entries.c.key == key)
                ).first()
        except SQLAlchemyError as exc:
            raise self._translate(exc) from exc
        return row.value if row else None

    def set(self, key: str, value: str) -> None:
        self._ensure_tables()
        try:
            with get_db_session(self.session_factory) as session:
                result = session.execute(
                    update(kv_entries)
                    .where(kv_entries.c.key == key)
                    .values(value=value, updated_at=utc_now())
                )
                if result.rowcount == 0:
                    session.execute(
                        insert(kv_entries).values(key=key, value=value, updated_at=utc_now())
                    )
        except SQLAlchemyError as exc:
            raise self._translate(exc) from exc

    def remove(self, key: str) -> None:
        self._ensure_tables()
        try:
            with get_db_session(self.session_factory) as session:
                session.execute(delete(kv_entries).where(kv_entries.c.key == key))
        except SQLAlchemyError as exc:
            raise self._translate(exc) from exc


class MemoryKeyValueStore(KeyValueStore):
    """Session-scoped secondary store.

    quota_bytes caps the total size of stored values (keys + values, UTF-8);
    writes past it raise StoreQuotaError.
    """

    name = "secondary"
    durable = False

    def __init__(self, quota_bytes: Optional[int] = None, name: Optional[str] = None):
        self._data: Dict[str, str] = {}
        self.quota_bytes = quota_bytes
        if name:
            self.name = name

    def _size_with(self, key: str, value: str) -> int:
        total = 0
        for k, v in self._data.items():
            if k == key:
                continue
            total += len(k.encode("utf-8")) + len(v.encode("utf-8"))
        return total + len(key.encode("utf-8")) + len(value.encode("utf-8"))

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.quota_bytes is not None and self._size_with(key, value) > self.quota_bytes:
            raise StoreQuotaError(f"quota of {self.quota_bytes} bytes exceeded writing {key!r}")
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()
