"""String-keyed, string-valued storage substrates.

These play the role of the browser's origin-scoped local storage: synchronous
reads and writes, a size quota, no TTL, and "storage" events delivered to every
subscriber except the one that made the change (the other tabs).
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from contextlib import contextmanager
from threading import Lock
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from shopstate.core.config import settings
from shopstate.db.base import Base
from shopstate.db.models.storage_entry import StorageEntry

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the storage substrate cannot complete a read or write"""


class StorageQuotaExceeded(StorageError):
    """Raised when a write would push the storage past its quota"""


@dataclass(frozen=True)
class StorageEvent:
    key: str
    old_value: Optional[str]
    new_value: Optional[str]
    origin: Optional[str] = None


StorageListener = Callable[[StorageEvent], None]


def _entry_size(key: str, value: Optional[str]) -> int:
    if value is None:
        return 0
    return len(key) + len(value)


class KeyValueStorage(ABC):
    """Base class for origin-scoped key-value storage."""

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = settings.STORAGE_QUOTA_BYTES if quota_bytes is None else quota_bytes
        self._listeners: List[Tuple[Optional[str], StorageListener]] = []

    @abstractmethod
    def _read(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def _write(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def _delete(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self) -> List[str]:
        ...

    def total_size(self) -> int:
        return sum(_entry_size(key, value) for key, value in self.items())

    def items(self) -> Iterator[Tuple[str, str]]:
        for key in self.keys():
            value = self._read(key)
            if value is not None:
                yield key, value

    def get_item(self, key: str) -> Optional[str]:
        return self._read(key)

    def set_item(self, key: str, value: str, origin: Optional[str] = None) -> None:
        if not isinstance(value, str):
            raise TypeError(f"Storage values must be strings, got {type(value).__name__}")

        old_value = self._read(key)
        if self.quota_bytes:
            projected = self.total_size() - _entry_size(key, old_value) + _entry_size(key, value)
            if projected > self.quota_bytes:
                raise StorageQuotaExceeded(
                    f"Writing {key!r} would use {projected} of {self.quota_bytes} bytes"
                )

        self._write(key, value)
        if old_value != value:
            self._notify(StorageEvent(key, old_value, value, origin))

    def remove_item(self, key: str, origin: Optional[str] = None) -> None:
        old_value = self._read(key)
        if old_value is None:
            return
        self._delete(key)
        self._notify(StorageEvent(key, old_value, None, origin))

    def subscribe(self, listener: StorageListener, origin: Optional[str] = None) -> Callable[[], None]:
        """Register a listener for changes made by any origin other than ``origin``.

        Returns a callable that removes the listener again.
        """
        entry = (origin, listener)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def _notify(self, event: StorageEvent) -> None:
        for origin, listener in list(self._listeners):
            if origin is not None and origin == event.origin:
                continue
            try:
                listener(event)
            except Exception:
                # One broken tab must not stop the others from hearing about the change
                logger.exception(f"Storage listener failed for key {event.key!r}")


class MemoryStorage(KeyValueStorage):
    """Process-local storage backed by a dict."""

    def __init__(self, quota_bytes: Optional[int] = None, initial: Optional[Dict[str, str]] = None):
        super().__init__(quota_bytes)
        self._data: Dict[str, str] = dict(initial or {})

    def _read(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def _write(self, key: str, value: str) -> None:
        self._data[key] = value

    def _delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data)

    def total_size(self) -> int:
        return sum(_entry_size(key, value) for key, value in self._data.items())


_tables_init_lock = Lock()


class SQLStorage(KeyValueStorage):
    """Storage persisted in the ``storageentry`` table, one namespace per browser profile."""

    def __init__(
        self,
        namespace: str,
        session_factory: Optional[sessionmaker] = None,
        quota_bytes: Optional[int] = None,
    ):
        super().__init__(quota_bytes)
        if session_factory is None:
            from shopstate.db.session import SessionLocal
            session_factory = SessionLocal
        self.namespace = namespace
        self._session_factory = session_factory
        self._table_ready = False

    def _ensure_table(self) -> None:
        """Create the storageentry table on first use."""
        if self._table_ready:
            return
        with _tables_init_lock:
            if not self._table_ready:
                bind = self._session_factory.kw.get("bind")
                if isinstance(bind, Engine):
                    Base.metadata.create_all(bind=bind, tables=[StorageEntry.__table__], checkfirst=True)
                self._table_ready = True

    @contextmanager
    def _db(self, action: str) -> Iterator[Session]:
        """Session whose database errors surface as ``StorageError``."""
        try:
            self._ensure_table()
            with self._session_factory() as db:
                yield db
        except SQLAlchemyError as e:
            raise StorageError(f"Storage {action} failed in namespace {self.namespace!r}: {e}") from e

    def _read(self, key: str) -> Optional[str]:
        with self._db("read") as db:
            return db.scalar(
                select(StorageEntry.value).where(
                    StorageEntry.namespace == self.namespace, StorageEntry.key == key
                )
            )

    def _update(self, db: Session, key: str, value: str) -> int:
        result = db.execute(
            update(StorageEntry)
            .where(StorageEntry.namespace == self.namespace, StorageEntry.key == key)
            .values(value=value)
        )
        return result.rowcount

    def _write(self, key: str, value: str) -> None:
        with self._db("write") as db:
            try:
                if self._update(db, key, value) == 0:
                    db.add(StorageEntry(namespace=self.namespace, key=key, value=value))
                db.commit()
            except IntegrityError:
                # Another writer inserted the key between our UPDATE and INSERT
                db.rollback()
                logger.debug(f"Insert raced for key {key!r}, retrying update")
                self._update(db, key, value)
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                raise

    def _delete(self, key: str) -> None:
        with self._db("delete") as db:
            db.execute(
                delete(StorageEntry).where(
                    StorageEntry.namespace == self.namespace, StorageEntry.key == key
                )
            )
            db.commit()

    def keys(self) -> List[str]:
        with self._db("key listing") as db:
            return list(
                db.scalars(
                    select(StorageEntry.key)
                    .where(StorageEntry.namespace == self.namespace)
                    .order_by(StorageEntry.id)
                )
            )

    def items(self) -> Iterator[Tuple[str, str]]:
        with self._db("scan") as db:
            rows = db.execute(
                select(StorageEntry.key, StorageEntry.value)
                .where(StorageEntry.namespace == self.namespace)
                .order_by(StorageEntry.id)
            ).all()
        for key, value in rows:
            yield key, value

    def total_size(self) -> int:
        with self._db("size") as db:
            size = db.scalar(
                select(func.coalesce(func.sum(func.length(StorageEntry.key) + func.length(StorageEntry.value)), 0))
                .where(StorageEntry.namespace == self.namespace)
            )
        return int(size or 0)
