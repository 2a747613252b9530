"""JSON store with a backup copy and write timestamp per key.

Every ``save`` writes three entries: ``<key>``, ``<key>_backup`` and
``<key>_timestamp``. ``load`` falls back to the backup when the primary is
missing or corrupt and repairs the primary from it.
"""
from __future__ import annotations

import json
import logging
import uuid
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from shopstate.core.utils.clock import Clock, now_ms
from shopstate.storage.backends import KeyValueStorage, StorageError, StorageEvent

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = "_backup"
TIMESTAMP_SUFFIX = "_timestamp"

_MISSING = object()


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json", by_alias=True)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def is_companion_key(key: str) -> bool:
    return key.endswith(BACKUP_SUFFIX) or key.endswith(TIMESTAMP_SUFFIX)


class DurableStore:
    """Best-effort durable JSON persistence over a ``KeyValueStorage``.

    Writes never raise: failures are logged and reported as ``False``.
    ``origin`` identifies the writer (one per tab) so storage events from
    this store are not echoed back to its own subscribers.
    """

    def __init__(self, storage: KeyValueStorage, clock: Clock = now_ms, origin: Optional[str] = None):
        self.storage = storage
        self.clock = clock
        self.origin = origin or uuid.uuid4().hex

    def save(self, key: str, value: Any, make_backup: bool = True) -> bool:
        try:
            serialized = json.dumps(value, default=_json_default)
            self.storage.set_item(key, serialized, origin=self.origin)
            if make_backup:
                self.storage.set_item(f"{key}{BACKUP_SUFFIX}", serialized, origin=self.origin)
            self.storage.set_item(f"{key}{TIMESTAMP_SUFFIX}", str(self.clock()), origin=self.origin)
        except (TypeError, ValueError, StorageError) as e:
            logger.error(f"Error saving data to storage: {key}: {e}")
            return False

        logger.debug(f"Data saved to storage: {key}")
        return True

    def _parse(self, key: str) -> Any:
        try:
            raw = self.storage.get_item(key)
        except StorageError as e:
            logger.error(f"Error reading storage key: {key}: {e}")
            return _MISSING
        if raw is None:
            return _MISSING
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Corrupt data under storage key: {key}")
            return _MISSING

    def load(self, key: str, default: Any = None) -> Any:
        value = self._parse(key)
        if value is not _MISSING:
            return value

        backup = self._parse(f"{key}{BACKUP_SUFFIX}")
        if backup is _MISSING:
            return default

        logger.info(f"Using backup data for: {key}")
        # Repair the primary copy; the backup is already current
        self.save(key, backup, make_backup=False)
        return backup

    def clear(self, key: str) -> None:
        # Companions first: a reader reacting to the primary removal must not find a backup to restore
        for name in (f"{key}{BACKUP_SUFFIX}", f"{key}{TIMESTAMP_SUFFIX}", key):
            self.remove_raw(name)
        logger.debug(f"Cleared data: {key}")

    def timestamp(self, key: str) -> Optional[int]:
        raw = self.get_raw(f"{key}{TIMESTAMP_SUFFIX}")
        try:
            return int(raw) if raw is not None else None
        except ValueError:
            return None

    def set_raw(self, key: str, value: str) -> bool:
        """Write an unserialized string, used for activity stamps and the remembered e-mail."""
        try:
            self.storage.set_item(key, value, origin=self.origin)
        except StorageError as e:
            logger.error(f"Error saving raw value to storage: {key}: {e}")
            return False
        return True

    def get_raw(self, key: str) -> Optional[str]:
        try:
            return self.storage.get_item(key)
        except StorageError as e:
            logger.error(f"Error reading raw value from storage: {key}: {e}")
            return None

    def remove_raw(self, key: str) -> bool:
        try:
            self.storage.remove_item(key, origin=self.origin)
        except StorageError as e:
            logger.error(f"Error removing storage key: {key}: {e}")
            return False
        return True

    def data_keys(self) -> List[str]:
        """Keys holding data, without their backup and timestamp companions."""
        try:
            stored = self.storage.keys()
        except StorageError as e:
            logger.error(f"Error listing storage keys: {e}")
            return []
        keys = []
        for key in stored:
            if is_companion_key(key):
                continue
            keys.append(key)
        # Keys that only survive as a backup still hold recoverable data
        for key in stored:
            if key.endswith(BACKUP_SUFFIX):
                primary = key[: -len(BACKUP_SUFFIX)]
                if primary not in keys:
                    keys.append(primary)
        return keys

    def storage_info(self) -> Dict[str, Any]:
        try:
            items = {key: len(value) for key, value in self.storage.items()}
        except StorageError as e:
            logger.error(f"Error scanning storage: {e}")
            items = {}
        total_size = sum(items.values())
        return {
            "totalSize": total_size,
            "totalSizeKB": round(total_size / 1024),
            "items": items,
        }

    def subscribe(self, listener: Callable[[StorageEvent], None]) -> Callable[[], None]:
        """Listen for changes written by other origins (other tabs)."""
        return self.storage.subscribe(listener, origin=self.origin)
