"""Per-user browsing data: display preferences, recent searches, recently viewed products, last activity."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from shopstate.core.config import settings
from shopstate.core.utils.clock import Clock, now_ms
from shopstate.state.auth import AuthContext
from shopstate.state.keys import StorageKeys
from shopstate.storage.durable import DurableStore

logger = logging.getLogger(__name__)

DEFAULT_PREFERENCES: Dict[str, Any] = {
    "theme": "light",
    "language": "en",
    "currency": "USD",
    "notifications": True,
}


class BrowsingData:
    """Browsing data keyed by the signed-in user's id, or ``guest`` when signed out."""

    def __init__(
        self,
        store: DurableStore,
        auth: AuthContext,
        clock: Clock = now_ms,
        search_history_limit: Optional[int] = None,
        viewed_products_limit: Optional[int] = None,
        activity_interval_seconds: Optional[int] = None,
    ):
        self.store = store
        self.auth = auth
        self.clock = clock
        self.search_history_limit = search_history_limit or settings.SEARCH_HISTORY_LIMIT
        self.viewed_products_limit = viewed_products_limit or settings.VIEWED_PRODUCTS_LIMIT
        interval = settings.ACTIVITY_UPDATE_INTERVAL_SECONDS if activity_interval_seconds is None else activity_interval_seconds
        self.activity_interval_ms = interval * 1000
        self._last_activity_write: Optional[int] = None

    def _key(self, base: str) -> str:
        return StorageKeys.for_user(base, self.auth.user_id)

    def save_preferences(self, preferences: Dict[str, Any]) -> bool:
        return self.store.save(self._key(StorageKeys.USER_PREFERENCES), preferences)

    def load_preferences(self) -> Dict[str, Any]:
        saved = self.store.load(self._key(StorageKeys.USER_PREFERENCES))
        if not isinstance(saved, dict):
            return dict(DEFAULT_PREFERENCES)
        return {**DEFAULT_PREFERENCES, **saved}

    def _load_list(self, base: str) -> List[Any]:
        saved = self.store.load(self._key(base), [])
        return saved if isinstance(saved, list) else []

    def save_search_history(self, term: str) -> bool:
        """Record a search, newest first, keeping the most recent entries only."""
        term = term.strip()
        if not term:
            return False
        history = self._load_list(StorageKeys.SEARCH_HISTORY)
        updated = [term] + history[: self.search_history_limit - 1]
        return self.store.save(self._key(StorageKeys.SEARCH_HISTORY), updated)

    def load_search_history(self) -> List[str]:
        return [str(term) for term in self._load_list(StorageKeys.SEARCH_HISTORY)]

    def save_viewed_product(self, product_id: Any) -> bool:
        """Move a product to the front of the recently viewed list."""
        product_id = str(product_id)
        viewed = [str(pid) for pid in self._load_list(StorageKeys.VIEWED_PRODUCTS)]
        updated = [product_id] + [pid for pid in viewed if pid != product_id][: self.viewed_products_limit - 1]
        return self.store.save(self._key(StorageKeys.VIEWED_PRODUCTS), updated)

    def load_viewed_products(self) -> List[str]:
        return [str(pid) for pid in self._load_list(StorageKeys.VIEWED_PRODUCTS)]

    def update_activity(self, force: bool = False) -> bool:
        """Stamp the last activity time, at most once per activity interval."""
        now = self.clock()
        if (
            not force
            and self._last_activity_write is not None
            and now - self._last_activity_write < self.activity_interval_ms
        ):
            return False
        if self.store.set_raw(StorageKeys.LAST_ACTIVITY, str(now)):
            self._last_activity_write = now
            return True
        return False

    def last_activity(self) -> Optional[int]:
        raw = self.store.get_raw(StorageKeys.LAST_ACTIVITY)
        try:
            return int(raw) if raw is not None else None
        except ValueError:
            return None
