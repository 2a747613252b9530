"""Storage key names shared by the state layer."""

from typing import Optional

GUEST_NAMESPACE = "guest"


class StorageKeys:
    TOKEN = "token"
    USER = "user"
    LOGIN_EXPIRY = "loginExpiry"
    LOGIN_TIMESTAMP = "loginTimestamp"
    SESSION_ID = "sessionId"
    SESSION_METADATA = "session_metadata"
    LAST_ACTIVITY = "lastActivity"
    REMEMBERED_EMAIL = "rememberedEmail"

    CART = "cart"
    WISHLIST = "wishlist"
    USER_PREFERENCES = "user_preferences"
    SEARCH_HISTORY = "search_history"
    VIEWED_PRODUCTS = "viewed_products"

    SESSION = (TOKEN, USER, LOGIN_EXPIRY, LOGIN_TIMESTAMP, SESSION_ID, SESSION_METADATA)
    PER_USER = (CART, WISHLIST, USER_PREFERENCES, SEARCH_HISTORY, VIEWED_PRODUCTS)
    # Plain strings written without JSON encoding or backups
    RAW = (LAST_ACTIVITY, REMEMBERED_EMAIL)

    @staticmethod
    def for_user(base: str, user_id: Optional[str]) -> str:
        """Namespace a per-user key, e.g. ``cart:64f1c2``."""
        return f"{base}:{user_id or GUEST_NAMESPACE}"

    @classmethod
    def is_per_user(cls, key: str) -> bool:
        return any(key.startswith(f"{base}:") for base in cls.PER_USER)
