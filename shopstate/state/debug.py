"""Developer session inspection, available only with DEBUG_MODE_ENABLED."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict

from shopstate.core.feature_flags import is_feature_enabled
from shopstate.state.keys import StorageKeys

if TYPE_CHECKING:
    from shopstate.state.context import StorefrontContext

logger = logging.getLogger(__name__)

TOKEN_PREVIEW_LENGTH = 20


class DebugToolingDisabled(RuntimeError):
    pass


def debug_enabled() -> bool:
    return is_feature_enabled("DEBUG_MODE_ENABLED")


def session_debug_report(ctx: "StorefrontContext") -> Dict[str, Any]:
    """Snapshot of what this tab believes and what storage holds.

    Tokens are shown as a short preview only.
    """
    if not debug_enabled():
        raise DebugToolingDisabled("Debug tooling requires the DEBUG_MODE_ENABLED feature flag")

    store = ctx.store
    stored = ctx.sessions.load_session()
    token = ctx.auth.token
    info = store.storage_info()

    return {
        "storageKeys": sorted(store.data_keys()),
        "session": {
            "present": stored is not None,
            "sessionId": stored.session_id if stored else None,
            "timeRemaining": stored.time_remaining if stored else None,
            "loginExpiry": stored.expiry if stored else None,
            "tokenPreview": f"{token[:TOKEN_PREVIEW_LENGTH]}..." if token else None,
        },
        "auth": {
            "status": ctx.auth.state.status.value,
            "userId": ctx.auth.user_id,
            "loading": ctx.auth.state.loading,
        },
        "cart": {
            "key": StorageKeys.for_user(StorageKeys.CART, ctx.auth.user_id),
            "totalItems": ctx.cart.total_items,
            "lines": len(ctx.cart.items),
        },
        "wishlist": {
            "key": StorageKeys.for_user(StorageKeys.WISHLIST, ctx.auth.user_id),
            "totalItems": ctx.wishlist.total_items,
        },
        "lastActivity": ctx.browsing.last_activity(),
        "storage": {
            "totalSize": info["totalSize"],
            "totalSizeKB": info["totalSizeKB"],
        },
    }
