"""
Rate limiter shared by the API routers.

Lives in its own module so routers can decorate endpoints without importing
the application.
"""

import logging
from typing import Optional

from slowapi import Limiter
from slowapi.util import get_remote_address

from shopstate.core.config import settings

logger = logging.getLogger(__name__)


def get_limiter_storage() -> Optional[str]:
    """
    Storage URI for rate limit counters.

    Returns the Redis URL when one is configured and well formed, otherwise
    None for in-memory counters.
    """
    if not settings.redis_url:
        return None
    if not settings.redis_url.startswith(("redis://", "rediss://")):
        logger.warning("Invalid REDIS_URL format, using in-memory rate limit storage instead")
        return None
    logger.info("Using Redis backend for rate limiting")
    return settings.redis_url


def create_limiter() -> Limiter:
    """
    Create the SlowAPI limiter.

    In-memory counters suit a single instance; set REDIS_URL to share limits
    between instances. No default limits: each endpoint declares its own.
    """
    storage_uri = get_limiter_storage()
    if storage_uri:
        return Limiter(
            key_func=get_remote_address,
            storage_uri=storage_uri,
            default_limits=[],
            enabled=settings.RATE_LIMIT_ENABLED,
        )

    logger.info("Using in-memory storage for rate limiting")
    return Limiter(key_func=get_remote_address, default_limits=[], enabled=settings.RATE_LIMIT_ENABLED)


limiter = create_limiter()
