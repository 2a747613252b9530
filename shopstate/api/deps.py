"""
Request dependencies: browser profile id, auth client and storefront context.

Each browser profile (one cookie session) gets its own storage namespace and a
``StorefrontContext`` acting as that profile's tab. Requests for one profile
run one at a time; context setup may call the auth service and the database,
so it runs in the threadpool, as do the route handlers.
"""

import asyncio
import logging
import uuid
from collections import OrderedDict
from threading import Lock
from typing import AsyncIterator, List, Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import sessionmaker
from starlette.concurrency import run_in_threadpool

from shopstate.clients.auth_api import AuthAPIClient
from shopstate.core.config import settings
from shopstate.core.utils.clock import Clock, now_ms
from shopstate.state.context import StorefrontContext
from shopstate.storage.backends import SQLStorage, StorageError

logger = logging.getLogger(__name__)

PROFILE_SESSION_KEY = "profile_id"
READ_ONLY_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

# Profiles hash onto a fixed set of locks so the lock table never grows
PROFILE_LOCK_STRIPES = 64


class ContextRegistry:
    """Cached ``StorefrontContext`` per browser profile, created on first use.

    At most ``max_contexts`` stay cached. When another profile needs the room
    the least recently used context is closed; its data stays in the database
    and is restored on that profile's next request.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        clock: Clock = now_ms,
        max_contexts: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.max_contexts = max(1, settings.MAX_ACTIVE_PROFILES if max_contexts is None else max_contexts)
        self._contexts: "OrderedDict[str, StorefrontContext]" = OrderedDict()
        self._lock = Lock()
        self._profile_locks = [asyncio.Lock() for _ in range(PROFILE_LOCK_STRIPES)]

    def profile_lock(self, profile_id: str) -> asyncio.Lock:
        return self._profile_locks[hash(profile_id) % PROFILE_LOCK_STRIPES]

    def _storage(self, profile_id: str) -> SQLStorage:
        return SQLStorage(
            namespace=profile_id,
            session_factory=self.session_factory,
            quota_bytes=settings.STORAGE_QUOTA_BYTES,
        )

    def get(self, profile_id: str, auth_client: Optional[AuthAPIClient] = None) -> StorefrontContext:
        """Cached context for the profile, restored and verified on first use."""
        with self._lock:
            ctx = self._contexts.get(profile_id)
            if ctx is not None:
                self._contexts.move_to_end(profile_id)

        if ctx is not None:
            ctx.auth_client = auth_client
            ctx.check_consistency()
            return ctx

        ctx = StorefrontContext(self._storage(profile_id), auth_client=auth_client, clock=self.clock)
        ctx.initialize(verify=True)

        with self._lock:
            existing = self._contexts.get(profile_id)
            if existing is None:
                self._contexts[profile_id] = ctx
                evicted = self._evict()
            else:
                evicted = [ctx]
                ctx = existing

        for old in evicted:
            old.close()
        logger.debug(f"Storefront context created for profile {profile_id}")
        return ctx

    def peek(self, profile_id: str, auth_client: Optional[AuthAPIClient] = None) -> StorefrontContext:
        """Context for a read-only request.

        A profile with nothing stored gets a throwaway context that is not
        cached; the caller closes it once the request is done.
        """
        with self._lock:
            cached = profile_id in self._contexts
        if cached:
            return self.get(profile_id, auth_client)

        storage = self._storage(profile_id)
        try:
            has_data = bool(storage.keys())
        except StorageError as e:
            logger.warning(f"Could not inspect storage for profile {profile_id}: {e}")
            has_data = True
        if has_data:
            return self.get(profile_id, auth_client)

        ctx = StorefrontContext(storage, auth_client=auth_client, clock=self.clock)
        ctx.initialize(verify=False)
        return ctx

    def holds(self, profile_id: str, ctx: StorefrontContext) -> bool:
        with self._lock:
            return self._contexts.get(profile_id) is ctx

    def _evict(self) -> List[StorefrontContext]:
        evicted = []
        while len(self._contexts) > self.max_contexts:
            profile_id, ctx = self._contexts.popitem(last=False)
            logger.debug(f"Evicting storefront context for profile {profile_id}")
            evicted.append(ctx)
        return evicted

    async def run_liveness_checks(
        self,
        interval: Optional[float] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> None:
        """Check every cached context against storage each ``interval`` seconds until stopped."""
        interval = settings.LIVENESS_CHECK_INTERVAL_SECONDS if interval is None else interval
        stop_event = stop_event or asyncio.Event()
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                await self.check_cached()

    async def check_cached(self) -> int:
        """Run ``check_consistency`` on every cached context; returns how many re-initialized."""
        with self._lock:
            profiles = list(self._contexts.items())

        changed = 0
        for profile_id, ctx in profiles:
            async with self.profile_lock(profile_id):
                try:
                    if not await run_in_threadpool(ctx.check_consistency):
                        changed += 1
                except Exception:
                    logger.exception(f"Liveness check failed for profile {profile_id}")
        return changed

    def __len__(self) -> int:
        return len(self._contexts)

    def close(self) -> None:
        with self._lock:
            for ctx in self._contexts.values():
                ctx.close()
            self._contexts.clear()


_auth_client: Optional[AuthAPIClient] = None


def get_auth_client() -> AuthAPIClient:
    """Shared client for the storefront auth API."""
    global _auth_client
    if _auth_client is None:
        _auth_client = AuthAPIClient()
    return _auth_client


def get_profile_id(request: Request) -> str:
    """Profile id kept in the signed session cookie, assigned on first visit."""
    profile_id = request.session.get(PROFILE_SESSION_KEY)
    if not profile_id:
        profile_id = uuid.uuid4().hex
        request.session[PROFILE_SESSION_KEY] = profile_id
    return profile_id


def get_registry(request: Request) -> ContextRegistry:
    return request.app.state.contexts


async def get_context(
    request: Request,
    profile_id: str = Depends(get_profile_id),
    registry: ContextRegistry = Depends(get_registry),
    auth_client: AuthAPIClient = Depends(get_auth_client),
) -> AsyncIterator[StorefrontContext]:
    """Context for this profile, held exclusively for the rest of the request."""
    async with registry.profile_lock(profile_id):
        if request.method in READ_ONLY_METHODS:
            ctx = await run_in_threadpool(registry.peek, profile_id, auth_client)
        else:
            ctx = await run_in_threadpool(registry.get, profile_id, auth_client)
        try:
            yield ctx
        finally:
            if not registry.holds(profile_id, ctx):
                ctx.close()


def require_sign_in(action: str) -> None:
    """Auth-required callback for the HTTP layer."""
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Please sign in to {action}")
