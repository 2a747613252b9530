"""One storefront tab: auth state, cart, wishlist and browsing data over a shared storage.

Every change to who is signed in goes through ``AuthContext.dispatch``. Tabs
sharing a storage learn about each other's writes through storage events and
re-initialize from storage when one arrives; the last writer wins.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from shopstate.clients.auth_api import AuthAPIClient, AuthAPIError, LoginResult
from shopstate.core.config import settings
from shopstate.core.logging_config import log_security_event
from shopstate.core.utils.clock import Clock, now_ms
from shopstate.core.utils.encryption import TokenCipher
from shopstate.state.auth import (
    AuthContext,
    AuthState,
    InitializationStarted,
    LoggedIn,
    LoggedOut,
    ProfileVerified,
    SessionRestored,
)
from shopstate.state.cart import AuthRequiredCallback, CartStore
from shopstate.state.keys import StorageKeys
from shopstate.state.preferences import BrowsingData
from shopstate.state.session_manager import SessionManager, SessionRecord
from shopstate.state.wishlist import WishlistStore
from shopstate.storage.backends import KeyValueStorage, StorageEvent
from shopstate.storage.durable import DurableStore, is_companion_key

logger = logging.getLogger(__name__)


class StorefrontContext:
    """Explicit owner of one tab's session state.

    Args:
        storage: Substrate shared with the other tabs of the same browser profile
        auth_client: Auth collaborator; required for login, register and verification
        clock: Millisecond clock
        on_auth_required: Called with a short action description when a guest
            tries to change the cart or wishlist
        token_cipher: Cipher for tokens at rest when secure token storage is on
        origin: Writer id of this tab; generated when omitted
        session_lifetime_ms: Overrides ``SESSION_LIFETIME_HOURS``
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        auth_client: Optional[AuthAPIClient] = None,
        clock: Clock = now_ms,
        on_auth_required: Optional[AuthRequiredCallback] = None,
        token_cipher: Optional[TokenCipher] = None,
        origin: Optional[str] = None,
        session_lifetime_ms: Optional[int] = None,
    ):
        self.clock = clock
        self.auth_client = auth_client
        self.store = DurableStore(storage, clock=clock, origin=origin)
        self.sessions = SessionManager(self.store, clock=clock, token_cipher=token_cipher)
        self.auth = AuthContext()
        self.cart = CartStore(self.store, self.auth, on_auth_required=on_auth_required)
        self.wishlist = WishlistStore(self.store, self.auth, on_auth_required=on_auth_required)
        self.browsing = BrowsingData(self.store, self.auth, clock=clock)
        self.session_lifetime_ms = session_lifetime_ms or settings.session_lifetime_ms

        self._initializing = False
        self._reinitialize_pending = False
        self._unsubscribe_storage = self.store.subscribe(self.handle_storage_event)

    @property
    def origin(self) -> str:
        return self.store.origin

    @property
    def state(self) -> AuthState:
        return self.auth.state

    @property
    def is_authenticated(self) -> bool:
        return self.auth.is_authenticated

    @property
    def user(self) -> Optional[Dict[str, Any]]:
        return self.auth.user

    def initialize(self, verify: bool = True) -> AuthState:
        """Restore auth state from storage and reload the cart and wishlist.

        A restored session is trusted immediately. With ``verify`` the token is
        then checked against the auth service.
        """
        if self._initializing:
            self._reinitialize_pending = True
            return self.auth.state

        self._initializing = True
        try:
            while True:
                self._reinitialize_pending = False
                self._restore(verify)
                if not self._reinitialize_pending:
                    break
                # Another tab wrote while we were restoring; restore again without a round-trip
                verify = False
        finally:
            self._initializing = False
        return self.auth.state

    def _restore(self, verify: bool) -> None:
        self.auth.dispatch(InitializationStarted())
        session = self.sessions.load_session()
        if session is None:
            self.auth.dispatch(LoggedOut(reason="no_session"))
        else:
            self.auth.dispatch(SessionRestored(session.record()))
            if verify and self.auth_client is not None:
                self.verify_session()

        self.cart.reload()
        self.wishlist.reload()

    def verify_session(self) -> bool:
        """Check the current token with the auth service.

        Returns False only when the server rejected the session and it was
        cleared. Network and server errors keep the local session.
        """
        if not self.auth.is_authenticated or self.auth_client is None:
            return self.auth.is_authenticated

        try:
            profile = self.auth_client.get_profile(self.auth.token)
        except AuthAPIError as e:
            if e.is_auth_rejection:
                self.handle_auth_rejection()
                return False
            logger.warning(f"Could not verify session with auth service, keeping local session: {e}")
            return True

        if not profile:
            self.handle_auth_rejection()
            return False

        self.sessions.update_user(profile)
        self.auth.dispatch(ProfileVerified(profile))
        return True

    def _require_client(self) -> AuthAPIClient:
        if self.auth_client is None:
            raise RuntimeError("No auth client configured for this storefront context")
        return self.auth_client

    def _start_session(self, result: LoginResult, event: str) -> SessionRecord:
        expiry = self.clock() + self.session_lifetime_ms
        record = self.sessions.save_session(result.user, result.token, expiry)
        self.auth.dispatch(LoggedIn(record))
        log_security_event(
            event,
            "User signed in",
            user_id=record.user_id,
            session_id=record.session_id,
        )
        return record

    def login(self, credentials: Dict[str, Any], remember: bool = False) -> SessionRecord:
        """Sign in with the auth service and persist the new session.

        Raises:
            AuthAPIError: The auth service rejected the credentials or was unreachable
        """
        client = self._require_client()
        try:
            result = client.login(credentials)
        except AuthAPIError as e:
            log_security_event(
                "login_failed",
                f"Login rejected: {e.message}",
                extra_data={"status_code": e.status_code},
                level=logging.WARNING,
            )
            raise

        email = credentials.get("email")
        if remember and isinstance(email, str):
            self.store.set_raw(StorageKeys.REMEMBERED_EMAIL, email)
        elif not remember:
            self.store.remove_raw(StorageKeys.REMEMBERED_EMAIL)

        return self._start_session(result, "login_success")

    def register(self, user_data: Dict[str, Any]) -> SessionRecord:
        client = self._require_client()
        result = client.register(user_data)
        return self._start_session(result, "registration_success")

    @property
    def remembered_email(self) -> Optional[str]:
        return self.store.get_raw(StorageKeys.REMEMBERED_EMAIL)

    def logout(self) -> None:
        """Sign out locally; a failing server-side logout does not block it."""
        user_id = self.auth.user_id
        session_id = self.auth.state.session_id
        if self.auth_client is not None and self.auth.token:
            try:
                self.auth_client.logout(self.auth.token)
            except AuthAPIError as e:
                logger.warning(f"Server logout failed, clearing local session anyway: {e}")

        self.sessions.clear_session()
        self.auth.dispatch(LoggedOut(reason="logout"))
        log_security_event("logout", "User signed out", user_id=user_id, session_id=session_id)

    def handle_auth_rejection(self) -> None:
        """The server refused our token: drop the session as if signed out."""
        log_security_event(
            "session_rejected",
            "Auth service rejected the stored session, clearing it",
            user_id=self.auth.user_id,
            session_id=self.auth.state.session_id,
            level=logging.WARNING,
        )
        self.sessions.clear_session()
        self.auth.dispatch(LoggedOut(reason="rejected"))

    def handle_storage_event(self, event: StorageEvent) -> None:
        if is_companion_key(event.key):
            return
        logger.debug(f"Storage changed in another tab ({event.key}), re-initializing")
        self.initialize(verify=False)

    def check_consistency(self) -> bool:
        """Confirm the in-memory session still matches storage.

        Returns True when nothing had to change. Skipped while initializing.
        """
        if self._initializing or not self.auth.is_authenticated:
            return True

        stored = self.sessions.load_session()
        if stored is not None and stored.token == self.auth.token and stored.user_id == self.auth.user_id:
            return True

        logger.info("Stored session no longer matches this tab, re-initializing")
        self.initialize(verify=False)
        return False

    async def run_liveness_checks(
        self,
        interval: Optional[float] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> None:
        """Call ``check_consistency`` every ``interval`` seconds until ``stop_event`` is set."""
        interval = settings.LIVENESS_CHECK_INTERVAL_SECONDS if interval is None else interval
        stop_event = stop_event or asyncio.Event()
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                self.check_consistency()

    def close(self) -> None:
        self._unsubscribe_storage()
        self.cart.close()
        self.wishlist.close()
