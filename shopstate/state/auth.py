"""Authentication state for one storefront tab.

All changes to who is signed in go through ``auth_reducer``; ``AuthContext``
holds the current value and tells subscribers (cart, wishlist, browsing data)
when it changes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from shopstate.state.session_manager import SessionRecord

logger = logging.getLogger(__name__)


class AuthStatus(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class AuthState:
    status: AuthStatus = AuthStatus.ANONYMOUS
    user: Optional[Dict[str, Any]] = None
    token: Optional[str] = None
    expiry: Optional[int] = None
    session_id: Optional[str] = None
    loading: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.status == AuthStatus.AUTHENTICATED and self.user is not None

    @property
    def user_id(self) -> Optional[str]:
        if not self.user:
            return None
        user_id = self.user.get("_id") or self.user.get("id")
        return str(user_id) if user_id is not None else None


@dataclass(frozen=True)
class InitializationStarted:
    pass


@dataclass(frozen=True)
class SessionRestored:
    session: SessionRecord


@dataclass(frozen=True)
class LoggedIn:
    session: SessionRecord


@dataclass(frozen=True)
class ProfileVerified:
    user: Dict[str, Any]


@dataclass(frozen=True)
class LoggedOut:
    reason: str = "logout"


AuthAction = Union[InitializationStarted, SessionRestored, LoggedIn, ProfileVerified, LoggedOut]
AuthListener = Callable[[AuthState], None]


def _from_session(session: SessionRecord) -> AuthState:
    return AuthState(
        status=AuthStatus.AUTHENTICATED,
        user=session.user,
        token=session.token,
        expiry=session.expiry,
        session_id=session.session_id,
        loading=False,
    )


def auth_reducer(state: AuthState, action: AuthAction) -> AuthState:
    if isinstance(action, InitializationStarted):
        return replace(state, loading=True)
    if isinstance(action, (SessionRestored, LoggedIn)):
        return _from_session(action.session)
    if isinstance(action, ProfileVerified):
        if not state.is_authenticated:
            return state
        return replace(state, user=action.user)
    if isinstance(action, LoggedOut):
        return AuthState()
    raise TypeError(f"Unknown auth action: {action!r}")


class AuthContext:
    """Current auth state plus change notification."""

    def __init__(self, state: Optional[AuthState] = None):
        self.state = state or AuthState()
        self._listeners: List[AuthListener] = []

    def dispatch(self, action: AuthAction) -> AuthState:
        previous = self.state
        self.state = auth_reducer(previous, action)
        if self.state != previous:
            logger.debug(f"Auth state {previous.status.value} -> {self.state.status.value} ({type(action).__name__})")
            for listener in list(self._listeners):
                listener(self.state)
        return self.state

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def is_authenticated(self) -> bool:
        return self.state.is_authenticated

    @property
    def user(self) -> Optional[Dict[str, Any]]:
        return self.state.user

    @property
    def user_id(self) -> Optional[str]:
        return self.state.user_id

    @property
    def token(self) -> Optional[str]:
        return self.state.token
