"""Persisted login session: user profile, bearer token, expiry and session id.

The session is written as one bundle (``session_metadata``) and again under
individual keys so either copy can restore it. A session is valid only when
user, token and expiry are all present and the expiry is still in the future;
anything less is reported as no session at all.
"""
from __future__ import annotations

import logging
import re
import secrets
import string
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from shopstate.core.feature_flags import is_feature_enabled
from shopstate.core.logging_config import log_security_event
from shopstate.core.utils.clock import Clock, now_ms
from shopstate.core.utils.encryption import ENCRYPTED_PREFIX, TokenCipher
from shopstate.state.keys import StorageKeys
from shopstate.storage.durable import DurableStore

logger = logging.getLogger(__name__)

_WRAPPED = re.compile(r'^"(.*)"$', re.DOTALL)
_SESSION_ID_ALPHABET = string.ascii_lowercase + string.digits


def normalize_token(token: Optional[str]) -> Optional[str]:
    """Strip quoting left behind by tokens that were JSON-encoded twice.

    ``'"abc"'`` and ``'\\"abc\\"'`` both become ``'abc'``. Plain tokens are
    returned unchanged.
    """
    if token is None:
        return None
    token = token.strip().replace('\\"', '"')
    match = _WRAPPED.match(token)
    while match:
        token = match.group(1)
        match = _WRAPPED.match(token)
    return token


def _coerce_ms(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def new_session_id(now: int) -> str:
    suffix = "".join(secrets.choice(_SESSION_ID_ALPHABET) for _ in range(9))
    return f"session_{now}_{suffix}"


class SessionRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user: Dict[str, Any]
    token: str
    expiry: int = Field(alias="loginExpiry")
    login_timestamp: Optional[int] = Field(None, alias="loginTimestamp")
    session_id: Optional[str] = Field(None, alias="sessionId")

    @property
    def user_id(self) -> Optional[str]:
        user_id = self.user.get("_id") or self.user.get("id")
        return str(user_id) if user_id is not None else None

    def is_valid(self, now: int) -> bool:
        return now < self.expiry


class LoadedSession(SessionRecord):
    time_remaining: int = Field(alias="timeRemaining")

    def record(self) -> SessionRecord:
        return SessionRecord.model_validate(self.model_dump(exclude={"time_remaining"}))


class SessionManager:
    """Reads and writes the login session and owns whole-profile data maintenance."""

    def __init__(
        self,
        store: DurableStore,
        clock: Optional[Clock] = None,
        token_cipher: Optional[TokenCipher] = None,
    ):
        self.store = store
        self.clock = clock or store.clock or now_ms
        self._cipher = token_cipher

    @property
    def cipher(self) -> TokenCipher:
        if self._cipher is None:
            self._cipher = TokenCipher()
        return self._cipher

    def _protect(self, token: str) -> str:
        if is_feature_enabled("SECURE_TOKEN_STORAGE"):
            return self.cipher.encrypt(token)
        return token

    def _reveal(self, stored: str) -> Optional[str]:
        if stored.startswith(ENCRYPTED_PREFIX):
            return self.cipher.decrypt(stored)
        return stored

    def save_session(self, user: Dict[str, Any], token: str, expiry: int) -> SessionRecord:
        """Persist a freshly authenticated session and return it."""
        now = self.clock()
        record = SessionRecord(
            user=user,
            token=normalize_token(token) or "",
            expiry=int(expiry),
            login_timestamp=now,
            session_id=new_session_id(now),
        )
        stored_token = self._protect(record.token)
        # Flat auth responses carry the token inside the profile too
        stored_user = record.user
        if "token" in stored_user:
            stored_user = {**stored_user, "token": stored_token}

        self.store.save(StorageKeys.TOKEN, stored_token)
        self.store.save(StorageKeys.USER, stored_user)
        self.store.save(StorageKeys.LOGIN_EXPIRY, record.expiry)
        self.store.save(StorageKeys.LOGIN_TIMESTAMP, record.login_timestamp)
        self.store.save(StorageKeys.SESSION_ID, record.session_id)

        bundle = record.model_dump(by_alias=True)
        bundle["user"] = stored_user
        bundle["token"] = stored_token
        bundle["lastActivity"] = now
        self.store.save(StorageKeys.SESSION_METADATA, bundle)

        logger.info(f"User session saved, session id {record.session_id}")
        return record

    def load_session(self) -> Optional[LoadedSession]:
        """Restore the session from storage, or None when absent, incomplete or expired."""
        bundle = self.store.load(StorageKeys.SESSION_METADATA)
        if not isinstance(bundle, dict):
            bundle = {}

        user = self.store.load(StorageKeys.USER)
        if not isinstance(user, dict):
            user = bundle.get("user")

        expiry = _coerce_ms(self.store.load(StorageKeys.LOGIN_EXPIRY))
        if expiry is None:
            expiry = _coerce_ms(bundle.get("loginExpiry"))

        token = self.store.load(StorageKeys.TOKEN)
        if not isinstance(token, str) or not token:
            token = bundle.get("token") if isinstance(bundle.get("token"), str) else None
        if token:
            token = self._reveal(token)

        user_token = user.get("token") if isinstance(user, dict) else None
        if not token and expiry is not None and isinstance(user_token, str) and user_token:
            logger.info("Token missing from storage but found in user profile, restoring")
            token = normalize_token(self._reveal(user_token))
            if token:
                self.store.save(StorageKeys.TOKEN, self._protect(token))

        token = normalize_token(token)

        if not isinstance(user, dict) or not token or expiry is None:
            logger.debug("Incomplete session data, cannot restore session")
            return None

        now = self.clock()
        if now >= expiry:
            session_id = self.store.load(StorageKeys.SESSION_ID)
            log_security_event(
                "session_expired",
                "Stored session expired, clearing data",
                session_id=session_id if isinstance(session_id, str) else None,
            )
            self.clear_session()
            return None

        login_timestamp = _coerce_ms(self.store.load(StorageKeys.LOGIN_TIMESTAMP))
        if login_timestamp is None:
            login_timestamp = _coerce_ms(bundle.get("loginTimestamp"))
        session_id = self.store.load(StorageKeys.SESSION_ID)
        if not isinstance(session_id, str):
            session_id = bundle.get("sessionId") if isinstance(bundle.get("sessionId"), str) else None

        time_remaining = expiry - now
        logger.debug(f"Valid session loaded, {time_remaining // 3_600_000}h remaining")
        return LoadedSession(
            user=user,
            token=token,
            expiry=expiry,
            login_timestamp=login_timestamp,
            session_id=session_id,
            time_remaining=time_remaining,
        )

    def update_user(self, user: Dict[str, Any]) -> bool:
        """Store a refreshed user profile (e.g. after server verification)."""
        saved = self.store.save(StorageKeys.USER, user)
        bundle = self.store.load(StorageKeys.SESSION_METADATA)
        if isinstance(bundle, dict):
            bundle["user"] = user
            saved = self.store.save(StorageKeys.SESSION_METADATA, bundle) and saved
        return saved

    def clear_session(self) -> None:
        # Bundle and expiry go first so a concurrent reader never sees a restorable session
        for key in reversed(StorageKeys.SESSION):
            self.store.clear(key)
        logger.info("User session cleared")

    def is_session_valid(self) -> bool:
        return self.load_session() is not None

    def clear_all_app_data(self) -> None:
        """Remove every piece of storefront data from this browser profile."""
        known = set(StorageKeys.SESSION) | set(StorageKeys.PER_USER)
        for key in self.store.data_keys():
            if key in known or StorageKeys.is_per_user(key):
                self.store.clear(key)
        for key in StorageKeys.RAW:
            self.store.remove_raw(key)
        logger.info("All app data cleared from storage")

    def export_all_data(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for key in self.store.data_keys():
            if key in StorageKeys.RAW:
                continue
            value = self.store.load(key)
            if value is not None:
                data[key] = value
        for key in StorageKeys.RAW:
            raw = self.store.get_raw(key)
            if raw is not None:
                data[key] = raw
        return {
            "exportDate": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "data": data,
        }

    def import_data(self, exported: Any) -> bool:
        if not isinstance(exported, dict) or not isinstance(exported.get("data"), dict):
            logger.error("Error importing data: invalid data format")
            return False

        ok = True
        for key, value in exported["data"].items():
            if key in StorageKeys.RAW:
                saved = value is not None and self.store.set_raw(key, str(value))
            else:
                saved = self.store.save(key, value)
            ok = saved and ok
        if ok:
            logger.info("Data imported successfully")
        else:
            logger.error("Data import finished with storage errors")
        return ok
