"""
Test helper functions and doubles for common testing operations

``FakeAuthService`` stands in for the storefront auth API behind an
``httpx.MockTransport`` so the real ``AuthAPIClient`` is exercised.
"""

import json
import uuid
from typing import Any, Dict, List, Optional, Tuple

import httpx

from shopstate.clients.auth_api import AuthAPIClient

AUTH_BASE_URL = "http://auth.test/api/v1"


class FixedClock:
    """Millisecond clock that only moves when told to"""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeAuthService:
    """In-memory auth API: login, register, profile and logout"""

    def __init__(self):
        self.users: Dict[str, Dict[str, Any]] = {}
        self.passwords: Dict[str, str] = {}
        self.tokens: Dict[str, str] = {}
        self.calls: List[Tuple[str, str]] = []
        self.offline = False
        self.profile_status: Optional[int] = None
        self.logout_status: Optional[int] = None

    def add_user(self, email: str, password: str, user_id: Optional[str] = None, name: str = "Jane Doe") -> Dict[str, Any]:
        user = {"_id": user_id or uuid.uuid4().hex[:24], "name": name, "email": email, "role": "customer"}
        self.users[email] = user
        self.passwords[email] = password
        return user

    def _issue_token(self, email: str) -> str:
        token = f"tok-{uuid.uuid4().hex}"
        self.tokens[token] = email
        return token

    def _bearer(self, request: httpx.Request) -> Optional[str]:
        header = request.headers.get("Authorization", "")
        return header[len("Bearer "):] if header.startswith("Bearer ") else None

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))
        if self.offline:
            raise httpx.ConnectError("connection refused", request=request)

        if path.endswith("/auth/login"):
            body = json.loads(request.content)
            email = body.get("email")
            if email not in self.users or self.passwords[email] != body.get("password"):
                return httpx.Response(401, json={"message": "Invalid email or password"})
            # Flat response: profile with the token inside it
            return httpx.Response(200, json={**self.users[email], "token": self._issue_token(email)})

        if path.endswith("/auth/register"):
            body = json.loads(request.content)
            email = body.get("email")
            if email in self.users:
                return httpx.Response(400, json={"message": "User already exists"})
            user = self.add_user(email, body.get("password"), name=body.get("name", ""))
            return httpx.Response(201, json={"user": user, "token": self._issue_token(email)})

        if path.endswith("/auth/profile"):
            if self.profile_status is not None:
                return httpx.Response(self.profile_status, json={"message": "Profile unavailable"})
            email = self.tokens.get(self._bearer(request) or "")
            if email is None:
                return httpx.Response(401, json={"message": "Not authorized, token failed"})
            return httpx.Response(200, json=self.users[email])

        if path.endswith("/auth/logout"):
            if self.logout_status is not None:
                return httpx.Response(self.logout_status, json={"message": "Logout failed"})
            self.tokens.pop(self._bearer(request) or "", None)
            return httpx.Response(200, json={"message": "Logged out"})

        return httpx.Response(404, json={"message": "Not found"})

    def client(self) -> AuthAPIClient:
        return AuthAPIClient(base_url=AUTH_BASE_URL, transport=httpx.MockTransport(self.handler))

    def call_count(self, suffix: str) -> int:
        return sum(1 for _, path in self.calls if path.endswith(suffix))


def assert_response_structure(response_data: Dict[str, Any], expected_keys: List[str], optional_keys: Optional[List[str]] = None):
    """Assert that response has expected structure"""
    optional_keys = optional_keys or []

    for key in expected_keys:
        assert key in response_data, f"Required key '{key}' missing from response"

    unexpected_keys = set(response_data.keys()) - set(expected_keys + optional_keys)
    assert not unexpected_keys, f"Unexpected keys in response: {unexpected_keys}"


def assert_no_sensitive_data_in_logs(caplog, sensitive_patterns: List[str]):
    """Assert that sensitive data patterns don't appear in logs"""
    all_logs = " ".join(record.getMessage() for record in caplog.records)

    for pattern in sensitive_patterns:
        assert pattern not in all_logs, f"Sensitive pattern '{pattern}' found in logs"


def stored_json(storage, key: str) -> Any:
    """Decode a value straight from a substrate, bypassing the durable store"""
    raw = storage.get_item(key)
    return json.loads(raw) if raw is not None else None
