"""
HTTP client for the storefront's auth endpoints.

The storefront API is an external collaborator; this module only knows the
four calls the session layer needs: login, register, profile and logout.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from shopstate.core.config import settings

logger = logging.getLogger(__name__)


class AuthAPIError(Exception):
    """Raised when the auth service rejects a call or cannot be reached.

    ``status_code`` is None for transport failures (DNS, refused, timeout).
    """

    def __init__(self, status_code: Optional[int], message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message

    @property
    def is_auth_rejection(self) -> bool:
        return self.status_code in (401, 403)

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"{self.status_code}: {self.message}"


@dataclass(frozen=True)
class LoginResult:
    user: Dict[str, Any]
    token: str


def _login_result(data: Any) -> LoginResult:
    """Accept ``{user, token}`` as well as the flat user-with-token response."""
    if not isinstance(data, dict):
        raise AuthAPIError(None, "Unexpected login response from auth service")

    if isinstance(data.get("user"), dict):
        user = dict(data["user"])
        token = data.get("token") or user.get("token")
    else:
        user = dict(data)
        token = user.get("token")

    if not isinstance(token, str) or not token:
        raise AuthAPIError(None, "Auth service response did not include a token")
    return LoginResult(user=user, token=token)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("detail") or response.reason_phrase)
    return response.reason_phrase


class AuthAPIClient:
    """Synchronous client for ``/auth/*`` on the storefront API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._client = httpx.Client(
            base_url=base_url or settings.AUTH_API_URL,
            timeout=timeout or settings.AUTH_API_TIMEOUT,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    def _request(
        self,
        method: str,
        path: str,
        token: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            response = self._client.request(method, path, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"Auth service request {method} {path} failed: {type(e).__name__}")
            raise AuthAPIError(None, f"Auth service unreachable: {e}") from e

        if response.is_error:
            raise AuthAPIError(response.status_code, _error_message(response))

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise AuthAPIError(response.status_code, "Auth service returned invalid JSON") from e

    def login(self, credentials: Dict[str, Any]) -> LoginResult:
        return _login_result(self._request("POST", "/auth/login", payload=credentials))

    def register(self, user_data: Dict[str, Any]) -> LoginResult:
        return _login_result(self._request("POST", "/auth/register", payload=user_data))

    def get_profile(self, token: str) -> Optional[Dict[str, Any]]:
        data = self._request("GET", "/auth/profile", token=token)
        return data if isinstance(data, dict) and data else None

    def logout(self, token: Optional[str]) -> None:
        self._request("POST", "/auth/logout", token=token)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "AuthAPIClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
