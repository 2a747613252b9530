"""
Unit tests for the auth service client
"""

import httpx
import pytest

from shopstate.clients.auth_api import AuthAPIClient, AuthAPIError
from tests.utils.helpers import AUTH_BASE_URL

pytestmark = pytest.mark.unit


def client_for(handler) -> AuthAPIClient:
    return AuthAPIClient(base_url=AUTH_BASE_URL, transport=httpx.MockTransport(handler))


class TestLogin:

    def test_flat_response(self):
        def handler(request):
            assert request.url.path == "/api/v1/auth/login"
            return httpx.Response(200, json={"_id": "u1", "email": "jane@example.com", "token": "tok"})

        result = client_for(handler).login({"email": "jane@example.com", "password": "x"})

        assert result.token == "tok"
        assert result.user["_id"] == "u1"

    def test_nested_response(self):
        def handler(request):
            return httpx.Response(200, json={"user": {"_id": "u1"}, "token": "tok"})

        result = client_for(handler).register({"email": "jane@example.com"})

        assert result.token == "tok"
        assert result.user == {"_id": "u1"}

    def test_missing_token(self):
        client = client_for(lambda request: httpx.Response(200, json={"_id": "u1"}))

        with pytest.raises(AuthAPIError) as exc_info:
            client.login({})

        assert exc_info.value.status_code is None

    def test_rejection_carries_status_and_message(self):
        client = client_for(lambda request: httpx.Response(401, json={"message": "Invalid email or password"}))

        with pytest.raises(AuthAPIError) as exc_info:
            client.login({})

        assert exc_info.value.status_code == 401
        assert exc_info.value.is_auth_rejection
        assert str(exc_info.value) == "401: Invalid email or password"

    def test_detail_field_and_plain_text_errors(self):
        client = client_for(lambda request: httpx.Response(422, json={"detail": "Bad payload"}))
        with pytest.raises(AuthAPIError, match="Bad payload"):
            client.login({})

        client = client_for(lambda request: httpx.Response(502, text="upstream down"))
        with pytest.raises(AuthAPIError, match="upstream down"):
            client.login({})


class TestProfileAndLogout:

    def test_profile_sends_bearer_token(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"_id": "u1"})

        assert client_for(handler).get_profile("tok") == {"_id": "u1"}
        assert seen["auth"] == "Bearer tok"

    def test_empty_profile_is_none(self):
        assert client_for(lambda request: httpx.Response(200, json={})).get_profile("tok") is None

    def test_network_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(AuthAPIError) as exc_info:
            client_for(handler).get_profile("tok")

        assert exc_info.value.status_code is None
        assert not exc_info.value.is_auth_rejection

    def test_logout(self):
        calls = []

        def handler(request):
            calls.append((request.method, request.url.path))
            return httpx.Response(204)

        with client_for(handler) as client:
            client.logout("tok")

        assert calls == [("POST", "/api/v1/auth/logout")]
