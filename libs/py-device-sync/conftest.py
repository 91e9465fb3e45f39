"""Shared fixtures for fitbridge_sync tests."""

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from fitbridge_sync.auth_session import AuthorizationSession
from fitbridge_sync.config import load_provider_registry
from fitbridge_sync.credentials import MemoryCredentialStore
from fitbridge_sync.provider_types import AuthorizationResult, AuthorizationStatus

CLIENT_ENV = {
    "GOOGLE_FIT_CLIENT_ID": "google-id",
    "GOOGLE_FIT_CLIENT_SECRET": "google-secret",
    "FITBIT_CLIENT_ID": "fitbit-id",
    "FITBIT_CLIENT_SECRET": "fitbit-secret",
    "WHOOP_CLIENT_ID": "whoop-id",
    "WHOOP_CLIENT_SECRET": "whoop-secret",
    "POLAR_CLIENT_ID": "polar-id",
    "POLAR_CLIENT_SECRET": "polar-secret",
}


class MockAPI:
    """
    Route table for ``httpx.MockTransport``.

    Routes are matched on method and URL path (the first registered prefix
    wins). A route value is a status/body tuple, a ``httpx.Response`` or a
    callable taking the request. Every request is recorded.
    """

    def __init__(self) -> None:
        self.routes: list[tuple[str, str, Any]] = []
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, response: Any) -> None:
        self.routes.append((method.upper(), path, response))

    def calls(self, path_prefix: str = "") -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.startswith(path_prefix)]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for method, path, response in self.routes:
            if request.method == method and request.url.path.startswith(path):
                if callable(response):
                    response = response(request)
                if isinstance(response, httpx.Response):
                    return response
                status, body = response
                return httpx.Response(status, json=body)
        return httpx.Response(404, json={"success": False, "error": f"No route for {request.url.path}"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle))


class FakeAuthorizationSession(AuthorizationSession):
    """Resolves immediately with a preset result, echoing the request state."""

    def __init__(self, result: AuthorizationResult | None = None):
        self.result = result or AuthorizationResult(status=AuthorizationStatus.SUCCESS, code="auth-code")
        self.urls: list[str] = []
        self.cancelled = False

    @property
    def redirect_uri(self) -> str:
        return "http://127.0.0.1:8765/oauth/callback"

    async def authorize(self, url: str, state: str) -> AuthorizationResult:
        self.urls.append(url)
        return self.result.model_copy(update={"state": state})

    def cancel(self) -> None:
        self.cancelled = True


def form_body(request: httpx.Request) -> dict[str, str]:
    return dict(httpx.QueryParams(request.content.decode()))


def json_body(request: httpx.Request) -> Any:
    return json.loads(request.content)


@pytest.fixture
def client_env():
    return dict(CLIENT_ENV)


@pytest.fixture
def registry(client_env):
    return load_provider_registry(client_env)


@pytest.fixture
def store():
    return MemoryCredentialStore()


@pytest.fixture
def api():
    return MockAPI()


@pytest.fixture
def fake_session():
    return FakeAuthorizationSession()


@pytest.fixture
def token_response() -> Callable[..., dict[str, Any]]:
    def build(**overrides: Any) -> dict[str, Any]:
        body = {
            "access_token": "new-access",
            "refresh_token": "new-refresh",
            "expires_in": 3600,
            "token_type": "Bearer",
            "scope": "activity heartrate",
        }
        body.update(overrides)
        return {k: v for k, v in body.items() if v is not None}

    return build


@pytest.fixture
def helpers():
    """Module-level helpers exposed to test modules."""

    class Helpers:
        form_body = staticmethod(form_body)
        json_body = staticmethod(json_body)
        FakeAuthorizationSession = FakeAuthorizationSession

    return Helpers
