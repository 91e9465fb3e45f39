"""Tests for OAuth handler functionality."""

import base64
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from fitbridge_sync.exceptions import AuthorizationError, NetworkError
from fitbridge_sync.oauth import OAuthHandler
from fitbridge_sync.provider_types import OAuthTokens, ProviderType


def query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


class TestAuthorizationUrl:
    """Tests for OAuthHandler.build_authorization_url."""

    def test_fitbit_url(self, registry):
        handler = OAuthHandler(registry.get(ProviderType.FITBIT))

        url = handler.build_authorization_url("http://127.0.0.1:8765/oauth/callback", state="abc123")
        params = query(url)

        assert url.startswith("https://www.fitbit.com/oauth2/authorize?")
        assert params["client_id"] == "fitbit-id"
        assert params["redirect_uri"] == "http://127.0.0.1:8765/oauth/callback"
        assert params["response_type"] == "code"
        assert params["scope"] == "activity heartrate nutrition profile sleep weight"
        assert params["expires_in"] == "604800"
        assert params["state"] == "abc123"

    def test_google_fit_requests_offline_access(self, registry):
        handler = OAuthHandler(registry.get(ProviderType.GOOGLE_FIT))

        params = query(handler.build_authorization_url("https://app.test/cb", state="s"))

        assert params["access_type"] == "offline"
        assert params["prompt"] == "consent"
        assert params["include_granted_scopes"] == "true"

    def test_no_state(self, registry):
        handler = OAuthHandler(registry.get(ProviderType.WHOOP))

        url = handler.build_authorization_url("https://app.test/cb")

        assert "state" not in query(url)
        assert "client_secret" not in url


class TestTokenExchange:
    """Tests for code exchange and refresh against a mocked token endpoint."""

    @pytest.mark.asyncio
    async def test_basic_auth_keeps_client_id_in_body(self, registry, api, helpers, token_response):
        api.add("POST", "/oauth2/token", (200, token_response()))
        handler = OAuthHandler(registry.get(ProviderType.FITBIT), http_client=api.client())

        tokens = await handler.exchange_code("code-1", "https://app.test/cb")

        request = api.requests[0]
        expected = base64.b64encode(b"fitbit-id:fitbit-secret").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"
        body = helpers.form_body(request)
        assert body == {
            "grant_type": "authorization_code",
            "code": "code-1",
            "redirect_uri": "https://app.test/cb",
            "client_id": "fitbit-id",
        }

        assert isinstance(tokens, OAuthTokens)
        assert tokens.access_token == "new-access"
        assert tokens.refresh_token == "new-refresh"
        assert tokens.expires_in == 3600
        assert tokens.scopes == ["activity", "heartrate"]

    @pytest.mark.asyncio
    async def test_basic_auth_without_client_id_in_body(self, registry, api, helpers, token_response):
        api.add("POST", "/v2/oauth2/token", (200, token_response()))
        handler = OAuthHandler(registry.get(ProviderType.POLAR), http_client=api.client())

        await handler.exchange_code("code-1", "https://app.test/cb")

        request = api.requests[0]
        assert request.headers["Authorization"].startswith("Basic ")
        assert "client_id" not in helpers.form_body(request)

    @pytest.mark.asyncio
    async def test_secret_in_post_body(self, registry, api, helpers, token_response):
        api.add("POST", "/token", (200, token_response()))
        handler = OAuthHandler(registry.get(ProviderType.GOOGLE_FIT), http_client=api.client())

        await handler.exchange_code("code-1", "https://app.test/cb")

        request = api.requests[0]
        assert "Authorization" not in request.headers
        body = helpers.form_body(request)
        assert body["client_id"] == "google-id"
        assert body["client_secret"] == "google-secret"

    @pytest.mark.asyncio
    async def test_expiry_defaults_and_is_absolute(self, registry, api, token_response):
        api.add("POST", "/oauth/oauth2/token", (200, token_response(expires_in=None, scope=["a", "b"])))
        handler = OAuthHandler(registry.get(ProviderType.WHOOP), http_client=api.client())

        before = datetime.now(UTC)
        tokens = await handler.exchange_code("code-1", "https://app.test/cb")

        assert tokens.expires_in == 3600
        assert before + timedelta(seconds=3590) < tokens.expires_at < before + timedelta(seconds=3610)
        assert tokens.scopes == ["a", "b"]

    @pytest.mark.asyncio
    async def test_rejected_grant_carries_description_verbatim(self, registry, api):
        api.add(
            "POST",
            "/oauth2/token",
            (400, {"error": "invalid_grant", "error_description": "Authorization code expired"}),
        )
        handler = OAuthHandler(registry.get(ProviderType.FITBIT), http_client=api.client())

        with pytest.raises(AuthorizationError) as exc_info:
            await handler.exchange_code("stale", "https://app.test/cb")

        assert exc_info.value.description == "Authorization code expired"
        assert exc_info.value.message == "Token exchange failed: Authorization code expired"

    @pytest.mark.asyncio
    async def test_error_field_on_200_is_rejection(self, registry, api):
        api.add("POST", "/oauth2/token", (200, {"error": "invalid_client"}))
        handler = OAuthHandler(registry.get(ProviderType.FITBIT), http_client=api.client())

        with pytest.raises(AuthorizationError) as exc_info:
            await handler.exchange_code("code", "https://app.test/cb")

        assert exc_info.value.description == "invalid_client"

    @pytest.mark.asyncio
    async def test_server_error_is_network_error(self, registry, api):
        api.add("POST", "/oauth2/token", (503, {"message": "unavailable"}))
        handler = OAuthHandler(registry.get(ProviderType.FITBIT), http_client=api.client())

        with pytest.raises(NetworkError) as exc_info:
            await handler.exchange_code("code", "https://app.test/cb")

        assert exc_info.value.status_code == 503
        assert not isinstance(exc_info.value, AuthorizationError)

    @pytest.mark.asyncio
    async def test_timeout_is_network_error(self, registry, api):
        def timeout(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        api.add("POST", "/oauth2/token", timeout)
        handler = OAuthHandler(registry.get(ProviderType.FITBIT), http_client=api.client())

        with pytest.raises(NetworkError, match="timed out"):
            await handler.exchange_code("code", "https://app.test/cb")

    @pytest.mark.asyncio
    async def test_missing_access_token(self, registry, api):
        api.add("POST", "/oauth2/token", (200, {"refresh_token": "r"}))
        handler = OAuthHandler(registry.get(ProviderType.FITBIT), http_client=api.client())

        with pytest.raises(AuthorizationError, match="Missing access_token"):
            await handler.exchange_code("code", "https://app.test/cb")

    @pytest.mark.asyncio
    async def test_refresh_grant(self, registry, api, helpers, token_response):
        api.add("POST", "/oauth2/token", (200, token_response(access_token="refreshed")))
        handler = OAuthHandler(registry.get(ProviderType.FITBIT), http_client=api.client())

        tokens = await handler.refresh_token("old-refresh")

        body = helpers.form_body(api.requests[0])
        assert body["grant_type"] == "refresh_token"
        assert body["refresh_token"] == "old-refresh"
        assert tokens.access_token == "refreshed"

    @pytest.mark.asyncio
    async def test_close_leaves_shared_client_open(self, registry, api):
        client = api.client()
        handler = OAuthHandler(registry.get(ProviderType.FITBIT), http_client=client)

        await handler.close()

        assert not client.is_closed
