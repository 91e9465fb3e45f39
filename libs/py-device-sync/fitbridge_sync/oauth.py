"""OAuth 2.0 authorization-code flow: authorization URL, code exchange, refresh."""

import base64
import logging
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import httpx

from .exceptions import AuthorizationError, NetworkError
from .provider_types import OAuthTokens, ProviderConfig, TokenAuthMethod

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600


class OAuthHandler:
    """
    Handles the OAuth 2.0 authorization code flow for one provider.

    Client authentication at the token endpoint follows the provider's
    ``token_auth_method``: id and secret in the form body, or an HTTP Basic
    header (optionally keeping ``client_id`` in the body as well).
    """

    def __init__(
        self,
        config: ProviderConfig,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self.config = config
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self.timeout = timeout

    @property
    def provider_name(self) -> str:
        return self.config.provider.value

    def build_authorization_url(
        self,
        redirect_uri: str,
        state: str | None = None,
        **extra_params: Any,
    ) -> str:
        """
        Build the provider authorization URL.

        Args:
            redirect_uri: Callback URL
            state: Optional state parameter for CSRF protection
            **extra_params: Additional provider-specific parameters

        Returns:
            Full authorization URL
        """
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.config.scopes),
            **dict(self.config.authorize_params),
            **extra_params,
        }

        if state:
            params["state"] = state

        return f"{self.config.auth_url}?{urlencode(params)}"

    def _client_auth(self, data: dict[str, Any]) -> dict[str, str]:
        """Add client credentials to the form body or headers."""
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        if self.config.token_auth_method == TokenAuthMethod.CLIENT_SECRET_BASIC:
            raw = f"{self.config.client_id}:{self.config.client_secret}".encode()
            headers["Authorization"] = f"Basic {base64.b64encode(raw).decode('ascii')}"
            if self.config.client_id_in_body:
                data["client_id"] = self.config.client_id
        else:
            data["client_id"] = self.config.client_id
            data["client_secret"] = self.config.client_secret
        return headers

    async def exchange_code(self, code: str, redirect_uri: str, **extra_params: Any) -> OAuthTokens:
        """
        Exchange an authorization code for tokens.

        Raises:
            AuthorizationError: Provider rejected the grant
            NetworkError: Timeout, transport failure or 5xx
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            **extra_params,
        }
        return await self._token_request(data, "Token exchange failed")

    async def refresh_token(self, refresh_token: str, **extra_params: Any) -> OAuthTokens:
        """
        Refresh an expired access token.

        Raises:
            AuthorizationError: Provider rejected the refresh token
            NetworkError: Timeout, transport failure or 5xx
        """
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            **extra_params,
        }
        return await self._token_request(data, "Token refresh failed")

    async def _token_request(self, data: dict[str, Any], failure: str) -> OAuthTokens:
        headers = self._client_auth(data)

        try:
            response = await self.http_client.post(
                self.config.token_url,
                data=data,
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise NetworkError(f"{failure}: request timed out", provider=self.provider_name) from e
        except httpx.RequestError as e:
            raise NetworkError(f"{failure}: {e}", provider=self.provider_name) from e

        if response.status_code >= 500:
            logger.warning("%s token endpoint returned %s", self.provider_name, response.status_code)
            raise NetworkError(
                f"{failure}: HTTP {response.status_code}",
                provider=self.provider_name,
                status_code=response.status_code,
            )

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.status_code >= 400 or body.get("error"):
            description = body.get("error_description") or body.get("error") or response.text
            logger.warning(
                "%s token endpoint rejected the request (HTTP %s)",
                self.provider_name,
                response.status_code,
            )
            raise AuthorizationError(
                f"{failure}: {description}",
                provider=self.provider_name,
                description=description,
            )

        return self._parse_token_response(body)

    def _parse_token_response(self, data: dict[str, Any]) -> OAuthTokens:
        access_token = data.get("access_token")
        if not access_token:
            raise AuthorizationError("Missing access_token in response", provider=self.provider_name)

        expires_in = int(data.get("expires_in") or DEFAULT_EXPIRES_IN)
        expires_at = datetime.now(UTC) + timedelta(seconds=expires_in)

        # Scopes arrive as a space separated string or a list
        scope = data.get("scope", "")
        scopes = scope.split() if isinstance(scope, str) else list(scope)

        return OAuthTokens(
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            expires_in=expires_in,
            expires_at=expires_at,
            token_type=data.get("token_type", "Bearer"),
            scopes=scopes,
        )

    async def close(self) -> None:
        """Close the HTTP client if this handler created it."""
        if self._owns_client:
            await self.http_client.aclose()

    async def __aenter__(self) -> "OAuthHandler":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
