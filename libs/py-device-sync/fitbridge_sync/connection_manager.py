"""
OAuth connection lifecycle per (user, provider).

Drives the authorization-code flow through an AuthorizationSession,
exchanges and refreshes tokens with an OAuthHandler, and persists them in
the CredentialStore. Public methods never raise; failures come back as a
ConnectionOutcome, ``None`` or ``False``.

State machine per provider::

    UNAUTHENTICATED -> AUTHORIZING -> AUTHENTICATED <-> EXPIRED
           ^                |               |
           +----------------+---------------+  (failure / disconnect)
"""

import logging
import secrets
from datetime import datetime
from enum import Enum

import httpx

from .auth_session import AuthorizationSession
from .config import ProviderRegistry
from .credentials import CredentialStore, TokenKind, credential_key
from .exceptions import (
    AuthorizationCancelled,
    AuthorizationError,
    ConfigurationError,
    CredentialStoreError,
    FitBridgeError,
    NetworkError,
    UnsupportedProviderError,
)
from .oauth import OAuthHandler
from .provider_types import (
    AuthorizationStatus,
    Capability,
    ConnectionOutcome,
    CredentialPair,
    FailureKind,
    OAuthTokens,
    ProviderConfig,
    ProviderType,
)

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Authorization was cancelled by user"


class ConnectionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHORIZING = "authorizing"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"


class OAuthConnectionManager:
    """OAuth lifecycle manager for one user across all providers."""

    def __init__(
        self,
        registry: ProviderRegistry,
        credential_store: CredentialStore,
        session: AuthorizationSession | None = None,
        user_id: str = "default",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self.registry = registry
        self.credential_store = credential_store
        self.session = session
        self.user_id = user_id
        self.timeout = timeout
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self._handlers: dict[ProviderType, OAuthHandler] = {}
        self._authorizing: set[ProviderType] = set()

    def _key(self, kind: TokenKind, provider: ProviderType) -> str:
        return credential_key(self.user_id, kind, provider)

    def _handler(self, config: ProviderConfig) -> OAuthHandler:
        handler = self._handlers.get(config.provider)
        if handler is None:
            handler = OAuthHandler(config, http_client=self.http_client, timeout=self.timeout)
            self._handlers[config.provider] = handler
        return handler

    def _check_connectable(self, provider: ProviderType) -> ProviderConfig:
        """
        Raises:
            UnsupportedProviderError / ConfigurationError before any network call
        """
        config = self.registry.get(provider)
        if config.capability == Capability.UNSUPPORTED:
            raise UnsupportedProviderError(
                config.unsupported_reason or f"{config.display_name} is not supported",
                provider=provider.value,
            )
        if config.capability != Capability.OAUTH2:
            raise ConfigurationError(
                f"{config.display_name} is connected through platform permissions, not OAuth",
                provider=provider.value,
            )
        if not config.client_id:
            raise ConfigurationError(
                f"{config.display_name} client id is not configured. "
                f"Set {config.env_prefix}_CLIENT_ID in the environment.",
                provider=provider.value,
            )
        if not config.client_secret:
            raise ConfigurationError(
                f"{config.display_name} client secret is not configured. "
                f"Set {config.env_prefix}_CLIENT_SECRET in the environment.",
                provider=provider.value,
            )
        if self.session is None:
            raise ConfigurationError(
                "No interactive authorization session is available", provider=provider.value
            )
        return config

    def state(self, provider: ProviderType) -> ConnectionState:
        if provider in self._authorizing:
            return ConnectionState.AUTHORIZING
        credentials = self._read_credentials(provider)
        if credentials is None:
            return ConnectionState.UNAUTHENTICATED
        if credentials.is_expired():
            return ConnectionState.EXPIRED
        return ConnectionState.AUTHENTICATED

    async def connect(self, provider: ProviderType) -> ConnectionOutcome:
        """
        Run the authorization-code flow for ``provider``.

        Tokens are written only after a complete, validated token response;
        every failure path leaves the provider UNAUTHENTICATED.
        """
        if provider in self._authorizing:
            return ConnectionOutcome.failed(
                provider,
                FailureKind.AUTHORIZATION,
                f"An authorization for {provider.value} is already in progress",
            )

        try:
            config = self._check_connectable(provider)
        except UnsupportedProviderError as e:
            logger.warning("Cannot connect %s: %s", provider.value, e.message)
            return ConnectionOutcome.failed(provider, FailureKind.UNSUPPORTED, e.message)
        except ConfigurationError as e:
            logger.warning("Cannot connect %s: %s", provider.value, e.message)
            return ConnectionOutcome.failed(provider, FailureKind.CONFIGURATION, e.message)

        self._authorizing.add(provider)
        try:
            handler = self._handler(config)
            state = secrets.token_urlsafe(16)
            redirect_uri = self.session.redirect_uri
            url = handler.build_authorization_url(redirect_uri, state=state)

            logger.info("Starting %s authorization", config.display_name)
            result = await self.session.authorize(url, state)

            if result.status == AuthorizationStatus.CANCELLED:
                raise AuthorizationCancelled(CANCELLED_MESSAGE, provider=provider.value)
            if result.status == AuthorizationStatus.ERROR or not result.code:
                raise AuthorizationError(
                    result.error or "Authorization failed",
                    provider=provider.value,
                    description=result.error,
                )

            tokens = await handler.exchange_code(result.code, redirect_uri)
            self._store_tokens(provider, tokens)

            logger.info("%s connected", config.display_name)
            return ConnectionOutcome(
                success=True,
                provider=provider,
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token,
                expires_in=tokens.expires_in,
                display_name=config.display_name,
            )

        except AuthorizationCancelled:
            logger.info("%s authorization cancelled", config.display_name)
            return ConnectionOutcome.failed(provider, FailureKind.CANCELLED, CANCELLED_MESSAGE)
        except AuthorizationError as e:
            logger.warning("%s authorization failed: %s", provider.value, e.message)
            return ConnectionOutcome.failed(
                provider, FailureKind.AUTHORIZATION, e.description or e.message
            )
        except NetworkError as e:
            logger.warning("%s token exchange failed: %s", provider.value, e.message)
            return ConnectionOutcome.failed(provider, FailureKind.NETWORK, e.message)
        except CredentialStoreError as e:
            logger.error("Failed to store %s tokens: %s", provider.value, e.message)
            return ConnectionOutcome.failed(provider, FailureKind.STORAGE, e.message)
        except Exception as e:
            logger.exception("Unexpected error connecting %s", provider.value)
            return ConnectionOutcome.failed(provider, FailureKind.AUTHORIZATION, str(e))
        finally:
            self._authorizing.discard(provider)

    def _store_tokens(self, provider: ProviderType, tokens: OAuthTokens) -> None:
        """
        Persist access, refresh and expiry together.

        A token set without a refresh token or expiry deletes the stored value.
        On a partial write every key touched is restored to its prior value.

        Raises:
            CredentialStoreError: If the write (and rollback) fails
        """
        expires_at = tokens.expires_at.isoformat() if tokens.expires_at else None
        writes = [
            (self._key(TokenKind.ACCESS, provider), tokens.access_token),
            (self._key(TokenKind.REFRESH, provider), tokens.refresh_token),
            (self._key(TokenKind.EXPIRY, provider), expires_at),
        ]
        previous = {key: self.credential_store.get(key) for key, _ in writes}

        done: list[str] = []
        try:
            for key, value in writes:
                if value is None:
                    self.credential_store.delete(key)
                else:
                    self.credential_store.set(key, value)
                done.append(key)
        except CredentialStoreError:
            for key in done:
                try:
                    if previous[key] is None:
                        self.credential_store.delete(key)
                    else:
                        self.credential_store.set(key, previous[key])
                except CredentialStoreError:
                    logger.error("Rollback of %s failed", key)
            raise

    async def refresh(self, provider: ProviderType, refresh_token: str | None = None) -> str | None:
        """
        Exchange a refresh token for a new access token.

        Uses the stored refresh token when none is given. Returns the new
        access token, or None on any failure.
        """
        try:
            config = self.registry.get(provider)
            if config.capability != Capability.OAUTH2 or not config.is_configured:
                logger.warning("Cannot refresh %s: provider not configured for OAuth", provider.value)
                return None

            if refresh_token is None:
                refresh_token = self.credential_store.get(self._key(TokenKind.REFRESH, provider))
            if not refresh_token:
                logger.info("No refresh token stored for %s", provider.value)
                return None

            tokens = await self._handler(config).refresh_token(refresh_token)
            if not tokens.refresh_token:
                tokens = tokens.model_copy(update={"refresh_token": refresh_token})
            self._store_tokens(provider, tokens)

            logger.info("Refreshed %s access token", provider.value)
            return tokens.access_token

        except FitBridgeError as e:
            logger.warning("Token refresh failed for %s: %s", provider.value, e.message)
            return None
        except Exception:
            logger.exception("Unexpected error refreshing %s", provider.value)
            return None

    def _read_credentials(self, provider: ProviderType) -> CredentialPair | None:
        try:
            access_token = self.credential_store.get(self._key(TokenKind.ACCESS, provider))
            if not access_token:
                return None
            refresh_token = self.credential_store.get(self._key(TokenKind.REFRESH, provider))
            expiry = self.credential_store.get(self._key(TokenKind.EXPIRY, provider))
        except CredentialStoreError as e:
            logger.error("Failed to read %s credentials: %s", provider.value, e.message)
            return None

        expires_at = None
        if expiry:
            try:
                expires_at = datetime.fromisoformat(expiry)
            except ValueError:
                logger.warning("Ignoring malformed expiry for %s", provider.value)

        return CredentialPair(
            provider=provider,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
        )

    def get_tokens(self, provider: ProviderType) -> dict[str, str | None]:
        """Stored access/refresh tokens; both None when absent or unreadable."""
        credentials = self._read_credentials(provider)
        if credentials is None:
            return {"access_token": None, "refresh_token": None}
        return {
            "access_token": credentials.access_token,
            "refresh_token": credentials.refresh_token,
        }

    async def get_credentials(self, provider: ProviderType) -> CredentialPair | None:
        """
        Stored CredentialPair for ``provider``, refreshed first when expired.

        An expired pair is returned as-is when it cannot be refreshed; the
        provider API decides whether it is still accepted.
        """
        credentials = self._read_credentials(provider)
        if credentials is None or not credentials.is_expired():
            return credentials

        if not credentials.refresh_token:
            return credentials

        logger.info("%s access token expired, refreshing", provider.value)
        access_token = await self.refresh(provider, credentials.refresh_token)
        if access_token is None:
            return credentials
        return self._read_credentials(provider)

    def clear_tokens(self, provider: ProviderType) -> bool:
        """Delete every stored token for ``provider``. False if a delete failed."""
        cleared = True
        for kind in TokenKind:
            try:
                self.credential_store.delete(self._key(kind, provider))
            except CredentialStoreError as e:
                logger.error("Failed to clear %s %s: %s", provider.value, kind.value, e.message)
                cleared = False
        return cleared

    async def close(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    async def __aenter__(self) -> "OAuthConnectionManager":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()
