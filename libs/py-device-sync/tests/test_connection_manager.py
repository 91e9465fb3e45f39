"""Tests for the OAuth connection lifecycle."""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest

from fitbridge_sync.config import load_provider_registry
from fitbridge_sync.connection_manager import CANCELLED_MESSAGE, ConnectionState, OAuthConnectionManager
from fitbridge_sync.credentials import MemoryCredentialStore, TokenKind, credential_key
from fitbridge_sync.exceptions import CredentialStoreError
from fitbridge_sync.provider_types import (
    AuthorizationResult,
    AuthorizationStatus,
    FailureKind,
    ProviderType,
)


def key(kind, provider=ProviderType.FITBIT):
    return credential_key("default", kind, provider)


def seed(store, provider=ProviderType.FITBIT, access="old-access", refresh="old-refresh", expires_at=None):
    store.set(key(TokenKind.ACCESS, provider), access)
    if refresh:
        store.set(key(TokenKind.REFRESH, provider), refresh)
    if expires_at:
        store.set(key(TokenKind.EXPIRY, provider), expires_at.isoformat())


class FailingStore(MemoryCredentialStore):
    """Fails writes to one key."""

    def __init__(self, failing_key):
        super().__init__()
        self.failing_key = failing_key

    def _set(self, key, value):
        if key == self.failing_key:
            raise CredentialStoreError("disk full")
        super()._set(key, value)


@pytest.fixture
def manager(registry, store, fake_session, api):
    return OAuthConnectionManager(registry, store, session=fake_session, http_client=api.client())


class TestConnect:
    @pytest.mark.asyncio
    async def test_success_stores_tokens(self, manager, store, api, token_response, fake_session):
        api.add("POST", "/oauth2/token", (200, token_response()))

        outcome = await manager.connect(ProviderType.FITBIT)

        assert outcome.success is True
        assert outcome.access_token == "new-access"
        assert outcome.refresh_token == "new-refresh"
        assert outcome.expires_in == 3600
        assert outcome.display_name == "Fitbit"
        assert store.get(key(TokenKind.ACCESS)) == "new-access"
        assert store.get(key(TokenKind.REFRESH)) == "new-refresh"
        assert store.get(key(TokenKind.EXPIRY)) is not None
        assert manager.state(ProviderType.FITBIT) == ConnectionState.AUTHENTICATED
        assert "state=" in fake_session.urls[0]

    @pytest.mark.asyncio
    async def test_cancel_writes_nothing(self, registry, store, api, helpers):
        session = helpers.FakeAuthorizationSession(
            AuthorizationResult(status=AuthorizationStatus.CANCELLED, error="access_denied")
        )
        manager = OAuthConnectionManager(registry, store, session=session, http_client=api.client())

        outcome = await manager.connect(ProviderType.FITBIT)

        assert outcome.success is False
        assert outcome.cancelled
        assert outcome.error == CANCELLED_MESSAGE
        assert "cancelled" in outcome.error
        assert store.keys() == []
        assert api.requests == []
        assert manager.state(ProviderType.FITBIT) == ConnectionState.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_session_error(self, registry, store, api, helpers):
        session = helpers.FakeAuthorizationSession(
            AuthorizationResult(status=AuthorizationStatus.ERROR, error="State mismatch")
        )
        manager = OAuthConnectionManager(registry, store, session=session, http_client=api.client())

        outcome = await manager.connect(ProviderType.FITBIT)

        assert outcome.failure == FailureKind.AUTHORIZATION
        assert outcome.error == "State mismatch"
        assert store.keys() == []

    @pytest.mark.asyncio
    async def test_exchange_rejection_passes_description(self, manager, store, api):
        api.add("POST", "/oauth2/token", (401, {"error": "invalid_client", "error_description": "Bad client"}))

        outcome = await manager.connect(ProviderType.FITBIT)

        assert outcome.failure == FailureKind.AUTHORIZATION
        assert outcome.error == "Bad client"
        assert store.keys() == []

    @pytest.mark.asyncio
    async def test_network_failure(self, manager, store, api):
        api.add("POST", "/oauth2/token", (502, {}))

        outcome = await manager.connect(ProviderType.FITBIT)

        assert outcome.failure == FailureKind.NETWORK
        assert store.keys() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("provider", [ProviderType.GARMIN, ProviderType.SAMSUNG_HEALTH])
    async def test_unsupported_makes_no_network_call(self, manager, api, fake_session, provider):
        outcome = await manager.connect(provider)

        assert outcome.success is False
        assert outcome.failure == FailureKind.UNSUPPORTED
        assert "requires" in outcome.error
        assert api.requests == []
        assert fake_session.urls == []

    @pytest.mark.asyncio
    async def test_sdk_provider_is_not_oauth(self, manager, api):
        outcome = await manager.connect(ProviderType.APPLE_HEALTH)

        assert outcome.failure == FailureKind.CONFIGURATION
        assert api.requests == []

    @pytest.mark.asyncio
    async def test_missing_secret_fails_fast(self, client_env, store, fake_session, api):
        client_env.pop("WHOOP_CLIENT_SECRET")
        manager = OAuthConnectionManager(
            load_provider_registry(client_env), store, session=fake_session, http_client=api.client()
        )

        outcome = await manager.connect(ProviderType.WHOOP)

        assert outcome.failure == FailureKind.CONFIGURATION
        assert outcome.error == (
            "Whoop client secret is not configured. Set WHOOP_CLIENT_SECRET in the environment."
        )
        assert api.requests == []
        assert fake_session.urls == []

    @pytest.mark.asyncio
    async def test_missing_session(self, registry, store, api):
        manager = OAuthConnectionManager(registry, store, session=None, http_client=api.client())

        outcome = await manager.connect(ProviderType.FITBIT)

        assert outcome.failure == FailureKind.CONFIGURATION

    @pytest.mark.asyncio
    async def test_concurrent_connect_rejected(self, registry, store, api, token_response, helpers):
        release = asyncio.Event()

        class SlowSession(helpers.FakeAuthorizationSession):
            async def authorize(self, url, state):
                await release.wait()
                return await super().authorize(url, state)

        api.add("POST", "/oauth2/token", (200, token_response()))
        manager = OAuthConnectionManager(registry, store, session=SlowSession(), http_client=api.client())

        first = asyncio.create_task(manager.connect(ProviderType.FITBIT))
        await asyncio.sleep(0)
        assert manager.state(ProviderType.FITBIT) == ConnectionState.AUTHORIZING

        second = await manager.connect(ProviderType.FITBIT)
        release.set()

        assert second.success is False
        assert "already in progress" in second.error
        assert (await first).success is True

    @pytest.mark.asyncio
    async def test_partial_write_is_rolled_back(self, registry, api, token_response, fake_session):
        store = FailingStore(key(TokenKind.EXPIRY))
        seed(store)
        api.add("POST", "/oauth2/token", (200, token_response()))
        manager = OAuthConnectionManager(registry, store, session=fake_session, http_client=api.client())

        outcome = await manager.connect(ProviderType.FITBIT)

        assert outcome.failure == FailureKind.STORAGE
        assert store.get(key(TokenKind.ACCESS)) == "old-access"
        assert store.get(key(TokenKind.REFRESH)) == "old-refresh"

    @pytest.mark.asyncio
    async def test_unexpected_error_returns_failure(self, manager, fake_session):
        with patch.object(fake_session, "authorize", side_effect=RuntimeError("boom")):
            outcome = await manager.connect(ProviderType.FITBIT)

        assert outcome.success is False
        assert manager.state(ProviderType.FITBIT) == ConnectionState.UNAUTHENTICATED


class TestRefresh:
    @pytest.mark.asyncio
    async def test_reuses_refresh_token_when_none_issued(self, manager, store, api, token_response):
        seed(store)
        api.add("POST", "/oauth2/token", (200, token_response(access_token="fresh", refresh_token=None)))

        assert await manager.refresh(ProviderType.FITBIT) == "fresh"
        assert store.get(key(TokenKind.ACCESS)) == "fresh"
        assert store.get(key(TokenKind.REFRESH)) == "old-refresh"

    @pytest.mark.asyncio
    async def test_stores_rotated_refresh_token(self, manager, store, api, token_response):
        seed(store)
        api.add("POST", "/oauth2/token", (200, token_response(access_token="fresh", refresh_token="rotated")))

        await manager.refresh(ProviderType.FITBIT, "old-refresh")

        assert store.get(key(TokenKind.REFRESH)) == "rotated"

    @pytest.mark.asyncio
    async def test_failure_returns_none(self, manager, store, api):
        seed(store)
        api.add("POST", "/oauth2/token", (400, {"error": "invalid_grant"}))

        assert await manager.refresh(ProviderType.FITBIT) is None
        assert store.get(key(TokenKind.ACCESS)) == "old-access"

    @pytest.mark.asyncio
    async def test_no_refresh_token(self, manager, api):
        assert await manager.refresh(ProviderType.FITBIT) is None
        assert api.requests == []


class TestCredentials:
    def test_get_tokens(self, manager, store):
        seed(store)

        assert manager.get_tokens(ProviderType.FITBIT) == {
            "access_token": "old-access",
            "refresh_token": "old-refresh",
        }
        assert manager.get_tokens(ProviderType.POLAR) == {"access_token": None, "refresh_token": None}

    def test_read_errors_mean_no_tokens(self, registry, fake_session):
        class BrokenStore(MemoryCredentialStore):
            def _get(self, key):
                raise CredentialStoreError("unreadable")

        manager = OAuthConnectionManager(registry, BrokenStore(), session=fake_session)

        assert manager.get_tokens(ProviderType.FITBIT) == {"access_token": None, "refresh_token": None}
        assert manager.state(ProviderType.FITBIT) == ConnectionState.UNAUTHENTICATED

    def test_clear_tokens(self, manager, store):
        seed(store, expires_at=datetime.now(UTC) + timedelta(hours=1))

        assert manager.clear_tokens(ProviderType.FITBIT) is True
        assert store.keys() == []
        assert manager.clear_tokens(ProviderType.FITBIT) is True

    def test_clear_tokens_reports_delete_failure(self, registry, fake_session):
        class UndeletableStore(MemoryCredentialStore):
            def _delete(self, key):
                raise CredentialStoreError("locked")

        manager = OAuthConnectionManager(registry, UndeletableStore(), session=fake_session)

        assert manager.clear_tokens(ProviderType.FITBIT) is False

    def test_expired_state(self, manager, store):
        seed(store, expires_at=datetime.now(UTC) - timedelta(minutes=1))

        assert manager.state(ProviderType.FITBIT) == ConnectionState.EXPIRED

    @pytest.mark.asyncio
    async def test_get_credentials_refreshes_expired(self, manager, store, api, token_response):
        seed(store, expires_at=datetime.now(UTC) - timedelta(minutes=1))
        api.add("POST", "/oauth2/token", (200, token_response(access_token="fresh")))

        credentials = await manager.get_credentials(ProviderType.FITBIT)

        assert credentials.access_token == "fresh"
        assert credentials.provider == ProviderType.FITBIT
        assert not credentials.is_expired()

    @pytest.mark.asyncio
    async def test_get_credentials_valid_skips_refresh(self, manager, store, api):
        seed(store, expires_at=datetime.now(UTC) + timedelta(hours=1))

        credentials = await manager.get_credentials(ProviderType.FITBIT)

        assert credentials.access_token == "old-access"
        assert api.requests == []

    @pytest.mark.asyncio
    async def test_get_credentials_missing(self, manager):
        assert await manager.get_credentials(ProviderType.FITBIT) is None
