"""Wires settings into a ready-to-use device sync stack."""

import logging
from collections.abc import Callable
from typing import Any

import httpx

from .adapters import ProviderAdapter, build_adapters
from .auth_session import AuthorizationSession, LoopbackAuthorizationSession
from .balance import DailyBalanceCalculator
from .config import ProviderRegistry, Settings, load_provider_registry, load_settings
from .connection_manager import OAuthConnectionManager
from .credentials import CredentialStore, build_credential_store
from .nutrition import NutritionSummaryClient
from .orchestrator import SyncOrchestrator
from .platform_bridge import (
    AppleHealthExportBridge,
    HealthPlatformBridge,
    UnavailablePlatformBridge,
)
from .provider_types import ProviderType
from .rate_limit import ProviderRateLimiter
from .registry_client import DeviceRegistryClient

logger = logging.getLogger(__name__)


class DeviceSyncService:
    """
    All collaborators sharing one HTTP client.

    Usage:
        async with DeviceSyncService.from_settings() as service:
            result = await service.orchestrator.sync_all_devices()
    """

    def __init__(
        self,
        settings: Settings,
        registry: ProviderRegistry,
        credential_store: CredentialStore,
        http_client: httpx.AsyncClient,
        session: AuthorizationSession | None = None,
        platform_bridge: HealthPlatformBridge | None = None,
        adapters: dict[ProviderType, ProviderAdapter] | None = None,
    ):
        self.settings = settings
        self.registry = registry
        self.credential_store = credential_store
        self.http_client = http_client
        self.platform_bridge = platform_bridge or UnavailablePlatformBridge()

        self.rate_limiter = ProviderRateLimiter(
            [c.rate_limit for c in registry if c.rate_limit is not None]
        )
        self.connection_manager = OAuthConnectionManager(
            registry,
            credential_store,
            session=session,
            user_id=settings.user_id,
            http_client=http_client,
            timeout=settings.request_timeout,
        )
        self.adapters = adapters or build_adapters(
            registry,
            http_client,
            rate_limiter=self.rate_limiter,
            platform_bridge=self.platform_bridge,
            timeout=settings.request_timeout,
        )
        self.registry_client = DeviceRegistryClient(
            settings.api_url,
            api_token=settings.api_token,
            timeout=settings.request_timeout,
            http_client=http_client,
        )
        self.orchestrator = SyncOrchestrator(
            self.connection_manager,
            self.adapters,
            self.registry_client,
            platform_bridge=self.platform_bridge,
        )
        self.nutrition = NutritionSummaryClient(self.registry_client)
        self.balance = DailyBalanceCalculator(self.orchestrator, self.nutrition, self.registry_client)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        session: AuthorizationSession | None = None,
        public_url: str | None = None,
        open_browser: bool = True,
        on_url: Callable[[str], None] | None = None,
        **kwargs: Any,
    ) -> "DeviceSyncService":
        """Build the default stack; a loopback session is created unless one is given."""
        settings = settings or load_settings()
        if session is None:
            session = LoopbackAuthorizationSession(
                host=settings.oauth_callback_host,
                port=settings.oauth_callback_port,
                public_url=public_url,
                open_browser=open_browser,
                on_url=on_url,
            )
        platform_bridge = kwargs.pop("platform_bridge", None)
        if platform_bridge is None and settings.apple_health_export:
            platform_bridge = AppleHealthExportBridge(settings.apple_health_export)

        return cls(
            settings=settings,
            registry=kwargs.pop("registry", None) or load_provider_registry(),
            credential_store=kwargs.pop("credential_store", None) or build_credential_store(settings),
            http_client=kwargs.pop("http_client", None)
            or httpx.AsyncClient(timeout=settings.request_timeout),
            session=session,
            platform_bridge=platform_bridge,
            **kwargs,
        )

    async def close(self) -> None:
        await self.http_client.aclose()

    async def __aenter__(self) -> "DeviceSyncService":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
