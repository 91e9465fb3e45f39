"""
Device sync orchestration.

Resolves the user's connected devices (server first, local cache as
fallback), connects and disconnects providers, and drives single-device
and batch syncs. Public methods return booleans, outcomes or ``None`` and
never raise.
"""

import asyncio
import datetime
import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

from .adapters import ProviderAdapter
from .connection_manager import OAuthConnectionManager
from .device_cache import DeviceCache
from .exceptions import ConfigurationError, FitBridgeError, NotFoundError
from .health import HealthData
from .platform_bridge import HealthPlatformBridge
from .provider_types import (
    Capability,
    ConnectionOutcome,
    DeviceConnection,
    DeviceStatus,
    FailureKind,
    ProviderType,
    SyncResult,
)
from .registry_client import DeviceRegistryClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_CONCURRENCY = 7


async def best_effort(action: str, awaitable: Awaitable[T]) -> T | None:
    """Await a non-critical side effect; failures are logged and yield None."""
    try:
        return await awaitable
    except FitBridgeError as e:
        logger.warning("%s failed (continuing): %s", action, e.message)
    except Exception as e:
        logger.warning("%s failed (continuing): %s", action, e)
    return None


class SyncOrchestrator:
    """
    Single-device and batch sync over the user's connected devices.

    Args:
        connection_manager: Owns OAuth flows and credential access
        adapters: Provider adapters keyed by ProviderType
        registry_client: Server device registry
        cache: Local device cache (a fresh one by default)
        platform_bridge: On-device health store for SDK providers
        max_concurrency: Upper bound on concurrent device syncs
    """

    def __init__(
        self,
        connection_manager: OAuthConnectionManager,
        adapters: dict[ProviderType, ProviderAdapter],
        registry_client: DeviceRegistryClient,
        cache: DeviceCache | None = None,
        platform_bridge: HealthPlatformBridge | None = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        self.connection_manager = connection_manager
        self.adapters = adapters
        self.registry_client = registry_client
        self.cache = cache or DeviceCache()
        self.platform_bridge = platform_bridge
        self.max_concurrency = max_concurrency
        # device id -> provider, kept after disconnect so a repeat call still clears
        self._disconnected: dict[str, ProviderType] = {}

    async def list_connected_devices(self) -> list[DeviceConnection]:
        """Server listing, or the local cache when the server is unavailable."""
        try:
            devices = await self.registry_client.list_devices()
        except FitBridgeError as e:
            logger.warning("Device registry unavailable, using local cache: %s", e.message)
            return self.cache.list_devices()
        except Exception:
            logger.exception("Unexpected error listing devices, using local cache")
            return self.cache.list_devices()

        self.cache.replace(devices)
        return devices

    async def authorize_device(self, provider: ProviderType) -> ConnectionOutcome:
        """
        Link ``provider`` and register it with the server.

        SDK providers go through the platform permission grant; OAuth
        providers through the connection manager. Server registration is
        best effort and never changes the outcome.
        """
        try:
            config = self.connection_manager.registry.get(provider)
        except ConfigurationError as e:
            return ConnectionOutcome.failed(provider, FailureKind.CONFIGURATION, e.message)

        if config.capability == Capability.SDK:
            outcome = await self._grant_platform_permissions(provider, config.display_name)
        else:
            outcome = await self.connection_manager.connect(provider)

        if not outcome.success:
            return outcome

        device = await best_effort(
            f"Registering {config.display_name}",
            self.registry_client.register_device(provider, config.display_name),
        )
        if device is None:
            device = DeviceConnection(id=provider.value.lower(), name=config.display_name, provider=provider)
        self.cache.upsert(device)
        self._disconnected.pop(device.id, None)

        logger.info("%s connected as device %s", config.display_name, device.id)
        return outcome

    async def _grant_platform_permissions(self, provider: ProviderType, name: str) -> ConnectionOutcome:
        if self.platform_bridge is None:
            return ConnectionOutcome.failed(
                provider, FailureKind.CONFIGURATION, f"No health platform bridge is configured for {name}"
            )
        try:
            granted = await self.platform_bridge.request_permissions()
        except Exception as e:
            logger.warning("%s permission request failed: %s", name, e)
            granted = False
        if not granted:
            return ConnectionOutcome.failed(
                provider, FailureKind.AUTHORIZATION, f"{name} permissions were not granted"
            )
        return ConnectionOutcome(success=True, provider=provider, display_name=name)

    async def connect_device(self, provider: ProviderType) -> bool:
        return (await self.authorize_device(provider)).success

    async def _resolve_device(self, device_id: str) -> DeviceConnection | None:
        device = self.cache.get(device_id)
        if device is None:
            await self.list_connected_devices()
            device = self.cache.get(device_id)
        return device

    async def _fetch_for(self, device: DeviceConnection, day: datetime.date) -> HealthData | None:
        adapter = self.adapters.get(device.provider)
        if adapter is None:
            logger.warning("No adapter for provider %s", device.provider.value)
            return None

        access_token = None
        if adapter.requires_token:
            credentials = await self.connection_manager.get_credentials(device.provider)
            if credentials is None:
                logger.warning("No stored access token for %s", device.name)
                return None
            if credentials.provider != adapter.provider:
                logger.error(
                    "Credential provider mismatch: %s credentials for %s adapter",
                    credentials.provider.value,
                    adapter.provider.value,
                )
                return None
            access_token = credentials.access_token

        return await adapter.fetch(access_token, day)

    async def sync_device(self, device_id: str, day: datetime.date | None = None) -> bool:
        """Fetch one day for one device and report it to the server."""
        day = day or datetime.date.today()
        try:
            return await self._sync(device_id, day)
        except NotFoundError as e:
            logger.warning("Cannot sync: %s", e.message)
            return False
        except Exception:
            logger.exception("Unexpected error syncing device %s", device_id)
            self.cache.mark_status(device_id, DeviceStatus.ERROR)
            return False

    async def _sync(self, device_id: str, day: datetime.date) -> bool:
        device = await self._resolve_device(device_id)
        if device is None:
            raise NotFoundError(f"Device {device_id} not found")

        self.cache.mark_status(device_id, DeviceStatus.SYNCING)
        data = await self._fetch_for(device, day)
        if data is None:
            self.cache.mark_status(device_id, DeviceStatus.ERROR)
            logger.warning("Sync of %s (%s) produced no data", device.name, device_id)
            return False

        await best_effort(
            f"Reporting {device.name} activity",
            self.registry_client.report_activity(device_id, data),
        )
        self.cache.mark_status(device_id, DeviceStatus.CONNECTED, last_sync=datetime.datetime.now(datetime.UTC))
        logger.info("Synced %s for %s", device.name, day)
        return True

    async def sync_all_devices(self, day: datetime.date | None = None) -> SyncResult:
        """
        Sync every CONNECTED device concurrently.

        Each device is isolated: a failure (or exception) counts against it
        alone and the counts are reduced from the gathered results.
        """
        devices = [
            d for d in await self.list_connected_devices() if d.status == DeviceStatus.CONNECTED
        ]
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run(device: DeviceConnection) -> bool:
            async with semaphore:
                return await self.sync_device(device.id, day)

        results = await asyncio.gather(*(run(d) for d in devices), return_exceptions=True)
        success_count = sum(1 for r in results if r is True)
        result = SyncResult(success_count=success_count, failed_count=len(results) - success_count)

        logger.info("Synced %d of %d devices", result.success_count, result.total)
        return result

    async def disconnect_device(self, device_id: str) -> bool:
        """
        Clear local credentials and ask the server to forget the device.

        Returns the result of clearing credentials; the server call is best
        effort. Repeating the call for the same id is safe.
        """
        try:
            device = await self._resolve_device(device_id)
            provider = device.provider if device else self._disconnected.get(device_id)
            if provider is None:
                try:
                    provider = ProviderType.parse(device_id)
                except ValueError:
                    raise NotFoundError(f"Device {device_id} not found") from None

            cleared = self.connection_manager.clear_tokens(provider)
            await best_effort(
                f"Deleting device {device_id}", self.registry_client.delete_device(device_id)
            )
            self.cache.remove(device_id)
            self._disconnected[device_id] = provider

            logger.info("Disconnected %s (%s)", provider.value, device_id)
            return cleared
        except NotFoundError as e:
            logger.warning("Cannot disconnect: %s", e.message)
            return False
        except Exception:
            logger.exception("Unexpected error disconnecting device %s", device_id)
            return False

    async def get_activity_data(self, day: datetime.date | None = None) -> HealthData | None:
        """
        Activity for ``day``: the server aggregate, or the first connected
        device queried directly. None when neither has data.
        """
        day = day or datetime.date.today()
        try:
            rows = await self.registry_client.get_activity(day, day)
            if rows:
                return HealthData.from_registry(self._pick_row(rows, day), day)
            logger.info("No server activity for %s, querying devices", day)
        except FitBridgeError as e:
            logger.warning("Server activity unavailable, querying devices: %s", e.message)
        except (ValueError, TypeError) as e:
            logger.warning("Malformed server activity, querying devices: %s", e)

        devices = sorted(
            (d for d in await self.list_connected_devices() if d.status == DeviceStatus.CONNECTED),
            key=lambda d: not d.is_primary,
        )
        if not devices:
            return None
        try:
            return await self._fetch_for(devices[0], day)
        except Exception:
            logger.exception("Unexpected error fetching activity from %s", devices[0].name)
            return None

    @staticmethod
    def _pick_row(rows: list[dict[str, Any]], day: datetime.date) -> dict[str, Any]:
        """Row for ``day`` if rows are dated, otherwise the first."""
        iso = day.isoformat()
        for row in rows:
            if str(row.get("activity_date") or row.get("date") or "").startswith(iso):
                return row
        return rows[0]
