"""Base class and lookup table for provider data adapters."""

import datetime
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from ..exceptions import FitBridgeError, NetworkError, RateLimitError
from ..health import HealthData
from ..platform_bridge import HealthPlatformBridge
from ..provider_types import ProviderConfig, ProviderType
from ..rate_limit import ProviderRateLimiter

logger = logging.getLogger(__name__)

ADAPTER_TYPES: dict[ProviderType, type["ProviderAdapter"]] = {}


def register_adapter(*providers: ProviderType):
    """Class decorator adding an adapter to the lookup table."""

    def decorator(cls: type["ProviderAdapter"]) -> type["ProviderAdapter"]:
        for provider in providers:
            ADAPTER_TYPES[provider] = cls
        return cls

    return decorator


def as_number(value: Any) -> float:
    """Numeric value or 0.0 for anything missing or malformed."""
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return 0.0
    return 0.0


def as_int(value: Any) -> int:
    return max(int(round(as_number(value))), 0)


def utc_day_bounds(day: datetime.date) -> tuple[datetime.datetime, datetime.datetime]:
    """UTC midnight of ``day`` and of the following day."""
    start = datetime.datetime.combine(day, datetime.time.min, tzinfo=datetime.UTC)
    return start, start + datetime.timedelta(days=1)


class ProviderAdapter(ABC):
    """
    Fetches one day of activity from a provider and normalizes it.

    Subclasses implement ``_fetch``. ``fetch`` never raises: HTTP failures,
    rate limiting and malformed payloads are logged and return None.
    """

    requires_token = True

    def __init__(
        self,
        config: ProviderConfig,
        http_client: httpx.AsyncClient,
        rate_limiter: ProviderRateLimiter | None = None,
        platform_bridge: HealthPlatformBridge | None = None,
        timeout: float = 30.0,
    ):
        self.config = config
        self.provider = config.provider
        self.http_client = http_client
        self.rate_limiter = rate_limiter
        self.platform_bridge = platform_bridge
        self.timeout = timeout

    @property
    def name(self) -> str:
        return self.config.display_name

    async def fetch(self, access_token: str | None, day: datetime.date) -> HealthData | None:
        """Normalized metrics for ``day``, or None on failure."""
        if self.requires_token and not access_token:
            logger.warning("No access token for %s", self.name)
            return None

        try:
            return await self._fetch(access_token, day)
        except RateLimitError as e:
            logger.warning("%s rate limited (retry after %ss)", self.name, e.retry_after)
        except FitBridgeError as e:
            logger.warning("Failed to fetch %s data: %s", self.name, e.message)
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logger.warning("Unexpected %s payload: %s", self.name, e)
        return None

    @abstractmethod
    async def _fetch(self, access_token: str | None, day: datetime.date) -> HealthData | None:
        ...

    async def _get_json(
        self,
        path: str,
        access_token: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """
        Authenticated GET against the provider API.

        Raises:
            RateLimitError: Local bucket exhausted or HTTP 429
            NetworkError: Timeout, transport failure or non-2xx status
        """
        if self.rate_limiter:
            self.rate_limiter.check_limit(self.provider)

        url = f"{self.config.api_url}{path}"
        try:
            response = await self.http_client.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise NetworkError(f"{self.name} request timed out", provider=self.provider.value) from e
        except httpx.RequestError as e:
            raise NetworkError(f"{self.name} request failed: {e}", provider=self.provider.value) from e

        if response.status_code == 429:
            raise RateLimitError(
                f"{self.name} API rate limit exceeded",
                provider=self.provider.value,
                retry_after=int(as_number(response.headers.get("Retry-After", 60))),
            )

        if not response.is_success:
            raise NetworkError(
                f"{self.name} API error: HTTP {response.status_code}",
                provider=self.provider.value,
                status_code=response.status_code,
            )

        return response.json()
