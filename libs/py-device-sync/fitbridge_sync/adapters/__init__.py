"""Provider data adapters, one per provider, looked up by ProviderType."""

import httpx

from ..config import ProviderRegistry
from ..platform_bridge import HealthPlatformBridge
from ..provider_types import ProviderType
from ..rate_limit import ProviderRateLimiter
from .base import ADAPTER_TYPES, ProviderAdapter, register_adapter
from .apple_health import AppleHealthAdapter
from .fitbit import FitbitAdapter
from .google_fit import GoogleFitAdapter
from .polar import PolarAdapter
from .unsupported import UnsupportedProviderAdapter
from .whoop import WhoopAdapter


def build_adapters(
    registry: ProviderRegistry,
    http_client: httpx.AsyncClient,
    rate_limiter: ProviderRateLimiter | None = None,
    platform_bridge: HealthPlatformBridge | None = None,
    timeout: float = 30.0,
) -> dict[ProviderType, ProviderAdapter]:
    """Instantiate one adapter per registered provider present in ``registry``."""
    adapters: dict[ProviderType, ProviderAdapter] = {}
    for config in registry:
        adapter_type = ADAPTER_TYPES.get(config.provider)
        if adapter_type is None:
            continue
        adapters[config.provider] = adapter_type(
            config,
            http_client,
            rate_limiter=rate_limiter,
            platform_bridge=platform_bridge,
            timeout=timeout,
        )
    return adapters


__all__ = [
    "ADAPTER_TYPES",
    "AppleHealthAdapter",
    "FitbitAdapter",
    "GoogleFitAdapter",
    "PolarAdapter",
    "ProviderAdapter",
    "UnsupportedProviderAdapter",
    "WhoopAdapter",
    "build_adapters",
    "register_adapter",
]
