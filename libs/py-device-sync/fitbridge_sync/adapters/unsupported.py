"""Placeholders for providers whose protocol or SDK is not implemented."""

import datetime
import logging

from ..health import HealthData
from ..provider_types import ProviderType
from .base import ProviderAdapter, register_adapter

logger = logging.getLogger(__name__)


@register_adapter(ProviderType.GARMIN, ProviderType.SAMSUNG_HEALTH)
class UnsupportedProviderAdapter(ProviderAdapter):
    """Always returns None without touching the network."""

    requires_token = False

    async def _fetch(self, access_token: str | None, day: datetime.date) -> HealthData | None:
        logger.warning(
            "%s data fetching is not supported: %s",
            self.name,
            self.config.unsupported_reason or "missing provider capability",
        )
        return None
