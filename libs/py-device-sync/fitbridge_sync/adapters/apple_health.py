"""Apple Health adapter backed by a platform bridge."""

import datetime
import logging

from ..health import HealthData
from ..provider_types import ProviderType
from .base import ProviderAdapter, register_adapter

logger = logging.getLogger(__name__)


@register_adapter(ProviderType.APPLE_HEALTH)
class AppleHealthAdapter(ProviderAdapter):
    """Reads the on-device store; no OAuth token involved."""

    requires_token = False

    async def _fetch(self, access_token: str | None, day: datetime.date) -> HealthData | None:
        if self.platform_bridge is None:
            logger.warning("No health platform bridge configured for Apple Health")
            return None
        return await self.platform_bridge.fetch_day(day)
