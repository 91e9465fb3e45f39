"""HTTP client for the server-side device registry."""

import datetime
import logging
from typing import Any

import httpx

from .exceptions import NetworkError, RegistryError
from .health import HealthData
from .provider_types import DeviceConnection, ProviderType

logger = logging.getLogger(__name__)


class DeviceRegistryClient:
    """
    Client for the ``/devices`` API.

    Responses are ``{"success": bool, "data": ...}`` envelopes. Every method
    raises on failure; the orchestrator decides how to degrade.

    Raises (all methods):
        NetworkError: Timeout, transport failure or non-2xx status
        RegistryError: Envelope with ``success: false``
    """

    def __init__(
        self,
        base_url: str,
        api_token: str | None = None,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.timeout = timeout
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    async def request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request and return the envelope's ``data``."""
        url = f"{self.base_url}{path}"
        try:
            response = await self.http_client.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
        except httpx.TimeoutException as e:
            raise NetworkError(f"Registry request timed out: {method} {path}") from e
        except httpx.RequestError as e:
            raise NetworkError(f"Registry request failed: {method} {path}: {e}") from e

        try:
            body = response.json() if response.content else None
        except ValueError:
            body = None

        if isinstance(body, dict) and body.get("success") is False:
            message = body.get("error") or body.get("message") or "Registry request failed"
            raise RegistryError(message)

        if not response.is_success:
            raise NetworkError(
                f"Registry returned HTTP {response.status_code} for {method} {path}",
                status_code=response.status_code,
            )

        if isinstance(body, dict) and "success" in body:
            return body.get("data")
        return body

    async def list_devices(self) -> list[DeviceConnection]:
        data = await self.request("GET", "/devices")
        devices = []
        for row in data or []:
            try:
                devices.append(DeviceConnection.from_registry(row))
            except (KeyError, ValueError) as e:
                logger.warning("Skipping malformed device record: %s", e)
        return devices

    async def register_device(self, provider: ProviderType, name: str) -> DeviceConnection | None:
        """Register a connection. Tokens stay in the local credential store."""
        data = await self.request(
            "POST", "/devices/connect", json={"deviceType": provider.value, "deviceName": name}
        )
        if not isinstance(data, dict):
            return None
        try:
            return DeviceConnection.from_registry(data)
        except (KeyError, ValueError) as e:
            logger.warning("Malformed registration response: %s", e)
            return None

    async def report_activity(self, device_id: str, data: HealthData) -> Any:
        return await self.request("POST", f"/devices/{device_id}/sync", json=data.to_activity_payload())

    async def delete_device(self, device_id: str) -> None:
        await self.request("DELETE", f"/devices/{device_id}")

    async def get_activity(self, start: datetime.date, end: datetime.date) -> list[dict[str, Any]]:
        data = await self.request("GET", f"/devices/activity/{start.isoformat()}/{end.isoformat()}")
        return [row for row in data or [] if isinstance(row, dict)]

    async def get_balance(self, day: datetime.date) -> dict[str, Any] | None:
        data = await self.request("GET", f"/devices/balance/{day.isoformat()}")
        return data if isinstance(data, dict) else None

    async def close(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()
