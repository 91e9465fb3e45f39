"""Local read-through cache of the user's device connections."""

import datetime
from threading import Lock

from .provider_types import DeviceConnection, DeviceStatus


class DeviceCache:
    """
    In-memory DeviceConnection store keyed by device id.

    Replaced wholesale after every successful server listing and served as
    the fallback when the server is unreachable.
    """

    def __init__(self) -> None:
        self._devices: dict[str, DeviceConnection] = {}
        self._lock = Lock()

    def replace(self, devices: list[DeviceConnection]) -> None:
        with self._lock:
            self._devices = {device.id: device for device in devices}

    def list_devices(self) -> list[DeviceConnection]:
        with self._lock:
            return list(self._devices.values())

    def get(self, device_id: str) -> DeviceConnection | None:
        with self._lock:
            return self._devices.get(device_id)

    def upsert(self, device: DeviceConnection) -> None:
        """Add ``device``, replacing any entry with the same id or provider."""
        with self._lock:
            for device_id in [
                i for i, d in self._devices.items() if d.provider == device.provider
            ]:
                del self._devices[device_id]
            self._devices[device.id] = device

    def remove(self, device_id: str) -> DeviceConnection | None:
        with self._lock:
            return self._devices.pop(device_id, None)

    def mark_status(
        self,
        device_id: str,
        status: DeviceStatus,
        last_sync: datetime.datetime | None = None,
    ) -> DeviceConnection | None:
        """Set a device's status (and ``last_sync`` when given)."""
        with self._lock:
            device = self._devices.get(device_id)
            if device is None:
                return None
            update: dict = {"status": status}
            if last_sync is not None:
                update["last_sync"] = last_sync
            device = device.model_copy(update=update)
            self._devices[device_id] = device
            return device
