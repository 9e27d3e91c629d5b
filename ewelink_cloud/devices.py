"""Device listing for an eWeLink account.

Device snapshots are a read-through cache: they identify devices and their
channel layout, but reconciliation always re-reads live parameters.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from .const import (
    ENDPOINT_FAMILY,
    ENDPOINT_HISTORY,
    ENDPOINT_THINGS,
    STORE_KEY_DEVICES,
)
from .errors import DeviceNotFound, EwelinkError
from .models import DeviceSnapshot
from .session import SessionManager
from .store import MemoryStore, SnapshotStore

_LOGGER = logging.getLogger(__name__)


def extract_devices(data: dict[str, Any]) -> list[DeviceSnapshot]:
    """Extract device snapshots from a ``/v2/device/thing`` response.

    Args:
        data: Response data containing ``thingList``.

    Returns:
        Snapshots for every entry that describes a device (groups are skipped).

    """
    devices = []
    for thing in data.get("thingList", []):
        item = thing.get("itemData") or {}
        if "deviceid" not in item:
            continue
        devices.append(DeviceSnapshot.from_item_data(item))
    return devices


class DeviceRegistry:
    """Fetches the family and device list and caches device snapshots."""

    def __init__(
        self,
        sessions: SessionManager,
        store: SnapshotStore | None = None,
    ) -> None:
        self._sessions = sessions
        self._store = store if store is not None else MemoryStore()
        self._family_id: str | None = None
        self._devices: dict[str, DeviceSnapshot] | None = None

    @property
    def family_id(self) -> str | None:
        return self._family_id

    def fetch_family(self, lang: str = "en") -> dict[str, Any]:
        """Fetch the account's families and remember the current one."""
        data = self._sessions.get(ENDPOINT_FAMILY, {"lang": lang})
        self._family_id = data.get("currentFamilyId")
        _LOGGER.debug("Current family is %s", self._family_id)
        return {
            "familyList": data.get("familyList", []),
            "currentFamilyId": self._family_id,
            "hasChangedCurrentFamily": data.get("hasChangedCurrentFamily", False),
        }

    def fetch_devices(self, lang: str = "en") -> list[DeviceSnapshot]:
        """Fetch the device list of the current family and cache it."""
        if self._family_id is None:
            self.fetch_family(lang)
        if not self._family_id:
            error_msg = "Account has no current family"
            raise EwelinkError(error_msg)

        data = self._sessions.get(
            ENDPOINT_THINGS, {"lang": lang, "familyId": self._family_id}
        )
        self._store.save(STORE_KEY_DEVICES, json.dumps(data))
        devices = extract_devices(data)
        self._devices = {device.device_id: device for device in devices}
        _LOGGER.debug("Retrieved %d devices", len(devices))
        return devices

    def list_devices(self) -> list[DeviceSnapshot]:
        """Return cached snapshots, loading or fetching them on first use."""
        if self._devices is None:
            cached = self._store.load(STORE_KEY_DEVICES)
            if cached:
                devices = extract_devices(json.loads(cached))
                self._devices = {device.device_id: device for device in devices}
            else:
                self.fetch_devices()
        return list(self._devices.values())  # type: ignore[union-attr]

    def get_device(self, device_id: str) -> DeviceSnapshot:
        """Return the snapshot of one device.

        Raises:
            DeviceNotFound: If the account has no such device.

        """
        for device in self.list_devices():
            if device.device_id == device_id:
                return device
        raise DeviceNotFound(device_id)

    def is_multi_channel(self, device_id: str) -> bool:
        return self.get_device(device_id).supports_channel_split

    def is_online(self, identifier: str) -> bool:
        """Refresh the list and report whether a device (by id or name) is online."""
        for device in self.fetch_devices():
            if identifier in (device.device_id, device.name):
                return device.online
        return False

    def get_history(self, device_id: str) -> dict[str, Any]:
        """Fetch the operation history of a device."""
        return self._sessions.get(ENDPOINT_HISTORY, {"deviceid": device_id})
