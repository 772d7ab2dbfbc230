"""Per-node registry of controllable artillery."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from ..errors import UnknownDevice
from ..models import Device, DeviceKind
from .base import ARTILLERY, ArtilleryDevice, HardwareProvider

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """Maps stable device ids to artillery drivers and their settings.

    Ids are only stable for one snapshot: :meth:`scan` discards every
    registered device and renumbers from ``battery_1``.
    """

    def __init__(self, hardware: HardwareProvider) -> None:
        self._hardware = hardware
        self._devices: dict[str, Device] = {}
        self._drivers: dict[str, ArtilleryDevice] = {}

    # ── Discovery ──────────────────────────────────────────────────

    def scan(self) -> int:
        """Register every attached artillery component; returns the count."""
        self._devices.clear()
        self._drivers.clear()
        for index, address in enumerate(self._hardware.list_components(ARTILLERY), start=1):
            kind = DeviceKind.parse(self._hardware.kind_hint(address))
            self.register(f"battery_{index}", address, kind)
        logger.info("Found %d artillery batteries", len(self._devices))
        return len(self._devices)

    def register(
        self, device_id: str, address: str, kind: DeviceKind = DeviceKind.UNKNOWN
    ) -> Device:
        driver = self._hardware.proxy(address)
        if driver is None:
            raise UnknownDevice(device_id)
        device = Device(device_id=device_id, address=address, kind=kind)
        self._devices[device_id] = device
        self._drivers[device_id] = driver
        logger.debug("Registered %s (%s) at %s", device_id, kind.value, address)
        return device

    # ── Lookup ─────────────────────────────────────────────────────

    def get(self, device_id: str) -> Device:
        try:
            return self._devices[device_id]
        except KeyError:
            raise UnknownDevice(device_id) from None

    def driver(self, device_id: str) -> ArtilleryDevice:
        try:
            return self._drivers[device_id]
        except KeyError:
            raise UnknownDevice(device_id) from None

    def __contains__(self, device_id: str) -> bool:
        return device_id in self._devices

    def __len__(self) -> int:
        return len(self._devices)

    def ids(self) -> list[str]:
        return list(self._devices)

    def enabled_ids(self) -> list[str]:
        return [d.device_id for d in self._devices.values() if d.enabled]

    def devices(self) -> list[Device]:
        return list(self._devices.values())

    # ── Settings ───────────────────────────────────────────────────

    def set_kind(self, device_id: str, kind: DeviceKind | str) -> None:
        device = self.get(device_id)
        device.kind = DeviceKind.parse(kind) if isinstance(kind, str) else kind
        logger.info("Set %s kind to %s", device_id, device.kind.value)

    def set_enabled(self, device_id: str, enabled: bool) -> None:
        device = self.get(device_id)
        device.enabled = enabled
        logger.info("%s %s", "Enabled" if enabled else "Disabled", device_id)

    def get_status(self) -> dict[str, Any]:
        batteries: dict[str, Any] = {}
        active = 0
        for device in self._devices.values():
            driver = self._drivers[device.device_id]
            is_active = bool(driver.is_active())
            if is_active:
                active += 1
            batteries[device.device_id] = {
                "address": device.address,
                "kind": device.kind.value,
                "enabled": device.enabled,
                "active": is_active,
                "energy": driver.get_energy(),
                "last_target": device.last_target.to_dict() if device.last_target else None,
            }
        return {
            "total": len(self._devices),
            "enabled": len(self.enabled_ids()),
            "active": active,
            "batteries": batteries,
        }

    # ── Persistence ────────────────────────────────────────────────

    def save_config(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            d.device_id: {"address": d.address, "kind": d.kind.value, "enabled": d.enabled}
            for d in self._devices.values()
        }
        with open(path, "w") as f:
            json.dump(data, f, indent=2)
        logger.info("Saved %d battery settings to %s", len(data), path)

    def load_config(self, path: str | Path) -> int:
        """Re-register devices from a saved file; returns how many were restored.

        Entries whose address is no longer attached are skipped.
        """
        path = Path(path)
        if not path.exists():
            logger.warning("Battery config not found at %s", path)
            return 0
        with open(path) as f:
            data = json.load(f)
        restored = 0
        for device_id, entry in data.items():
            address = entry.get("address", "")
            if self._hardware.proxy(address) is None:
                logger.warning("Skipping %s: %s is no longer attached", device_id, address)
                continue
            # The saved name replaces whichever scanned id held this address.
            for existing in [d.device_id for d in self._devices.values() if d.address == address]:
                self._devices.pop(existing)
                self._drivers.pop(existing)
            device = self.register(device_id, address, DeviceKind.parse(entry.get("kind")))
            device.enabled = bool(entry.get("enabled", True))
            restored += 1
        logger.info("Loaded %d battery settings from %s", restored, path)
        return restored
