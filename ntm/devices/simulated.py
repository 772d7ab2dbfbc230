"""In-process artillery and radar used by the simulated environment and tests."""

from __future__ import annotations

import itertools
import logging
from typing import Any

from ..models import DeviceKind
from .base import ARTILLERY, RADAR, ArtilleryDevice, HardwareProvider, RadarSensor

logger = logging.getLogger(__name__)


class SimulatedArtillery(ArtilleryDevice):
    """Artillery piece with a position, a firing envelope and stored energy.

    Cannons answer ``aim`` with an in-range flag, rockets with ``None``.
    ``activation_works=False`` models a device whose switch is broken and
    ``readback_offset`` shifts the reported target to model a device that
    silently retargets.
    """

    def __init__(
        self,
        kind: DeviceKind | str = DeviceKind.CANNON,
        position: tuple[float, float, float] | None = None,
        *,
        active: bool = True,
        energy: float = 100_000.0,
        max_energy: float | None = None,
        min_range: float = 32.0,
        max_range: float = 3000.0,
        activation_works: bool = True,
        readback_offset: float = 0.0,
        targeting: dict[str, bool] | None = None,
    ) -> None:
        self.kind = DeviceKind.parse(kind) if isinstance(kind, str) else kind
        self.position = position
        self.active = active
        self.energy = energy
        self.max_energy = energy if max_energy is None else max_energy
        self.min_range = min_range
        self.max_range = max_range
        self.activation_works = activation_works
        self.readback_offset = readback_offset
        self.targeting = dict(targeting) if targeting is not None else {
            "players": True, "animals": False, "mobs": False, "machines": False,
        }
        self.target: tuple[float, float, float] | None = None
        self.aim_calls: list[tuple[int, int, int]] = []

    def is_active(self) -> bool:
        return self.active

    def set_active(self, active: bool) -> None:
        if self.activation_works:
            self.active = active

    def get_energy(self) -> tuple[float, float]:
        return (self.energy, self.max_energy)

    def get_angle(self) -> tuple[float, float]:
        return (0.0, 45.0)

    def in_range(self, x: int, y: int, z: int) -> bool:
        if self.position is None:
            return True
        px, py, pz = self.position
        distance = ((x - px) ** 2 + (y - py) ** 2 + (z - pz) ** 2) ** 0.5
        return self.min_range <= distance <= self.max_range

    def aim(self, x: int, y: int, z: int) -> bool | None:
        self.aim_calls.append((x, y, z))
        accepted = self.in_range(x, y, z)
        if accepted:
            offset = self.readback_offset
            self.target = (x + offset, y + offset, z + offset)
        if self.kind is DeviceKind.CANNON:
            return accepted
        return None

    def is_aligned(self) -> bool:
        return self.target is not None

    def get_current_target(self) -> tuple[float, float, float] | None:
        return self.target

    def get_targeting(self) -> dict[str, bool] | None:
        return dict(self.targeting)

    def set_targeting(self, **flags: bool) -> None:
        self.targeting.update(flags)

    def get_position(self) -> tuple[float, float, float] | None:
        return self.position


class SimulatedRadar(RadarSensor):
    """Radar whose contact list is set directly by the simulation."""

    def __init__(
        self,
        position: tuple[float, float, float] = (0.0, 64.0, 0.0),
        *,
        detection_range: float = 1000.0,
        energy: float = 100_000.0,
        max_energy: float | None = None,
        jammed: bool = False,
    ) -> None:
        self.position = position
        self.detection_range = detection_range
        self.energy = energy
        self.max_energy = energy if max_energy is None else max_energy
        self.jammed = jammed
        self.contacts: list[dict[str, Any] | None] = []
        self.settings = {"missiles": True, "shells": True, "players": True, "smart": False}

    def set_contacts(self, contacts: list[dict[str, Any] | None]) -> None:
        self.contacts = list(contacts)

    def get_contact_count(self) -> int:
        return len(self.contacts)

    def get_contact(self, index: int) -> dict[str, Any] | None:
        if 1 <= index <= len(self.contacts):
            return self.contacts[index - 1]
        return None

    def get_position(self) -> tuple[float, float, float]:
        return self.position

    def is_jammed(self) -> bool:
        return self.jammed

    def get_energy(self) -> tuple[float, float]:
        return (self.energy, self.max_energy)

    def get_range(self) -> float:
        return self.detection_range

    def get_settings(self) -> dict[str, bool]:
        return dict(self.settings)

    def set_settings(self, **settings: bool) -> None:
        self.settings.update(settings)


class SimulatedHardware(HardwareProvider):
    """Component bus holding simulated devices under generated addresses."""

    def __init__(self) -> None:
        self._components: dict[str, tuple[str, Any]] = {}
        self._counter = itertools.count(1)

    def add(self, kind: str, driver: Any, address: str | None = None) -> str:
        if address is None:
            address = f"sim-{kind}-{next(self._counter):04d}"
        self._components[address] = (kind, driver)
        return address

    def add_artillery(self, driver: SimulatedArtillery, address: str | None = None) -> str:
        return self.add(ARTILLERY, driver, address)

    def add_radar(self, driver: SimulatedRadar, address: str | None = None) -> str:
        return self.add(RADAR, driver, address)

    def remove(self, address: str) -> None:
        self._components.pop(address, None)

    def list_components(self, kind: str) -> list[str]:
        return [addr for addr, (k, _) in self._components.items() if k == kind]

    def proxy(self, address: str) -> Any:
        entry = self._components.get(address)
        return entry[1] if entry else None

    def kind_hint(self, address: str) -> str | None:
        driver = self.proxy(address)
        if isinstance(driver, SimulatedArtillery):
            return driver.kind.value
        return None

    @classmethod
    def from_config(
        cls,
        artillery: list[dict[str, Any]] | None = None,
        radars: list[dict[str, Any]] | None = None,
    ) -> SimulatedHardware:
        """Build hardware from the ``artillery`` / ``radars`` config lists."""
        hardware = cls()
        for entry in artillery or []:
            position = entry.get("position")
            hardware.add_artillery(
                SimulatedArtillery(
                    entry.get("kind", DeviceKind.CANNON.value),
                    tuple(position) if position else None,
                    energy=float(entry.get("energy", 100_000.0)),
                    max_energy=entry.get("max_energy"),
                    min_range=float(entry.get("min_range", 32.0)),
                    max_range=float(entry.get("max_range", 3000.0)),
                ),
                entry.get("address"),
            )
        for entry in radars or []:
            hardware.add_radar(
                SimulatedRadar(
                    tuple(entry.get("position", (0.0, 64.0, 0.0))),
                    detection_range=float(entry.get("range", 1000.0)),
                ),
                entry.get("address"),
            )
        logger.info(
            "Simulated hardware: %d artillery, %d radar",
            len(hardware.list_components(ARTILLERY)),
            len(hardware.list_components(RADAR)),
        )
        return hardware
