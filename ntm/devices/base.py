"""Hardware capability interfaces.

The layer above never touches hardware directly: artillery is driven
through :class:`ArtilleryDevice`, radars through :class:`RadarSensor`, and
both are located through a :class:`HardwareProvider`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

ARTILLERY = "artillery"
RADAR = "radar"


class ArtilleryDevice(ABC):
    """Opaque artillery driver.

    ``aim`` returns ``True``/``False`` for cannons (``False`` meaning the
    target is out of range) and ``None`` for rockets, which do not report
    range.
    """

    @abstractmethod
    def is_active(self) -> bool:
        """Whether the device is switched on."""

    @abstractmethod
    def set_active(self, active: bool) -> None:
        """Switch the device on or off."""

    @abstractmethod
    def get_energy(self) -> tuple[float, float]:
        """Stored energy as (current, max)."""

    @abstractmethod
    def get_angle(self) -> tuple[float, float]:
        """Current (yaw, pitch)."""

    @abstractmethod
    def aim(self, x: int, y: int, z: int) -> bool | None:
        """Queue a target."""

    @abstractmethod
    def is_aligned(self) -> bool:
        """Whether the barrel points at the current target."""

    @abstractmethod
    def get_current_target(self) -> tuple[float, float, float] | None:
        """The target currently being engaged, if any."""

    # Optional capabilities; drivers that lack them keep these defaults.

    def has_target(self) -> bool:
        return self.get_current_target() is not None

    def get_targeting(self) -> dict[str, bool] | None:
        return None

    def set_targeting(self, **flags: bool) -> None:
        pass

    def get_position(self) -> tuple[float, float, float] | None:
        return None


class RadarSensor(ABC):
    """Opaque radar driver."""

    @abstractmethod
    def get_contact_count(self) -> int:
        """Number of contacts in the current sweep."""

    @abstractmethod
    def get_contact(self, index: int) -> dict[str, Any] | None:
        """One contact row (1-based), or ``None`` when the row is invalid.

        Rows carry ``blip_level``, ``x``, ``y``, ``z`` and optionally
        ``is_player`` and ``name``.
        """

    @abstractmethod
    def get_position(self) -> tuple[float, float, float]:
        """The sensor's own position."""

    @abstractmethod
    def is_jammed(self) -> bool:
        """Whether the sensor is currently jammed."""

    @abstractmethod
    def get_energy(self) -> tuple[float, float]:
        """Stored energy as (current, max)."""

    def get_range(self) -> float:
        return 0.0

    def get_settings(self) -> dict[str, bool]:
        return {}

    def set_settings(self, **settings: bool) -> None:
        pass


class HardwareProvider(ABC):
    """Locates attached components by kind and address."""

    @abstractmethod
    def list_components(self, kind: str) -> list[str]:
        """Addresses of every attached component of *kind*, in stable order."""

    @abstractmethod
    def proxy(self, address: str) -> Any:
        """The driver for the component at *address*, or ``None``."""

    def kind_hint(self, address: str) -> str | None:
        """Device kind the hardware reports for *address*, when it knows."""
        return None
