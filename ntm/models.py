"""Core value types shared across the device, radar and network layers."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any

GROUND_LEVEL = 64


class Port(IntEnum):
    """Logical ports multiplexed over one transport."""

    BROADCAST = 1000
    COMMAND = 1001
    ARTILLERY = 1002
    RADAR = 1003
    ALERT = 1004
    HEARTBEAT = 1005


class DeviceKind(str, Enum):
    ROCKET = "rocket"
    CANNON = "cannon"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> DeviceKind:
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class NodeType(str, Enum):
    COMMAND = "command"
    BATTERY = "battery"
    RADAR = "radar"
    RELAY = "relay"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> NodeType:
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class ThreatLevel(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


# ── Coordinates ───────────────────────────────────────────────────


@dataclass(frozen=True)
class Coordinate:
    """An integer block position used as a fire target."""

    x: int
    y: int
    z: int

    def distance_to(self, other: Coordinate | Vector) -> float:
        return math.sqrt(
            (self.x - other.x) ** 2 + (self.y - other.y) ** 2 + (self.z - other.z) ** 2
        )

    def to_dict(self) -> dict[str, int]:
        return {"x": self.x, "y": self.y, "z": self.z}

    @classmethod
    def from_dict(cls, data: Any, default_y: int = GROUND_LEVEL) -> Coordinate:
        """Build a coordinate from a ``{"x", "y", "z"}`` mapping.

        ``y`` is optional and falls back to *default_y*.  Raises ``ValueError``
        when ``x`` or ``z`` is missing or not numeric.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Expected a coordinate mapping, got {type(data).__name__}")
        if data.get("x") is None or data.get("z") is None:
            raise ValueError("Coordinate requires x and z")
        y = data.get("y")
        try:
            return cls(
                int(data["x"]),
                int(y) if y is not None else default_y,
                int(data["z"]),
            )
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid coordinate: {data!r}") from exc

    @classmethod
    def parse(cls, text: str, default_y: int = GROUND_LEVEL) -> Coordinate:
        """Parse ``"x,y,z"`` or ``"x z"`` (ground level) into a coordinate."""
        parts = [p for p in re.split(r"[,\s]+", text.strip()) if p]
        try:
            values = [int(float(p)) for p in parts]
        except ValueError as exc:
            raise ValueError(f"Invalid coordinates: {text!r}") from exc
        if len(values) == 3:
            return cls(*values)
        if len(values) == 2:
            return cls(values[0], default_y, values[1])
        raise ValueError(f"Expected 'x,y,z' or 'x z', got {text!r}")

    def __str__(self) -> str:
        return f"({self.x}, {self.y}, {self.z})"


@dataclass(frozen=True)
class Vector:
    """A floating-point position or velocity."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def __sub__(self, other: Vector) -> Vector:
        return Vector(self.x - other.x, self.y - other.y, self.z - other.z)

    def scale(self, factor: float) -> Vector:
        return Vector(self.x * factor, self.y * factor, self.z * factor)

    def distance_to(self, other: Vector | Coordinate) -> float:
        return math.sqrt(
            (self.x - other.x) ** 2 + (self.y - other.y) ** 2 + (self.z - other.z) ** 2
        )

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "z": self.z}

    @classmethod
    def from_dict(cls, data: dict | None) -> Vector:
        if not data:
            return cls()
        return cls(float(data.get("x", 0)), float(data.get("y", 0)), float(data.get("z", 0)))


# ── Devices ───────────────────────────────────────────────────────


@dataclass
class Device:
    """A controllable artillery piece known to the local registry."""

    device_id: str
    address: str
    kind: DeviceKind = DeviceKind.UNKNOWN
    enabled: bool = True
    last_target: Coordinate | None = None


# ── Radar ─────────────────────────────────────────────────────────

BLIP_TYPE_NAMES: dict[int, str] = {
    0: "Micro Missile",
    1: "Tier 1 Missile",
    2: "Tier 2 Missile",
    3: "Tier 3 Missile",
    4: "Tier 4 (Nuclear)",
    5: "Custom Missile (10)",
    6: "Custom Missile (10-15)",
    7: "Custom Missile (15)",
    8: "Custom Missile (15-20)",
    9: "Custom Missile (20)",
    10: "Anti-Ballistic",
    11: "Player",
    12: "Artillery Shell",
}

BLIP_THREAT_LEVELS: dict[int, ThreatLevel] = {
    0: ThreatLevel.LOW,
    1: ThreatLevel.LOW,
    2: ThreatLevel.MEDIUM,
    3: ThreatLevel.HIGH,
    4: ThreatLevel.CRITICAL,
    5: ThreatLevel.CRITICAL,
    6: ThreatLevel.CRITICAL,
    7: ThreatLevel.CRITICAL,
    8: ThreatLevel.CRITICAL,
    9: ThreatLevel.CRITICAL,
    10: ThreatLevel.LOW,
    11: ThreatLevel.LOW,
    12: ThreatLevel.LOW,
}

MISSILE_BLIPS = range(0, 10)
PLAYER_BLIP = 11
SHELL_BLIP = 12


def blip_type_name(blip_level: int) -> str:
    return BLIP_TYPE_NAMES.get(blip_level, "Unknown")


def classify_threat(blip_level: int) -> ThreatLevel:
    """Map a radar blip level to its threat level (unknown levels are LOW)."""
    return BLIP_THREAT_LEVELS.get(blip_level, ThreatLevel.LOW)


@dataclass
class Detection:
    """One raw contact reported by a radar during a scan."""

    index: int
    blip_level: int
    position: Vector
    is_player: bool = False
    name: str = ""
    type_name: str = "Unknown"
    threat_level: ThreatLevel = ThreatLevel.LOW
    distance: float = 0.0


@dataclass
class TrackedEntity:
    """A contact correlated across scans."""

    track_id: str
    kind: str
    blip_level: int
    position: Vector
    threat_level: ThreatLevel
    first_seen: float
    last_seen: float
    sensor_index: int
    is_player: bool = False
    name: str = ""
    distance: float = 0.0
    velocity: Vector = field(default_factory=Vector)

    def to_dict(self) -> dict[str, Any]:
        return {
            "track_id": self.track_id,
            "kind": self.kind,
            "blip_level": self.blip_level,
            "is_player": self.is_player,
            "name": self.name,
            "position": self.position.to_dict(),
            "velocity": self.velocity.to_dict(),
            "threat_level": int(self.threat_level),
            "distance": self.distance,
            "first_seen": self.first_seen,
            "last_seen": self.last_seen,
            "sensor_index": self.sensor_index,
        }


# ── Network ───────────────────────────────────────────────────────


@dataclass
class PeerNode:
    """A remote node learned from inbound traffic."""

    node_id: str
    node_type: NodeType
    address: str
    last_seen: float
    distance: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "node_type": self.node_type.value,
            "address": self.address,
            "last_seen": self.last_seen,
            "distance": self.distance,
        }


@dataclass
class Message:
    """A protocol message.

    ``payload`` holds the type-specific fields.  The ``remote_address``,
    ``port`` and ``distance`` fields are filled in on receipt and are never
    serialized.
    """

    type: str
    sender_id: str
    sender_type: str = NodeType.UNKNOWN.value
    timestamp: int = 0
    target_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    remote_address: str = ""
    port: int = 0
    distance: float | None = None

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)
