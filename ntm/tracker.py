"""Radar contact tracking.

Each cycle pulls detections from every registered radar, classifies them,
correlates them with the previous cycle's tracks by a coarse position key
and estimates velocity.  Contacts that match no existing track raise a
``new_contact`` alert.  The track table only ever holds what the latest
cycle saw.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from .clock import Clock, RepeatingTimer
from .devices.base import RADAR, HardwareProvider, RadarSensor
from .errors import UnknownDevice
from .models import (
    MISSILE_BLIPS,
    PLAYER_BLIP,
    SHELL_BLIP,
    Detection,
    ThreatLevel,
    TrackedEntity,
    Vector,
    blip_type_name,
    classify_threat,
)

logger = logging.getLogger(__name__)

AlertCallback = Callable[[str, dict], None]

NEW_CONTACT = "new_contact"
LARGE_RADAR_RANGE = 1500


@dataclass
class RadarInfo:
    index: int
    address: str
    driver: RadarSensor
    range: float
    position: Vector

    @property
    def is_large(self) -> bool:
        return self.range > LARGE_RADAR_RANGE


def track_key(type_name: str, position: Vector) -> str:
    """Correlation key: type name plus position rounded to whole blocks."""
    return f"{type_name}_{position.x:.0f}_{position.y:.0f}_{position.z:.0f}"


# ── Filters ───────────────────────────────────────────────────────


def filter_by_category(entities: Iterable, blip_levels: Iterable[int]) -> list:
    levels = set(blip_levels)
    return [e for e in entities if e.blip_level in levels]


def filter_by_player(entities: Iterable, is_player: bool = True) -> list:
    return [e for e in entities if e.is_player == is_player]


def filter_by_min_threat(entities: Iterable, min_level: ThreatLevel) -> list:
    return [e for e in entities if e.threat_level >= min_level]


def filter_entities(entities: Iterable, filter_type: str) -> list:
    """Named filters: missiles, players, shells, threats, critical."""
    entities = list(entities)
    if filter_type == "missiles":
        return filter_by_category(entities, MISSILE_BLIPS)
    if filter_type == "players":
        return filter_by_player(entities)
    if filter_type == "shells":
        return filter_by_category(entities, [SHELL_BLIP])
    if filter_type == "threats":
        return filter_by_min_threat(entities, ThreatLevel.MEDIUM)
    if filter_type == "critical":
        return filter_by_min_threat(entities, ThreatLevel.CRITICAL)
    raise ValueError(f"Unknown filter: {filter_type}")


class ContactTracker:
    """Correlates radar detections into tracks and raises alerts."""

    def __init__(
        self,
        hardware: HardwareProvider,
        clock: Clock,
        monitor_interval: float = 1.0,
    ) -> None:
        self._hardware = hardware
        self._clock = clock
        self._sensors: list[RadarInfo] = []
        self._tracks: dict[str, TrackedEntity] = {}
        self._alert_handlers: dict[str, list[AlertCallback]] = {}
        self._monitor = RepeatingTimer(
            monitor_interval, self.update_tracking, clock=clock, name="radar-monitor"
        )

    # ── Sensors ────────────────────────────────────────────────────

    def scan_sensors(self) -> int:
        self._sensors = []
        for address in self._hardware.list_components(RADAR):
            self.add_sensor(address)
        logger.info("Found %d radar(s)", len(self._sensors))
        return len(self._sensors)

    def add_sensor(self, address: str) -> RadarInfo:
        driver = self._hardware.proxy(address)
        if driver is None:
            raise UnknownDevice(address)
        info = RadarInfo(
            index=len(self._sensors) + 1,
            address=address,
            driver=driver,
            range=float(driver.get_range()),
            position=Vector(*driver.get_position()),
        )
        self._sensors.append(info)
        logger.debug("Radar %d at %s (range %.0f)", info.index, address, info.range)
        return info

    @property
    def sensors(self) -> list[RadarInfo]:
        return list(self._sensors)

    def sensor(self, index: int) -> RadarInfo:
        if 1 <= index <= len(self._sensors):
            return self._sensors[index - 1]
        raise UnknownDevice(f"radar_{index}")

    def configure(self, index: int = 1, **settings: bool) -> None:
        """Update detection settings (missiles, shells, players, smart)."""
        self.sensor(index).driver.set_settings(**settings)
        logger.info("Radar %d settings updated: %s", index, settings)

    def get_settings(self, index: int = 1) -> dict[str, bool]:
        return self.sensor(index).driver.get_settings()

    def is_jammed(self, index: int = 1) -> bool:
        return bool(self.sensor(index).driver.is_jammed())

    def get_energy(self, index: int = 1) -> tuple[float, float]:
        return self.sensor(index).driver.get_energy()

    # ── Scanning ───────────────────────────────────────────────────

    def scan(self, index: int = 1) -> list[Detection]:
        """Pull and classify the current detections of one radar."""
        info = self.sensor(index)
        detections: list[Detection] = []
        for i in range(1, int(info.driver.get_contact_count()) + 1):
            row = info.driver.get_contact(i)
            if not row:
                continue
            try:
                blip = int(row["blip_level"])
                position = Vector(float(row["x"]), float(row["y"]), float(row["z"]))
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping invalid contact row %d on radar %d", i, index)
                continue
            detections.append(Detection(
                index=i,
                blip_level=blip,
                position=position,
                is_player=bool(row.get("is_player", blip == PLAYER_BLIP)),
                name=str(row.get("name", "")),
                type_name=blip_type_name(blip),
                threat_level=classify_threat(blip),
                distance=position.distance_to(info.position),
            ))
        return detections

    def update_tracking(self) -> list[TrackedEntity]:
        """Run one tracking cycle over every radar and replace the track table."""
        now = self._clock.now()
        current: dict[str, TrackedEntity] = {}

        for info in self._sensors:
            for det in self.scan(info.index):
                key = track_key(det.type_name, det.position)
                if key in current:
                    # overlapping radars, first report wins
                    continue
                existing = self._tracks.get(key)
                if existing is not None:
                    dt = now - existing.last_seen
                    velocity = existing.velocity
                    if dt > 0:
                        velocity = (det.position - existing.position).scale(1.0 / dt)
                    entity = TrackedEntity(
                        track_id=existing.track_id,
                        kind=det.type_name,
                        blip_level=det.blip_level,
                        position=det.position,
                        threat_level=det.threat_level,
                        first_seen=existing.first_seen,
                        last_seen=now,
                        sensor_index=info.index,
                        is_player=det.is_player,
                        name=det.name,
                        distance=det.distance,
                        velocity=velocity,
                    )
                else:
                    entity = TrackedEntity(
                        track_id=key,
                        kind=det.type_name,
                        blip_level=det.blip_level,
                        position=det.position,
                        threat_level=det.threat_level,
                        first_seen=now,
                        last_seen=now,
                        sensor_index=info.index,
                        is_player=det.is_player,
                        name=det.name,
                        distance=det.distance,
                    )
                current[key] = entity

        previous = self._tracks
        self._tracks = current
        for key, entity in current.items():
            if key not in previous:
                self.trigger_alert(NEW_CONTACT, entity.to_dict())
        return list(current.values())

    # ── Queries ────────────────────────────────────────────────────

    @property
    def tracks(self) -> dict[str, TrackedEntity]:
        return dict(self._tracks)

    def get_tracked_threats(self, min_level: ThreatLevel = ThreatLevel.LOW) -> list[TrackedEntity]:
        """Non-player tracks at or above *min_level*, most dangerous first."""
        threats = [
            t for t in self._tracks.values()
            if not t.is_player and t.threat_level >= min_level
        ]
        threats.sort(key=lambda t: t.threat_level, reverse=True)
        return threats

    def get_highest_threat(self, entities: Iterable | None = None) -> Any | None:
        candidates = list(self._tracks.values() if entities is None else entities)
        if not candidates:
            return None
        return max(candidates, key=lambda e: e.threat_level)

    # ── Alerts ─────────────────────────────────────────────────────

    def on_alert(self, alert_type: str, callback: AlertCallback) -> None:
        """Register *callback* for *alert_type*, or ``"*"`` for every alert."""
        self._alert_handlers.setdefault(alert_type, []).append(callback)

    def trigger_alert(self, alert_type: str, data: dict) -> None:
        if alert_type == NEW_CONTACT:
            logger.warning(
                "New contact: %s (threat %s) at %.0f blocks",
                data.get("kind"),
                ThreatLevel(data.get("threat_level", ThreatLevel.LOW)).name,
                data.get("distance", 0.0),
            )
        handlers = self._alert_handlers.get(alert_type, []) + self._alert_handlers.get("*", [])
        for handler in handlers:
            try:
                handler(alert_type, data)
            except Exception:
                logger.exception("Alert handler error for %s", alert_type)

    # ── Monitoring ─────────────────────────────────────────────────

    def start_monitoring(self, interval: float | None = None) -> None:
        self._monitor.start(interval)
        logger.info("Radar monitoring started (interval %.1fs)", self._monitor.interval)

    def stop_monitoring(self) -> None:
        if self._monitor.running:
            self._monitor.stop()
            logger.info("Radar monitoring stopped")

    @property
    def is_monitoring(self) -> bool:
        return self._monitor.running

    def get_status(self) -> dict[str, Any]:
        radars = []
        for info in self._sensors:
            radars.append({
                "index": info.index,
                "address": info.address,
                "range": info.range,
                "is_large": info.is_large,
                "jammed": bool(info.driver.is_jammed()),
                "energy": info.driver.get_energy(),
                "settings": info.driver.get_settings(),
            })
        highest = self.get_highest_threat()
        return {
            "radars": radars,
            "monitoring": self.is_monitoring,
            "tracked": len(self._tracks),
            "threats": len(self.get_tracked_threats()),
            "highest_threat": highest.to_dict() if highest else None,
        }
