"""Fire-intent orchestration.

:meth:`CommandOrchestrator.set_target` drives one device through the
enable / activate / aim / confirm protocol.  Volley, burst and walking-fire
patterns are first laid out as a :class:`FirePlan` of timed steps and then
run by a :class:`PlanExecutor`, so their timing can be inspected without
executing them and replayed against any :class:`~ntm.clock.Clock`.

No pattern is transactional: every device and target is attempted, and
per-device failures are reported in the result rather than raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from .clock import Clock
from .devices.registry import DeviceRegistry
from .errors import (
    ActivationFailed,
    BatteryDisabled,
    DeviceError,
    OutOfRange,
    TargetRejected,
    UnknownPeer,
)
from .models import Coordinate, DeviceKind, GROUND_LEVEL, Message, Port
from .network.bus import MessageBus

logger = logging.getLogger(__name__)

READBACK_TOLERANCE = 1.0
DEFAULT_ACTIVATION_DELAY = 0.1
DEFAULT_VOLLEY_DELAY = 2.0
DEFAULT_WALK_DELAY = 1.0

# Bounds applied to fire options received from peers
MAX_REMOTE_VOLLEYS = 10
MAX_REMOTE_DELAY = 60.0

# Range advisories (blocks) for targets entered by hand.
CANNON_MIN_RANGE = 32
ARTILLERY_MIN_RANGE = 250
MAX_RANGE = 3000


def aim_out_of_range(kind: DeviceKind, result: Any) -> bool:
    """Whether an ``aim`` return value means the target is out of range.

    Only cannons report range, and only through an explicit ``False``.
    """
    return kind is DeviceKind.CANNON and result is False


# ── Results ───────────────────────────────────────────────────────


@dataclass
class DeviceOutcome:
    device_id: str
    accepted: bool
    error: DeviceError | None = None

    @property
    def reason(self) -> str | None:
        return type(self.error).__name__ if self.error else None


@dataclass
class VolleyResult:
    target: Coordinate
    outcomes: dict[str, DeviceOutcome] = field(default_factory=dict)

    @property
    def accepted(self) -> dict[str, bool]:
        """Per-device accepted/rejected map."""
        return {k: o.accepted for k, o in self.outcomes.items()}

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes.values() if o.accepted)

    @property
    def failure_count(self) -> int:
        return len(self.outcomes) - self.success_count


# ── Plans ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class FireStep:
    offset: float
    device_id: str
    target: Coordinate
    volley: int = 0


@dataclass
class FirePlan:
    """Ordered, timed fire steps; offsets are seconds from plan start."""

    steps: list[FireStep] = field(default_factory=list)
    targets: list[Coordinate] = field(default_factory=list)

    @property
    def duration(self) -> float:
        return self.steps[-1].offset if self.steps else 0.0

    @property
    def volleys(self) -> int:
        return len(self.targets)


def plan_volley(
    target: Coordinate, device_ids: Sequence[str], shot_delay: float = 0.0, start: float = 0.0,
    volley: int = 0,
) -> FirePlan:
    """One shot per device, *shot_delay* apart, no delay after the last."""
    steps = [
        FireStep(start + i * shot_delay, device_id, target, volley)
        for i, device_id in enumerate(device_ids)
    ]
    return FirePlan(steps=steps, targets=[target])


def plan_burst(
    target: Coordinate,
    device_ids: Sequence[str],
    volleys: int,
    volley_delay: float = DEFAULT_VOLLEY_DELAY,
    shot_delay: float = 0.0,
) -> FirePlan:
    """*volleys* repeated volleys, *volley_delay* between the end of one and the next."""
    plan = FirePlan()
    start = 0.0
    span = max(len(device_ids) - 1, 0) * shot_delay
    for v in range(max(volleys, 0)):
        single = plan_volley(target, device_ids, shot_delay, start, volley=v)
        plan.steps.extend(single.steps)
        plan.targets.append(target)
        start += span + volley_delay
    return plan


def plan_walk(
    targets: Sequence[Coordinate], device_ids: Sequence[str], delay: float = DEFAULT_WALK_DELAY
) -> FirePlan:
    """One simultaneous volley per target, *delay* between targets."""
    plan = FirePlan()
    for v, target in enumerate(targets):
        single = plan_volley(target, device_ids, 0.0, v * delay, volley=v)
        plan.steps.extend(single.steps)
        plan.targets.append(target)
    return plan


class PlanExecutor:
    """Runs a :class:`FirePlan` step by step on a clock."""

    def __init__(self, orchestrator: CommandOrchestrator, clock: Clock) -> None:
        self._orchestrator = orchestrator
        self._clock = clock

    async def run(self, plan: FirePlan) -> list[VolleyResult]:
        results = [VolleyResult(target) for target in plan.targets]
        elapsed = 0.0
        for step in plan.steps:
            wait = step.offset - elapsed
            if wait > 0:
                await self._clock.sleep(wait)
                elapsed = step.offset
            outcome = await self._orchestrator.engage(step.device_id, step.target)
            results[step.volley].outcomes[step.device_id] = outcome
        return results


# ── Fire commands ─────────────────────────────────────────────────


@dataclass
class FireOptions:
    volleys: int = 1
    volley_delay: float = DEFAULT_VOLLEY_DELAY
    shot_delay: float = 0.0

    def to_payload(self) -> dict[str, Any]:
        return {
            "volleys": self.volleys,
            "volley_delay": self.volley_delay,
            "shot_delay": self.shot_delay,
        }

    @classmethod
    def from_payload(cls, data: Any) -> FireOptions:
        if not isinstance(data, dict):
            return cls()
        try:
            volleys = int(data.get("volleys", 1))
            volley_delay = float(data.get("volley_delay", DEFAULT_VOLLEY_DELAY))
            shot_delay = float(data.get("shot_delay", 0.0))
        except (TypeError, ValueError, OverflowError):
            logger.warning("Ignoring invalid fire options: %r", data)
            return cls()
        options = cls(
            volleys=min(max(volleys, 1), MAX_REMOTE_VOLLEYS),
            volley_delay=_clamp_delay(volley_delay),
            shot_delay=_clamp_delay(shot_delay),
        )
        if options != cls(volleys, volley_delay, shot_delay):
            logger.warning("Fire options clamped: %r -> %r", data, options)
        return options


def _clamp_delay(value: float) -> float:
    if not value > 0:
        return 0.0
    return min(value, MAX_REMOTE_DELAY)


class CommandOrchestrator:
    """Turns fire intents into device actions, locally or on remote nodes."""

    def __init__(
        self,
        registry: DeviceRegistry,
        clock: Clock,
        bus: MessageBus | None = None,
        *,
        activation_delay: float = DEFAULT_ACTIVATION_DELAY,
        default_y: int = GROUND_LEVEL,
        auto_fire: bool = True,
    ) -> None:
        self.registry = registry
        self.bus = bus
        self.activation_delay = activation_delay
        self.default_y = default_y
        self.auto_fire = auto_fire
        self._clock = clock
        self._executor = PlanExecutor(self, clock)
        self.acknowledgements: dict[str, dict[str, Any]] = {}

    # ── Single device ──────────────────────────────────────────────

    async def set_target(self, device_id: str, target: Coordinate) -> bool:
        """Aim one device and return whether it confirmed the target.

        Raises :class:`UnknownDevice`, :class:`BatteryDisabled`,
        :class:`ActivationFailed` or :class:`OutOfRange`.
        """
        device = self.registry.get(device_id)
        driver = self.registry.driver(device_id)
        if not device.enabled:
            raise BatteryDisabled(device_id)

        if not driver.is_active():
            driver.set_active(True)
            await self._clock.sleep(self.activation_delay)
            if not driver.is_active():
                raise ActivationFailed(device_id)
            logger.info("Activated %s", device_id)

        current, capacity = driver.get_energy()
        if current <= 0:
            logger.warning("%s has no energy (%.0f/%.0f)", device_id, current, capacity)
        logger.debug("%s angle before aim: %s", device_id, driver.get_angle())

        result = driver.aim(target.x, target.y, target.z)
        if aim_out_of_range(device.kind, result):
            raise OutOfRange(device_id)
        device.last_target = target

        self._repair_targeting(device_id, driver)
        self._range_advisory(device_id, device.kind, driver.get_position(), target)

        current = driver.get_current_target()
        confirmed = current is not None and all(
            abs(a - b) < READBACK_TOLERANCE
            for a, b in zip(current, (target.x, target.y, target.z))
        )
        if confirmed:
            if driver.is_aligned():
                logger.info("%s aligned on %s", device_id, target)
            else:
                logger.info("%s targeting %s", device_id, target)
        else:
            logger.warning("%s did not confirm %s (reports %s)", device_id, target, current)
        return confirmed

    async def engage(self, device_id: str, target: Coordinate) -> DeviceOutcome:
        """:meth:`set_target` with failures folded into the outcome."""
        try:
            confirmed = await self.set_target(device_id, target)
        except DeviceError as exc:
            logger.warning("%s", exc)
            return DeviceOutcome(device_id, False, exc)
        if not confirmed:
            return DeviceOutcome(device_id, False, TargetRejected(device_id))
        return DeviceOutcome(device_id, True)

    @staticmethod
    def _repair_targeting(device_id: str, driver: Any) -> None:
        flags = driver.get_targeting()
        if flags and not any(flags.values()):
            logger.warning("%s had all targeting disabled, enabling players", device_id)
            driver.set_targeting(players=True)

    @staticmethod
    def _range_advisory(
        device_id: str, kind: DeviceKind, position: Any, target: Coordinate
    ) -> None:
        if not position:
            return
        distance = target.distance_to(Coordinate(*(int(p) for p in position)))
        if kind is DeviceKind.CANNON and distance < CANNON_MIN_RANGE:
            logger.warning("%s: target too close for cannon (%.0f blocks)", device_id, distance)
        elif kind is not DeviceKind.CANNON and distance < ARTILLERY_MIN_RANGE:
            logger.warning("%s: target too close for artillery (%.0f blocks)", device_id, distance)
        elif distance > MAX_RANGE:
            logger.warning("%s: target may be out of range (%.0f blocks)", device_id, distance)

    # ── Patterns ───────────────────────────────────────────────────

    def resolve_devices(self, device_ids: Iterable[str] | None = None) -> list[str]:
        """Explicit ids that exist, or every enabled device when none are given."""
        if device_ids is None:
            return self.registry.enabled_ids()
        resolved = []
        for device_id in device_ids:
            if device_id in self.registry:
                resolved.append(device_id)
            else:
                logger.warning("Skipping unknown device %s", device_id)
        return resolved

    async def run_plan(self, plan: FirePlan) -> list[VolleyResult]:
        return await self._executor.run(plan)

    async def fire_volley(
        self,
        target: Coordinate,
        device_ids: Iterable[str] | None = None,
        shot_delay: float = 0.0,
    ) -> VolleyResult:
        devices = self.resolve_devices(device_ids)
        logger.info("Firing volley of %d at %s", len(devices), target)
        results = await self.run_plan(plan_volley(target, devices, shot_delay))
        result = results[0]
        logger.info(
            "Volley complete: %d/%d accepted", result.success_count, len(result.outcomes)
        )
        return result

    async def fire_volley_burst(
        self,
        target: Coordinate,
        volleys: int,
        volley_delay: float = DEFAULT_VOLLEY_DELAY,
        shot_delay: float = 0.0,
        device_ids: Iterable[str] | None = None,
    ) -> list[VolleyResult]:
        devices = self.resolve_devices(device_ids)
        logger.info("Firing burst of %d volleys at %s", volleys, target)
        return await self.run_plan(plan_burst(target, devices, volleys, volley_delay, shot_delay))

    async def walking_fire(
        self,
        targets: Sequence[Coordinate],
        delay: float = DEFAULT_WALK_DELAY,
        device_ids: Iterable[str] | None = None,
    ) -> list[VolleyResult]:
        devices = self.resolve_devices(device_ids)
        logger.info("Walking fire across %d targets", len(targets))
        return await self.run_plan(plan_walk(targets, devices, delay))

    # ── Remote dispatch ────────────────────────────────────────────

    def _fire_payload(self, target: Coordinate, options: FireOptions | None) -> dict[str, Any]:
        return {"target": target.to_dict(), "options": (options or FireOptions()).to_payload()}

    def send_fire_command(
        self, node_id: str, target: Coordinate, options: FireOptions | None = None
    ) -> bool:
        """Unicast a fire command; raises :class:`UnknownPeer` for unseen nodes."""
        if self.bus is None:
            raise RuntimeError("No message bus attached")
        return self.bus.send(
            node_id, "fire_command", self._fire_payload(target, options), port=Port.ARTILLERY
        )

    def broadcast_fire_command(
        self, target: Coordinate, options: FireOptions | None = None
    ) -> bool:
        if self.bus is None:
            raise RuntimeError("No message bus attached")
        return self.bus.broadcast(
            "fire_command", self._fire_payload(target, options), port=Port.ARTILLERY
        )

    async def handle_fire_command(self, message: Message) -> list[VolleyResult] | None:
        """Execute an inbound fire command and acknowledge it to the sender."""
        if not self.auto_fire:
            logger.info("Auto-fire disabled, ignoring fire command from %s", message.sender_id)
            return None
        if self.bus is not None and message.target_id and message.target_id != self.bus.node_id:
            return None
        try:
            target = Coordinate.from_dict(message.get("target"), self.default_y)
        except ValueError as exc:
            logger.warning("Invalid fire command from %s: %s", message.sender_id, exc)
            return None

        options = FireOptions.from_payload(message.get("options"))
        logger.info("Fire command from %s: %s", message.sender_id, target)
        if options.volleys > 1:
            results = await self.fire_volley_burst(
                target, options.volleys, options.volley_delay, options.shot_delay
            )
        else:
            results = [await self.fire_volley(target, shot_delay=options.shot_delay)]

        self._acknowledge(message, target, results)
        return results

    def _acknowledge(
        self, message: Message, target: Coordinate, results: list[VolleyResult]
    ) -> None:
        if self.bus is None or not message.sender_id:
            return
        accepted: dict[str, bool] = {}
        for result in results:
            for device_id, ok in result.accepted.items():
                accepted[device_id] = accepted.get(device_id, False) or ok
        payload = {
            "success": any(accepted.values()),
            "target": target.to_dict(),
            "results": accepted,
        }
        try:
            self.bus.send(message.sender_id, "fire_ack", payload, port=Port.COMMAND)
        except UnknownPeer:
            logger.warning("Cannot acknowledge fire command: %s is unknown", message.sender_id)

    def handle_fire_ack(self, message: Message) -> None:
        self.acknowledgements[message.sender_id] = dict(message.payload)
        logger.info(
            "Fire ack from %s: success=%s", message.sender_id, message.get("success")
        )

    def get_status(self) -> dict[str, Any]:
        status = self.registry.get_status()
        status["auto_fire"] = self.auto_fire
        return status
