"""Tests for targeting, fire plans and fire-command handling."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from ntm.clock import VirtualClock
from ntm.devices.registry import DeviceRegistry
from ntm.devices.simulated import SimulatedArtillery, SimulatedHardware
from ntm.errors import (
    ActivationFailed,
    BatteryDisabled,
    OutOfRange,
    TargetRejected,
    UnknownDevice,
    UnknownPeer,
)
from ntm.models import Coordinate, DeviceKind, Message, Port
from ntm.orchestrator import (
    CommandOrchestrator,
    MAX_REMOTE_DELAY,
    MAX_REMOTE_VOLLEYS,
    FireOptions,
    aim_out_of_range,
    plan_burst,
    plan_volley,
    plan_walk,
)

TARGET = Coordinate(100, 64, 200)


def _setup(*guns: SimulatedArtillery, bus=None, clock=None):
    clock = clock or VirtualClock()
    hardware = SimulatedHardware()
    for gun in guns:
        hardware.add_artillery(gun)
    registry = DeviceRegistry(hardware)
    registry.scan()
    orchestrator = CommandOrchestrator(registry, clock, bus, activation_delay=0)
    return orchestrator, registry, clock


# ── set_target tests ──────────────────────────────────────────────


class TestSetTarget:
    @pytest.mark.asyncio
    async def test_empty_device_warns_with_capacity(self, caplog):
        orch, _, _ = _setup(SimulatedArtillery("cannon", energy=0.0, max_energy=5000.0))
        with caplog.at_level("WARNING", logger="ntm.orchestrator"):
            assert await orch.set_target("battery_1", TARGET) is True
        assert "battery_1 has no energy (0/5000)" in caplog.text

    @pytest.mark.asyncio
    async def test_confirmed_target(self):
        gun = SimulatedArtillery("cannon")
        orch, registry, _ = _setup(gun)
        assert await orch.set_target("battery_1", TARGET) is True
        assert registry.get("battery_1").last_target == TARGET
        assert gun.aim_calls == [(100, 64, 200)]

    @pytest.mark.asyncio
    async def test_disabled_device_never_aims(self):
        gun = SimulatedArtillery("cannon")
        orch, registry, _ = _setup(gun)
        registry.set_enabled("battery_1", False)
        with pytest.raises(BatteryDisabled):
            await orch.set_target("battery_1", TARGET)
        assert gun.aim_calls == []

    @pytest.mark.asyncio
    async def test_unknown_device(self):
        orch, _, _ = _setup()
        with pytest.raises(UnknownDevice):
            await orch.set_target("battery_7", TARGET)

    @pytest.mark.asyncio
    async def test_inactive_device_is_activated(self):
        gun = SimulatedArtillery("cannon", active=False)
        orch, _, _ = _setup(gun)
        assert await orch.set_target("battery_1", TARGET) is True
        assert gun.is_active()

    @pytest.mark.asyncio
    async def test_activation_waits_on_clock(self):
        gun = SimulatedArtillery("cannon", active=False)
        orch, _, clock = _setup(gun)
        orch.activation_delay = 0.1
        task = asyncio.create_task(orch.set_target("battery_1", TARGET))
        await clock.advance(0.05)
        assert not task.done()
        await clock.advance(0.05)
        assert await task is True

    @pytest.mark.asyncio
    async def test_activation_failure(self):
        gun = SimulatedArtillery("cannon", active=False, activation_works=False)
        orch, _, _ = _setup(gun)
        with pytest.raises(ActivationFailed):
            await orch.set_target("battery_1", TARGET)
        assert gun.aim_calls == []

    @pytest.mark.asyncio
    async def test_cannon_out_of_range(self):
        gun = SimulatedArtillery("cannon", (0, 64, 0), max_range=50)
        orch, registry, _ = _setup(gun)
        with pytest.raises(OutOfRange):
            await orch.set_target("battery_1", TARGET)
        assert registry.get("battery_1").last_target is None

    @pytest.mark.asyncio
    async def test_rocket_never_out_of_range(self):
        rocket = SimulatedArtillery("rocket", (0, 64, 0), max_range=50)
        orch, _, _ = _setup(rocket)
        # No range signal, but the readback still fails.
        assert await orch.set_target("battery_1", TARGET) is False

    @pytest.mark.asyncio
    async def test_readback_tolerance(self):
        close = SimulatedArtillery("cannon", readback_offset=0.5)
        far = SimulatedArtillery("cannon", readback_offset=1.0)
        orch, _, _ = _setup(close, far)
        assert await orch.set_target("battery_1", TARGET) is True
        assert await orch.set_target("battery_2", TARGET) is False

    @pytest.mark.asyncio
    async def test_targeting_flags_repaired(self):
        gun = SimulatedArtillery("cannon", targeting={"players": False, "mobs": False})
        orch, _, _ = _setup(gun)
        await orch.set_target("battery_1", TARGET)
        assert gun.targeting["players"] is True

    def test_aim_result_interpretation(self):
        assert aim_out_of_range(DeviceKind.CANNON, False) is True
        assert aim_out_of_range(DeviceKind.CANNON, None) is False
        assert aim_out_of_range(DeviceKind.ROCKET, False) is False
        assert aim_out_of_range(DeviceKind.UNKNOWN, False) is False


# ── Plan tests ────────────────────────────────────────────────────


class TestPlans:
    def test_volley_spacing(self):
        plan = plan_volley(TARGET, ["a", "b", "c"], shot_delay=0.5)
        assert [s.offset for s in plan.steps] == [0.0, 0.5, 1.0]
        assert plan.duration == 1.0

    def test_burst_spacing(self):
        plan = plan_burst(TARGET, ["a", "b"], volleys=3, volley_delay=2.0, shot_delay=0.5)
        assert [(s.offset, s.device_id, s.volley) for s in plan.steps] == [
            (0.0, "a", 0), (0.5, "b", 0),
            (2.5, "a", 1), (3.0, "b", 1),
            (5.0, "a", 2), (5.5, "b", 2),
        ]
        assert plan.volleys == 3

    def test_walk_spacing(self):
        targets = [Coordinate(0, 64, 0), Coordinate(10, 64, 0)]
        plan = plan_walk(targets, ["a", "b"], delay=1.5)
        assert [(s.offset, s.target) for s in plan.steps] == [
            (0.0, targets[0]), (0.0, targets[0]),
            (1.5, targets[1]), (1.5, targets[1]),
        ]

    def test_empty_device_list(self):
        assert plan_burst(TARGET, [], volleys=2).steps == []


# ── Pattern tests ─────────────────────────────────────────────────


class TestPatterns:
    @pytest.mark.asyncio
    async def test_volley_is_not_transactional(self):
        orch, registry, _ = _setup(
            SimulatedArtillery("cannon"),
            SimulatedArtillery("cannon"),
            SimulatedArtillery("cannon"),
        )
        registry.set_enabled("battery_2", False)
        result = await orch.fire_volley(TARGET, ["battery_1", "battery_2", "battery_3"])
        assert result.accepted == {"battery_1": True, "battery_2": False, "battery_3": True}
        assert isinstance(result.outcomes["battery_2"].error, BatteryDisabled)
        assert result.outcomes["battery_2"].reason == "BatteryDisabled"

    @pytest.mark.asyncio
    async def test_out_of_range_device_does_not_stop_volley(self):
        orch, _, _ = _setup(
            SimulatedArtillery("cannon"),
            SimulatedArtillery("cannon", (0.0, 64.0, 0.0), max_range=100.0),
            SimulatedArtillery("cannon"),
        )
        result = await orch.fire_volley(TARGET, ["battery_1", "battery_2", "battery_3"])
        assert result.accepted == {"battery_1": True, "battery_2": False, "battery_3": True}
        assert isinstance(result.outcomes["battery_2"].error, OutOfRange)

    @pytest.mark.asyncio
    async def test_volley_defaults_to_enabled_devices(self):
        orch, registry, _ = _setup(SimulatedArtillery("cannon"), SimulatedArtillery("cannon"))
        registry.set_enabled("battery_1", False)
        result = await orch.fire_volley(TARGET)
        assert list(result.accepted) == ["battery_2"]

    @pytest.mark.asyncio
    async def test_volley_skips_unknown_ids(self):
        orch, _, _ = _setup(SimulatedArtillery("cannon"))
        result = await orch.fire_volley(TARGET, ["battery_1", "ghost"])
        assert result.accepted == {"battery_1": True}

    @pytest.mark.asyncio
    async def test_rejected_readback_reported(self):
        orch, _, _ = _setup(SimulatedArtillery("cannon", readback_offset=5))
        result = await orch.fire_volley(TARGET)
        assert isinstance(result.outcomes["battery_1"].error, TargetRejected)

    @pytest.mark.asyncio
    async def test_burst_timing_on_virtual_clock(self):
        gun = SimulatedArtillery("cannon")
        orch, _, clock = _setup(gun)
        task = asyncio.create_task(orch.fire_volley_burst(TARGET, volleys=3, volley_delay=2.0))

        await clock.advance(0)
        assert len(gun.aim_calls) == 1
        await clock.advance(2)
        assert len(gun.aim_calls) == 2
        await clock.advance(2)
        assert len(gun.aim_calls) == 3

        results = await task
        assert len(results) == 3
        assert all(r.accepted == {"battery_1": True} for r in results)
        assert clock.now() == 4.0

    @pytest.mark.asyncio
    async def test_walking_fire(self):
        gun = SimulatedArtillery("cannon")
        orch, _, clock = _setup(gun)
        targets = [Coordinate(0, 64, 100), Coordinate(0, 64, 110), Coordinate(0, 64, 120)]
        task = asyncio.create_task(orch.walking_fire(targets, delay=1.0))
        await clock.advance(2)
        results = await task
        assert [r.target for r in results] == targets
        assert gun.aim_calls == [(0, 64, 100), (0, 64, 110), (0, 64, 120)]


# ── Fire command tests ────────────────────────────────────────────


def _fire_message(payload, sender="cmd", target_id=None):
    return Message("fire_command", sender, "command", 0, target_id, payload)


class TestFireCommands:
    def test_options_from_payload(self):
        opts = FireOptions.from_payload({"volleys": "3", "volley_delay": 1})
        assert (opts.volleys, opts.volley_delay, opts.shot_delay) == (3, 1.0, 0.0)
        assert FireOptions.from_payload(None) == FireOptions()
        assert FireOptions.from_payload({"volleys": "many"}) == FireOptions()

    def test_options_from_peer_are_bounded(self):
        opts = FireOptions.from_payload({
            "volleys": 100_000_000, "volley_delay": -5, "shot_delay": 1e9,
        })
        assert opts.volleys == MAX_REMOTE_VOLLEYS
        assert opts.volley_delay == 0.0
        assert opts.shot_delay == MAX_REMOTE_DELAY
        assert FireOptions.from_payload({"volleys": -3}).volleys == 1
        assert FireOptions.from_payload({"volley_delay": float("nan")}).volley_delay == 0.0

    def test_oversized_burst_plan_is_bounded(self):
        opts = FireOptions.from_payload({"volleys": 10**8, "shot_delay": -1})
        plan = plan_burst(TARGET, ["battery_1"], opts.volleys, opts.volley_delay, opts.shot_delay)
        assert len(plan.steps) == MAX_REMOTE_VOLLEYS
        assert all(step.offset >= 0 for step in plan.steps)

    def test_send_fire_command_unknown_peer(self):
        bus = MagicMock()
        bus.send.side_effect = UnknownPeer("nobody")
        orch, _, _ = _setup(bus=bus)
        with pytest.raises(UnknownPeer):
            orch.send_fire_command("nobody", TARGET)

    def test_broadcast_fire_command_payload(self):
        bus = MagicMock()
        orch, _, _ = _setup(bus=bus)
        orch.broadcast_fire_command(TARGET, FireOptions(volleys=2))
        args, kwargs = bus.broadcast.call_args
        assert args[0] == "fire_command"
        assert args[1]["target"] == {"x": 100, "y": 64, "z": 200}
        assert args[1]["options"]["volleys"] == 2
        assert kwargs["port"] == Port.ARTILLERY

    @pytest.mark.asyncio
    async def test_handle_sends_ack(self):
        bus = MagicMock()
        bus.node_id = "bat"
        orch, _, _ = _setup(SimulatedArtillery("cannon"), bus=bus)
        results = await orch.handle_fire_command(_fire_message({"target": {"x": 5, "z": 7}}))
        assert len(results) == 1
        assert results[0].target == Coordinate(5, 64, 7)

        args, kwargs = bus.send.call_args
        assert args[0] == "cmd"
        assert args[1] == "fire_ack"
        assert args[2] == {
            "success": True,
            "target": {"x": 5, "y": 64, "z": 7},
            "results": {"battery_1": True},
        }

    @pytest.mark.asyncio
    async def test_handle_ignores_other_target(self):
        bus = MagicMock()
        bus.node_id = "bat"
        gun = SimulatedArtillery("cannon")
        orch, _, _ = _setup(gun, bus=bus)
        msg = _fire_message({"target": {"x": 1, "z": 2}}, target_id="someone-else")
        assert await orch.handle_fire_command(msg) is None
        assert gun.aim_calls == []
        bus.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_handle_rejects_incomplete_target(self):
        bus = MagicMock()
        bus.node_id = "bat"
        orch, _, _ = _setup(SimulatedArtillery("cannon"), bus=bus)
        assert await orch.handle_fire_command(_fire_message({"target": {"x": 1}})) is None
        assert await orch.handle_fire_command(_fire_message({})) is None

    @pytest.mark.asyncio
    async def test_auto_fire_off(self):
        bus = MagicMock()
        bus.node_id = "bat"
        gun = SimulatedArtillery("cannon")
        orch, _, _ = _setup(gun, bus=bus)
        orch.auto_fire = False
        assert await orch.handle_fire_command(_fire_message({"target": {"x": 1, "z": 2}})) is None
        assert gun.aim_calls == []

    @pytest.mark.asyncio
    async def test_burst_option(self):
        bus = MagicMock()
        bus.node_id = "bat"
        orch, _, clock = _setup(SimulatedArtillery("cannon"), bus=bus)
        msg = _fire_message({
            "target": {"x": 1, "y": 70, "z": 2},
            "options": {"volleys": 2, "volley_delay": 3},
        })
        task = asyncio.create_task(orch.handle_fire_command(msg))
        await clock.advance(3)
        results = await task
        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_ack_to_unknown_sender_is_logged(self):
        bus = MagicMock()
        bus.node_id = "bat"
        bus.send.side_effect = UnknownPeer("cmd")
        orch, _, _ = _setup(SimulatedArtillery("cannon"), bus=bus)
        results = await orch.handle_fire_command(_fire_message({"target": {"x": 1, "z": 2}}))
        assert len(results) == 1

    def test_fire_ack_recorded(self):
        orch, _, _ = _setup()
        orch.handle_fire_ack(Message("fire_ack", "bat", "battery", 0, "cmd", {"success": True}))
        assert orch.acknowledgements == {"bat": {"success": True}}
