"""Per-node context wiring devices, radar and messaging together.

A node owns exactly one of each component; nothing is module-global, so
any number of nodes can share one process (and one simulated network).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Sequence

from .clock import Clock, SystemClock
from .config import NodeConfig
from .devices.base import HardwareProvider
from .devices.registry import DeviceRegistry
from .errors import NoDevices, UnknownDevice
from .models import Coordinate, Message, NodeType, Port
from .network.bus import MessageBus, MessageHandler
from .network.directory import Heartbeat, NodeDirectory
from .network.transport import Transport, Tunnel
from .orchestrator import CommandOrchestrator, FireOptions, VolleyResult
from .tracker import NEW_CONTACT, AlertCallback, ContactTracker

logger = logging.getLogger(__name__)

INCOMING_THREAT = "incoming_threat"


class NodeContext:
    """One NTM node: registry, tracker, directory, bus and orchestrator."""

    def __init__(
        self,
        config: NodeConfig,
        hardware: HardwareProvider,
        *,
        modem: Transport | None = None,
        tunnel: Tunnel | None = None,
        clock: Clock | None = None,
    ) -> None:
        if not config.node_id:
            config.node_id = config.generate_id()
        self.config = config
        self.clock = clock or SystemClock()

        self.registry = DeviceRegistry(hardware)
        self.tracker = ContactTracker(hardware, self.clock, config.monitor_interval)
        self.directory = NodeDirectory(self.clock, config.liveness_timeout)
        self.bus = MessageBus(
            config.node_id,
            config.node_type,
            self.directory,
            self.clock,
            modem=modem,
            tunnel=tunnel,
        )
        self.heartbeat = Heartbeat(self.bus, self.clock, config.heartbeat_interval)
        self.orchestrator = CommandOrchestrator(
            self.registry,
            self.clock,
            self.bus,
            activation_delay=config.activation_delay,
            default_y=config.default_y,
            auto_fire=config.auto_fire,
        )
        self.peer_status: dict[str, dict[str, Any]] = {}
        self._running = False
        self._register_handlers()
        self.tracker.on_alert(NEW_CONTACT, self._forward_contact)

    @property
    def node_id(self) -> str:
        return self.config.node_id

    @property
    def running(self) -> bool:
        return self._running

    # ── Lifecycle ──────────────────────────────────────────────────

    async def start(self) -> None:
        logger.info("=== NTM node %s (%s) ===", self.node_id, self.config.node_type)
        self.registry.scan()
        if self.config.device_config_path and Path(self.config.device_config_path).exists():
            self.registry.load_config(self.config.device_config_path)
        self.tracker.scan_sensors()

        if self.config.node_type == NodeType.BATTERY.value and len(self.registry) == 0:
            raise NoDevices("No artillery found")

        await self.bus.start()
        self.heartbeat.start()
        if self.config.monitor_on_start and self.tracker.sensors:
            self.tracker.start_monitoring()
        self._running = True
        logger.info(
            "Node %s ready: %d batteries, %d radars",
            self.node_id, len(self.registry), len(self.tracker.sensors),
        )

    async def stop(self) -> None:
        if not self._running:
            return
        logger.info("Shutting down node %s...", self.node_id)
        self._running = False
        self.tracker.stop_monitoring()
        self.heartbeat.stop()
        await self.bus.stop()

    # ── Handlers ───────────────────────────────────────────────────

    def _register_handlers(self) -> None:
        self.bus.on("fire_command", self.orchestrator.handle_fire_command)
        self.bus.on("fire_ack", self.orchestrator.handle_fire_ack)
        self.bus.on("status_request", self._on_status_request)
        self.bus.on("status_response", self._on_status_response)
        self.bus.on("configure", self._on_configure)

    def _on_status_request(self, msg: Message) -> None:
        if not self.config.report_status:
            return
        self.bus.send(msg.sender_id, "status_response", {"status": self.get_status()})

    def _on_status_response(self, msg: Message) -> None:
        self.peer_status[msg.sender_id] = msg.get("status", {})
        logger.debug("Status received from %s", msg.sender_id)

    def _on_configure(self, msg: Message) -> None:
        if msg.target_id and msg.target_id != self.node_id:
            return
        if "auto_fire" in msg.payload:
            self.config.auto_fire = bool(msg.payload["auto_fire"])
            self.orchestrator.auto_fire = self.config.auto_fire
            logger.info("Auto-fire %s", "enabled" if self.config.auto_fire else "disabled")
        if "report_status" in msg.payload:
            self.config.report_status = bool(msg.payload["report_status"])
        for key, enabled in (("enable_battery", True), ("disable_battery", False)):
            device_id = msg.payload.get(key)
            if device_id is None:
                continue
            try:
                self.registry.set_enabled(device_id, enabled)
            except UnknownDevice:
                logger.warning("Configure from %s names unknown battery %s", msg.sender_id, device_id)

    def _forward_contact(self, alert_type: str, data: dict) -> None:
        self.bus.broadcast(
            "alert",
            {"alert_type": INCOMING_THREAT, "alert_data": data},
            port=Port.ALERT,
        )

    # ── External surface ───────────────────────────────────────────

    def on_message(self, msg_type: str, handler: MessageHandler) -> None:
        self.bus.on(msg_type, handler)

    def on_alert(self, alert_type: str, callback: AlertCallback) -> None:
        self.tracker.on_alert(alert_type, callback)

    async def fire(
        self,
        target: Coordinate,
        device_ids: Iterable[str] | None = None,
        shot_delay: float = 0.0,
    ) -> VolleyResult:
        return await self.orchestrator.fire_volley(target, device_ids, shot_delay)

    async def fire_burst(
        self,
        target: Coordinate,
        volleys: int,
        volley_delay: float | None = None,
        shot_delay: float = 0.0,
    ) -> list[VolleyResult]:
        if volley_delay is None:
            volley_delay = self.config.volley_delay
        return await self.orchestrator.fire_volley_burst(target, volleys, volley_delay, shot_delay)

    async def walking_fire(
        self, targets: Sequence[Coordinate], delay: float | None = None
    ) -> list[VolleyResult]:
        if delay is None:
            delay = self.config.walk_delay
        return await self.orchestrator.walking_fire(targets, delay)

    def send_fire_command(
        self, node_id: str, target: Coordinate, options: FireOptions | None = None
    ) -> bool:
        return self.orchestrator.send_fire_command(node_id, target, options)

    def broadcast_fire_command(self, target: Coordinate, options: FireOptions | None = None) -> bool:
        return self.orchestrator.broadcast_fire_command(target, options)

    def request_status(self, node_id: str) -> bool:
        return self.bus.send(node_id, "status_request")

    def broadcast_status_request(self) -> bool:
        return self.bus.broadcast("status_request")

    def configure_peer(self, node_id: str, **settings: Any) -> bool:
        """Send a ``configure`` message (auto_fire, report_status, enable/disable_battery)."""
        return self.bus.send(node_id, "configure", settings)

    def get_status(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "node_type": self.config.node_type,
            "artillery": self.orchestrator.get_status(),
            "radar": self.tracker.get_status(),
            "network": self.bus.get_status() | {
                "known_nodes": len(self.directory),
                "online_nodes": len(self.directory.get_online()),
            },
        }
