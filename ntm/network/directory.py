"""Known-peer table and heartbeat broadcaster."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..clock import Clock, RepeatingTimer
from ..models import Message, NodeType, PeerNode, Port

if TYPE_CHECKING:
    from .bus import MessageBus

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL = 10.0
DEFAULT_LIVENESS_TIMEOUT = 30.0


class NodeDirectory:
    """Every peer this node has ever heard from.

    Entries are never evicted; liveness is a filter applied at query time.
    """

    def __init__(self, clock: Clock, liveness_timeout: float = DEFAULT_LIVENESS_TIMEOUT) -> None:
        self._clock = clock
        self.liveness_timeout = liveness_timeout
        self._nodes: dict[str, PeerNode] = {}

    def observe(self, message: Message) -> PeerNode | None:
        """Create or refresh the sender's entry from an inbound message."""
        if not message.sender_id:
            return None
        node = self._nodes.get(message.sender_id)
        node_type = NodeType.parse(message.sender_type)
        now = self._clock.now()
        if node is None:
            node = PeerNode(
                node_id=message.sender_id,
                node_type=node_type,
                address=message.remote_address,
                last_seen=now,
                distance=message.distance,
            )
            self._nodes[node.node_id] = node
            logger.info("Discovered %s node %s", node_type.value, node.node_id)
        else:
            node.node_type = node_type
            node.address = message.remote_address or node.address
            node.last_seen = now
            node.distance = message.distance
        return node

    def get(self, node_id: str) -> PeerNode | None:
        return self._nodes.get(node_id)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def all(self) -> list[PeerNode]:
        return list(self._nodes.values())

    def is_online(self, node: PeerNode, timeout: float | None = None) -> bool:
        timeout = self.liveness_timeout if timeout is None else timeout
        return self._clock.now() - node.last_seen < timeout

    def get_online(self, timeout: float | None = None) -> list[PeerNode]:
        """Peers heard from within the last *timeout* seconds."""
        return [n for n in self._nodes.values() if self.is_online(n, timeout)]

    def get_status(self) -> dict[str, Any]:
        return {
            "known": len(self._nodes),
            "online": len(self.get_online()),
            "nodes": [n.to_dict() | {"online": self.is_online(n)} for n in self._nodes.values()],
        }


class Heartbeat:
    """Broadcasts ``heartbeat`` on a repeating timer so peers see this node."""

    def __init__(
        self,
        bus: MessageBus,
        clock: Clock,
        interval: float = DEFAULT_HEARTBEAT_INTERVAL,
    ) -> None:
        self._bus = bus
        self._clock = clock
        self._started_at = clock.now()
        self._timer = RepeatingTimer(interval, self.beat, clock=clock, name="heartbeat")

    @property
    def running(self) -> bool:
        return self._timer.running

    @property
    def interval(self) -> float:
        return self._timer.interval

    def start(self, interval: float | None = None) -> None:
        """Start beating; restarts the schedule when already running."""
        self._timer.start(interval)
        logger.info("Heartbeat started (interval %.0fs)", self._timer.interval)

    def stop(self) -> None:
        if self._timer.running:
            self._timer.stop()
            logger.info("Heartbeat stopped")

    def beat(self) -> None:
        self._bus.broadcast(
            "heartbeat",
            {"status": "online", "uptime": self._clock.now() - self._started_at},
            port=Port.HEARTBEAT,
        )
