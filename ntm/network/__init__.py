"""Node-to-node messaging: transports, wire codec, bus and directory."""

from .bus import MessageBus
from .directory import Heartbeat, NodeDirectory
from .transport import InboundPacket, Transport, Tunnel

__all__ = [
    "Heartbeat",
    "InboundPacket",
    "MessageBus",
    "NodeDirectory",
    "Transport",
    "Tunnel",
]
