"""Transport capability interfaces.

A node has up to two transports: a *modem*, which is ranged, lossy and
port-multiplexed, and a *tunnel*, which is a point-to-point linked channel
with unlimited range.  Both push inbound datagrams to a single receiver
callback.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Iterable

# Port reported for packets that arrive over a tunnel.
LINKED_PORT = 0


@dataclass(frozen=True)
class InboundPacket:
    sender_address: str
    port: int
    data: bytes
    distance: float | None = None
    linked: bool = False


PacketReceiver = Callable[[InboundPacket], None]


class Transport(ABC):
    """Ranged broadcast/unicast modem."""

    address: str = ""

    def __init__(self) -> None:
        self._receiver: PacketReceiver | None = None

    def set_receiver(self, receiver: PacketReceiver | None) -> None:
        self._receiver = receiver

    def _deliver(self, packet: InboundPacket) -> None:
        if self._receiver is not None:
            self._receiver(packet)

    @abstractmethod
    async def open(self, ports: Iterable[int]) -> None:
        """Start listening on *ports*."""

    @abstractmethod
    async def close(self) -> None:
        """Stop listening and release resources."""

    @abstractmethod
    def broadcast(self, port: int, data: bytes) -> None:
        """Send *data* to every reachable listener on *port*."""

    @abstractmethod
    def send(self, address: str, port: int, data: bytes) -> None:
        """Send *data* to one address on *port*."""


class Tunnel(ABC):
    """Linked point-to-point channel."""

    def __init__(self) -> None:
        self._receiver: PacketReceiver | None = None

    def set_receiver(self, receiver: PacketReceiver | None) -> None:
        self._receiver = receiver

    def _deliver(self, packet: InboundPacket) -> None:
        if self._receiver is not None:
            self._receiver(packet)

    async def open(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @abstractmethod
    def send(self, data: bytes) -> None:
        """Send *data* to the linked peer."""
