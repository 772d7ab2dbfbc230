"""In-process network with distance-limited range and packet loss.

Every :class:`SimulatedTransport` has a position and a signal strength.  A
packet reaches a listener only when the listener has the port open, lies
within the sender's strength, and survives the network's loss roll.  Linked
tunnels come in pairs and ignore range and loss entirely.
"""

from __future__ import annotations

import itertools
import logging
import math
import random
from typing import Iterable

from .transport import LINKED_PORT, InboundPacket, Transport, Tunnel

logger = logging.getLogger(__name__)

DEFAULT_STRENGTH = 400.0


class SimulatedNetwork:
    """Shared medium connecting simulated transports."""

    def __init__(self, loss_rate: float = 0.0, seed: int | None = None) -> None:
        self.loss_rate = loss_rate
        self._rng = random.Random(seed)
        self._transports: dict[str, SimulatedTransport] = {}
        self._counter = itertools.count(1)
        self.delivered = 0
        self.dropped = 0

    def create_transport(
        self,
        position: tuple[float, float, float] = (0.0, 64.0, 0.0),
        strength: float = DEFAULT_STRENGTH,
        address: str | None = None,
    ) -> SimulatedTransport:
        if address is None:
            address = f"modem-{next(self._counter):04d}"
        transport = SimulatedTransport(self, address, position, strength)
        self._transports[address] = transport
        return transport

    def create_linked_pair(self) -> tuple[SimulatedTunnel, SimulatedTunnel]:
        channel = f"link-{next(self._counter):04d}"
        a = SimulatedTunnel(f"{channel}-a")
        b = SimulatedTunnel(f"{channel}-b")
        a.peer, b.peer = b, a
        return a, b

    def detach(self, address: str) -> None:
        self._transports.pop(address, None)

    @staticmethod
    def distance(a: SimulatedTransport, b: SimulatedTransport) -> float:
        return math.dist(a.position, b.position)

    def _lost(self) -> bool:
        return self.loss_rate > 0 and self._rng.random() < self.loss_rate

    def _route(self, sender: SimulatedTransport, receiver: SimulatedTransport, port: int, data: bytes) -> None:
        if receiver is sender or not receiver.listening(port):
            return
        distance = self.distance(sender, receiver)
        if distance > sender.strength or self._lost():
            self.dropped += 1
            logger.debug("Dropped packet %s -> %s on port %d", sender.address, receiver.address, port)
            return
        self.delivered += 1
        receiver._deliver(InboundPacket(sender.address, port, data, distance=distance))

    def broadcast(self, sender: SimulatedTransport, port: int, data: bytes) -> None:
        for receiver in list(self._transports.values()):
            self._route(sender, receiver, port, data)

    def unicast(self, sender: SimulatedTransport, address: str, port: int, data: bytes) -> None:
        receiver = self._transports.get(address)
        if receiver is None:
            self.dropped += 1
            logger.debug("No transport at %s", address)
            return
        self._route(sender, receiver, port, data)


class SimulatedTransport(Transport):
    """A wireless modem attached to a :class:`SimulatedNetwork`."""

    def __init__(
        self,
        network: SimulatedNetwork,
        address: str,
        position: tuple[float, float, float],
        strength: float,
    ) -> None:
        super().__init__()
        self.network = network
        self.address = address
        self.position = position
        self.strength = strength
        self._ports: set[int] = set()

    def listening(self, port: int) -> bool:
        return port in self._ports

    async def open(self, ports: Iterable[int]) -> None:
        self._ports.update(ports)

    async def close(self) -> None:
        self._ports.clear()

    def broadcast(self, port: int, data: bytes) -> None:
        self.network.broadcast(self, port, data)

    def send(self, address: str, port: int, data: bytes) -> None:
        self.network.unicast(self, address, port, data)


class SimulatedTunnel(Tunnel):
    """One end of a linked pair."""

    def __init__(self, address: str) -> None:
        super().__init__()
        self.address = address
        self.peer: SimulatedTunnel | None = None
        self._open = False

    async def open(self) -> None:
        self._open = True

    async def close(self) -> None:
        self._open = False

    def send(self, data: bytes) -> None:
        peer = self.peer
        if peer is None or not peer._open:
            logger.debug("Linked peer of %s is not listening", self.address)
            return
        peer._deliver(InboundPacket(self.address, LINKED_PORT, data, distance=0.0, linked=True))
