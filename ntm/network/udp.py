"""UDP modem for running nodes as separate processes on one LAN.

All logical ports share a single UDP socket; each datagram carries a
two-byte big-endian logical port ahead of the message bytes.  Broadcasts go
to the configured broadcast address on the shared UDP port, so every node
on the segment must use the same ``udp_port``.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import struct
from typing import Iterable

from ..errors import MalformedMessage
from .transport import InboundPacket, Transport

logger = logging.getLogger(__name__)

DEFAULT_UDP_PORT = 47100
_HEADER = struct.Struct(">H")


def pack_datagram(port: int, data: bytes) -> bytes:
    return _HEADER.pack(port) + data


def unpack_datagram(raw: bytes) -> tuple[int, bytes]:
    if len(raw) < _HEADER.size:
        raise MalformedMessage("Datagram shorter than header")
    (port,) = _HEADER.unpack_from(raw)
    return port, raw[_HEADER.size:]


def format_address(host: str, port: int) -> str:
    return f"{host}:{port}"


def parse_address(address: str) -> tuple[str, int]:
    host, _, port = address.rpartition(":")
    if not host or not port.isdigit():
        raise ValueError(f"Invalid UDP address: {address!r}")
    return host, int(port)


class _DatagramProtocol(asyncio.DatagramProtocol):
    def __init__(self, owner: UdpTransport) -> None:
        self._owner = owner

    def datagram_received(self, data: bytes, addr: tuple) -> None:
        self._owner._on_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        logger.debug("UDP error: %s", exc)


class UdpTransport(Transport):
    """Broadcast-capable UDP socket exposing the modem interface."""

    def __init__(
        self,
        udp_port: int = DEFAULT_UDP_PORT,
        bind_host: str = "0.0.0.0",
        broadcast_address: str = "255.255.255.255",
    ) -> None:
        super().__init__()
        self.udp_port = udp_port
        self.bind_host = bind_host
        self.broadcast_address = broadcast_address
        self._ports: set[int] = set()
        self._transport: asyncio.DatagramTransport | None = None

    async def open(self, ports: Iterable[int]) -> None:
        self._ports.update(ports)
        if self._transport is not None:
            return
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if hasattr(socket, "SO_REUSEPORT"):
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            except OSError:
                logger.debug("SO_REUSEPORT not supported")
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.bind((self.bind_host, self.udp_port))
        sock.setblocking(False)

        loop = asyncio.get_running_loop()
        self._transport, _ = await loop.create_datagram_endpoint(
            lambda: _DatagramProtocol(self), sock=sock,
        )
        host, port = sock.getsockname()[:2]
        self.udp_port = port
        self.address = format_address(host, port)
        logger.info("UDP modem listening on %s", self.address)

    async def close(self) -> None:
        self._ports.clear()
        if self._transport is not None:
            self._transport.close()
            self._transport = None

    def _on_datagram(self, raw: bytes, addr: tuple) -> None:
        try:
            port, data = unpack_datagram(raw)
        except MalformedMessage:
            logger.debug("Dropped short datagram from %s", addr)
            return
        if port not in self._ports:
            return
        self._deliver(InboundPacket(format_address(addr[0], addr[1]), port, data))

    def _sendto(self, data: bytes, target: tuple[str, int]) -> None:
        if self._transport is None:
            raise ConnectionError("UDP modem is not open")
        self._transport.sendto(data, target)

    def broadcast(self, port: int, data: bytes) -> None:
        self._sendto(pack_datagram(port, data), (self.broadcast_address, self.udp_port))

    def send(self, address: str, port: int, data: bytes) -> None:
        self._sendto(pack_datagram(port, data), parse_address(address))
