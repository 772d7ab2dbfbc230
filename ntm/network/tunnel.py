"""Linked channel over WebSocket.

One end listens and the other connects; after that the channel is
symmetric.  The connecting end reconnects with exponential backoff.  Sends
made while no peer is connected are dropped, like any other best-effort
traffic.
"""

from __future__ import annotations

import asyncio
import logging

import websockets
from websockets.asyncio.server import Server, ServerConnection, serve

from .transport import LINKED_PORT, InboundPacket, Tunnel

logger = logging.getLogger(__name__)


class WebSocketTunnel(Tunnel):
    """Point-to-point tunnel carried over a single WebSocket connection."""

    def __init__(
        self,
        url: str | None = None,
        *,
        listen_host: str = "0.0.0.0",
        listen_port: int | None = None,
    ) -> None:
        super().__init__()
        if (url is None) == (listen_port is None):
            raise ValueError("WebSocketTunnel needs exactly one of url or listen_port")
        self.url = url
        self.listen_host = listen_host
        self.listen_port = listen_port
        self._ws = None
        self._server: Server | None = None
        self._outbox: asyncio.Queue[bytes] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []
        self._reconnect_delay = 2
        self._max_reconnect_delay = 60

    @property
    def connected(self) -> bool:
        return self._ws is not None

    # ── Lifecycle ──────────────────────────────────────────────────

    async def open(self) -> None:
        if self._tasks:
            return
        if self.listen_port is not None:
            self._server = await serve(self._handle_peer, self.listen_host, self.listen_port)
            self.listen_port = next(iter(self._server.sockets)).getsockname()[1]
            logger.info("Tunnel listening on %s:%d", self.listen_host, self.listen_port)
        else:
            self._tasks.append(asyncio.create_task(self._connect_loop(), name="tunnel-connect"))
        self._tasks.append(asyncio.create_task(self._writer_loop(), name="tunnel-writer"))

    async def close(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    # ── Connection handling ────────────────────────────────────────

    async def _connect_loop(self) -> None:
        while True:
            try:
                async with websockets.connect(
                    self.url,
                    ping_interval=20,
                    ping_timeout=10,
                    close_timeout=5,
                ) as ws:
                    logger.info("Tunnel connected to %s", self.url)
                    self._reconnect_delay = 2
                    await self._serve_connection(ws)
            except (OSError, websockets.WebSocketException) as exc:
                logger.warning("Tunnel connection to %s failed: %s", self.url, exc)
            logger.info("Reconnecting tunnel in %ds...", self._reconnect_delay)
            await asyncio.sleep(self._reconnect_delay)
            self._reconnect_delay = min(self._reconnect_delay * 2, self._max_reconnect_delay)

    async def _handle_peer(self, ws: ServerConnection) -> None:
        if self._ws is not None:
            logger.warning("Replacing existing tunnel peer with %s", ws.remote_address)
            await self._ws.close()
        logger.info("Tunnel peer connected from %s", ws.remote_address)
        await self._serve_connection(ws)

    async def _serve_connection(self, ws) -> None:
        self._ws = ws
        peer = self.url or "tunnel-peer"
        try:
            async for raw in ws:
                data = raw.encode("utf-8") if isinstance(raw, str) else raw
                self._deliver(InboundPacket(peer, LINKED_PORT, data, distance=0.0, linked=True))
        except websockets.ConnectionClosed:
            logger.info("Tunnel connection closed")
        finally:
            if self._ws is ws:
                self._ws = None

    # ── Sending ────────────────────────────────────────────────────

    def send(self, data: bytes) -> None:
        if self._ws is None:
            logger.debug("Tunnel not connected, dropping %d bytes", len(data))
            return
        self._outbox.put_nowait(data)

    async def _writer_loop(self) -> None:
        while True:
            data = await self._outbox.get()
            ws = self._ws
            if ws is None:
                continue
            try:
                await ws.send(data)
            except websockets.ConnectionClosed:
                logger.debug("Tunnel closed while sending")
