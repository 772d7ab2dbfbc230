"""Message bus: addressing, port multiplexing and handler dispatch.

Delivery is best-effort in both directions.  Outbound transport errors are
logged and dropped; inbound packets that fail to decode are dropped with a
debug log.  Every inbound message refreshes the node directory before any
handler sees it.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Union

from ..clock import Clock
from ..errors import MalformedMessage, NoTransport, UnknownPeer
from ..models import Message, Port
from . import codec
from .directory import NodeDirectory
from .transport import InboundPacket, Transport, Tunnel

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Message], Union[None, Awaitable[None]]]

WILDCARD = "*"


class MessageBus:
    """Send, broadcast and dispatch protocol messages for one node."""

    def __init__(
        self,
        node_id: str,
        node_type: str,
        directory: NodeDirectory,
        clock: Clock,
        *,
        modem: Transport | None = None,
        tunnel: Tunnel | None = None,
    ) -> None:
        self.node_id = node_id
        self.node_type = node_type
        self.directory = directory
        self.modem = modem
        self.tunnel = tunnel
        self._clock = clock
        self._handlers: dict[str, list[MessageHandler]] = {}
        self._queue: asyncio.Queue[InboundPacket] = asyncio.Queue()
        self._dispatch_task: asyncio.Task | None = None

        if modem is not None:
            modem.set_receiver(self._on_packet)
        if tunnel is not None:
            tunnel.set_receiver(self._on_packet)

    @property
    def has_modem(self) -> bool:
        return self.modem is not None

    @property
    def has_tunnel(self) -> bool:
        return self.tunnel is not None

    # ── Lifecycle ──────────────────────────────────────────────────

    async def start(self) -> None:
        if self.modem is None and self.tunnel is None:
            raise NoTransport("No modem or tunnel attached")
        if self.modem is not None:
            await self.modem.open(int(p) for p in Port)
        if self.tunnel is not None:
            await self.tunnel.open()
        if self._dispatch_task is None:
            self._dispatch_task = asyncio.create_task(self._dispatch_loop(), name="bus-dispatch")
        logger.info(
            "Message bus started for %s (modem: %s, tunnel: %s)",
            self.node_id, self.has_modem, self.has_tunnel,
        )

    async def stop(self) -> None:
        if self._dispatch_task is not None:
            self._dispatch_task.cancel()
            try:
                await self._dispatch_task
            except asyncio.CancelledError:
                pass
            self._dispatch_task = None
        if self.modem is not None:
            await self.modem.close()
        if self.tunnel is not None:
            await self.tunnel.close()
        logger.info("Message bus stopped for %s", self.node_id)

    # ── Outbound ───────────────────────────────────────────────────

    def build_message(
        self, msg_type: str, payload: dict[str, Any] | None = None, target_id: str | None = None
    ) -> Message:
        return Message(
            type=msg_type,
            sender_id=self.node_id,
            sender_type=self.node_type,
            timestamp=int(self._clock.now()),
            target_id=target_id,
            payload=dict(payload or {}),
        )

    def broadcast(
        self, msg_type: str, payload: dict[str, Any] | None = None, *, port: int = Port.BROADCAST
    ) -> bool:
        """Fire-and-forget to every reachable peer listening on *port*."""
        if self.modem is None:
            logger.warning("Cannot broadcast %s: no modem", msg_type)
            return False
        data = codec.encode(self.build_message(msg_type, payload))
        try:
            self.modem.broadcast(int(port), data)
        except Exception:
            logger.exception("Broadcast of %s failed", msg_type)
            return False
        logger.debug("Broadcast %s on port %d", msg_type, port)
        return True

    def send(
        self,
        node_id: str,
        msg_type: str,
        payload: dict[str, Any] | None = None,
        *,
        port: int = Port.COMMAND,
    ) -> bool:
        """Send to one known peer; raises :class:`UnknownPeer` for unseen ids."""
        node = self.directory.get(node_id)
        if node is None:
            raise UnknownPeer(node_id)
        if self.modem is None:
            logger.warning("Cannot send %s to %s: no modem", msg_type, node_id)
            return False
        data = codec.encode(self.build_message(msg_type, payload, target_id=node_id))
        try:
            self.modem.send(node.address, int(port), data)
        except Exception:
            logger.exception("Send of %s to %s failed", msg_type, node_id)
            return False
        logger.debug("Sent %s to %s on port %d", msg_type, node_id, port)
        return True

    def send_linked(self, msg_type: str, payload: dict[str, Any] | None = None) -> bool:
        if self.tunnel is None:
            logger.warning("Cannot send %s over tunnel: no tunnel attached", msg_type)
            return False
        data = codec.encode(self.build_message(msg_type, payload))
        try:
            self.tunnel.send(data)
        except Exception:
            logger.exception("Linked send of %s failed", msg_type)
            return False
        return True

    # ── Inbound ────────────────────────────────────────────────────

    def on(self, msg_type: str, handler: MessageHandler) -> None:
        """Register *handler* for *msg_type*, or ``"*"`` for every message."""
        self._handlers.setdefault(msg_type, []).append(handler)

    def _on_packet(self, packet: InboundPacket) -> None:
        self._queue.put_nowait(packet)

    async def _dispatch_loop(self) -> None:
        while True:
            packet = await self._queue.get()
            try:
                await self.handle_packet(packet)
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until the dispatch task has handled every queued packet."""
        await self._queue.join()

    async def process_pending(self) -> int:
        """Handle queued packets inline; for buses whose dispatch task is not running."""
        handled = 0
        while not self._queue.empty():
            packet = self._queue.get_nowait()
            try:
                await self.handle_packet(packet)
            finally:
                self._queue.task_done()
            handled += 1
        return handled

    async def handle_packet(self, packet: InboundPacket) -> Message | None:
        try:
            message = codec.decode(packet.data)
        except MalformedMessage as exc:
            logger.debug("Dropped malformed packet from %s: %s", packet.sender_address, exc)
            return None
        message.remote_address = packet.sender_address
        message.port = packet.port
        message.distance = packet.distance

        if message.sender_id == self.node_id:
            return None
        self.directory.observe(message)
        await self.dispatch(message)
        return message

    async def dispatch(self, message: Message) -> None:
        handlers = self._handlers.get(message.type, []) + self._handlers.get(WILDCARD, [])
        if not handlers:
            logger.debug("Unhandled message type: %s", message.type)
        for handler in handlers:
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Handler error for %s", message.type)

    def get_status(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "node_type": self.node_type,
            "has_modem": self.has_modem,
            "has_tunnel": self.has_tunnel,
            "address": self.modem.address if self.modem is not None else None,
            "ports": {p.name.lower(): int(p) for p in Port},
        }
