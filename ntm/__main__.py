"""NTM node entry point.

Usage:
    python -m ntm run [--config CONFIG_PATH] [--type battery|command|radar]
    python -m ntm fire X Y Z [--node NODE_ID] [--volleys N]
    python -m ntm fire X Z
    python -m ntm status
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys

from .config import NodeConfig
from .devices.simulated import SimulatedHardware
from .errors import NtmError
from .models import Coordinate, NodeType
from .network.tunnel import WebSocketTunnel
from .network.udp import UdpTransport
from .node import NodeContext
from .orchestrator import FireOptions

logger = logging.getLogger("ntm")


def build_node(config: NodeConfig) -> NodeContext:
    """Assemble a node with simulated hardware, a UDP modem and an optional tunnel."""
    hardware = SimulatedHardware.from_config(config.artillery, config.radars)
    modem = UdpTransport(config.udp_port, config.bind_host, config.broadcast_address)
    tunnel = None
    if config.tunnel_url:
        tunnel = WebSocketTunnel(config.tunnel_url)
    elif config.tunnel_listen_port:
        tunnel = WebSocketTunnel(listen_port=config.tunnel_listen_port)
    return NodeContext(config, hardware, modem=modem, tunnel=tunnel)


async def _run(node: NodeContext, stop: asyncio.Event) -> None:
    await node.start()
    try:
        await stop.wait()
    finally:
        await node.stop()


async def _discover(node: NodeContext, wait: float) -> None:
    await node.start()
    node.heartbeat.beat()
    await asyncio.sleep(wait)


async def _fire(node: NodeContext, args: argparse.Namespace) -> int:
    try:
        await _discover(node, args.wait)
        target = Coordinate.parse(" ".join(args.coords), node.config.default_y)
        options = FireOptions(args.volleys, args.volley_delay, args.shot_delay)
        if args.node:
            node.send_fire_command(args.node, target, options)
            logger.info("Fire command sent to %s: %s", args.node, target)
        else:
            node.broadcast_fire_command(target, options)
            logger.info("Fire command broadcast: %s", target)
        await asyncio.sleep(args.wait)
        print(json.dumps(node.orchestrator.acknowledgements, indent=2))
    finally:
        await node.stop()
    return 0


async def _status(node: NodeContext, args: argparse.Namespace) -> int:
    try:
        await _discover(node, args.wait)
        node.broadcast_status_request()
        await asyncio.sleep(args.wait)
        print(json.dumps({
            "nodes": node.directory.get_status()["nodes"],
            "status": node.peer_status,
        }, indent=2))
    finally:
        await node.stop()
    return 0


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ntm", description="NTM artillery coordination node")
    parser.add_argument("--config", "-c", default=None, help="Path to config.json")
    parser.add_argument("--id", dest="node_id", default=None, help="Node id (overrides config)")
    parser.add_argument(
        "--type",
        dest="node_type",
        default=None,
        choices=[t.value for t in NodeType if t is not NodeType.UNKNOWN],
        help="Node type (overrides config)",
    )
    parser.add_argument("--udp-port", type=int, default=None, help="Shared UDP port")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Run a node until interrupted")

    fire = sub.add_parser("fire", help="Send a fire command")
    fire.add_argument("coords", nargs="+", help="X Y Z, or X Z for ground level")
    fire.add_argument("--node", default=None, help="Target node id (default: broadcast)")
    fire.add_argument("--volleys", type=int, default=1)
    fire.add_argument("--volley-delay", type=float, default=2.0)
    fire.add_argument("--shot-delay", type=float, default=0.0)
    fire.add_argument("--wait", type=float, default=3.0, help="Seconds to wait for peers")

    status = sub.add_parser("status", help="Query every reachable node")
    status.add_argument("--wait", type=float, default=3.0, help="Seconds to wait for peers")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _parser().parse_args(argv)

    config = NodeConfig.load(args.config) if args.config else NodeConfig()
    if args.command != "run":
        config.node_type = NodeType.COMMAND.value
    if args.node_type:
        config.node_type = args.node_type
    if args.node_id:
        config.node_id = args.node_id
    if args.udp_port is not None:
        config.udp_port = args.udp_port
    if not config.node_id:
        config.node_id = config.generate_id()

    # Logging
    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    if config.log_file:
        handler = logging.FileHandler(config.log_file)
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        logging.getLogger().addHandler(handler)

    node = build_node(config)
    loop = asyncio.new_event_loop()
    try:
        if args.command == "run":
            stop = asyncio.Event()

            def _shutdown(sig: int) -> None:
                logger.info("Received signal %d, shutting down", sig)
                stop.set()

            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, _shutdown, sig)
            loop.run_until_complete(_run(node, stop))
            return 0
        if args.command == "fire":
            return loop.run_until_complete(_fire(node, args))
        return loop.run_until_complete(_status(node, args))
    except NtmError as exc:
        logger.error("%s", exc)
        return 1
    except ValueError as exc:
        logger.error("Invalid input: %s", exc)
        return 2
    finally:
        loop.close()


if __name__ == "__main__":
    sys.exit(main())
