"""Configuration for an NTM node."""

from __future__ import annotations

import json
import logging
import random
from dataclasses import asdict, dataclass, field
from pathlib import Path

from .models import GROUND_LEVEL, NodeType

logger = logging.getLogger(__name__)


@dataclass
class NodeConfig:
    """Node configuration, loaded from config.json."""

    node_id: str = ""
    node_type: str = NodeType.BATTERY.value

    # Behaviour
    auto_fire: bool = True
    report_status: bool = True
    default_y: int = GROUND_LEVEL
    volley_delay: float = 2.0
    walk_delay: float = 1.0
    activation_delay: float = 0.1  # seconds to wait after switching a battery on

    # Timers
    heartbeat_interval: float = 10.0
    liveness_timeout: float = 30.0
    monitor_interval: float = 1.0
    monitor_on_start: bool = False

    # Persistence
    device_config_path: str = ""
    log_file: str = ""

    # Transport
    udp_port: int = 47100
    bind_host: str = "0.0.0.0"
    broadcast_address: str = "255.255.255.255"
    tunnel_url: str = ""
    tunnel_listen_port: int = 0  # 0 = no tunnel listener

    # Simulated hardware: [{"kind": "cannon", "position": [x, y, z]}, ...]
    artillery: list = field(default_factory=list)
    radars: list = field(default_factory=list)

    @classmethod
    def load(cls, path: str | Path) -> NodeConfig:
        path = Path(path)
        if path.exists():
            with open(path) as f:
                data = json.load(f)
            known = {k for k in cls.__dataclass_fields__}
            filtered = {k: v for k, v in data.items() if k in known}
            return cls(**filtered)
        logger.warning("Config not found at %s, using defaults", path)
        return cls()

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(asdict(self), f, indent=2)

    def generate_id(self) -> str:
        """Random id of the form ``<node_type>_NNNN``."""
        return f"{self.node_type}_{random.randint(1000, 9999)}"
