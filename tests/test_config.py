"""Tests for node configuration, coordinates and the command-line entry point."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

# ── Config tests ──────────────────────────────────────────────────


class TestNodeConfig:
    def test_defaults(self):
        from ntm.config import NodeConfig

        cfg = NodeConfig()
        assert cfg.node_type == "battery"
        assert cfg.auto_fire is True
        assert cfg.report_status is True
        assert cfg.heartbeat_interval == 10.0
        assert cfg.liveness_timeout == 30.0
        assert cfg.default_y == 64

    def test_load_save(self, tmp_path):
        from ntm.config import NodeConfig

        cfg = NodeConfig(
            node_id="north",
            node_type="command",
            auto_fire=False,
            artillery=[{"kind": "rocket"}],
        )
        path = tmp_path / "sub" / "config.json"
        cfg.save(path)

        loaded = NodeConfig.load(path)
        assert loaded.node_id == "north"
        assert loaded.node_type == "command"
        assert loaded.auto_fire is False
        assert loaded.artillery == [{"kind": "rocket"}]

    def test_load_missing_file(self, tmp_path):
        from ntm.config import NodeConfig

        cfg = NodeConfig.load(tmp_path / "nonexistent.json")
        assert cfg.node_id == ""

    def test_load_ignores_unknown_keys(self, tmp_path):
        from ntm.config import NodeConfig

        path = tmp_path / "config.json"
        path.write_text(json.dumps({"node_id": "x", "modem_side": "left"}))
        cfg = NodeConfig.load(path)
        assert cfg.node_id == "x"
        assert not hasattr(cfg, "modem_side")

    def test_generate_id(self):
        from ntm.config import NodeConfig

        node_id = NodeConfig(node_type="radar").generate_id()
        prefix, number = node_id.split("_")
        assert prefix == "radar"
        assert 1000 <= int(number) <= 9999


# ── Coordinate tests ──────────────────────────────────────────────


class TestCoordinate:
    def test_parse_three_values(self):
        from ntm.models import Coordinate

        assert Coordinate.parse("100,70,-20") == Coordinate(100, 70, -20)
        assert Coordinate.parse("100 70 -20") == Coordinate(100, 70, -20)

    def test_parse_ground_level(self):
        from ntm.models import Coordinate

        assert Coordinate.parse("100 -20") == Coordinate(100, 64, -20)

    @pytest.mark.parametrize("text", ["", "1", "a,b,c", "1,2,3,4"])
    def test_parse_invalid(self, text):
        from ntm.models import Coordinate

        with pytest.raises(ValueError):
            Coordinate.parse(text)

    def test_from_dict(self):
        from ntm.models import Coordinate

        assert Coordinate.from_dict({"x": 1.7, "z": 3}) == Coordinate(1, 64, 3)
        assert Coordinate.from_dict({"x": 1, "y": 80, "z": 3}, default_y=10) == Coordinate(1, 80, 3)
        with pytest.raises(ValueError):
            Coordinate.from_dict({"x": 1})
        with pytest.raises(ValueError):
            Coordinate.from_dict("1,2,3")
        with pytest.raises(ValueError):
            Coordinate.from_dict({"x": "far", "z": 1})


# ── CLI tests ─────────────────────────────────────────────────────


class TestCli:
    def test_build_node_from_config(self):
        from ntm.__main__ import build_node
        from ntm.config import NodeConfig
        from ntm.network.tunnel import WebSocketTunnel
        from ntm.network.udp import UdpTransport

        cfg = NodeConfig(
            node_id="bat",
            artillery=[{"kind": "cannon"}, {"kind": "rocket"}],
            tunnel_url="ws://10.0.0.2:47200",
        )
        node = build_node(cfg)
        assert isinstance(node.bus.modem, UdpTransport)
        assert isinstance(node.bus.tunnel, WebSocketTunnel)
        assert node.registry.scan() == 2

    def test_build_node_without_tunnel(self):
        from ntm.__main__ import build_node
        from ntm.config import NodeConfig

        node = build_node(NodeConfig(node_id="cmd", node_type="command"))
        assert node.bus.tunnel is None

    def test_startup_error_exits_nonzero(self, tmp_path):
        from ntm.__main__ import main

        path = tmp_path / "config.json"
        path.write_text(json.dumps({"node_id": "bat", "node_type": "battery"}))
        with patch("ntm.__main__.logging.basicConfig"):
            assert main(["--config", str(path), "--udp-port", "0", "run"]) == 1

    def test_requires_subcommand(self):
        from ntm.__main__ import main

        with pytest.raises(SystemExit):
            main([])
