"""pytest configuration for NTM tests."""

import pytest

from ntm.clock import VirtualClock
from ntm.config import NodeConfig
from ntm.devices.simulated import SimulatedArtillery, SimulatedHardware
from ntm.network.simulated import SimulatedNetwork
from ntm.node import NodeContext


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


@pytest.fixture
def clock():
    return VirtualClock(start=1000.0)


@pytest.fixture
def network():
    return SimulatedNetwork()


@pytest.fixture
def make_node(clock, network):
    """Factory for nodes on the shared simulated network."""

    def _make(
        node_id: str,
        node_type: str = "battery",
        position=(0.0, 64.0, 0.0),
        artillery: int = 1,
        **config_overrides,
    ) -> NodeContext:
        hardware = SimulatedHardware()
        for _ in range(artillery):
            hardware.add_artillery(SimulatedArtillery("cannon"))
        config = NodeConfig(
            node_id=node_id, node_type=node_type, activation_delay=0, **config_overrides
        )
        modem = network.create_transport(position=position)
        return NodeContext(config, hardware, modem=modem, clock=clock)

    return _make
