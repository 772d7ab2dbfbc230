"""Artillery and radar hardware access."""

from .base import ARTILLERY, RADAR, ArtilleryDevice, HardwareProvider, RadarSensor
from .registry import DeviceRegistry

__all__ = [
    "ARTILLERY",
    "RADAR",
    "ArtilleryDevice",
    "DeviceRegistry",
    "HardwareProvider",
    "RadarSensor",
]
