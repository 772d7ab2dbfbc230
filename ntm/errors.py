"""Error taxonomy shared by every NTM component."""

from __future__ import annotations


class NtmError(Exception):
    """Base error for NTM failures."""


# ── Addressing ────────────────────────────────────────────────────


class UnknownPeer(NtmError):
    """Raised when a send names a node id the directory has never seen."""

    def __init__(self, node_id: str) -> None:
        super().__init__(f"Unknown node: {node_id}")
        self.node_id = node_id


class MalformedMessage(NtmError):
    """Raised when an inbound payload cannot be decoded into a message."""


class NoTransport(NtmError):
    """Raised at startup when neither a modem nor a tunnel is attached."""


class NoDevices(NtmError):
    """Raised when a battery node starts without any artillery attached."""


# ── Device errors ─────────────────────────────────────────────────


class DeviceError(NtmError):
    """Base error for a single device's targeting attempt."""

    def __init__(self, device_id: str, message: str) -> None:
        super().__init__(message)
        self.device_id = device_id


class UnknownDevice(DeviceError):
    """Raised when a device id is not present in the registry."""

    def __init__(self, device_id: str) -> None:
        super().__init__(device_id, f"Unknown device: {device_id}")


class BatteryDisabled(DeviceError):
    """Raised when targeting a device that has been disabled."""

    def __init__(self, device_id: str) -> None:
        super().__init__(device_id, f"Battery disabled: {device_id}")


class ActivationFailed(DeviceError):
    """Raised when a device stays inactive after being switched on."""

    def __init__(self, device_id: str) -> None:
        super().__init__(device_id, f"Failed to activate: {device_id}")


class OutOfRange(DeviceError):
    """Raised when a cannon reports the target is outside its firing range."""

    def __init__(self, device_id: str) -> None:
        super().__init__(device_id, f"Target out of range for {device_id}")


class TargetRejected(DeviceError):
    """The device did not confirm the requested target on readback."""

    def __init__(self, device_id: str) -> None:
        super().__init__(device_id, f"Target not confirmed by {device_id}")
