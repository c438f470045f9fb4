"""
Error types raised to callers of the device manager.

Only configuration problems and failure to open the link channel reach
the caller. Transient send failures are raised by the channel but are
caught and logged by the loops that send.
"""


class LanManagerError(Exception):
    """Base class for device manager errors."""


class ConfigurationError(LanManagerError, ValueError):
    """No usable interface, missing IPv4 address or bad config file."""


class TransportError(LanManagerError, RuntimeError):
    """A frame could not be sent on the link."""


class ChannelOpenError(TransportError):
    """The raw channel could not be opened on the chosen interface."""

    def __init__(self, interface: str, reason: str):
        super().__init__(f"Cannot open raw channel on {interface}: {reason}")
        self.interface = interface
        self.reason = reason
