"""
Configuration settings for the LAN Device Manager.
"""

import logging
import sys
from typing import Any, Dict, Optional, Sequence

import yaml
from colorama import Fore, Style
from colorama import init as colorama_init

# =============================================================================
# Network Settings
# =============================================================================
# Default network interface (will be auto-detected if None)
INTERFACE = None

# Link-layer addresses
BROADCAST_MAC = "ff:ff:ff:ff:ff:ff"
ZERO_MAC = "00:00:00:00:00:00"

# ARP operation codes
ARP_REQUEST = 1
ARP_REPLY = 2

# Ethernet types
ETH_TYPE_ARP = 0x0806
ETH_TYPE_IPV4 = 0x0800

# =============================================================================
# Discovery Settings
# =============================================================================
# Delay between probes of one sweep (seconds)
PACKET_DELAY = 0.01

# Time after the last probe before a sweep's answers are considered final
SCAN_SETTLE_TIME = 5.0

# Probe kinds: "arp" is always sent, "icmp" and "tcp" are auxiliary
PROBE_MODES = ("arp",)
PROBE_MODE_NAMES = ("arp", "icmp", "tcp")
TCP_PROBE_PORTS = (80, 443)

# Re-scan cadence when auto-refresh is enabled (0 = disabled)
AUTO_REFRESH_INTERVAL = 0.0

# Hostname/vendor lookups for newly discovered devices
RESOLVE_DETAILS = True
RESOLVER_WORKERS = 4

# Sentinel for unresolved hostname/vendor
UNKNOWN = "Unknown"

# =============================================================================
# Liveness Settings
# =============================================================================
LIVENESS_INTERVAL = 30.0     # Seconds between liveness sweeps
INACTIVITY_TIMEOUT = 60.0    # Seconds without traffic before Inactive

# =============================================================================
# Spoofing Settings
# =============================================================================
# Interval between poisoning cycles (seconds). Un-killing a device takes
# effect on the next cycle, so this is also the worst-case extra poisoning.
SPOOF_INTERVAL = 1.0

# =============================================================================
# Restoration Settings
# =============================================================================
RESTORE_REPEAT = 3           # Corrective reply pairs per restoration
RESTORE_DELAY = 0.2          # Seconds between repeats

# Restore every poisoned device when the manager stops
AUTO_RESTORE_ARP = True

# =============================================================================
# Proxy-ARP Detection
# =============================================================================
PROXY_ARP_RATIO = 0.5        # Share of claimed IPs owned by the gateway MAC
PROXY_ARP_MIN_CLAIMS = 3     # Minimum IPs the gateway must claim

# =============================================================================
# Logging Settings
# =============================================================================
LOG_LEVEL = "INFO"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LEVEL_COLORS = {
    "DEBUG": Fore.CYAN,
    "INFO": Fore.GREEN,
    "WARNING": Fore.YELLOW,
    "ERROR": Fore.RED,
    "CRITICAL": Fore.RED + Style.BRIGHT,
}


# =============================================================================
# Helper Functions
# =============================================================================

class ColorFormatter(logging.Formatter):
    """Formatter that colours the level name for terminals."""

    def format(self, record: logging.LogRecord) -> str:
        original = record.levelname
        color = LEVEL_COLORS.get(original)
        if color:
            record.levelname = f"{color}{original}{Style.RESET_ALL}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def setup_logging(level: str = LOG_LEVEL, use_color: bool = True) -> None:
    """
    Configure root logging for console use.

    Args:
        level: Logging level name.
        use_color: Colour level names with colorama.
    """
    if use_color:
        colorama_init()
        formatter: logging.Formatter = ColorFormatter(LOG_FORMAT, LOG_DATE_FORMAT)
    else:
        formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())
    logging.getLogger("scapy").setLevel(logging.ERROR)


class ManagerConfig:
    """
    Configuration class for a device manager run.

    This class provides a convenient interface to the settings above,
    overridable per run or from a YAML file.
    """

    def __init__(
        self,
        interface: Optional[str] = INTERFACE,
        packet_delay: float = PACKET_DELAY,
        settle_time: float = SCAN_SETTLE_TIME,
        probe_modes: Sequence[str] = PROBE_MODES,
        tcp_ports: Sequence[int] = TCP_PROBE_PORTS,
        auto_refresh_interval: float = AUTO_REFRESH_INTERVAL,
        resolve_details: bool = RESOLVE_DETAILS,
        liveness_interval: float = LIVENESS_INTERVAL,
        inactivity_timeout: float = INACTIVITY_TIMEOUT,
        spoof_interval: float = SPOOF_INTERVAL,
        restore_repeat: int = RESTORE_REPEAT,
        restore_delay: float = RESTORE_DELAY,
        auto_restore: bool = AUTO_RESTORE_ARP,
        gateway_ip: Optional[str] = None,
        log_level: str = LOG_LEVEL,
    ):
        """
        Initialize manager configuration.

        Args:
            interface: Network interface to use (auto-detected if None).
            packet_delay: Delay between sweep probes.
            settle_time: Wait after a sweep before results are final.
            probe_modes: Probe kinds to send ("arp", "icmp", "tcp").
            tcp_ports: Destination ports for TCP SYN probes.
            auto_refresh_interval: Re-scan cadence, 0 disables it.
            resolve_details: Look up hostname and vendor for new devices.
            liveness_interval: Seconds between liveness sweeps.
            inactivity_timeout: Seconds of silence before Inactive.
            spoof_interval: Seconds between poisoning cycles.
            restore_repeat: Corrective reply pairs per restoration.
            restore_delay: Seconds between corrective repeats.
            auto_restore: Restore poisoned devices when stopping.
            gateway_ip: Gateway override (auto-detected if None).
            log_level: Logging level name.
        """
        self.interface = interface
        self.packet_delay = packet_delay
        self.settle_time = settle_time
        if isinstance(probe_modes, str):
            probe_modes = [probe_modes]
        self.probe_modes = tuple(str(mode).lower() for mode in probe_modes)
        self.tcp_ports = (tcp_ports,) if isinstance(tcp_ports, int) else tuple(tcp_ports)
        self.auto_refresh_interval = auto_refresh_interval
        self.resolve_details = resolve_details
        self.liveness_interval = liveness_interval
        self.inactivity_timeout = inactivity_timeout
        self.spoof_interval = spoof_interval
        self.restore_repeat = restore_repeat
        self.restore_delay = restore_delay
        self.auto_restore = auto_restore
        self.gateway_ip = gateway_ip
        self.log_level = log_level
        self.validate()

    @property
    def is_valid(self) -> bool:
        """Check if the configuration is valid."""
        return self.interface is not None

    def validate(self) -> None:
        """
        Check every value before anything is opened.

        Raises:
            ConfigurationError: on the first invalid setting.
        """
        from core.exceptions import ConfigurationError

        unknown = [mode for mode in self.probe_modes if mode not in PROBE_MODE_NAMES]
        if unknown:
            raise ConfigurationError(
                f"Unknown probe mode(s): {', '.join(unknown)} "
                f"(expected {', '.join(PROBE_MODE_NAMES)})"
            )
        if not self.probe_modes:
            raise ConfigurationError("At least one probe mode is required")

        for port in self.tcp_ports:
            if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
                raise ConfigurationError(f"Invalid TCP probe port: {port!r}")

        # name -> whether zero is allowed
        durations = {
            'packet_delay': True,
            'settle_time': True,
            'auto_refresh_interval': True,
            'restore_delay': True,
            'liveness_interval': False,
            'inactivity_timeout': False,
            'spoof_interval': False,
        }
        for name, zero_ok in durations.items():
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigurationError(f"{name} must be a number, got {value!r}")
            if value < 0 or (value == 0 and not zero_ok):
                raise ConfigurationError(f"{name} out of range: {value!r}")

        if (isinstance(self.restore_repeat, bool) or not isinstance(self.restore_repeat, int)
                or self.restore_repeat < 1):
            raise ConfigurationError(f"restore_repeat must be a positive integer, "
                                     f"got {self.restore_repeat!r}")

        if not isinstance(logging.getLevelName(str(self.log_level).upper()), int):
            raise ConfigurationError(f"Unknown log level: {self.log_level!r}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return dict(vars(self))

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "ManagerConfig":
        """Build a configuration from a mapping, rejecting unknown keys."""
        from core.exceptions import ConfigurationError

        known = set(cls().to_dict())
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**values)


def load_config(path: str) -> ManagerConfig:
    """
    Load a ManagerConfig from a YAML file.

    Args:
        path: Path to a YAML mapping of ManagerConfig fields.

    Returns:
        The loaded configuration.
    """
    from core.exceptions import ConfigurationError

    try:
        with open(path, "r", encoding="utf-8") as fh:
            values = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read config {path}: {e}") from e

    if not isinstance(values, dict):
        raise ConfigurationError(f"Config {path} must contain a mapping")
    return ManagerConfig.from_dict(values)
