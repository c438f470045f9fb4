"""
LAN Device Manager

The long-lived service object that owns the Device Registry and wires the
Discovery Engine, Liveness Monitor, Killer and Restorer to one shared
link channel. A front end (GUI or the console entry point below) talks to
it only through:

- start()/stop() with the chosen interface
- request_scan(), which enqueues a Scan command
- the new_devices and warnings queues
- devices() and get_network_info() snapshots
- the selected/killed mutators

Usage:
    manager = NetworkManager(ManagerConfig(interface="eth0"))
    manager.start()
    manager.request_scan()
    ...
    manager.stop()
"""

import argparse
import logging
import queue
import sys
import threading
import time
from dataclasses import replace
from enum import Enum
from typing import Callable, List, Optional

from colorama import Fore, Style

from config.settings import ManagerConfig, load_config, setup_logging
from core import network_utils
from core.exceptions import ChannelOpenError, ConfigurationError
from core.frame_codec import normalize_mac
from core.link import LinkChannel, open_channel
from core.network_utils import InterfaceInfo
from core.registry import DeviceRecord, DeviceRegistry, DeviceStatus, NetworkInfo
from discovery.liveness import LivenessMonitor
from discovery.scanner import DiscoveryEngine, SweepResult
from attacks.killer import Killer
from attacks.restore import RestoreResult, Restorer
from defenses.proxy_arp_detector import ProxyARPDetector

logger = logging.getLogger(__name__)


class Command(Enum):
    """Commands accepted on the manager's command queue."""
    SCAN = "scan"


class NetworkManager:
    """
    Owns the Registry and every background task for one interface.
    """

    def __init__(
        self,
        config: Optional[ManagerConfig] = None,
        interface_lookup: Callable[[str], Optional[InterfaceInfo]] = network_utils.get_interface_info,
        channel_factory: Callable[[str], LinkChannel] = LinkChannel,
        gateway_lookup: Callable[[str], Optional[str]] = network_utils.get_gateway,
        mac_resolver: Callable[..., Optional[str]] = network_utils.resolve_mac,
        registry: Optional[DeviceRegistry] = None,
    ):
        """
        Initialize the manager.

        Args:
            config: Run configuration.
            interface_lookup: Returns current InterfaceInfo for a name.
            channel_factory: Builds the link channel for an interface name.
            gateway_lookup: Returns the default gateway for an interface.
            mac_resolver: Resolves an IP to a MAC (ip, interface).
            registry: Registry to use (a new one if None).
        """
        self.config = config or ManagerConfig()
        self._interface_lookup = interface_lookup
        self._channel_factory = channel_factory
        self._gateway_lookup = gateway_lookup
        self._mac_resolver = mac_resolver

        self.registry = registry or DeviceRegistry()
        self.proxy_detector = ProxyARPDetector()

        self.new_devices: "queue.Queue[DeviceRecord]" = queue.Queue()
        self.warnings: "queue.Queue[str]" = queue.Queue()
        self.commands: "queue.Queue[Command]" = queue.Queue()

        self.interface: Optional[InterfaceInfo] = None
        self.gateway_ip: Optional[str] = None
        self.channel: Optional[LinkChannel] = None
        self.engine: Optional[DiscoveryEngine] = None
        self.liveness: Optional[LivenessMonitor] = None
        self.restorer: Optional[Restorer] = None
        self.killer: Optional[Killer] = None

        self._network_info = NetworkInfo()
        self._info_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self._started = False

        self.registry.register_callback('new_device', self.new_devices.put)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _resolve_interface(self) -> InterfaceInfo:
        name = self.config.interface
        if name is None:
            info = network_utils.select_default_interface()
            if info is None:
                raise ConfigurationError("No network interface selected")
        else:
            info = self._interface_lookup(name)
            if info is None:
                raise ConfigurationError(f"Interface {name} not found")

        if not info.ip or not info.netmask:
            raise ConfigurationError(f"Interface {info.name} has no IPv4 address")
        if not info.mac:
            raise ConfigurationError(f"Interface {info.name} has no hardware address")
        return info

    def _current_interface(self) -> Optional[InterfaceInfo]:
        if self.interface is None or self._stop_event.is_set():
            return None
        info = self._interface_lookup(self.interface.name)
        if info is None or not info.is_valid():
            return None
        return info

    def _resolve_gateway_mac(self, ip: str) -> Optional[str]:
        return self._mac_resolver(ip, self.interface.name)

    def start(self):
        """
        Open the channel and start the listener and periodic loops.

        Raises:
            ConfigurationError: invalid settings, no interface, or it lacks
                IPv4/MAC. Raised before the channel is opened.
            ChannelOpenError: the raw channel could not be opened.
        """
        if self._started:
            return
        config = self.config
        config.validate()
        self.interface = self._resolve_interface()

        self.gateway_ip = (config.gateway_ip or self.interface.gateway or
                           self._gateway_lookup(self.interface.name))
        if not self.gateway_ip:
            logger.warning("Default gateway not found; proxy-ARP detection and "
                           "poisoning are unavailable")

        self.channel = open_channel(self.interface.name, self._channel_factory)
        try:
            self._build_components()
        except Exception:
            self.channel.close()
            raise

        self._stop_event.clear()
        self.engine.start_listener()
        self.liveness.start()
        self.killer.start()
        self._spawn(self._command_loop, "ManagerCommands")
        if config.auto_refresh_interval > 0:
            self._spawn(self._auto_refresh_loop, "ManagerAutoRefresh")

        self._started = True
        logger.info(f"Managing {self.interface.cidr} on {self.interface.name} "
                    f"(gateway {self.gateway_ip or 'unknown'})")

    def _build_components(self):
        config = self.config
        with self._info_lock:
            self._network_info = NetworkInfo(network_range=self.interface.cidr,
                                             gateway=self.gateway_ip or "")

        self.engine = DiscoveryEngine(
            self.interface, self.registry, self.channel,
            probe_modes=config.probe_modes,
            packet_delay=config.packet_delay,
            settle_time=config.settle_time,
            tcp_ports=config.tcp_ports,
            resolve_details=config.resolve_details,
            proxy_detector=self.proxy_detector,
        )
        self.liveness = LivenessMonitor(self.registry, config.liveness_interval,
                                        config.inactivity_timeout)
        self.restorer = Restorer(self.channel, config.restore_repeat, config.restore_delay)
        self.killer = Killer(
            self.registry, self.channel, self._current_interface, self.gateway_ip,
            gateway_mac_resolver=self._resolve_gateway_mac,
            interval=config.spoof_interval,
            restorer=self.restorer,
        )

        self.engine.register_callback('sweep_complete', self._on_sweep_complete)
        self.killer.register_callback('restored', self._on_restored)

    def _spawn(self, target: Callable, name: str):
        thread = threading.Thread(target=target, daemon=True, name=name)
        thread.start()
        self._threads.append(thread)

    def stop(self, restore: Optional[bool] = None):
        """
        Stop every loop and close the channel.

        Args:
            restore: Restore poisoned devices first (config default if None).
        """
        if not self._started:
            return
        if restore is None:
            restore = self.config.auto_restore

        self.killer.stop(restore=restore)
        self._stop_event.set()
        self.liveness.stop()
        self.engine.stop()
        for thread in self._threads:
            thread.join(timeout=2)
        self._threads.clear()
        self.channel.close()
        self._started = False
        logger.info("Device manager stopped")

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False

    def _require_started(self):
        if not self._started:
            raise ConfigurationError("Device manager is not started")

    # ------------------------------------------------------------------
    # Commands and events
    # ------------------------------------------------------------------

    def _command_loop(self):
        while not self._stop_event.is_set():
            try:
                command = self.commands.get(timeout=0.5)
            except queue.Empty:
                continue
            if command is Command.SCAN:
                self.engine.scan()

    def _auto_refresh_loop(self):
        while not self._stop_event.wait(self.config.auto_refresh_interval):
            self.commands.put(Command.SCAN)

    def request_scan(self):
        """Enqueue a Scan command; ignored by the engine if a sweep is running."""
        self._require_started()
        self.commands.put(Command.SCAN)

    def scan(self, progress: bool = False) -> Optional[SweepResult]:
        """Run one sweep on the calling thread and return its result."""
        self._require_started()
        if not self.engine.scan(block=True, progress=progress):
            return None
        return self.engine.last_result

    @property
    def is_scanning(self) -> bool:
        return self.engine is not None and self.engine.is_scanning

    def _on_sweep_complete(self, result: SweepResult):
        with self._info_lock:
            self._network_info = NetworkInfo(
                network_range=result.network,
                gateway=self.gateway_ip or "",
                active_devices=self.registry.active_count(),
            )

        gateway_mac = self.killer.gateway_mac() if self.gateway_ip else None
        warning = self.proxy_detector.analyze(gateway_mac)
        if warning is not None:
            self.warnings.put(warning.message)
        for suspect in self.proxy_detector.suspicious_macs():
            if suspect.mac_address != gateway_mac:
                logger.warning(suspect.message)
                self.warnings.put(suspect.message)

    def _on_restored(self, result: RestoreResult):
        if result.degraded:
            self.warnings.put(f"Restoration of {result.victim_ip} is degraded: {result.reason}")

    def get_network_info(self) -> NetworkInfo:
        with self._info_lock:
            return replace(self._network_info)

    def drain_warnings(self) -> List[str]:
        messages = []
        while True:
            try:
                messages.append(self.warnings.get_nowait())
            except queue.Empty:
                return messages

    # ------------------------------------------------------------------
    # Device access
    # ------------------------------------------------------------------

    def devices(self) -> List[DeviceRecord]:
        return self.registry.snapshot()

    def find_device(self, address: str) -> Optional[DeviceRecord]:
        """Look a device up by MAC or IP."""
        try:
            record = self.registry.get(normalize_mac(address))
        except ValueError:
            record = None
        return record or self.registry.find_by_ip(address)

    def set_selected(self, identity: str, value: bool):
        self.registry.set_selected(identity, value)

    def set_killed(self, identity: str, value: bool):
        self.registry.set_killed(identity, value)

    def _is_gateway(self, record: DeviceRecord) -> bool:
        return bool(self.gateway_ip) and record.ip_address == self.gateway_ip

    def kill_selected(self) -> int:
        count = 0
        for record in self.registry.selected():
            if not self._is_gateway(record):
                self.registry.set_killed(record.identity, True)
                count += 1
        return count

    def restore_selected(self) -> int:
        count = 0
        for record in self.registry.selected():
            if record.killed:
                self.registry.set_killed(record.identity, False)
                count += 1
        return count

    def kill_all(self) -> int:
        """Kill every known device except the gateway."""
        count = 0
        for record in self.registry.snapshot():
            if not self._is_gateway(record):
                self.registry.set_killed(record.identity, True)
                count += 1
        return count

    def restore_all(self) -> int:
        count = 0
        for record in self.registry.killed():
            self.registry.set_killed(record.identity, False)
            count += 1
        return count


# ----------------------------------------------------------------------
# Console entry point
# ----------------------------------------------------------------------

STATUS_COLORS = {
    DeviceStatus.ACTIVE: Fore.GREEN,
    DeviceStatus.INACTIVE: Fore.YELLOW,
    DeviceStatus.BLOCKED: Fore.RED,
    DeviceStatus.UNKNOWN: Fore.WHITE,
}


def print_devices(devices: List[DeviceRecord], info: NetworkInfo):
    """Print the device table."""
    print(f"\n[*] Network: {info.network_range}  Gateway: {info.gateway or '-'}  "
          f"Active devices: {info.active_devices}")
    print("-" * 96)
    print(f"{'IP Address':<16} {'MAC Address':<18} {'Hostname':<28} {'Vendor':<20} Status")
    print("-" * 96)
    for device in sorted(devices, key=lambda d: tuple(int(p) for p in d.ip_address.split('.'))):
        color = STATUS_COLORS.get(device.status, "")
        print(f"{device.ip_address:<16} {device.mac_address:<18} "
              f"{device.hostname[:27]:<28} {device.vendor[:19]:<20} "
              f"{color}{device.status.label}{Style.RESET_ALL}")
    print()


def main():
    """Console front end: scan, print the table, optionally kill devices."""
    parser = argparse.ArgumentParser(description="LAN Device Manager")
    parser.add_argument("-i", "--interface", help="Network interface (auto-detect if omitted)")
    parser.add_argument("-c", "--config", help="YAML configuration file")
    parser.add_argument("--list-interfaces", action="store_true", help="List interfaces and exit")
    parser.add_argument("--scan-time", type=float, help="Seconds to wait for replies after a sweep")
    parser.add_argument("--probe", action="append", choices=["icmp", "tcp"], default=[],
                        help="Extra probe kinds besides ARP")
    parser.add_argument("-k", "--kill", nargs="+", metavar="ADDRESS", default=[],
                        help="IP or MAC addresses to cut off after the scan")
    parser.add_argument("-d", "--duration", type=float, default=30,
                        help="Seconds to keep killed devices cut off")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args()

    if args.list_interfaces:
        network_utils.print_interfaces()
        return

    try:
        config = load_config(args.config) if args.config else ManagerConfig()
    except ConfigurationError as e:
        print(f"[!] Error: {e}")
        sys.exit(1)
    if args.interface:
        config.interface = args.interface
    if args.scan_time is not None:
        config.settle_time = args.scan_time
    if args.probe:
        config.probe_modes = tuple(dict.fromkeys(("arp",) + tuple(args.probe)))

    setup_logging("DEBUG" if args.verbose else config.log_level)

    if args.kill:
        print("[!] WARNING: cutting devices off is for networks you manage only!")

    manager = NetworkManager(config)
    try:
        manager.start()
    except (ConfigurationError, ChannelOpenError) as e:
        print(f"[!] Error: {e}")
        sys.exit(1)

    try:
        manager.scan(progress=True)
        print_devices(manager.devices(), manager.get_network_info())
        for message in manager.drain_warnings():
            print(f"{Fore.YELLOW}[!] {message}{Style.RESET_ALL}")

        targets = []
        for address in args.kill:
            record = manager.find_device(address)
            if record is None:
                print(f"[!] {address} was not discovered, skipping")
                continue
            manager.set_killed(record.identity, True)
            targets.append(record)

        if targets:
            print(f"[*] Cutting off {len(targets)} device(s) for {args.duration} seconds...")
            time.sleep(args.duration)
            manager.restore_all()
            # Give the poisoning loop one tick to notice and restore
            time.sleep(manager.config.spoof_interval + 0.5)
            stats = manager.killer.get_statistics()
            print("\n[*] Poisoning statistics:")
            print(f"    Packets sent: {stats['total_packets_sent']}")
            print(f"    Cycles: {stats['poison_cycles']}")
            print(f"    Restorations: {stats['restorations']}")

    except KeyboardInterrupt:
        print("\n[!] Interrupted by user")
    finally:
        manager.stop()
        for message in manager.drain_warnings():
            print(f"{Fore.YELLOW}[!] {message}{Style.RESET_ALL}")


if __name__ == "__main__":
    main()
