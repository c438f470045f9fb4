"""
Discovery Engine

Sweeps the interface's IPv4 subnet with ARP requests (optionally ICMP echo
and TCP SYN probes) and runs a listener that turns every inbound ARP
reply, ARP request and local IPv4 frame into a Registry observation.

The listener starts once and keeps running for the life of the engine.
Sweeps run on demand; a sweep requested while another is probing is
refused rather than queued.
"""

import ipaddress
import logging
import threading
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from tqdm import tqdm

from config import settings
from core import frame_codec, network_utils
from core.exceptions import ConfigurationError, TransportError
from core.frame_codec import ArpReply, ArpRequest, Frame, IpTraffic
from core.link import LinkChannel
from core.network_utils import InterfaceInfo
from core.registry import DeviceRegistry
from defenses.proxy_arp_detector import ProxyARPDetector

logger = logging.getLogger(__name__)

UNSPECIFIED_IP = "0.0.0.0"


class ScanState(Enum):
    """Sweep state; the listener is independent of it."""
    IDLE = "idle"
    PROBING = "probing"


class ProbeMode(Enum):
    """Probe kinds a sweep can emit per candidate host."""
    ARP = "arp"
    ICMP = "icmp"
    TCP = "tcp"


@dataclass
class SweepResult:
    """Outcome of one sweep, final after the settle window."""
    network: str
    candidates: int
    probes_sent: int = 0
    send_failures: int = 0
    responders: int = 0
    duration: float = 0.0
    completed: bool = True


class DiscoveryEngine:
    """
    Subnet sweeper plus continuous reply listener.

    Usage:
        engine = DiscoveryEngine(interface, registry, channel)
        engine.start_listener()
        engine.scan()
    """

    def __init__(
        self,
        interface: InterfaceInfo,
        registry: DeviceRegistry,
        channel: LinkChannel,
        probe_modes: Sequence = (ProbeMode.ARP,),
        packet_delay: float = settings.PACKET_DELAY,
        settle_time: float = settings.SCAN_SETTLE_TIME,
        tcp_ports: Sequence[int] = settings.TCP_PROBE_PORTS,
        resolve_details: bool = settings.RESOLVE_DETAILS,
        proxy_detector: Optional[ProxyARPDetector] = None,
    ):
        """
        Initialize the engine.

        Args:
            interface: Interface to sweep; must carry a MAC and IPv4/netmask.
            registry: Registry fed by the listener.
            channel: Open link channel shared with other senders.
            probe_modes: ProbeMode values or their names.
            packet_delay: Pause after each candidate's probes.
            settle_time: Wait after the last probe before a sweep is final.
            tcp_ports: Destination ports for TCP SYN probes.
            resolve_details: Look up hostname/vendor of new devices.
            proxy_detector: Receives ARP reply claims for proxy-ARP checks.
        """
        if interface is None or not interface.is_valid():
            raise ConfigurationError(
                f"Interface {getattr(interface, 'name', None)!r} has no usable "
                f"MAC/IPv4 address"
            )

        self.interface = interface
        self.registry = registry
        self.channel = channel
        try:
            self.probe_modes = [ProbeMode(mode) if not isinstance(mode, ProbeMode) else mode
                                for mode in probe_modes]
        except ValueError as e:
            raise ConfigurationError(f"Invalid probe mode: {e}") from e
        self.packet_delay = packet_delay
        self.settle_time = settle_time
        self.tcp_ports = tuple(tcp_ports)
        self.resolve_details = resolve_details
        self.proxy_detector = proxy_detector

        self.own_mac = frame_codec.normalize_mac(interface.mac)
        self.own_ip = interface.ip
        self.network = interface.network

        self.state = ScanState.IDLE
        self.last_result: Optional[SweepResult] = None
        self._state_lock = threading.Lock()
        self._sweep_seen: Optional[set] = None
        self._seen_lock = threading.Lock()

        self._stop_event = threading.Event()
        self._listener_thread: Optional[threading.Thread] = None
        self._sweep_thread: Optional[threading.Thread] = None
        self._resolver = ThreadPoolExecutor(
            max_workers=settings.RESOLVER_WORKERS,
            thread_name_prefix="DeviceResolver"
        )
        self._callbacks: Dict[str, List[Callable]] = defaultdict(list)

        self.stats = {
            'frames_seen': 0,
            'frames_dropped': 0,
            'arp_replies': 0,
            'arp_requests': 0,
            'ip_frames': 0,
            'sweeps': 0,
        }

    def register_callback(self, event: str, callback: Callable):
        """Register a callback for events (sweep_complete)."""
        self._callbacks[event].append(callback)

    def _trigger_callback(self, event: str, *args, **kwargs):
        for callback in self._callbacks.get(event, []):
            try:
                callback(*args, **kwargs)
            except Exception as e:
                logger.error(f"Discovery {event} callback error: {e}")

    @property
    def is_scanning(self) -> bool:
        return self.state is ScanState.PROBING

    def candidates(self) -> List[str]:
        """Every host address of the subnet except our own."""
        return list(network_utils.subnet_hosts(self.own_ip, self.interface.netmask))

    # ------------------------------------------------------------------
    # Listener
    # ------------------------------------------------------------------

    def start_listener(self):
        """Start the background listener (once)."""
        if self._listener_thread and self._listener_thread.is_alive():
            return
        self._listener_thread = threading.Thread(
            target=self.channel.receive,
            args=(self.handle_frame, self._stop_event),
            daemon=True,
            name="DiscoveryListener"
        )
        self._listener_thread.start()
        logger.info(f"Listening for replies on {self.interface.name}")

    def handle_frame(self, data: bytes):
        """Decode one inbound frame and feed the Registry."""
        self.stats['frames_seen'] += 1
        decoded = frame_codec.parse(data)
        if decoded is None:
            self.stats['frames_dropped'] += 1
            return

        try:
            if isinstance(decoded, ArpReply):
                self.stats['arp_replies'] += 1
                if self._observe(decoded.sender_ip, decoded.sender_mac):
                    self._record_claim(decoded.sender_mac, decoded.sender_ip)
            elif isinstance(decoded, ArpRequest):
                self.stats['arp_requests'] += 1
                if decoded.sender_ip != UNSPECIFIED_IP:
                    self._observe(decoded.sender_ip, decoded.sender_mac)
            elif isinstance(decoded, IpTraffic):
                self.stats['ip_frames'] += 1
                self._observe(decoded.source_ip, decoded.source_mac)
        except (KeyError, ValueError) as e:
            self.stats['frames_dropped'] += 1
            logger.debug(f"Dropped inbound frame: {e}")

    def _is_local_host(self, ip: str) -> bool:
        address = ipaddress.IPv4Address(ip)
        return (
            address in self.network and
            address != self.network.network_address and
            address != self.network.broadcast_address
        )

    def _observe(self, ip: str, mac: str) -> bool:
        """Upsert a host seen at ip/mac; False when the frame is not about a LAN host."""
        if mac == self.own_mac or ip == self.own_ip:
            return False
        if mac in (frame_codec.BROADCAST_MAC, frame_codec.ZERO_MAC):
            return False
        if not self._is_local_host(ip):
            return False

        created = self.registry.upsert_observed(mac, ip, mac)

        with self._seen_lock:
            if self._sweep_seen is not None:
                self._sweep_seen.add(mac)

        if created and self.resolve_details and not self._stop_event.is_set():
            self._resolver.submit(self._resolve_details, mac, ip)
        return True

    def _record_claim(self, mac: str, ip: str):
        if self.proxy_detector is not None:
            self.proxy_detector.record_claim(mac, ip)

    def _resolve_details(self, mac: str, ip: str):
        hostname = network_utils.lookup_hostname(ip)
        vendor = network_utils.lookup_vendor(mac)
        self.registry.set_details(mac, hostname=hostname, vendor=vendor)
        logger.debug(f"Resolved {ip}: hostname={hostname} vendor={vendor}")

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    def _known_macs(self) -> Dict[str, str]:
        """IP -> MAC of every registered device, latest sighting winning."""
        records = sorted(self.registry.snapshot(), key=lambda r: r.last_seen or 0.0)
        return {record.ip_address: record.mac_address for record in records
                if record.ip_address}

    def _probes(self, target_ip: str, target_mac: Optional[str] = None) -> Iterable[Frame]:
        """
        Frames for one candidate.

        ICMP and TCP frames go to target_mac when the Registry already knows
        the host. Unknown hosts get a broadcast destination, which most
        stacks drop, so those modes only add coverage for known devices.
        """
        if ProbeMode.ARP in self.probe_modes:
            yield frame_codec.build_arp_request(self.own_mac, self.own_ip, target_ip)
        destination = target_mac or frame_codec.BROADCAST_MAC
        if ProbeMode.ICMP in self.probe_modes:
            yield frame_codec.build_icmp_echo(self.own_mac, self.own_ip, target_ip,
                                              target_mac=destination)
        if ProbeMode.TCP in self.probe_modes:
            for port in self.tcp_ports:
                yield frame_codec.build_tcp_syn(self.own_mac, self.own_ip, target_ip, port,
                                                target_mac=destination)

    def scan(self, block: bool = False, progress: bool = False) -> bool:
        """
        Start a sweep unless one is already probing.

        Args:
            block: Run the sweep on the calling thread.
            progress: Show a progress bar while probing.

        Returns:
            False if the request was refused because a sweep is running.
        """
        with self._state_lock:
            if self.state is ScanState.PROBING:
                logger.info("Sweep already in progress, scan request ignored")
                return False
            self.state = ScanState.PROBING

        if block:
            self._run_sweep(progress)
        else:
            self._sweep_thread = threading.Thread(
                target=self._run_sweep,
                args=(progress,),
                daemon=True,
                name="DiscoverySweep"
            )
            self._sweep_thread.start()
        return True

    def wait_for_sweep(self, timeout: Optional[float] = None) -> bool:
        """Block until the background sweep finishes; True if it did."""
        thread = self._sweep_thread
        if thread is not None:
            thread.join(timeout)
            return not thread.is_alive()
        return True

    def _run_sweep(self, progress: bool):
        try:
            self._sweep(progress)
        finally:
            with self._state_lock:
                self.state = ScanState.IDLE

    def _sweep(self, progress: bool) -> SweepResult:
        started = time.monotonic()
        candidates = self.candidates()
        result = SweepResult(network=self.interface.cidr, candidates=len(candidates))

        with self._seen_lock:
            self._sweep_seen = set()
        if self.proxy_detector is not None:
            self.proxy_detector.reset()

        modes = ", ".join(mode.value for mode in self.probe_modes)
        logger.info(f"Sweeping {result.network}: {len(candidates)} hosts ({modes})")
        known = self._known_macs()

        for target_ip in tqdm(candidates, desc=f"Scanning {result.network}",
                              unit="host", disable=not progress, leave=False):
            if self._stop_event.is_set():
                result.completed = False
                break
            for frame in self._probes(target_ip, known.get(target_ip)):
                try:
                    self.channel.send(frame)
                    result.probes_sent += 1
                except TransportError as e:
                    result.send_failures += 1
                    logger.debug(f"Probe to {target_ip} skipped: {e}")
            if self.packet_delay > 0:
                self._stop_event.wait(self.packet_delay)

        if result.send_failures:
            logger.warning(f"{result.send_failures} probe(s) could not be sent")

        if result.completed and self.settle_time > 0:
            self._stop_event.wait(self.settle_time)

        with self._seen_lock:
            result.responders = len(self._sweep_seen or ())
            self._sweep_seen = None
        result.duration = time.monotonic() - started

        self.last_result = result
        self.stats['sweeps'] += 1
        logger.info(f"Sweep of {result.network} done: {result.responders} responders, "
                    f"{result.probes_sent} probes in {result.duration:.1f}s")
        self._trigger_callback('sweep_complete', result)
        return result

    def stop(self):
        """Stop the listener and any running sweep."""
        self._stop_event.set()
        for thread in (self._sweep_thread, self._listener_thread):
            if thread and thread.is_alive():
                thread.join(timeout=2)
        self._resolver.shutdown(wait=False)
        logger.info("Discovery engine stopped")
