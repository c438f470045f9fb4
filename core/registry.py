"""
Device Registry

Concurrent map of observed hosts keyed by MAC address. The listener,
the liveness and poisoning loops and the UI-facing mutators all touch it
at once, so every record carries its own lock; the map-level lock is only
held while a new identity is inserted or the entry list is copied.

MAC is the identity because a host's IP can change under DHCP. A device
that moves to a new IP keeps its record and selection/kill flags; two
devices that swap IPs are still told apart.
"""

import logging
import threading
import time
from collections import defaultdict
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Callable, Dict, List, Optional

from config import settings
from core.frame_codec import normalize_mac

logger = logging.getLogger(__name__)


class DeviceStatus(Enum):
    """Status of a device as shown to the user."""
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    BLOCKED = "Blocked"
    UNKNOWN = "Unknown"

    @property
    def label(self) -> str:
        return self.value


@dataclass
class DeviceRecord:
    """One observed host."""
    ip_address: str
    mac_address: str
    hostname: str = settings.UNKNOWN
    vendor: str = settings.UNKNOWN
    status: DeviceStatus = DeviceStatus.UNKNOWN
    last_seen: Optional[float] = None
    first_seen: Optional[float] = None
    selected: bool = False
    killed: bool = False

    @property
    def identity(self) -> str:
        return self.mac_address

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['status'] = self.status.value
        return data


@dataclass
class NetworkInfo:
    """Snapshot of the scanned network, recomputed after every sweep."""
    network_range: str = ""
    gateway: str = ""
    active_devices: int = 0


class _Entry:
    __slots__ = ("record", "lock")

    def __init__(self, record: DeviceRecord):
        self.record = record
        self.lock = threading.Lock()


class DeviceRegistry:
    """
    Thread-safe identity -> DeviceRecord map.

    Records are never removed: a host that leaves the network becomes
    Inactive. Reads return copies so callers never hold a live record.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._callbacks: Dict[str, List[Callable]] = defaultdict(list)

    @staticmethod
    def _resolved_status(record: DeviceRecord) -> DeviceStatus:
        return DeviceStatus.BLOCKED if record.killed else DeviceStatus.ACTIVE

    def register_callback(self, event: str, callback: Callable):
        """Register a callback for events (new_device)."""
        self._callbacks[event].append(callback)

    def _trigger_callback(self, event: str, *args, **kwargs):
        for callback in self._callbacks.get(event, []):
            try:
                callback(*args, **kwargs)
            except Exception as e:
                logger.error(f"Registry {event} callback error: {e}")

    def _entry(self, identity: str) -> _Entry:
        entry = self._entries.get(normalize_mac(identity))
        if entry is None:
            raise KeyError(identity)
        return entry

    def _all_entries(self) -> List[_Entry]:
        with self._lock:
            return list(self._entries.values())

    def upsert_observed(self, identity: str, ip: str, mac: str,
                        timestamp: Optional[float] = None) -> bool:
        """
        Record that a host was seen.

        Creates the record on first sight and fires 'new_device' once.
        Otherwise updates the IP, advances last_seen and brings the status
        back from Inactive. A killed host stays Blocked.

        Args:
            identity: Registry key (the host's MAC).
            ip: IPv4 address the host used.
            mac: Hardware address the host used.
            timestamp: Observation time on the registry clock (now if None).

        Returns:
            True if a new record was created.
        """
        key = normalize_mac(identity)
        now = self._clock() if timestamp is None else timestamp

        created = None
        entry = self._entries.get(key)
        if entry is None:
            with self._lock:
                entry = self._entries.get(key)
                if entry is None:
                    created = DeviceRecord(
                        ip_address=ip,
                        mac_address=normalize_mac(mac),
                        status=DeviceStatus.ACTIVE,
                        last_seen=now,
                        first_seen=now,
                    )
                    self._entries[key] = _Entry(created)

        if created is not None:
            logger.info(f"New device {ip} ({key})")
            self._trigger_callback('new_device', replace(created))
            return True

        with entry.lock:
            record = entry.record
            if record.ip_address != ip:
                logger.info(f"Device {key} moved from {record.ip_address} to {ip}")
                record.ip_address = ip
            if record.last_seen is None or now > record.last_seen:
                record.last_seen = now
            record.status = self._resolved_status(record)
        return False

    def mark_stale(self, now: float, timeout: float) -> List[DeviceRecord]:
        """
        Demote records not seen for longer than timeout.

        Killed records are left Blocked. Records already Inactive are not
        demoted again, so each stale period is reported once.

        Returns:
            Copies of the records demoted by this call.
        """
        demoted = []
        for entry in self._all_entries():
            with entry.lock:
                record = entry.record
                if record.last_seen is None or now - record.last_seen <= timeout:
                    continue
                if record.killed:
                    record.status = DeviceStatus.BLOCKED
                    continue
                if record.status != DeviceStatus.INACTIVE:
                    record.status = DeviceStatus.INACTIVE
                    demoted.append(replace(record))
        return demoted

    def set_selected(self, identity: str, value: bool) -> None:
        entry = self._entry(identity)
        with entry.lock:
            entry.record.selected = bool(value)

    def set_killed(self, identity: str, value: bool) -> None:
        """
        Flag or unflag a device for poisoning.

        Unflagging is the explicit restore that takes the status from
        Blocked back to Active.
        """
        entry = self._entry(identity)
        with entry.lock:
            record = entry.record
            if record.killed == bool(value):
                return
            record.killed = bool(value)
            record.status = DeviceStatus.BLOCKED if value else DeviceStatus.ACTIVE

    def set_details(self, identity: str, hostname: Optional[str] = None,
                    vendor: Optional[str] = None) -> None:
        """Store best-effort hostname/vendor."""
        entry = self._entry(identity)
        with entry.lock:
            if hostname:
                entry.record.hostname = hostname
            if vendor:
                entry.record.vendor = vendor

    def get(self, identity: str) -> Optional[DeviceRecord]:
        try:
            entry = self._entry(identity)
        except (KeyError, ValueError):
            return None
        with entry.lock:
            return replace(entry.record)

    def find_by_ip(self, ip: str) -> Optional[DeviceRecord]:
        """Most recently seen record currently using ip."""
        matches = [record for record in self.snapshot() if record.ip_address == ip]
        if not matches:
            return None
        return max(matches, key=lambda r: r.last_seen or 0.0)

    def snapshot(self) -> List[DeviceRecord]:
        """Copies of all records, in discovery order."""
        records = []
        for entry in self._all_entries():
            with entry.lock:
                records.append(replace(entry.record))
        return records

    def killed(self) -> List[DeviceRecord]:
        return [record for record in self.snapshot() if record.killed]

    def selected(self) -> List[DeviceRecord]:
        return [record for record in self.snapshot() if record.selected]

    def active_count(self) -> int:
        return sum(1 for record in self.snapshot()
                   if record.status == DeviceStatus.ACTIVE)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, identity: str) -> bool:
        try:
            key = normalize_mac(identity)
        except ValueError:
            return False
        with self._lock:
            return key in self._entries
