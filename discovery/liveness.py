"""
Liveness Monitor

Periodically demotes devices that have gone quiet. It is the only timer
allowed to change a device's status and it only ever demotes; the
listener brings a device back the moment it is heard again.
"""

import logging
import threading
from typing import Callable, List, Optional

from config import settings
from core.registry import DeviceRecord, DeviceRegistry

logger = logging.getLogger(__name__)


class LivenessMonitor:
    """Fixed-interval stale-device sweep over the Registry."""

    def __init__(self, registry: DeviceRegistry,
                 interval: float = settings.LIVENESS_INTERVAL,
                 inactivity_timeout: float = settings.INACTIVITY_TIMEOUT,
                 clock: Optional[Callable[[], float]] = None):
        self.registry = registry
        self.interval = interval
        self.inactivity_timeout = inactivity_timeout
        self._clock = clock or registry._clock
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.demotions = 0

    def tick(self, now: Optional[float] = None) -> List[DeviceRecord]:
        """Demote stale devices once; returns the devices demoted now."""
        now = self._clock() if now is None else now
        demoted = self.registry.mark_stale(now, self.inactivity_timeout)
        for record in demoted:
            logger.info(f"Device {record.ip_address} ({record.mac_address}) is inactive")
        self.demotions += len(demoted)
        return demoted

    def _loop(self):
        while not self._stop_event.wait(self.interval):
            self.tick()

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop,
            daemon=True,
            name="LivenessMonitor"
        )
        self._thread.start()
        logger.debug(f"Liveness monitor every {self.interval}s, "
                     f"timeout {self.inactivity_timeout}s")

    def stop(self):
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2)
