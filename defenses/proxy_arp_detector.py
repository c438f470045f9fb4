"""
Proxy-ARP Detection

Some routers answer ARP on behalf of every host behind them. When that
happens the replies gathered by a sweep all carry the router's MAC, so
MAC-based device identification (and poisoning by MAC) stops meaning
anything. This module correlates each MAC with the IPs it claimed during
a sweep and raises an advisory warning when the gateway claims most of
them. It never changes engine behaviour.
"""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from config import settings
from core.frame_codec import normalize_mac

logger = logging.getLogger(__name__)


@dataclass
class ProxyARPWarning:
    """Advisory raised when one MAC answers for many IPs."""
    mac_address: str
    claimed_ips: List[str] = field(default_factory=list)
    total_ips: int = 0
    is_gateway: bool = True

    @property
    def ratio(self) -> float:
        return len(self.claimed_ips) / self.total_ips if self.total_ips else 0.0

    @property
    def message(self) -> str:
        who = "Gateway" if self.is_gateway else "Host"
        return (
            f"{who} {self.mac_address} answered ARP for {len(self.claimed_ips)} "
            f"of {self.total_ips} addresses ({self.ratio:.0%}); proxy ARP is "
            f"likely active and devices cannot be told apart by MAC"
        )

    def __str__(self) -> str:
        return self.message


class ProxyARPDetector:
    """
    Tracks MAC -> claimed IPs for the current sweep.

    Usage:
        detector = ProxyARPDetector()
        detector.record_claim("aa:bb:cc:dd:ee:ff", "192.168.1.5")
        warning = detector.analyze(gateway_mac)
    """

    def __init__(self, ratio_threshold: float = settings.PROXY_ARP_RATIO,
                 min_claims: int = settings.PROXY_ARP_MIN_CLAIMS):
        self.ratio_threshold = ratio_threshold
        self.min_claims = min_claims
        self._claims: Dict[str, Set[str]] = defaultdict(set)
        self._lock = threading.Lock()

    def record_claim(self, mac: str, ip: str):
        """Note that mac answered ARP for ip."""
        with self._lock:
            self._claims[normalize_mac(mac)].add(ip)

    def reset(self):
        """Forget claims from the previous sweep."""
        with self._lock:
            self._claims.clear()

    def claims(self) -> Dict[str, Set[str]]:
        with self._lock:
            return {mac: set(ips) for mac, ips in self._claims.items()}

    def _total_ips(self, claims: Dict[str, Set[str]]) -> int:
        return len(set().union(*claims.values())) if claims else 0

    def suspicious_macs(self) -> List[ProxyARPWarning]:
        """Every MAC that claimed at least min_claims distinct IPs."""
        claims = self.claims()
        total = self._total_ips(claims)
        return [
            ProxyARPWarning(mac, sorted(ips), total, is_gateway=False)
            for mac, ips in claims.items()
            if len(ips) >= self.min_claims
        ]

    def analyze(self, gateway_mac: Optional[str]) -> Optional[ProxyARPWarning]:
        """
        Check whether the gateway answered for most discovered IPs.

        Args:
            gateway_mac: Resolved gateway MAC; None skips the check.

        Returns:
            A warning, or None when nothing looks wrong.
        """
        if not gateway_mac:
            logger.debug("Gateway MAC unknown, skipping proxy-ARP check")
            return None

        claims = self.claims()
        gateway_mac = normalize_mac(gateway_mac)
        gateway_ips = claims.get(gateway_mac, set())
        total = self._total_ips(claims)

        if len(gateway_ips) < self.min_claims or total == 0:
            return None
        if len(gateway_ips) / total < self.ratio_threshold:
            return None

        warning = ProxyARPWarning(gateway_mac, sorted(gateway_ips), total)
        logger.warning(warning.message)
        return warning
