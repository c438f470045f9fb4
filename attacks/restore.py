"""
ARP Restoration

Undoes poisoning by re-announcing the true address pairs to both sides:
the victim learns the gateway's real MAC and the gateway learns the
victim's. Replies are repeated a few times to survive loss.

Only real MACs are ever announced. When one side's MAC is unknown the
reply that would announce it is not sent, the other reply is addressed to
broadcast, and the result is marked degraded: the unknown side's cache
stays poisoned until it re-ARPs on its own.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from config import settings
from core import frame_codec
from core.exceptions import TransportError
from core.link import LinkChannel

logger = logging.getLogger(__name__)

_UNRESOLVED = {None, "", frame_codec.BROADCAST_MAC, frame_codec.ZERO_MAC}


@dataclass
class RestoreResult:
    """Outcome of one restoration."""
    victim_ip: str
    frames_sent: int = 0
    send_failures: int = 0
    degraded: bool = False
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.frames_sent > 0 and not self.degraded


class Restorer:
    """Sends corrective ARP replies for one victim/gateway pair at a time."""

    def __init__(self, channel: LinkChannel,
                 repeat: int = settings.RESTORE_REPEAT,
                 delay: float = settings.RESTORE_DELAY):
        self.channel = channel
        self.repeat = max(1, repeat)
        self.delay = delay

    def restore(self, victim_ip: str, victim_mac: Optional[str],
                gateway_ip: Optional[str],
                gateway_mac: Optional[str]) -> RestoreResult:
        """
        Re-announce gateway_ip -> gateway_mac to the victim and
        victim_ip -> victim_mac to the gateway.

        Args:
            victim_ip: Victim's IPv4 address.
            victim_mac: Victim's real MAC from the Registry.
            gateway_ip: Gateway IPv4 address; None restores nothing.
            gateway_mac: Gateway's real MAC, None if unresolved.

        Returns:
            RestoreResult; degraded when a real MAC was missing.
        """
        result = RestoreResult(victim_ip=victim_ip)
        if not gateway_ip:
            result.degraded = True
            result.reason = "gateway IP unknown"
            logger.warning(f"Cannot restore {victim_ip}: {result.reason}")
            return result

        victim_known = victim_mac not in _UNRESOLVED
        gateway_known = gateway_mac not in _UNRESOLVED
        missing = [side for side, known in (("victim", victim_known),
                                            ("gateway", gateway_known)) if not known]
        if missing:
            result.degraded = True
            result.reason = f"{' and '.join(missing)} MAC unknown"

        # An unknown MAC may be a destination (broadcast), never a claim
        frames = []
        if gateway_known:
            frames.append(frame_codec.build_arp_reply(
                gateway_mac, gateway_ip,
                victim_mac if victim_known else frame_codec.BROADCAST_MAC, victim_ip
            ))
        if victim_known:
            frames.append(frame_codec.build_arp_reply(
                victim_mac, victim_ip,
                gateway_mac if gateway_known else frame_codec.BROADCAST_MAC, gateway_ip
            ))
        if not frames:
            logger.warning(f"Cannot restore {victim_ip}: {result.reason}")
            return result

        for i in range(self.repeat):
            for frame in frames:
                try:
                    self.channel.send(frame)
                    result.frames_sent += 1
                except TransportError as e:
                    result.send_failures += 1
                    logger.debug(f"Restore frame for {victim_ip} not sent: {e}")
            if self.delay > 0 and i < self.repeat - 1:
                time.sleep(self.delay)

        if result.degraded:
            logger.warning(f"Restored {victim_ip} in degraded mode ({result.reason})")
        else:
            logger.info(f"Restored ARP mappings for {victim_ip}")
        return result
