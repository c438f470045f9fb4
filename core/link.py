"""
Raw layer-2 channel on one network interface.

One channel is shared by every sender on an interface (sweeps, the
poisoning loop, restoration). Writes are serialised by an internal lock;
receiving runs one background capture for the life of the listener and
never takes that lock.
"""

import logging
import threading
from typing import Callable, Optional

from scapy.all import AsyncSniffer, conf
from scapy.error import Scapy_Exception

from core.exceptions import ChannelOpenError, TransportError
from core.frame_codec import Frame

logger = logging.getLogger(__name__)

FrameHandler = Callable[[bytes], None]


class LinkChannel:
    """
    Raw Ethernet send/receive channel.

    Usage:
        with LinkChannel("eth0") as channel:
            channel.send(build_arp_request(mac, ip, target))
    """

    def __init__(self, interface: str):
        self.interface = interface
        self._socket = None
        self._send_lock = threading.Lock()
        self.sent_count = 0
        self.failed_count = 0

    @property
    def is_open(self) -> bool:
        return self._socket is not None

    def open(self) -> "LinkChannel":
        """
        Open the raw socket.

        Raises:
            ChannelOpenError: interface missing, no privileges, or no
                packet capture driver.
        """
        if self._socket is not None:
            return self
        try:
            self._socket = conf.L2socket(iface=self.interface)
        except (OSError, Scapy_Exception, ValueError) as e:
            raise ChannelOpenError(self.interface, str(e)) from e
        logger.info(f"Raw channel open on {self.interface}")
        return self

    def send(self, frame: Frame) -> None:
        """
        Write one frame to the link.

        Raises:
            TransportError: the channel is closed or the write failed.
        """
        with self._send_lock:
            if self._socket is None:
                self.failed_count += 1
                raise TransportError(f"Channel on {self.interface} is not open")
            try:
                self._socket.send(frame.data)
            except (OSError, Scapy_Exception) as e:
                self.failed_count += 1
                raise TransportError(
                    f"Send of {frame.kind.value} on {self.interface} failed: {e}"
                ) from e
            self.sent_count += 1

    def receive(self, handler: FrameHandler, stop_event: threading.Event,
                timeout: float = 1.0) -> None:
        """
        Hand every inbound frame's bytes to handler until stop_event is set.

        One capture runs until stop_event is set; timeout is how often the
        capture thread is checked. A capture that dies is logged and
        restarted, so the loop only ends through stop_event.
        """
        def on_packet(packet):
            data = getattr(packet, "original", None) or bytes(packet)
            handler(data)

        while not stop_event.is_set():
            sniffer = AsyncSniffer(iface=self.interface, prn=on_packet, store=False)
            try:
                sniffer.start()
            except (OSError, Scapy_Exception) as e:
                logger.error(f"Capture on {self.interface} failed to start: {e}")
                stop_event.wait(timeout)
                continue

            while not stop_event.wait(timeout):
                if sniffer.thread is not None and not sniffer.thread.is_alive():
                    logger.error(f"Capture on {self.interface} ended, restarting")
                    break

            if sniffer.running:
                try:
                    sniffer.stop()
                except Scapy_Exception as e:
                    logger.debug(f"Capture on {self.interface} already stopped: {e}")

    def close(self) -> None:
        with self._send_lock:
            if self._socket is not None:
                self._socket.close()
                self._socket = None
                logger.info(f"Raw channel on {self.interface} closed")

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def open_channel(interface: str, factory: Optional[Callable[[str], LinkChannel]] = None) -> LinkChannel:
    """Create and open a channel, raising ChannelOpenError on failure."""
    channel = (factory or LinkChannel)(interface)
    return channel.open()
