"""
Shared fixtures: a recording link channel, a controllable clock and the
eth0 / 192.168.1.10/24 interface used across the suite.
"""

import threading

import pytest

from core.exceptions import TransportError
from core.frame_codec import parse
from core.network_utils import InterfaceInfo
from core.registry import DeviceRegistry

OWN_MAC = "02:00:00:00:00:10"
OWN_IP = "192.168.1.10"
GATEWAY_IP = "192.168.1.1"
GATEWAY_MAC = "00:11:22:33:44:55"
VICTIM_IP = "192.168.1.5"
VICTIM_MAC = "aa:bb:cc:dd:ee:ff"


class FakeChannel:
    """Records frames instead of writing them to a link."""

    def __init__(self, interface="eth0"):
        self.interface = interface
        self.sent = []
        self.fail_sends = 0
        self.is_open = False
        self._lock = threading.Lock()

    def open(self):
        self.is_open = True
        return self

    def send(self, frame):
        with self._lock:
            if self.fail_sends:
                self.fail_sends -= 1
                raise TransportError("driver busy")
            self.sent.append(frame)

    def receive(self, handler, stop_event, timeout=1.0):
        stop_event.wait()

    def close(self):
        self.is_open = False

    def decoded(self):
        with self._lock:
            return [parse(frame.data) for frame in self.sent]

    def clear(self):
        with self._lock:
            self.sent.clear()


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def interface():
    return InterfaceInfo(
        name="eth0",
        mac=OWN_MAC,
        ip=OWN_IP,
        netmask="255.255.255.0",
        gateway=GATEWAY_IP,
    )


@pytest.fixture
def channel():
    return FakeChannel().open()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    return DeviceRegistry(clock=clock)
