import pytest

from attacks.restore import Restorer
from core import frame_codec
from tests.conftest import GATEWAY_IP, GATEWAY_MAC, VICTIM_IP, VICTIM_MAC


def test_restore_announces_true_pairs(channel):
    result = Restorer(channel, repeat=1, delay=0).restore(
        VICTIM_IP, VICTIM_MAC, GATEWAY_IP, GATEWAY_MAC
    )

    to_victim, to_gateway = channel.decoded()
    assert (to_victim.sender_ip, to_victim.sender_mac) == (GATEWAY_IP, GATEWAY_MAC)
    assert (to_victim.target_ip, to_victim.target_mac) == (VICTIM_IP, VICTIM_MAC)
    assert to_victim.eth_source == GATEWAY_MAC
    assert (to_gateway.sender_ip, to_gateway.sender_mac) == (VICTIM_IP, VICTIM_MAC)
    assert (to_gateway.target_ip, to_gateway.target_mac) == (GATEWAY_IP, GATEWAY_MAC)
    assert result.ok
    assert result.frames_sent == 2


def test_restore_repeats(channel):
    result = Restorer(channel, repeat=3, delay=0).restore(
        VICTIM_IP, VICTIM_MAC, GATEWAY_IP, GATEWAY_MAC
    )

    assert result.frames_sent == 6
    assert len(channel.sent) == 6


@pytest.mark.parametrize("victim_mac,gateway_mac,reason", [
    (None, GATEWAY_MAC, "victim MAC unknown"),
    (VICTIM_MAC, None, "gateway MAC unknown"),
    (VICTIM_MAC, frame_codec.BROADCAST_MAC, "gateway MAC unknown"),
    (VICTIM_MAC, frame_codec.ZERO_MAC, "gateway MAC unknown"),
])
def test_unknown_mac_is_only_a_destination(channel, victim_mac, gateway_mac, reason):
    result = Restorer(channel, repeat=1, delay=0).restore(
        VICTIM_IP, victim_mac, GATEWAY_IP, gateway_mac
    )

    assert result.degraded
    assert not result.ok
    assert result.reason == reason
    assert result.frames_sent == 1
    (frame,) = channel.decoded()
    assert frame.sender_mac not in (frame_codec.BROADCAST_MAC, frame_codec.ZERO_MAC)
    assert frame.eth_source == frame.sender_mac
    assert frame.target_mac == frame_codec.BROADCAST_MAC
    assert channel.sent[0].data[0:6] == b"\xff" * 6


def test_victim_unknown_still_repairs_victim_cache(channel):
    Restorer(channel, repeat=1, delay=0).restore(VICTIM_IP, None, GATEWAY_IP, GATEWAY_MAC)

    (frame,) = channel.decoded()
    assert (frame.sender_ip, frame.sender_mac) == (GATEWAY_IP, GATEWAY_MAC)
    assert frame.target_ip == VICTIM_IP


def test_gateway_unknown_still_repairs_gateway_cache(channel):
    Restorer(channel, repeat=1, delay=0).restore(VICTIM_IP, VICTIM_MAC, GATEWAY_IP, None)

    (frame,) = channel.decoded()
    assert (frame.sender_ip, frame.sender_mac) == (VICTIM_IP, VICTIM_MAC)
    assert frame.target_ip == GATEWAY_IP


def test_both_macs_unknown_sends_nothing(channel):
    result = Restorer(channel, repeat=3, delay=0).restore(VICTIM_IP, "", GATEWAY_IP, "")

    assert result.degraded
    assert result.reason == "victim and gateway MAC unknown"
    assert result.frames_sent == 0
    assert channel.sent == []


def test_missing_gateway_ip_sends_nothing(channel):
    result = Restorer(channel).restore(VICTIM_IP, VICTIM_MAC, None, GATEWAY_MAC)

    assert result.degraded
    assert result.frames_sent == 0
    assert channel.sent == []


def test_send_failures_are_counted(channel):
    channel.fail_sends = 1

    result = Restorer(channel, repeat=2, delay=0).restore(
        VICTIM_IP, VICTIM_MAC, GATEWAY_IP, GATEWAY_MAC
    )

    assert result.send_failures == 1
    assert result.frames_sent == 3
