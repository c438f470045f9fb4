from defenses.proxy_arp_detector import ProxyARPDetector
from tests.conftest import GATEWAY_MAC, VICTIM_MAC


def test_gateway_answering_for_most_hosts_is_flagged():
    detector = ProxyARPDetector(ratio_threshold=0.5, min_claims=3)
    for host in range(2, 8):
        detector.record_claim(GATEWAY_MAC, f"192.168.1.{host}")
    detector.record_claim(VICTIM_MAC, "192.168.1.20")

    warning = detector.analyze("00-11-22-33-44-55")

    assert warning is not None
    assert warning.mac_address == GATEWAY_MAC
    assert len(warning.claimed_ips) == 6
    assert warning.total_ips == 7
    assert warning.is_gateway
    assert "proxy ARP" in str(warning)


def test_normal_network_raises_nothing():
    detector = ProxyARPDetector(ratio_threshold=0.5, min_claims=3)
    detector.record_claim(GATEWAY_MAC, "192.168.1.1")
    for host in range(2, 8):
        detector.record_claim(f"aa:bb:cc:00:00:0{host}", f"192.168.1.{host}")

    assert detector.analyze(GATEWAY_MAC) is None
    assert detector.suspicious_macs() == []


def test_below_ratio_is_not_flagged():
    detector = ProxyARPDetector(ratio_threshold=0.5, min_claims=3)
    for host in range(2, 5):
        detector.record_claim(GATEWAY_MAC, f"192.168.1.{host}")
    for host in range(10, 20):
        detector.record_claim(f"aa:bb:cc:00:00:{host}", f"192.168.1.{host}")

    assert detector.analyze(GATEWAY_MAC) is None
    assert [w.mac_address for w in detector.suspicious_macs()] == [GATEWAY_MAC]


def test_unknown_gateway_skips_check():
    detector = ProxyARPDetector(min_claims=1)
    detector.record_claim(GATEWAY_MAC, "192.168.1.2")

    assert detector.analyze(None) is None


def test_reset_clears_claims():
    detector = ProxyARPDetector(min_claims=1)
    detector.record_claim(GATEWAY_MAC, "192.168.1.2")
    detector.reset()

    assert detector.claims() == {}
    assert detector.analyze(GATEWAY_MAC) is None
