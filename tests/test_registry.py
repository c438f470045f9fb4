import threading

import pytest

from core.registry import DeviceRegistry, DeviceStatus
from tests.conftest import VICTIM_IP, VICTIM_MAC


def test_first_observation_creates_active_record(registry, clock):
    created = registry.upsert_observed(VICTIM_MAC, VICTIM_IP, VICTIM_MAC)
    record = registry.get(VICTIM_MAC)

    assert created is True
    assert len(registry) == 1
    assert record.status is DeviceStatus.ACTIVE
    assert record.ip_address == VICTIM_IP
    assert record.last_seen == clock.now
    assert record.hostname == "Unknown" and record.vendor == "Unknown"
    assert not record.selected and not record.killed


def test_new_device_event_fires_once_per_identity(registry):
    events = []
    registry.register_callback('new_device', events.append)

    for _ in range(5):
        registry.upsert_observed(VICTIM_MAC, VICTIM_IP, VICTIM_MAC)
    registry.upsert_observed("AA:BB:CC:DD:EE:FF", VICTIM_IP, VICTIM_MAC)

    assert len(events) == 1
    assert events[0].mac_address == VICTIM_MAC


def test_reobservation_updates_in_place(registry, clock):
    registry.upsert_observed(VICTIM_MAC, VICTIM_IP, VICTIM_MAC)
    clock.advance(10)
    created = registry.upsert_observed(VICTIM_MAC, "192.168.1.77", VICTIM_MAC)

    record = registry.get(VICTIM_MAC)
    assert created is False
    assert len(registry) == 1
    assert record.ip_address == "192.168.1.77"
    assert record.last_seen == clock.now


def test_last_seen_never_goes_backwards(registry, clock):
    registry.upsert_observed(VICTIM_MAC, VICTIM_IP, VICTIM_MAC, timestamp=500.0)
    registry.upsert_observed(VICTIM_MAC, VICTIM_IP, VICTIM_MAC, timestamp=400.0)

    assert registry.get(VICTIM_MAC).last_seen == 500.0


def test_mark_stale_demotes_once(registry, clock):
    registry.upsert_observed(VICTIM_MAC, VICTIM_IP, VICTIM_MAC)
    clock.advance(61)

    first = registry.mark_stale(clock.now, 60)
    second = registry.mark_stale(clock.now + 30, 60)

    assert [r.mac_address for r in first] == [VICTIM_MAC]
    assert second == []
    assert registry.get(VICTIM_MAC).status is DeviceStatus.INACTIVE


def test_mark_stale_leaves_fresh_records(registry, clock):
    registry.upsert_observed(VICTIM_MAC, VICTIM_IP, VICTIM_MAC)
    clock.advance(30)

    assert registry.mark_stale(clock.now, 60) == []
    assert registry.get(VICTIM_MAC).status is DeviceStatus.ACTIVE


def test_killed_record_stays_blocked_when_stale(registry, clock):
    registry.upsert_observed(VICTIM_MAC, VICTIM_IP, VICTIM_MAC)
    registry.set_killed(VICTIM_MAC, True)
    clock.advance(600)

    assert registry.mark_stale(clock.now, 60) == []
    assert registry.get(VICTIM_MAC).status is DeviceStatus.BLOCKED


def test_observation_resurrects_inactive_device(registry, clock):
    registry.upsert_observed(VICTIM_MAC, VICTIM_IP, VICTIM_MAC)
    clock.advance(120)
    registry.mark_stale(clock.now, 60)

    registry.upsert_observed(VICTIM_MAC, VICTIM_IP, VICTIM_MAC)

    assert registry.get(VICTIM_MAC).status is DeviceStatus.ACTIVE


def test_observation_keeps_killed_device_blocked(registry):
    registry.upsert_observed(VICTIM_MAC, VICTIM_IP, VICTIM_MAC)
    registry.set_killed(VICTIM_MAC, True)

    registry.upsert_observed(VICTIM_MAC, VICTIM_IP, VICTIM_MAC)

    record = registry.get(VICTIM_MAC)
    assert record.killed is True
    assert record.status is DeviceStatus.BLOCKED


def test_unkill_restores_active_status(registry):
    registry.upsert_observed(VICTIM_MAC, VICTIM_IP, VICTIM_MAC)
    registry.set_killed(VICTIM_MAC, True)
    registry.set_killed(VICTIM_MAC, True)
    registry.set_killed(VICTIM_MAC, False)

    record = registry.get(VICTIM_MAC)
    assert record.killed is False
    assert record.status is DeviceStatus.ACTIVE


def test_selection_is_idempotent(registry):
    registry.upsert_observed(VICTIM_MAC, VICTIM_IP, VICTIM_MAC)
    registry.set_selected(VICTIM_MAC, True)
    registry.set_selected(VICTIM_MAC, True)

    assert [r.mac_address for r in registry.selected()] == [VICTIM_MAC]
    registry.set_selected(VICTIM_MAC, False)
    assert registry.selected() == []


def test_mutators_reject_unknown_identity(registry):
    with pytest.raises(KeyError):
        registry.set_killed(VICTIM_MAC, True)
    with pytest.raises(KeyError):
        registry.set_selected(VICTIM_MAC, True)
    assert registry.get(VICTIM_MAC) is None
    assert VICTIM_MAC not in registry


def test_snapshot_returns_copies(registry):
    registry.upsert_observed(VICTIM_MAC, VICTIM_IP, VICTIM_MAC)
    snapshot = registry.snapshot()
    snapshot[0].killed = True

    assert registry.get(VICTIM_MAC).killed is False


def test_find_by_ip_and_details(registry, clock):
    registry.upsert_observed(VICTIM_MAC, VICTIM_IP, VICTIM_MAC)
    registry.set_details(VICTIM_MAC, hostname="laptop.lan", vendor="Acme")

    record = registry.find_by_ip(VICTIM_IP)
    assert record.mac_address == VICTIM_MAC
    assert record.hostname == "laptop.lan"
    assert record.vendor == "Acme"
    assert registry.find_by_ip("192.168.1.99") is None
    assert record.to_dict()['status'] == "Active"


def test_concurrent_upserts_create_each_identity_once():
    registry = DeviceRegistry()
    events = []
    lock = threading.Lock()

    def on_new(record):
        with lock:
            events.append(record.mac_address)

    registry.register_callback('new_device', on_new)
    macs = [f"02:00:00:00:01:{i:02x}" for i in range(50)]

    def worker():
        for i, mac in enumerate(macs):
            registry.upsert_observed(mac, f"192.168.1.{i + 100}", mac)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(registry) == 50
    assert sorted(events) == sorted(macs)
    assert registry.active_count() == 50


def test_failing_callback_does_not_break_upsert(registry):
    def boom(record):
        raise RuntimeError("ui gone")

    registry.register_callback('new_device', boom)
    assert registry.upsert_observed(VICTIM_MAC, VICTIM_IP, VICTIM_MAC) is True
    assert VICTIM_MAC in registry
