import threading

import pytest

from config.settings import ManagerConfig
from core import frame_codec
from core.exceptions import ChannelOpenError, ConfigurationError
from core.frame_codec import ArpReply, build_arp_reply
from core.network_utils import InterfaceInfo
from orchestration import manager as manager_module
from orchestration.manager import NetworkManager
from tests.conftest import (
    GATEWAY_IP, GATEWAY_MAC, OWN_IP, OWN_MAC, VICTIM_IP, VICTIM_MAC, FakeChannel,
)


def reply_from(ip, mac):
    return build_arp_reply(mac, ip, OWN_MAC, OWN_IP).data


@pytest.fixture
def config():
    return ManagerConfig(
        interface="eth0",
        packet_delay=0,
        settle_time=0,
        resolve_details=False,
        spoof_interval=0.01,
        restore_repeat=1,
        restore_delay=0,
    )


@pytest.fixture
def make_manager(config, interface, channel):
    managers = []

    def make(mac_resolver=lambda ip, iface: None, **kwargs):
        manager = NetworkManager(
            config,
            interface_lookup=lambda name: interface if name == "eth0" else None,
            channel_factory=lambda name: channel,
            gateway_lookup=lambda name: None,
            mac_resolver=mac_resolver,
            **kwargs
        )
        managers.append(manager)
        return manager

    yield make
    for manager in managers:
        manager.stop()


def test_start_opens_channel_and_reports_network(make_manager, channel):
    manager = make_manager()
    manager.start()

    info = manager.get_network_info()
    assert channel.is_open
    assert manager.gateway_ip == GATEWAY_IP
    assert info.network_range == "192.168.1.0/24"
    assert info.gateway == GATEWAY_IP

    manager.stop()
    assert not channel.is_open
    assert not manager.killer.is_running()


def test_unknown_interface_is_rejected(make_manager, config):
    config.interface = "wlan9"

    with pytest.raises(ConfigurationError):
        make_manager().start()


def test_interface_without_ipv4_is_rejected(config, channel):
    manager = NetworkManager(
        config,
        interface_lookup=lambda name: InterfaceInfo(name="eth0", mac=OWN_MAC),
        channel_factory=lambda name: channel,
    )

    with pytest.raises(ConfigurationError):
        manager.start()


def test_channel_open_failure_propagates(config, interface):
    class BrokenChannel:
        def __init__(self, name):
            self.name = name

        def open(self):
            raise ChannelOpenError(self.name, "permission denied")

    manager = NetworkManager(config, interface_lookup=lambda name: interface,
                             channel_factory=BrokenChannel)

    with pytest.raises(ChannelOpenError) as excinfo:
        manager.start()
    assert "permission denied" in str(excinfo.value)


def test_invalid_setting_rejected_before_channel_opens(config, interface):
    opened = []
    config.probe_modes = ("arp", "udp")
    manager = NetworkManager(config, interface_lookup=lambda name: interface,
                             channel_factory=lambda name: opened.append(name) or FakeChannel(name))

    with pytest.raises(ConfigurationError):
        manager.start()
    assert opened == []
    assert manager.channel is None


def test_channel_closed_when_components_fail(make_manager, channel, monkeypatch):
    def broken_engine(*args, **kwargs):
        raise ConfigurationError("engine refused settings")

    monkeypatch.setattr(manager_module, "DiscoveryEngine", broken_engine)
    manager = make_manager()

    with pytest.raises(ConfigurationError):
        manager.start()
    assert not channel.is_open


def test_operations_require_start(make_manager):
    with pytest.raises(ConfigurationError):
        make_manager().request_scan()


def test_scan_updates_registry_and_network_info(make_manager, channel):
    manager = make_manager()
    manager.start()
    manager.engine.handle_frame(reply_from(VICTIM_IP, VICTIM_MAC))

    result = manager.scan()

    assert result.probes_sent == 253
    assert manager.get_network_info().active_devices == 1
    assert manager.new_devices.get_nowait().mac_address == VICTIM_MAC
    assert [d.ip_address for d in manager.devices()] == [VICTIM_IP]


def test_request_scan_runs_through_command_queue(make_manager):
    manager = make_manager()
    manager.start()
    done = threading.Event()
    manager.engine.register_callback('sweep_complete', lambda result: done.set())

    manager.request_scan()

    assert done.wait(timeout=10)


def test_find_device_by_mac_or_ip(make_manager):
    manager = make_manager()
    manager.start()
    manager.engine.handle_frame(reply_from(VICTIM_IP, VICTIM_MAC))

    assert manager.find_device("AA-BB-CC-DD-EE-FF").ip_address == VICTIM_IP
    assert manager.find_device(VICTIM_IP).mac_address == VICTIM_MAC
    assert manager.find_device("192.168.1.99") is None


def test_bulk_kill_skips_gateway(make_manager):
    manager = make_manager()
    manager.start()
    manager.engine.handle_frame(reply_from(GATEWAY_IP, GATEWAY_MAC))
    manager.engine.handle_frame(reply_from(VICTIM_IP, VICTIM_MAC))
    manager.set_selected(GATEWAY_MAC, True)
    manager.set_selected(VICTIM_MAC, True)

    assert manager.kill_selected() == 1
    assert [r.mac_address for r in manager.registry.killed()] == [VICTIM_MAC]
    assert manager.restore_selected() == 1
    assert manager.kill_all() == 1
    assert manager.restore_all() == 1
    assert manager.registry.killed() == []


def test_stop_restores_killed_devices(make_manager, channel):
    manager = make_manager()
    manager.start()
    manager.engine.handle_frame(reply_from(GATEWAY_IP, GATEWAY_MAC))
    manager.engine.handle_frame(reply_from(VICTIM_IP, VICTIM_MAC))
    poisoned = threading.Event()
    manager.killer.register_callback('poison_sent', lambda victim, gateway: poisoned.set())

    manager.set_killed(VICTIM_MAC, True)
    assert poisoned.wait(timeout=5)
    manager.stop()

    to_victim, to_gateway = channel.decoded()[-2:]
    assert (to_victim.sender_ip, to_victim.sender_mac) == (GATEWAY_IP, GATEWAY_MAC)
    assert (to_gateway.sender_ip, to_gateway.sender_mac) == (VICTIM_IP, VICTIM_MAC)


def test_degraded_restoration_is_reported(make_manager):
    manager = make_manager()
    manager.start()
    manager.engine.handle_frame(reply_from(VICTIM_IP, VICTIM_MAC))
    poisoned = threading.Event()
    restored = threading.Event()
    manager.killer.register_callback('poison_sent', lambda victim, gateway: poisoned.set())
    manager.killer.register_callback('restored', lambda result: restored.set())

    manager.set_killed(VICTIM_MAC, True)
    assert poisoned.wait(timeout=5)
    manager.set_killed(VICTIM_MAC, False)

    assert restored.wait(timeout=5)
    warnings = manager.drain_warnings()
    assert any("gateway MAC unknown" in message for message in warnings)


def test_proxy_arp_warning_after_sweep(make_manager, channel):
    manager = make_manager(mac_resolver=lambda ip, iface: GATEWAY_MAC)
    original_send = channel.send
    proxied = {"192.168.1.2", "192.168.1.3", "192.168.1.4"}

    def send_and_answer(frame):
        original_send(frame)
        decoded = frame_codec.parse(frame.data)
        if not isinstance(decoded, ArpReply) and decoded.target_ip in proxied:
            manager.engine.handle_frame(reply_from(decoded.target_ip, GATEWAY_MAC))

    channel.send = send_and_answer
    manager.start()

    manager.scan()

    warnings = manager.drain_warnings()
    assert any("proxy ARP" in message for message in warnings)
