"""Tests for LAN address selection."""
import pytest

from shared import netinfo
from shared.errors import RemotePeerError, RemotePeerErrorType
from shared.netinfo import select_lan_address


def test_prefers_wifi_or_ethernet_names():
    interfaces = [("lo", "127.0.0.1"), ("docker0", "172.17.0.1"), ("wlan0", "192.168.1.40")]
    assert select_lan_address(interfaces) == "192.168.1.40"


def test_windows_style_names():
    interfaces = [("vEthernet (WSL)", "172.20.0.1"), ("Wi-Fi", "192.168.0.12")]
    # "vEthernet" contains "eth" too, so it wins by order
    assert select_lan_address(interfaces) == "172.20.0.1"
    assert select_lan_address(list(reversed(interfaces))) == "192.168.0.12"


def test_falls_back_to_first_non_loopback():
    interfaces = [("lo0", "127.0.0.1"), ("utun3", "10.8.0.2"), ("bridge100", "192.168.64.1")]
    assert select_lan_address(interfaces) == "10.8.0.2"


def test_no_interface_is_network_error():
    with pytest.raises(RemotePeerError) as exc:
        select_lan_address([("lo", "127.0.0.1")])
    assert exc.value.error_type == RemotePeerErrorType.NETWORK_ERROR
    assert str(exc.value) == "No network interface found"


def test_get_local_ip_uses_enumeration(monkeypatch):
    monkeypatch.setattr(netinfo, "list_ipv4_interfaces", lambda: [("lo", "127.0.0.1"), ("eth0", "10.1.2.3")])
    assert netinfo.get_local_ip() == "10.1.2.3"
