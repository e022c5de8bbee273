"""LAN address selection for a hosting device."""
from __future__ import annotations
import ipaddress
import logging
from typing import Iterable

import ifaddr

from shared.errors import RemotePeerError, RemotePeerErrorType

logger = logging.getLogger("companion_remote.shared.netinfo")

# Interface names that usually mean Wi-Fi or Ethernet (en0, wlan0, wlp2s0, eth0, "Wi-Fi").
_PREFERRED_NAME_HINTS = ("en", "wl", "eth", "wi-fi")


def list_ipv4_interfaces() -> list[tuple[str, str]]:
    """Return (interface name, IPv4 address) pairs in OS enumeration order."""
    result = []
    for adapter in ifaddr.get_adapters():
        name = adapter.nice_name or adapter.name
        for ip in adapter.ips:
            # ifaddr reports IPv6 addresses as tuples
            if isinstance(ip.ip, str):
                result.append((str(name), ip.ip))
    return result


def _is_loopback(address: str) -> bool:
    try:
        return ipaddress.IPv4Address(address).is_loopback
    except ipaddress.AddressValueError:
        return True


def select_lan_address(interfaces: Iterable[tuple[str, str]]) -> str:
    candidates = [(name, addr) for name, addr in interfaces if not _is_loopback(addr)]
    for name, addr in candidates:
        lowered = name.lower()
        if any(hint in lowered for hint in _PREFERRED_NAME_HINTS):
            return addr
    if candidates:
        return candidates[0][1]
    raise RemotePeerError(RemotePeerErrorType.NETWORK_ERROR, "No network interface found")


def get_local_ip() -> str:
    interfaces = list_ipv4_interfaces()
    try:
        address = select_lan_address(interfaces)
    except RemotePeerError:
        logger.error("No usable IPv4 interface among %d candidates", len(interfaces))
        raise
    logger.debug("Selected LAN address %s", address)
    return address
