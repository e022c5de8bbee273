"""Remote-side mDNS browser for devices hosting a companion remote session."""
from __future__ import annotations
import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import Callable, Optional

from zeroconf import ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

logger = logging.getLogger("companion_remote.remote.discovery")

SERVICE_TYPE = "_companion-remote._tcp.local."
INFO_REQUEST_TIMEOUT_MS = 3000


@dataclass
class DiscoveredHost:
    name: str
    host: str
    port: int
    device_name: str = ""
    platform: str = ""

    @property
    def host_address(self) -> str:
        return f"{self.host}:{self.port}"


def _prop(props: dict, key: bytes) -> str:
    value = props.get(key)
    if not value:
        return ""
    return value.decode("utf-8", errors="replace")


def parse_service(name: str, addresses: list[bytes], port: Optional[int],
                  properties: Optional[dict]) -> Optional[DiscoveredHost]:
    """Build a DiscoveredHost from resolved service info; None if unusable."""
    ipv4 = [a for a in addresses if len(a) == 4]
    if not ipv4 or not port:
        return None
    props = properties or {}
    return DiscoveredHost(
        name=name,
        host=socket.inet_ntoa(ipv4[0]),
        port=port,
        device_name=_prop(props, b"name"),
        platform=_prop(props, b"platform"),
    )


class HostBrowser:
    """Collects hosts advertising on the LAN; ``on_found`` fires once per new host."""

    def __init__(self, on_found: Optional[Callable[[DiscoveredHost], None]] = None):
        self.on_found = on_found
        self._discovered: dict[str, DiscoveredHost] = {}
        self._zeroconf: Optional[AsyncZeroconf] = None
        self._browser: Optional[AsyncServiceBrowser] = None
        self._tasks: set[asyncio.Task] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def discovered(self) -> list[DiscoveredHost]:
        return list(self._discovered.values())

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._zeroconf = AsyncZeroconf()
        self._browser = AsyncServiceBrowser(
            self._zeroconf.zeroconf, SERVICE_TYPE, handlers=[self._on_state_change]
        )
        logger.info("mDNS browser started")

    def _on_state_change(self, zeroconf: Zeroconf, service_type: str, name: str,
                         state_change: ServiceStateChange) -> None:
        if state_change is ServiceStateChange.Removed:
            if self._discovered.pop(name, None) is not None:
                logger.info("Host went away: %s", name)
            return
        if state_change is ServiceStateChange.Added and self._loop is not None:
            # zeroconf may call handlers off the event loop thread
            self._loop.call_soon_threadsafe(self._spawn_resolve, zeroconf, service_type, name)

    def _spawn_resolve(self, zeroconf: Zeroconf, service_type: str, name: str) -> None:
        task = asyncio.ensure_future(self._resolve(zeroconf, service_type, name))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _resolve(self, zeroconf: Zeroconf, service_type: str, name: str) -> None:
        info = AsyncServiceInfo(service_type, name)
        if not await info.async_request(zeroconf, INFO_REQUEST_TIMEOUT_MS):
            logger.warning("No service info for %s", name)
            return
        host = parse_service(name, info.addresses, info.port, info.properties)
        if host is None:
            logger.warning("No usable IPv4 address for %s", name)
            return
        is_new = name not in self._discovered
        self._discovered[name] = host
        logger.info("Discovered host %s @ %s", host.device_name or name, host.host_address)
        if is_new and self.on_found is not None:
            self.on_found(host)

    async def stop(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._browser is not None:
            await self._browser.async_cancel()
            self._browser = None
        if self._zeroconf is not None:
            await self._zeroconf.async_close()
            self._zeroconf = None
