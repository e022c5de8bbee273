"""mDNS/zeroconf advertisement of a device that is hosting a remote session."""
from __future__ import annotations
import logging
import socket
from typing import Optional

from zeroconf import NonUniqueNameException
from zeroconf.asyncio import AsyncServiceInfo, AsyncZeroconf

logger = logging.getLogger("companion_remote.host.discovery")

SERVICE_TYPE = "_companion-remote._tcp.local."
SERVICE_VERSION = "1"


def build_service_properties(device_name: str, platform: str) -> dict[bytes, bytes]:
    """TXT record for the advertisement. Credentials are never published."""
    return {
        b"name": device_name.encode("utf-8"),
        b"platform": platform.encode("utf-8"),
        b"version": SERVICE_VERSION.encode("utf-8"),
    }


def service_instance_name(device_name: str, session_id: str) -> str:
    label = "".join(c if c.isalnum() or c in "-_ " else "-" for c in device_name).strip() or "host"
    # The session id suffix only disambiguates two hosts with the same name.
    return f"{label[:40]}-{session_id[:4].lower()}.{SERVICE_TYPE}"


class HostAdvertiser:
    """Advertises a hosting device so remotes on the LAN can find its address."""

    def __init__(self, device_name: str, platform: str, ip: str, port: int, session_id: str):
        self.device_name = device_name
        self.platform = platform
        self.ip = ip
        self.port = port
        self.session_id = session_id
        self._zeroconf: Optional[AsyncZeroconf] = None
        self._info: Optional[AsyncServiceInfo] = None

    @property
    def is_advertising(self) -> bool:
        return self._info is not None

    async def start(self) -> bool:
        """Register the service; False (logged) if mDNS is unavailable on this network."""
        info = AsyncServiceInfo(
            SERVICE_TYPE,
            service_instance_name(self.device_name, self.session_id),
            addresses=[socket.inet_aton(self.ip)],
            port=self.port,
            properties=build_service_properties(self.device_name, self.platform),
        )
        zc = AsyncZeroconf()
        try:
            await zc.async_register_service(info)
        except (OSError, NonUniqueNameException) as e:
            logger.warning("Failed to start mDNS advertisement: %s", e)
            await zc.async_close()
            return False
        self._zeroconf = zc
        self._info = info
        logger.info("mDNS advertisement started on %s:%d", self.ip, self.port)
        return True

    async def stop(self) -> None:
        zc, info = self._zeroconf, self._info
        self._zeroconf = None
        self._info = None
        if zc is None:
            return
        try:
            if info is not None:
                await zc.async_unregister_service(info)
        finally:
            await zc.async_close()
        logger.info("mDNS advertisement stopped")
