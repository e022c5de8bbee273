"""WebSocket transport capability used by the host and remote engines."""
from __future__ import annotations
import logging
import re
from http import HTTPStatus
from typing import Awaitable, Callable, Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.http11 import Request, Response

from shared.errors import RemotePeerError, RemotePeerErrorType
from shared.protocol import WS_PATH

logger = logging.getLogger("companion_remote.shared.transport")

ConnectionHandler = Callable[[ServerConnection], Awaitable[None]]

_HTTP_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def build_ws_url(host_address: str) -> str:
    """``https://`` addresses map to ``wss://``; anything else to ``ws://``."""
    address = host_address.strip()
    scheme = "wss" if address.lower().startswith("https") else "ws"
    clean = _HTTP_SCHEME_RE.sub("", address).rstrip("/")
    return f"{scheme}://{clean}{WS_PATH}"


def listening_port(server: Server) -> int:
    for sock in server.sockets:
        return sock.getsockname()[1]
    raise RuntimeError("Server has no listening sockets")


def _reject_unknown_path(connection: ServerConnection, request: Request) -> Optional[Response]:
    path = request.path.split("?", 1)[0]
    if path != WS_PATH:
        logger.debug("Rejecting request for %s", path)
        return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")
    return None


class Transport:
    """Capability interface: platforms that cannot accept sockets set ``can_listen`` False."""

    can_listen: bool = True

    async def listen(self, handler: ConnectionHandler, host: str, port: int) -> Server:
        raise NotImplementedError

    async def connect(self, url: str) -> ClientConnection:
        raise NotImplementedError


class WebSocketTransport(Transport):
    """Listens and dials with the ``websockets`` asyncio implementation."""

    def __init__(self, ping_interval: Optional[float] = 10, ping_timeout: Optional[float] = 30):
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout

    async def listen(self, handler: ConnectionHandler, host: str, port: int) -> Server:
        return await serve(handler, host, port, process_request=_reject_unknown_path)

    async def connect(self, url: str) -> ClientConnection:
        # The join timeout bounds the opening handshake, so websockets' own is disabled.
        return await connect(
            url,
            open_timeout=None,
            ping_interval=self.ping_interval,
            ping_timeout=self.ping_timeout,
        )


class ConnectOnlyTransport(WebSocketTransport):
    """Transport for runtimes without a listening-socket capability (e.g. browsers)."""

    can_listen = False

    async def listen(self, handler: ConnectionHandler, host: str, port: int) -> Server:
        raise RemotePeerError(
            RemotePeerErrorType.SERVER_ERROR,
            "Hosting sessions is not supported on this platform",
        )
