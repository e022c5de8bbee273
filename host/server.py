"""Companion remote session host: accepts and authenticates one controller at a time."""
from __future__ import annotations
import asyncio
import logging
import secrets
import time
from typing import Callable, Optional, Union

from websockets.asyncio.server import Server, ServerConnection
from websockets.exceptions import ConnectionClosed, ConnectionClosedError

from shared.auth_guard import AUTH_LOCKOUT_SECONDS, MAX_FAILED_AUTH_ATTEMPTS, AuthGuard
from shared.errors import RemotePeerError, RemotePeerErrorType
from shared.netinfo import get_local_ip
from shared.peer import PeerSession
from shared.protocol import (
    CLOSE_AUTH_REQUIRED, CLOSE_AUTH_TIMEOUT, CLOSE_INVALID_CREDENTIALS,
    CLOSE_RATE_LIMITED, CLOSE_REPLACED, DEFAULT_PORT,
    INVALID_CREDENTIALS_MESSAGE, RATE_LIMITED_MESSAGE,
    AuthFailed, AuthRequest, AuthSuccess, RemoteCommand, encode,
)
from shared.session import (
    HostedSession, RemoteDevice, RemoteSessionRole, RemoteSessionStatus,
    generate_pin, generate_session_id, normalize_session_id,
)
from shared.transport import Transport, listening_port

logger = logging.getLogger("companion_remote.host.server")

AUTH_TIMEOUT_SECONDS = 10.0
BIND_HOST = "0.0.0.0"


def _same_secret(given: Optional[str], expected: Optional[str]) -> bool:
    if given is None or expected is None:
        return False
    return secrets.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


class SessionHost(PeerSession):
    """
    Binds the listening socket and relays commands to/from a single
    authenticated controller. A newly authenticated controller always
    evicts the previous one.
    """

    ack_commands = True

    def __init__(self, transport: Optional[Transport] = None,
                 preferred_port: int = DEFAULT_PORT,
                 auth_timeout: float = AUTH_TIMEOUT_SECONDS,
                 max_failed_attempts: int = MAX_FAILED_AUTH_ATTEMPTS,
                 lockout_seconds: float = AUTH_LOCKOUT_SECONDS,
                 address_resolver: Callable[[], str] = get_local_ip,
                 bind_host: str = BIND_HOST,
                 clock: Callable[[], float] = time.monotonic):
        super().__init__(transport)
        self.preferred_port = preferred_port
        self.auth_timeout = auth_timeout
        self.bind_host = bind_host
        self._max_failed_attempts = max_failed_attempts
        self._lockout_seconds = lockout_seconds
        self._address_resolver = address_resolver
        self._clock = clock
        self._server: Optional[Server] = None
        self._client: Optional[ServerConnection] = None
        self._evictions: set[asyncio.Task] = set()
        self._device_name = "Unknown Device"
        self._platform = "unknown"
        self.auth_guard = self._new_auth_guard()

    def _new_auth_guard(self) -> AuthGuard:
        return AuthGuard(self._max_failed_attempts, self._lockout_seconds, clock=self._clock)

    def _active_connection(self) -> Optional[ServerConnection]:
        return self._client

    @property
    def port(self) -> Optional[int]:
        if self._server is None:
            return None
        return listening_port(self._server)

    # ---- Session lifecycle ----

    async def create_session(self, device_name: str, platform: str) -> HostedSession:
        if not self.transport.can_listen:
            raise RemotePeerError(
                RemotePeerErrorType.SERVER_ERROR,
                "Hosting sessions is not supported on this platform",
            )
        if self._server is not None or self._role is not None:
            await self.disconnect()

        self._role = RemoteSessionRole.HOST
        self._session_id = generate_session_id()
        self._pin = generate_pin()
        self._my_peer_id = f"host-{self._session_id}"
        self._device_name = device_name
        self._platform = platform
        self.auth_guard = self._new_auth_guard()

        try:
            self._server = await self._bind()
            local_ip = self._resolve_address()
        except RemotePeerError as e:
            logger.error("Failed to create server: %s", e)
            await self._close_server()
            self._clear_identity()
            self._emit_error(RemotePeerError(
                RemotePeerErrorType.SERVER_ERROR,
                f"Failed to create server: {e}",
                original_error=e,
            ))
            self._set_state(RemoteSessionStatus.ERROR)
            raise

        self._host_address = f"{local_ip}:{listening_port(self._server)}"
        logger.info("Host server started at %s (session %s)", self._host_address, self._session_id)
        self._set_state(RemoteSessionStatus.CONNECTING)
        return HostedSession(self._session_id, self._pin, self._host_address)

    async def _bind(self) -> Server:
        try:
            server = await self.transport.listen(self._handle_connection, self.bind_host, self.preferred_port)
            logger.debug("Server bound to port %d", listening_port(server))
            return server
        except OSError as e:
            logger.warning("Port %d unavailable (%s), using an OS-assigned port", self.preferred_port, e)
        try:
            return await self.transport.listen(self._handle_connection, self.bind_host, 0)
        except OSError as e:
            raise RemotePeerError(
                RemotePeerErrorType.SERVER_ERROR,
                f"Could not bind listening socket: {e}",
                original_error=e,
            ) from e

    def _resolve_address(self) -> str:
        try:
            return self._address_resolver()
        except OSError as e:
            raise RemotePeerError(
                RemotePeerErrorType.NETWORK_ERROR,
                f"Could not enumerate network interfaces: {e}",
                original_error=e,
            ) from e

    async def _close_server(self) -> None:
        server, self._server = self._server, None
        if server is not None:
            server.close()
            await server.wait_closed()

    async def disconnect(self) -> None:
        """Close the controller and the listener; safe to call at any time."""
        logger.debug("Disconnecting")
        client, self._client = self._client, None
        if client is not None:
            await client.close()
        evictions, self._evictions = self._evictions, set()
        for task in evictions:
            task.cancel()
        if evictions:
            await asyncio.gather(*evictions, return_exceptions=True)
        await self._close_server()
        self._clear_identity()
        self._set_state(RemoteSessionStatus.DISCONNECTED)

    # ---- Per-connection handling ----

    async def _handle_connection(self, ws: ServerConnection) -> None:
        logger.debug("New WebSocket connection from %s", ws.remote_address)
        try:
            if await self._await_auth(ws):
                await self._serve_controller(ws)
        except ConnectionClosed:
            logger.debug("WebSocket connection closed")
        finally:
            if self._client is ws:
                self._client = None
                self._notify(self._emit_device_disconnected)
                self._notify(self._set_state, RemoteSessionStatus.DISCONNECTED)

    async def _await_auth(self, ws: ServerConnection) -> bool:
        """Wait for a valid ``auth`` frame; the connection is closed on any failure."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.auth_timeout
        while True:
            try:
                raw = await asyncio.wait_for(ws.recv(), timeout=max(0.0, deadline - loop.time()))
            except TimeoutError:
                logger.warning("Authentication timeout")
                await ws.close(CLOSE_AUTH_TIMEOUT, "Authentication timeout")
                return False
            message = self._decode_frame(raw)
            if message is None:
                continue
            if not isinstance(message, AuthRequest):
                logger.warning("Expected auth, got %s", type(message).__name__)
                await ws.close(CLOSE_AUTH_REQUIRED, "Authentication required")
                return False
            return await self._authenticate(ws, message)

    async def _authenticate(self, ws: ServerConnection, auth: AuthRequest) -> bool:
        if self.auth_guard.is_locked_out():
            logger.warning("Auth attempt rejected (rate limited)")
            await ws.send(encode(AuthFailed(RATE_LIMITED_MESSAGE)))
            await ws.close(CLOSE_RATE_LIMITED, "Rate limited")
            return False

        session_id = normalize_session_id(auth.session_id) if auth.session_id else None
        if not (_same_secret(session_id, self._session_id) and _same_secret(auth.pin, self._pin)):
            self.auth_guard.record_failure()
            logger.warning(
                "Invalid credentials (attempt %d/%d)",
                self.auth_guard.failed_attempts, self.auth_guard.max_attempts,
            )
            await ws.send(encode(AuthFailed(INVALID_CREDENTIALS_MESSAGE)))
            await ws.close(CLOSE_INVALID_CREDENTIALS, "Invalid credentials")
            return False

        self.auth_guard.record_success()
        previous, self._client = self._client, ws
        await ws.send(encode(AuthSuccess()))
        if previous is not None and previous is not ws:
            logger.info("Replacing existing client connection")
            self._evict(previous)

        self._notify(self._emit_device_connected, RemoteDevice(
            id="remote-client",
            name=auth.device_name or "Unknown Device",
            platform=auth.platform or "unknown",
        ))
        await self.send_device_info(self._device_name, self._platform)
        self._notify(self._set_state, RemoteSessionStatus.CONNECTED)
        return True

    def _evict(self, ws: ServerConnection) -> None:
        """Close a replaced controller without waiting on its close handshake."""
        task = asyncio.create_task(self._close_replaced(ws))
        self._evictions.add(task)
        task.add_done_callback(self._evictions.discard)

    async def _close_replaced(self, ws: ServerConnection) -> None:
        try:
            await ws.close(CLOSE_REPLACED, "Replaced by new connection")
        finally:
            ws.transport.abort()

    async def _serve_controller(self, ws: ServerConnection) -> None:
        try:
            async for raw in ws:
                if self._client is not ws:
                    break
                await self._process_frame(raw)
        except ConnectionClosedError as e:
            if self._client is ws:
                self._emit_error(RemotePeerError(
                    RemotePeerErrorType.DATA_CHANNEL_ERROR,
                    f"WebSocket error: {e}",
                    original_error=e,
                ))

    async def _process_frame(self, raw: Union[str, bytes]) -> None:
        message = self._decode_frame(raw)
        if message is None:
            return
        if not isinstance(message, RemoteCommand):
            logger.warning("Ignoring %s frame after authentication", type(message).__name__)
            return
        try:
            await self._handle_command(message)
        except Exception as e:
            self._report_handler_failure(e)
