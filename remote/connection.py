"""Companion remote controller: dials a host, authenticates and exchanges commands."""
from __future__ import annotations
import asyncio
import logging
import secrets
from typing import Optional, Union

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    ConnectionClosed, ConnectionClosedError, InvalidHandshake, InvalidURI,
)

from shared.errors import RemotePeerError, RemotePeerErrorType
from shared.liveness import PING_INTERVAL_SECONDS, LivenessMonitor
from shared.peer import PeerSession
from shared.protocol import (
    AuthFailed, AuthRequest, AuthSuccess, RemoteCommand, RemoteCommandType, encode,
)
from shared.session import (
    RemoteDevice, RemoteSessionRole, RemoteSessionStatus, normalize_session_id,
)
from shared.transport import Transport, build_ws_url

logger = logging.getLogger("companion_remote.remote.connection")

JOIN_TIMEOUT_SECONDS = 15.0


class SessionRemote(PeerSession):
    """
    Controller role. ``join_session`` resolves once the host accepts the
    credentials; reconnection after a later drop is left to the caller.
    """

    def __init__(self, transport: Optional[Transport] = None,
                 join_timeout: float = JOIN_TIMEOUT_SECONDS,
                 ping_interval: float = PING_INTERVAL_SECONDS):
        super().__init__(transport)
        self.join_timeout = join_timeout
        self._ws: Optional[ClientConnection] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._auth_future: Optional[asyncio.Future] = None
        self._join_task: Optional[asyncio.Task] = None
        self._join_aborted = False
        self._authenticated = False
        self._liveness = LivenessMonitor(self._send_ping, lambda: self.is_connected, ping_interval)

    def _active_connection(self) -> Optional[ClientConnection]:
        if self._authenticated:
            return self._ws
        return None

    @property
    def liveness(self) -> LivenessMonitor:
        return self._liveness

    async def _send_ping(self) -> None:
        await self.send_command(RemoteCommand(type=RemoteCommandType.PING))

    # ---- Joining ----

    async def join_session(self, session_id: str, pin: str, device_name: str,
                           platform: str, host_address: str) -> None:
        if self._ws is not None or self._role is not None:
            await self.disconnect()

        self._role = RemoteSessionRole.REMOTE
        self._session_id = normalize_session_id(session_id)
        self._pin = pin
        self._host_address = host_address
        self._my_peer_id = f"remote-{secrets.randbelow(100000)}"
        self._auth_future = asyncio.get_running_loop().create_future()
        auth_future = self._auth_future
        self._join_task = asyncio.current_task()
        self._join_aborted = False

        url = build_ws_url(host_address)
        logger.info("Connecting to %s", url)
        self._set_state(RemoteSessionStatus.CONNECTING)

        try:
            async with asyncio.timeout(self.join_timeout):
                ws = await self.transport.connect(url)
                self._ws = ws
                await ws.send(encode(AuthRequest(
                    session_id=self._session_id,
                    pin=self._pin,
                    device_name=device_name,
                    platform=platform,
                )))
                self._reader_task = asyncio.create_task(self._read_loop(ws, device_name, platform))
                await auth_future
        except TimeoutError:
            logger.warning("Timed out joining session %s", self._session_id)
            await self._teardown_connection()
            error = RemotePeerError(RemotePeerErrorType.TIMEOUT, "Timed out joining session")
            self._emit_error(error)
            self._set_state(RemoteSessionStatus.ERROR)
            raise error from None
        except (OSError, InvalidHandshake, InvalidURI, ConnectionClosed) as e:
            await self._teardown_connection()
            error = RemotePeerError(
                RemotePeerErrorType.CONNECTION_FAILED,
                f"Failed to connect: {e}",
                original_error=e,
            )
            self._emit_error(error)
            self._set_state(RemoteSessionStatus.ERROR)
            raise error from e
        except RemotePeerError:
            # authFailed, or the socket closed before the handshake completed
            await self._teardown_connection()
            raise
        except asyncio.CancelledError:
            await self._teardown_connection()
            if not self._join_aborted:
                raise
            # disconnect() interrupted the join; report it as a failed join
            self._join_aborted = False
            asyncio.current_task().uncancel()
            raise RemotePeerError(
                RemotePeerErrorType.CONNECTION_FAILED,
                "Disconnected before authentication completed",
            ) from None
        finally:
            self._join_task = None

    async def _read_loop(self, ws: ClientConnection, device_name: str, platform: str) -> None:
        try:
            async for raw in ws:
                await self._process_frame(raw, device_name, platform)
        except ConnectionClosedError as e:
            if self._ws is ws:
                self._on_connection_error(e)
        finally:
            if self._ws is ws:
                self._on_connection_closed()

    def _on_connection_error(self, exc: ConnectionClosedError) -> None:
        error = RemotePeerError(
            RemotePeerErrorType.CONNECTION_FAILED,
            f"Connection error: {exc}",
            original_error=exc,
        )
        if self._fail_join(error):
            self._emit_error(error)
            self._set_state(RemoteSessionStatus.ERROR)
        elif self._authenticated:
            self._emit_error(error)

    def _on_connection_closed(self) -> None:
        logger.info("Connection closed")
        self._liveness.stop()
        error = RemotePeerError(
            RemotePeerErrorType.CONNECTION_FAILED,
            "Connection closed before authentication completed",
        )
        if self._fail_join(error):
            self._emit_error(error)
            self._set_state(RemoteSessionStatus.ERROR)
        if self._authenticated:
            self._authenticated = False
            self._emit_device_disconnected()
            self._set_state(RemoteSessionStatus.DISCONNECTED)

    def _fail_join(self, error: RemotePeerError) -> bool:
        """Fail a pending ``join_session``; returns False if nothing was pending."""
        if self._auth_future is not None and not self._auth_future.done():
            self._auth_future.set_exception(error)
            return True
        return False

    async def _process_frame(self, raw: Union[str, bytes], device_name: str, platform: str) -> None:
        message = self._decode_frame(raw)
        if message is None:
            return
        try:
            if isinstance(message, AuthSuccess):
                await self._on_auth_success(device_name, platform)
            elif isinstance(message, AuthFailed):
                self._on_auth_failed(message)
            elif isinstance(message, AuthRequest):
                logger.warning("Ignoring auth frame received from host")
            elif not self._authenticated:
                logger.warning("Ignoring %s before authentication", message.type_name)
            else:
                await self._handle_command(message)
        except Exception as e:
            self._report_handler_failure(e)

    async def _on_auth_success(self, device_name: str, platform: str) -> None:
        if self._authenticated:
            return
        logger.info("Authentication successful")
        self._authenticated = True
        if self._auth_future is not None and not self._auth_future.done():
            self._auth_future.set_result(None)
        self._set_state(RemoteSessionStatus.CONNECTED)
        # The host's real identity follows in its own deviceInfo frame.
        self._emit_device_connected(RemoteDevice(id="host", name="Desktop", platform="desktop"))
        await self.send_device_info(device_name, platform)
        self._liveness.start()

    def _on_auth_failed(self, message: AuthFailed) -> None:
        logger.warning("Authentication failed: %s", message.message)
        error = RemotePeerError(RemotePeerErrorType.AUTH_FAILED, message.message)
        self._liveness.stop()
        self._fail_join(error)
        self._emit_error(error)
        self._set_state(RemoteSessionStatus.ERROR)

    # ---- Teardown ----

    async def _teardown_connection(self) -> None:
        self._liveness.stop()
        self._authenticated = False
        ws, self._ws = self._ws, None
        task, self._reader_task = self._reader_task, None
        if ws is not None:
            await ws.close()
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def disconnect(self) -> None:
        """Close the connection and forget the session; safe to call at any time."""
        logger.debug("Disconnecting")
        join_task = self._join_task
        if join_task is not None and not join_task.done() and join_task is not asyncio.current_task():
            self._join_aborted = True
            join_task.cancel()
        await self._teardown_connection()
        self._auth_future = None
        self._clear_identity()
        self._set_state(RemoteSessionStatus.DISCONNECTED)
