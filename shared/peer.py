"""State, events and command handling shared by the host and remote roles."""
from __future__ import annotations
import logging
from typing import Callable, Optional, Union

from websockets.exceptions import ConnectionClosed

from shared.errors import RemotePeerError, RemotePeerErrorType
from shared.protocol import (
    Message, ProtocolError, RemoteCommand, RemoteCommandType,
    decode, encode,
)
from shared.session import RemoteDevice, RemoteSessionRole, RemoteSessionStatus
from shared.transport import Transport, WebSocketTransport

logger = logging.getLogger("companion_remote.shared.peer")


class PeerSession:
    """
    Base protocol engine. Subclasses own the socket(s) and implement
    ``_active_connection``; everything that does not depend on the role
    lives here.
    """

    # Host acknowledges control commands; the remote never does.
    ack_commands = False

    def __init__(self, transport: Optional[Transport] = None):
        self.transport = transport or WebSocketTransport()
        self._session_id: Optional[str] = None
        self._pin: Optional[str] = None
        self._my_peer_id: Optional[str] = None
        self._host_address: Optional[str] = None
        self._role: Optional[RemoteSessionRole] = None
        self._status = RemoteSessionStatus.DISCONNECTED

        # Callbacks (set by the application)
        self.on_command_received: Optional[Callable[[RemoteCommand], None]] = None
        self.on_device_connected: Optional[Callable[[RemoteDevice], None]] = None
        self.on_device_disconnected: Optional[Callable[[], None]] = None
        self.on_error: Optional[Callable[[RemotePeerError], None]] = None
        self.on_connection_state_changed: Optional[Callable[[RemoteSessionStatus], None]] = None

    # ---- Accessors ----

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def pin(self) -> Optional[str]:
        return self._pin

    @property
    def my_peer_id(self) -> Optional[str]:
        return self._my_peer_id

    @property
    def host_address(self) -> Optional[str]:
        return self._host_address

    @property
    def role(self) -> Optional[RemoteSessionRole]:
        return self._role

    @property
    def is_host(self) -> bool:
        return self._role == RemoteSessionRole.HOST

    @property
    def status(self) -> RemoteSessionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._active_connection() is not None

    def _active_connection(self):
        raise NotImplementedError

    # ---- Event emission ----

    def _set_state(self, status: RemoteSessionStatus) -> None:
        if status == self._status:
            return
        logger.debug("State %s -> %s", self._status.value, status.value)
        self._status = status
        if self.on_connection_state_changed:
            self.on_connection_state_changed(status)

    def _emit_error(self, error: RemotePeerError) -> None:
        logger.warning("%r", error)
        if self.on_error:
            self.on_error(error)

    def _emit_device_connected(self, device: RemoteDevice) -> None:
        logger.info("Device connected: %s (%s)", device.name, device.platform)
        if self.on_device_connected:
            self.on_device_connected(device)

    def _emit_device_disconnected(self) -> None:
        logger.info("Device disconnected")
        if self.on_device_disconnected:
            self.on_device_disconnected()

    def _clear_identity(self) -> None:
        self._session_id = None
        self._pin = None
        self._my_peer_id = None
        self._host_address = None
        self._role = None

    # ---- Sending ----

    async def send_command(self, command: RemoteCommand) -> None:
        """Write to the live connection; a no-op when nothing is connected."""
        ws = self._active_connection()
        if ws is None:
            logger.warning("No connection to send command %s", command.type_name)
            return
        try:
            await ws.send(encode(command))
            logger.debug("Sent command: %s", command.type_name)
        except (ConnectionClosed, OSError, TypeError, ValueError) as e:
            self._emit_error(RemotePeerError(
                RemotePeerErrorType.DATA_CHANNEL_ERROR,
                f"Failed to send command: {e}",
                original_error=e,
            ))

    async def send_device_info(self, device_name: str, platform: str) -> None:
        await self.send_command(RemoteCommand(
            type=RemoteCommandType.DEVICE_INFO,
            data={
                "id": self._my_peer_id,
                "name": device_name,
                "platform": platform,
                "role": self._role.value if self._role else None,
            },
        ))

    # ---- Receiving ----

    def _decode_frame(self, raw: Union[str, bytes]) -> Optional[Message]:
        try:
            return decode(raw)
        except ProtocolError as e:
            logger.warning("Dropping malformed frame: %s", e)
            return None

    def _report_handler_failure(self, exc: Exception) -> None:
        logger.exception("Failed to process message")
        self._emit_error(RemotePeerError(
            RemotePeerErrorType.UNKNOWN,
            f"Failed to process message: {exc}",
            original_error=exc,
        ))

    def _notify(self, emit: Callable[..., None], *args) -> None:
        """Run an event emitter; a failing application callback is reported, not raised."""
        try:
            emit(*args)
        except Exception as e:
            self._report_handler_failure(e)

    async def _handle_command(self, command: RemoteCommand) -> None:
        logger.debug("Received command: %s", command.type_name)
        if self.ack_commands and command.should_ack:
            await self.send_command(RemoteCommand(type=RemoteCommandType.ACK))
        if command.type == RemoteCommandType.PING:
            await self.send_command(RemoteCommand(type=RemoteCommandType.PONG))
        if self.on_command_received:
            self.on_command_received(command)
