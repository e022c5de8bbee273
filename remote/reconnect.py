"""Application-layer reconnection for a controller whose host connection drops."""
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from remote.connection import SessionRemote
from shared.errors import RemotePeerError
from shared.session import RemoteSessionStatus

logger = logging.getLogger("companion_remote.remote.reconnect")

MAX_RECONNECT_ATTEMPTS = 5
RECONNECT_BASE_DELAY_SECONDS = 1.0


@dataclass(frozen=True)
class JoinCredentials:
    session_id: str
    pin: str
    device_name: str
    platform: str
    host_address: str


class ReconnectingRemote:
    """
    Wraps a SessionRemote and rejoins with the last credentials after an
    unintentional drop, waiting ``base_delay * 2**n`` seconds before attempt
    ``n + 1`` (1, 2, 4, 8, 16 s by default). After ``max_attempts`` failures
    the status becomes ERROR and retrying stops until ``retry_now``.

    The wrapper owns the remote's ``on_device_disconnected`` callback; set
    ``on_device_disconnected`` here instead.
    """

    def __init__(self, remote: SessionRemote, max_attempts: int = MAX_RECONNECT_ATTEMPTS,
                 base_delay: float = RECONNECT_BASE_DELAY_SECONDS):
        self.remote = remote
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.attempts = 0
        self.status = RemoteSessionStatus.DISCONNECTED
        self.last_error: Optional[str] = None
        self.on_status_changed: Optional[Callable[[RemoteSessionStatus], None]] = None
        self.on_device_disconnected: Optional[Callable[[], None]] = None
        self._credentials: Optional[JoinCredentials] = None
        self._task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()
        remote.on_device_disconnected = self._on_remote_disconnected

    @property
    def credentials(self) -> Optional[JoinCredentials]:
        return self._credentials

    @property
    def is_reconnecting(self) -> bool:
        return self._task is not None and not self._task.done()

    def _set_status(self, status: RemoteSessionStatus) -> None:
        if status == self.status:
            return
        self.status = status
        if self.on_status_changed:
            self.on_status_changed(status)

    async def join(self, session_id: str, pin: str, device_name: str,
                   platform: str, host_address: str) -> None:
        """Join a session and remember the credentials for later reconnects."""
        self._stop_task()
        self._credentials = JoinCredentials(session_id, pin, device_name, platform, host_address)
        self.attempts = 0
        self._set_status(RemoteSessionStatus.CONNECTING)
        try:
            await self._join_once()
        except RemotePeerError as e:
            self.last_error = e.message
            self._set_status(RemoteSessionStatus.ERROR)
            raise

    async def _join_once(self) -> None:
        creds = self._credentials
        await self.remote.join_session(
            creds.session_id, creds.pin, creds.device_name, creds.platform, creds.host_address,
        )
        self.attempts = 0
        self.last_error = None
        self._set_status(RemoteSessionStatus.CONNECTED)

    def _on_remote_disconnected(self) -> None:
        if self.on_device_disconnected:
            self.on_device_disconnected()
        if self._credentials is None:
            return
        if self.max_attempts <= 0:
            logger.info("Connection to host lost")
            self._set_status(RemoteSessionStatus.DISCONNECTED)
            return
        logger.info("Connection to host lost; reconnecting")
        self._set_status(RemoteSessionStatus.RECONNECTING)
        self._start_task()

    def _start_task(self) -> None:
        if self.is_reconnecting:
            return
        self._wake.clear()
        self._task = asyncio.get_running_loop().create_task(self._reconnect_loop())

    def _stop_task(self) -> None:
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _reconnect_loop(self) -> None:
        # retry_now still makes one attempt when automatic retries are off
        limit = max(self.max_attempts, 1)
        while self.attempts < limit:
            delay = self.base_delay * (2 ** self.attempts)
            self.attempts += 1
            logger.debug("Reconnect attempt %d in %.1fs", self.attempts, delay)
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=delay)
            except TimeoutError:
                pass
            self._wake.clear()
            self._set_status(RemoteSessionStatus.RECONNECTING)
            try:
                await self._join_once()
            except RemotePeerError as e:
                logger.warning("Reconnect attempt %d failed: %s", self.attempts, e)
                self.last_error = e.message
                continue
            logger.info("Reconnected to %s", self._credentials.host_address)
            return

        logger.warning("Giving up after %d reconnect attempts", limit)
        self.last_error = f"Connection lost after {limit} attempts"
        self.attempts = 0
        self._set_status(RemoteSessionStatus.ERROR)

    def retry_now(self) -> None:
        """Skip the current backoff wait, or start over after giving up."""
        if self._credentials is None:
            return
        if self.is_reconnecting:
            self._wake.set()
            return
        self.attempts = 0
        self._set_status(RemoteSessionStatus.RECONNECTING)
        self._start_task()
        self._wake.set()

    def cancel(self) -> None:
        """Stop retrying; the credentials are kept for ``retry_now``."""
        self._stop_task()
        self.attempts = 0
        self._set_status(RemoteSessionStatus.DISCONNECTED)

    async def leave(self) -> None:
        """Intentional disconnect: stop retrying and forget the credentials."""
        self._credentials = None
        task = self._task
        self.cancel()
        if task is not None and task is not asyncio.current_task():
            await asyncio.wait([task])
        await self.remote.disconnect()
