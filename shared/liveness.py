"""Controller-side keep-alive: periodic ping while connected."""
from __future__ import annotations
import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger("companion_remote.shared.liveness")

PING_INTERVAL_SECONDS = 5.0


class LivenessMonitor:
    """
    Sends a ping every ``interval`` seconds for as long as ``is_connected``
    reports True. Advisory only: no pong deadline is enforced here.
    """

    def __init__(self, send_ping: Callable[[], Awaitable[None]],
                 is_connected: Callable[[], bool],
                 interval: float = PING_INTERVAL_SECONDS):
        self._send_ping = send_ping
        self._is_connected = is_connected
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        self.stop()
        self._task = asyncio.create_task(self._ping_loop())

    def stop(self) -> None:
        task, self._task = self._task, None
        if task and task is not asyncio.current_task():
            task.cancel()

    async def _ping_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if self._is_connected():
                await self._send_ping()
