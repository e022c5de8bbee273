"""Maps received remote commands onto the host's media player."""
from __future__ import annotations
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from shared.protocol import RemoteCommand, RemoteCommandType

logger = logging.getLogger("companion_remote.host.player")


class MediaPlayer:
    """Playback capability the host application provides."""

    async def play(self) -> None:
        raise NotImplementedError

    async def pause(self) -> None:
        raise NotImplementedError

    async def stop(self) -> None:
        raise NotImplementedError

    async def seek(self, position_ms: int) -> None:
        raise NotImplementedError

    async def set_volume(self, volume: int) -> None:
        raise NotImplementedError


class PlayerBridge:
    """
    Queues commands from the session callback and applies them to the player
    in arrival order, replying with a ``syncState`` after each one handled.
    """

    def __init__(self, player: MediaPlayer,
                 send: Optional[Callable[[RemoteCommand], Awaitable[None]]] = None):
        self.player = player
        self._send = send
        self._queue: asyncio.Queue[RemoteCommand] = asyncio.Queue()
        self.paused = False

    def submit(self, command: RemoteCommand) -> None:
        """Suitable as a session's ``on_command_received`` callback."""
        self._queue.put_nowait(command)

    async def run(self) -> None:
        while True:
            command = await self._queue.get()
            try:
                await self.handle(command)
            except Exception as e:
                logger.error("Player command %s failed: %s", command.type_name, e)
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every submitted command has been handled."""
        await self._queue.join()

    async def handle(self, command: RemoteCommand) -> bool:
        """Apply one command; returns False when it is not a playback command."""
        kind = command.type
        if kind == RemoteCommandType.PLAY:
            await self._play()
        elif kind == RemoteCommandType.PAUSE:
            await self._pause()
        elif kind == RemoteCommandType.PLAY_PAUSE:
            if self.paused:
                await self._play()
            else:
                await self._pause()
        elif kind == RemoteCommandType.STOP:
            await self.player.stop()
            self.paused = True
        elif kind == RemoteCommandType.SEEK:
            position = command.get("positionMs")
            if not isinstance(position, (int, float)) or isinstance(position, bool) or position < 0:
                logger.warning("Ignoring seek with invalid positionMs: %r", position)
                return False
            await self.player.seek(int(position))
        elif kind == RemoteCommandType.VOLUME:
            volume = command.get("volume")
            if not isinstance(volume, (int, float)) or isinstance(volume, bool):
                logger.warning("Ignoring volume with invalid value: %r", volume)
                return False
            await self.player.set_volume(max(0, min(100, int(volume))))
        else:
            logger.debug("No player action for %s", command.type_name)
            return False

        if self._send is not None:
            await self._send(RemoteCommand(
                type=RemoteCommandType.SYNC_STATE,
                data={"playerActive": True, "paused": self.paused},
            ))
        return True

    async def _play(self) -> None:
        await self.player.play()
        self.paused = False

    async def _pause(self) -> None:
        await self.player.pause()
        self.paused = True
