"""mpv-backed media player for the host, driven over mpv's JSON IPC socket."""
from __future__ import annotations
import asyncio
import itertools
import json
import logging
import os
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Optional

from host.player import MediaPlayer

logger = logging.getLogger("companion_remote.host.mpv")

COMMAND_TIMEOUT_SECONDS = 3.0


class MpvPlayer(MediaPlayer):
    """
    Runs mpv idle as a subprocess and talks to it over a Unix domain socket.
    Every playback call is best effort: a missing or unresponsive mpv is
    logged, never raised.
    """

    def __init__(self, mpv_path: str = "mpv", socket_path: Optional[str] = None):
        self.mpv_path = mpv_path
        self.socket_path = socket_path or str(
            Path(tempfile.gettempdir()) / f"companion_remote_mpv_{os.getpid()}.sock"
        )
        self._proc: Optional[subprocess.Popen] = None
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._pending: dict[int, asyncio.Future] = {}
        self._request_ids = itertools.count(1)
        self._read_task: Optional[asyncio.Task] = None

    @property
    def is_connected(self) -> bool:
        return self._writer is not None

    async def start(self) -> bool:
        """Launch mpv and connect to its IPC socket; False if mpv is unavailable."""
        if os.path.exists(self.socket_path):
            os.unlink(self.socket_path)
        cmd = [
            self.mpv_path,
            "--idle=yes",
            "--force-window=yes",
            "--no-terminal",
            f"--input-ipc-server={self.socket_path}",
            "--keep-open=yes",
        ]
        try:
            self._proc = subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except FileNotFoundError:
            logger.error("mpv not found at %r; playback commands will be ignored", self.mpv_path)
            return False
        logger.info("mpv started (pid=%d)", self._proc.pid)

        for _ in range(50):
            await asyncio.sleep(0.1)
            if os.path.exists(self.socket_path):
                break
        else:
            logger.error("mpv IPC socket did not appear at %s", self.socket_path)
            return False
        return await self.connect()

    async def connect(self) -> bool:
        """Attach to an already running mpv's IPC socket."""
        try:
            self._reader, self._writer = await asyncio.open_unix_connection(self.socket_path)
        except OSError as e:
            logger.error("Failed to connect to mpv socket: %s", e)
            return False
        self._read_task = asyncio.create_task(self._read_loop())
        logger.info("Connected to mpv IPC socket")
        return True

    async def _read_loop(self) -> None:
        while self._reader is not None:
            line = await self._reader.readline()
            if not line:
                logger.warning("mpv IPC socket closed")
                break
            try:
                reply = json.loads(line)
            except ValueError:
                logger.debug("Unparseable mpv output: %r", line)
                continue
            if "event" in reply:
                logger.debug("mpv event: %s", reply["event"])
                continue
            fut = self._pending.pop(reply.get("request_id"), None)
            if fut is not None and not fut.done():
                fut.set_result(reply)
        self._writer = None

    async def _command(self, *args: Any) -> Optional[dict]:
        if self._writer is None:
            logger.debug("mpv not connected; dropping %s", args[0] if args else "")
            return None
        request_id = next(self._request_ids)
        fut = asyncio.get_running_loop().create_future()
        self._pending[request_id] = fut
        payload = json.dumps({"command": list(args), "request_id": request_id}) + "\n"
        try:
            self._writer.write(payload.encode("utf-8"))
            await self._writer.drain()
            reply = await asyncio.wait_for(fut, timeout=COMMAND_TIMEOUT_SECONDS)
        except TimeoutError:
            logger.warning("mpv command timed out: %s", args[0])
            return None
        except OSError as e:
            logger.error("mpv command %s failed: %s", args[0], e)
            return None
        finally:
            self._pending.pop(request_id, None)
        if reply.get("error") != "success":
            logger.warning("mpv rejected %s: %s", args[0], reply.get("error"))
        return reply

    async def load_file(self, path: str) -> bool:
        reply = await self._command("loadfile", str(Path(path).expanduser().resolve()), "replace")
        return reply is not None and reply.get("error") == "success"

    async def play(self) -> None:
        await self._command("set_property", "pause", False)

    async def pause(self) -> None:
        await self._command("set_property", "pause", True)

    async def stop(self) -> None:
        await self._command("stop")

    async def seek(self, position_ms: int) -> None:
        await self._command("seek", position_ms / 1000.0, "absolute")

    async def set_volume(self, volume: int) -> None:
        await self._command("set_property", "volume", max(0, min(100, volume)))

    async def get_position_ms(self) -> Optional[int]:
        reply = await self._command("get_property", "time-pos")
        if reply and reply.get("error") == "success" and reply.get("data") is not None:
            return int(float(reply["data"]) * 1000)
        return None

    async def close(self) -> None:
        """Disconnect and terminate the mpv process if we started it."""
        writer, self._writer = self._writer, None
        self._reader = None
        if self._read_task is not None:
            self._read_task.cancel()
            self._read_task = None
        if writer is not None:
            writer.close()
        if self._proc is not None:
            self._proc.terminate()
            try:
                self._proc.wait(timeout=3)
            except subprocess.TimeoutExpired:
                self._proc.kill()
            self._proc = None
            if os.path.exists(self.socket_path):
                os.unlink(self.socket_path)
        logger.info("mpv stopped")
