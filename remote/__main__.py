"""Companion remote controller entry point."""
from __future__ import annotations
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional, Union

import typer

from remote.connection import SessionRemote
from remote.discovery_browser import HostBrowser
from remote.reconnect import ReconnectingRemote
from shared.config import AppConfig, ConfigError, load_config
from shared.errors import RemotePeerError
from shared.logging_utils import setup_rotating_logger
from shared.pairing import PairingCode, validate_host_address, validate_pin, validate_session_id
from shared.protocol import RemoteCommand, RemoteCommandType
from shared.session import RemoteDevice
from shared.store import RecentRemoteSession, RecentSessionStore

logger = logging.getLogger("companion_remote.remote")

app = typer.Typer(help="Control a device hosting a companion remote session.")

QUIT = "quit"
RETRY = "retry"

HELP_TEXT = (
    "Commands: p (play/pause), play, pause, s (stop), seek <seconds>, "
    "vol <0-100>, r (retry connection), q (quit)"
)


def parse_control_line(line: str) -> Union[RemoteCommand, str, None]:
    """
    Map one line of keyboard input to a command, ``QUIT``, ``RETRY`` or None
    for blank input. Raises ValueError on bad arguments.
    """
    words = line.strip().split()
    if not words:
        return None
    verb, args = words[0].lower(), words[1:]
    if verb in ("q", "quit", "exit"):
        return QUIT
    if verb in ("r", "retry"):
        return RETRY
    if verb in ("p", "toggle"):
        return RemoteCommand(type=RemoteCommandType.PLAY_PAUSE)
    if verb == "play":
        return RemoteCommand(type=RemoteCommandType.PLAY)
    if verb == "pause":
        return RemoteCommand(type=RemoteCommandType.PAUSE)
    if verb in ("s", "stop"):
        return RemoteCommand(type=RemoteCommandType.STOP)
    if verb == "seek":
        if len(args) != 1:
            raise ValueError("usage: seek <seconds>")
        seconds = float(args[0])
        if seconds < 0:
            raise ValueError("seek position must not be negative")
        return RemoteCommand(type=RemoteCommandType.SEEK, data={"positionMs": int(seconds * 1000)})
    if verb in ("vol", "volume"):
        if len(args) != 1:
            raise ValueError("usage: vol <0-100>")
        volume = int(args[0])
        if not 0 <= volume <= 100:
            raise ValueError("volume must be 0-100")
        return RemoteCommand(type=RemoteCommandType.VOLUME, data={"volume": volume})
    raise ValueError(f"unknown command: {verb}")


def _load(config: Optional[Path], verbose: bool) -> AppConfig:
    try:
        cfg = load_config(config)
    except (ConfigError, OSError, ValueError) as e:
        typer.echo(f"Invalid config: {e}", err=True)
        raise typer.Exit(1)
    setup_rotating_logger(
        cfg.log_path,
        level=cfg.log_level.upper(),
        console_level=logging.DEBUG if verbose else logging.WARNING,
    )
    return cfg


async def _read_line() -> str:
    return await asyncio.get_running_loop().run_in_executor(None, sys.stdin.readline)


async def _control(cfg: AppConfig, session_id: str, pin: str, host_address: str,
                   reconnect: bool) -> None:
    remote = SessionRemote(
        join_timeout=cfg.remote.join_timeout_s,
        ping_interval=cfg.remote.ping_interval_s,
    )
    session = ReconnectingRemote(
        remote,
        max_attempts=cfg.remote.reconnect_max_attempts if reconnect else 0,
        base_delay=cfg.remote.reconnect_base_delay_s,
    )
    store = RecentSessionStore(cfg.data_path)

    def on_command(command: RemoteCommand) -> None:
        if command.type == RemoteCommandType.DEVICE_INFO:
            device = RemoteDevice.from_device_info(command.data or {})
            typer.echo(f"Connected to {device.name} ({device.platform})")
            store.add(RecentRemoteSession(
                session_id=remote.session_id or session_id,
                pin=pin,
                device_name=device.name,
                platform=device.platform,
                host_address=host_address,
            ))
        elif command.type == RemoteCommandType.SYNC_STATE:
            state = "paused" if command.get("paused") else "playing"
            typer.echo(f"Host is {state}")

    remote.on_command_received = on_command
    remote.on_error = lambda error: typer.echo(f"Error: {error}", err=True)
    session.on_status_changed = lambda status: typer.echo(f"[{status.value}]")

    try:
        await session.join(session_id, pin, cfg.device.name, cfg.device.platform, host_address)
    except RemotePeerError as e:
        await session.leave()
        typer.echo(f"Could not join: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(HELP_TEXT)
    try:
        while True:
            line = await _read_line()
            if not line:
                break
            try:
                action = parse_control_line(line)
            except ValueError as e:
                typer.echo(str(e), err=True)
                continue
            if action is None:
                continue
            if action == QUIT:
                break
            if action == RETRY:
                session.retry_now()
                continue
            if not remote.is_connected:
                typer.echo("Not connected", err=True)
                continue
            await remote.send_command(action)
    finally:
        await session.leave()


def _run(cfg: AppConfig, session_id: str, pin: str, host_address: str, reconnect: bool) -> None:
    try:
        asyncio.run(_control(cfg, session_id, pin, host_address, reconnect))
    except KeyboardInterrupt:
        pass
    typer.echo("Left session")


ConfigOption = typer.Option(None, "--config", "-c", exists=True, dir_okay=False, help="TOML config file.")
ReconnectOption = typer.Option(True, "--reconnect/--no-reconnect", help="Rejoin automatically after a drop.")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Log debug output to the console.")


@app.command()
def join(
    session_id: str = typer.Argument(..., help="8-character session ID shown by the host."),
    pin: str = typer.Argument(..., help="6-digit PIN shown by the host."),
    address: str = typer.Argument(..., help="Host address, e.g. 192.168.1.10:48632."),
    config: Optional[Path] = ConfigOption,
    reconnect: bool = ReconnectOption,
    verbose: bool = VerboseOption,
) -> None:
    """Join a session with credentials typed in by hand."""
    try:
        session_id = validate_session_id(session_id)
        pin = validate_pin(pin)
        address = validate_host_address(address)
    except ValueError as e:
        raise typer.BadParameter(str(e))
    cfg = _load(config, verbose)
    _run(cfg, session_id, pin, address, reconnect)


@app.command()
def pair(
    code: str = typer.Argument(..., help="Pairing code: ip|port|SESSIONID|PIN"),
    config: Optional[Path] = ConfigOption,
    reconnect: bool = ReconnectOption,
    verbose: bool = VerboseOption,
) -> None:
    """Join a session from the pairing code the host displays."""
    try:
        parsed = PairingCode.parse(code)
    except ValueError as e:
        raise typer.BadParameter(str(e))
    cfg = _load(config, verbose)
    _run(cfg, parsed.session_id, parsed.pin, parsed.host_address, reconnect)


@app.command()
def rejoin(
    session_id: str = typer.Argument(..., help="Session ID from the recent list."),
    config: Optional[Path] = ConfigOption,
    reconnect: bool = ReconnectOption,
    verbose: bool = VerboseOption,
) -> None:
    """Join a recently used session again."""
    cfg = _load(config, verbose)
    recent = RecentSessionStore(cfg.data_path).get(session_id)
    if recent is None:
        typer.echo(f"No recent session {session_id.upper()}", err=True)
        raise typer.Exit(1)
    try:
        address = recent.require_host_address()
    except RemotePeerError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)
    _run(cfg, recent.session_id, recent.pin, address, reconnect)


@app.command()
def discover(
    timeout: float = typer.Option(3.0, help="Seconds to listen for hosts."),
    config: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """List hosts advertising on the local network."""
    _load(config, verbose)

    async def browse() -> list:
        browser = HostBrowser()
        await browser.start()
        try:
            await asyncio.sleep(timeout)
        finally:
            await browser.stop()
        return browser.discovered

    hosts = asyncio.run(browse())
    if not hosts:
        typer.echo("No hosts found")
        return
    for found in hosts:
        typer.echo(f"{found.device_name or found.name:30} {found.platform:10} {found.host_address}")


@app.command()
def recent(
    config: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """List recently joined sessions, newest first."""
    cfg = _load(config, verbose)
    sessions = RecentSessionStore(cfg.data_path).sessions
    if not sessions:
        typer.echo("No recent sessions")
        return
    for s in sessions:
        typer.echo(f"{s.session_id}  {s.device_name:30} {s.host_address or '-':22} {s.last_connected}")


@app.command()
def forget(
    session_id: Optional[str] = typer.Argument(None, help="Session ID to forget."),
    all_sessions: bool = typer.Option(False, "--all", help="Forget every recent session."),
    config: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Remove one or all sessions from the recent list."""
    cfg = _load(config, verbose)
    store = RecentSessionStore(cfg.data_path)
    if all_sessions:
        store.clear()
        typer.echo("Cleared recent sessions")
    elif session_id:
        store.remove(session_id)
        typer.echo(f"Forgot {session_id.upper()}")
    else:
        raise typer.BadParameter("Give a session ID or --all")


if __name__ == "__main__":
    app()
