"""Companion remote host entry point: start a session and wait for a controller."""
from __future__ import annotations
import asyncio
import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional

import typer

from host.discovery import HostAdvertiser
from host.mpv_player import MpvPlayer
from host.player import PlayerBridge
from host.server import SessionHost
from shared.config import AppConfig, ConfigError, load_config
from shared.errors import RemotePeerError
from shared.logging_utils import setup_rotating_logger
from shared.pairing import PairingCode
from shared.protocol import RemoteCommand, RemoteCommandType
from shared.session import RemoteDevice, RemoteSessionStatus
from shared.store import TrustedDevice, TrustStore

logger = logging.getLogger("companion_remote.host")

app = typer.Typer(help="Host a companion remote session on this device.")


def _load(config: Optional[Path]) -> AppConfig:
    try:
        return load_config(config)
    except (ConfigError, OSError, ValueError) as e:
        typer.echo(f"Invalid config: {e}", err=True)
        raise typer.Exit(1)


def record_controller(trust: TrustStore, device: RemoteDevice, trust_new: bool) -> TrustedDevice:
    """
    Controllers pick a fresh peer id on every join, so a device already known
    by name and platform keeps its stored entry and approval.
    """
    known = trust.find_by_name(device.name, device.platform)
    if known is not None:
        device = replace(device, id=known.peer_id)
    return trust.add_device(device, require_approval=not trust_new, remember_as_last=True)


async def _host(cfg: AppConfig, media: Optional[Path], trust_new: bool) -> None:
    host = SessionHost(
        preferred_port=cfg.host.preferred_port,
        auth_timeout=cfg.host.auth_timeout_s,
        max_failed_attempts=cfg.host.max_failed_auth_attempts,
        lockout_seconds=cfg.host.auth_lockout_s,
    )
    trust = TrustStore(cfg.data_path)

    mpv: Optional[MpvPlayer] = None
    bridge: Optional[PlayerBridge] = None
    bridge_task: Optional[asyncio.Task] = None
    if cfg.player.mpv:
        mpv = MpvPlayer(cfg.player.mpv_path)
        if await mpv.start():
            if media is not None and not await mpv.load_file(str(media)):
                typer.echo(f"Could not load {media}", err=True)
            bridge = PlayerBridge(mpv, send=host.send_command)
            bridge_task = asyncio.create_task(bridge.run())
        else:
            typer.echo("mpv unavailable; playback commands will only be printed", err=True)

    def on_command(command: RemoteCommand) -> None:
        if command.type == RemoteCommandType.DEVICE_INFO:
            device = RemoteDevice.from_device_info(command.data or {})
            entry = record_controller(trust, device, trust_new)
            status = "trusted" if entry.is_approved else "not yet approved"
            typer.echo(f"Controller: {device.name} ({device.platform}), {status}")
        elif bridge is not None:
            bridge.submit(command)
        elif command.type not in (RemoteCommandType.PING, RemoteCommandType.PONG):
            typer.echo(f"Command: {command.type_name} {command.data or ''}")

    def on_state(status: RemoteSessionStatus) -> None:
        if status == RemoteSessionStatus.CONNECTING:
            typer.echo("Waiting for a controller...")
        elif status == RemoteSessionStatus.CONNECTED:
            typer.echo("Controller connected")

    host.on_command_received = on_command
    host.on_connection_state_changed = on_state
    host.on_device_disconnected = lambda: typer.echo("Controller disconnected")
    host.on_error = lambda error: typer.echo(f"Error: {error}", err=True)

    advertiser: Optional[HostAdvertiser] = None
    try:
        try:
            session = await host.create_session(cfg.device.name, cfg.device.platform)
        except RemotePeerError as e:
            typer.echo(f"Could not start session: {e}", err=True)
            raise typer.Exit(1)

        code = PairingCode.from_session(session.address, session.session_id, session.pin)
        typer.echo(f"Session ID:   {session.session_id}")
        typer.echo(f"PIN:          {session.pin}")
        typer.echo(f"Address:      {session.address}")
        typer.echo(f"Pairing code: {code.format()}")

        if cfg.host.advertise:
            advertiser = HostAdvertiser(
                cfg.device.name, cfg.device.platform, code.host, code.port, session.session_id,
            )
            await advertiser.start()

        # Runs until Ctrl-C cancels the main task.
        await asyncio.Event().wait()
    finally:
        if advertiser is not None:
            await advertiser.stop()
        await host.disconnect()
        if bridge_task is not None:
            bridge_task.cancel()
        if mpv is not None:
            await mpv.close()


@app.command()
def main(
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", exists=True, dir_okay=False, help="TOML config file."
    ),
    port: Optional[int] = typer.Option(None, help="Preferred listening port."),
    media: Optional[Path] = typer.Option(
        None, exists=True, dir_okay=False, help="Media file to load into mpv."
    ),
    mpv: Optional[bool] = typer.Option(None, "--mpv/--no-mpv", help="Drive a local mpv player."),
    advertise: Optional[bool] = typer.Option(
        None, "--advertise/--no-advertise", help="Advertise this host over mDNS."
    ),
    trust_new: bool = typer.Option(
        False, "--trust-new", help="Approve new controllers on first connect. Controllers are matched by name and platform."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to the console."),
) -> None:
    """Start a session and print the credentials a controller needs to join."""
    cfg = _load(config)
    if port is not None:
        cfg.host.preferred_port = port
    if mpv is not None:
        cfg.player.mpv = mpv
    if advertise is not None:
        cfg.host.advertise = advertise

    setup_rotating_logger(
        cfg.log_path,
        level=cfg.log_level.upper(),
        console_level=logging.DEBUG if verbose else logging.WARNING,
    )
    logger.info("Companion remote host starting")
    try:
        asyncio.run(_host(cfg, media, trust_new))
    except KeyboardInterrupt:
        typer.echo("Session closed")
    logger.info("Companion remote host stopped")


if __name__ == "__main__":
    app()
