"""Companion remote configuration file (TOML) parsing and validation."""
from __future__ import annotations
import platform
import socket
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from shared.auth_guard import AUTH_LOCKOUT_SECONDS, MAX_FAILED_AUTH_ATTEMPTS
from shared.liveness import PING_INTERVAL_SECONDS
from shared.protocol import DEFAULT_PORT

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(ValueError):
    """Raised when a configuration file parses but is not usable."""


def _default_device_name() -> str:
    return socket.gethostname() or "Unknown Device"


def _default_platform() -> str:
    return platform.system().lower() or "unknown"


@dataclass
class DeviceConfig:
    name: str = field(default_factory=_default_device_name)
    platform: str = field(default_factory=_default_platform)


@dataclass
class HostConfig:
    preferred_port: int = DEFAULT_PORT
    auth_timeout_s: float = 10.0
    max_failed_auth_attempts: int = MAX_FAILED_AUTH_ATTEMPTS
    auth_lockout_s: float = AUTH_LOCKOUT_SECONDS
    advertise: bool = True


@dataclass
class RemoteConfig:
    join_timeout_s: float = 15.0
    ping_interval_s: float = PING_INTERVAL_SECONDS
    reconnect_max_attempts: int = 5
    reconnect_base_delay_s: float = 1.0


@dataclass
class PlayerConfig:
    mpv: bool = True
    mpv_path: str = "mpv"


@dataclass
class AppConfig:
    device: DeviceConfig = field(default_factory=DeviceConfig)
    host: HostConfig = field(default_factory=HostConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    player: PlayerConfig = field(default_factory=PlayerConfig)
    log_dir: str = "logs"
    log_level: str = "DEBUG"
    data_dir: str = "~/.companion_remote"

    @property
    def log_path(self) -> Path:
        return Path(self.log_dir).expanduser()

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

    def validate(self) -> list[str]:
        errors = []
        if not self.device.name.strip():
            errors.append("device.name must not be empty")
        if not (0 <= self.host.preferred_port <= 65535):
            errors.append(f"host.preferred_port must be 0-65535, got {self.host.preferred_port}")
        for label, value in (
            ("host.auth_timeout_s", self.host.auth_timeout_s),
            ("host.auth_lockout_s", self.host.auth_lockout_s),
            ("remote.join_timeout_s", self.remote.join_timeout_s),
            ("remote.ping_interval_s", self.remote.ping_interval_s),
            ("remote.reconnect_base_delay_s", self.remote.reconnect_base_delay_s),
        ):
            if value <= 0:
                errors.append(f"{label} must be positive")
        if self.host.max_failed_auth_attempts < 1:
            errors.append("host.max_failed_auth_attempts must be at least 1")
        if self.remote.reconnect_max_attempts < 0:
            errors.append("remote.reconnect_max_attempts must not be negative")
        if self.log_level.upper() not in _LOG_LEVELS:
            errors.append(f"Invalid log_level: {self.log_level}")
        return errors


def _parse_device(raw: dict) -> DeviceConfig:
    device = DeviceConfig()
    device.name = raw.get("name", device.name)
    device.platform = raw.get("platform", device.platform)
    return device


def _parse_host(raw: dict) -> HostConfig:
    return HostConfig(
        preferred_port=raw.get("preferred_port", DEFAULT_PORT),
        auth_timeout_s=raw.get("auth_timeout_s", 10.0),
        max_failed_auth_attempts=raw.get("max_failed_auth_attempts", MAX_FAILED_AUTH_ATTEMPTS),
        auth_lockout_s=raw.get("auth_lockout_s", AUTH_LOCKOUT_SECONDS),
        advertise=raw.get("advertise", True),
    )


def _parse_remote(raw: dict) -> RemoteConfig:
    return RemoteConfig(
        join_timeout_s=raw.get("join_timeout_s", 15.0),
        ping_interval_s=raw.get("ping_interval_s", PING_INTERVAL_SECONDS),
        reconnect_max_attempts=raw.get("reconnect_max_attempts", 5),
        reconnect_base_delay_s=raw.get("reconnect_base_delay_s", 1.0),
    )


def _parse_player(raw: dict) -> PlayerConfig:
    return PlayerConfig(
        mpv=raw.get("mpv", True),
        mpv_path=raw.get("mpv_path", "mpv"),
    )


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load a companion remote TOML config; defaults when ``path`` is None."""
    if path is None:
        return AppConfig()
    with open(path, "rb") as f:
        data = tomllib.load(f)

    logging_raw = data.get("logging", {})
    storage_raw = data.get("storage", {})
    config = AppConfig(
        device=_parse_device(data.get("device", {})),
        host=_parse_host(data.get("host", {})),
        remote=_parse_remote(data.get("remote", {})),
        player=_parse_player(data.get("player", {})),
        log_dir=logging_raw.get("dir", "logs"),
        log_level=logging_raw.get("level", "DEBUG"),
        data_dir=storage_raw.get("dir", "~/.companion_remote"),
    )
    errors = config.validate()
    if errors:
        raise ConfigError("; ".join(errors))
    return config
