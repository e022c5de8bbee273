"""Companion remote wire protocol: message types, frames and the JSON codec."""
from __future__ import annotations
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Union


DEFAULT_PORT = 48632
WS_PATH = "/ws"

# ---- Handshake frame types ----
MSG_AUTH = "auth"
MSG_AUTH_SUCCESS = "authSuccess"
MSG_AUTH_FAILED = "authFailed"

HANDSHAKE_TYPES = {MSG_AUTH, MSG_AUTH_SUCCESS, MSG_AUTH_FAILED}

# ---- Host-initiated close codes ----
CLOSE_AUTH_TIMEOUT = 4001
CLOSE_AUTH_REQUIRED = 4002
CLOSE_INVALID_CREDENTIALS = 4003
CLOSE_REPLACED = 4004
CLOSE_RATE_LIMITED = 4005

INVALID_CREDENTIALS_MESSAGE = "Invalid session ID or PIN"
RATE_LIMITED_MESSAGE = "Too many attempts. Try again later."


class RemoteCommandType(str, Enum):
    PING = "ping"
    PONG = "pong"
    ACK = "ack"
    DEVICE_INFO = "deviceInfo"
    SYNC_STATE = "syncState"
    PLAY_PAUSE = "playPause"
    PLAY = "play"
    PAUSE = "pause"
    STOP = "stop"
    SEEK = "seek"
    VOLUME = "volume"

    def __str__(self) -> str:
        return self.value


# Liveness and identity traffic is never acknowledged.
UNACKED_TYPES = {
    RemoteCommandType.PING,
    RemoteCommandType.PONG,
    RemoteCommandType.ACK,
    RemoteCommandType.DEVICE_INFO,
}


class ProtocolError(ValueError):
    """Raised when a frame cannot be decoded."""


def _coerce_type(value: str) -> Union[RemoteCommandType, str]:
    try:
        return RemoteCommandType(value)
    except ValueError:
        return value


@dataclass(frozen=True)
class RemoteCommand:
    """A post-handshake command frame.

    ``type`` is a :class:`RemoteCommandType` for known commands and a plain
    string for anything else, so unknown playback commands still round-trip.
    """
    type: Union[RemoteCommandType, str]
    data: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", _coerce_type(str(self.type)))
        if self.data is not None:
            object.__setattr__(self, "data", dict(self.data))

    @property
    def type_name(self) -> str:
        return str(self.type)

    def get(self, key: str, default: Any = None) -> Any:
        if self.data is None:
            return default
        return self.data.get(key, default)

    @property
    def should_ack(self) -> bool:
        return self.type not in UNACKED_TYPES


@dataclass(frozen=True)
class AuthRequest:
    session_id: Optional[str]
    pin: Optional[str]
    device_name: Optional[str] = None
    platform: Optional[str] = None


@dataclass(frozen=True)
class AuthSuccess:
    pass


@dataclass(frozen=True)
class AuthFailed:
    message: str = "Authentication failed"


Message = Union[AuthRequest, AuthSuccess, AuthFailed, RemoteCommand]


def encode(message: Message) -> str:
    """Serialize a frame to a single-line JSON text."""
    if isinstance(message, RemoteCommand):
        obj: dict[str, Any] = {"type": message.type_name}
        if message.data is not None:
            obj["data"] = dict(message.data)
    elif isinstance(message, AuthRequest):
        obj = {
            "type": MSG_AUTH,
            "sessionId": message.session_id,
            "pin": message.pin,
            "deviceName": message.device_name,
            "platform": message.platform,
        }
    elif isinstance(message, AuthSuccess):
        obj = {"type": MSG_AUTH_SUCCESS}
    elif isinstance(message, AuthFailed):
        obj = {"type": MSG_AUTH_FAILED, "message": message.message}
    else:
        raise TypeError(f"Cannot encode {type(message).__name__}")
    return json.dumps(obj, separators=(",", ":"))


def _optional_str(obj: dict, key: str) -> Optional[str]:
    value = obj.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ProtocolError(f"Field '{key}' must be a string")
    return value


def decode(raw: Union[str, bytes]) -> Message:
    """Parse one text frame. Raises ProtocolError on anything malformed."""
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Frame is not valid UTF-8: {e}") from e
    try:
        obj = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Malformed JSON: {e}") from e
    if not isinstance(obj, dict):
        raise ProtocolError("Frame must be a JSON object")

    msg_type = obj.get("type")
    if not isinstance(msg_type, str) or not msg_type:
        raise ProtocolError("Frame is missing 'type'")

    if msg_type == MSG_AUTH:
        return AuthRequest(
            session_id=_optional_str(obj, "sessionId"),
            pin=_optional_str(obj, "pin"),
            device_name=_optional_str(obj, "deviceName"),
            platform=_optional_str(obj, "platform"),
        )
    if msg_type == MSG_AUTH_SUCCESS:
        return AuthSuccess()
    if msg_type == MSG_AUTH_FAILED:
        return AuthFailed(_optional_str(obj, "message") or "Authentication failed")

    data = obj.get("data")
    if data is not None and not isinstance(data, dict):
        raise ProtocolError("Field 'data' must be a JSON object")
    return RemoteCommand(type=msg_type, data=data)
