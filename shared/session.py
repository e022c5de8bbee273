"""Companion remote session model: roles, statuses, devices and credentials."""
from __future__ import annotations
import re
import secrets
import string
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, NamedTuple

SESSION_ID_LENGTH = 8
PIN_LENGTH = 6
SESSION_ID_ALPHABET = string.ascii_uppercase + string.digits

_SESSION_ID_RE = re.compile(r"^[A-Z0-9]{8}$")
_PIN_RE = re.compile(r"^[0-9]{6}$")


class RemoteSessionRole(str, Enum):
    HOST = "host"
    REMOTE = "remote"


class RemoteSessionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"  # application layer only
    ERROR = "error"


@dataclass(frozen=True)
class RemoteDevice:
    id: str
    name: str
    platform: str

    @classmethod
    def from_device_info(cls, data: Mapping[str, Any]) -> "RemoteDevice":
        """Build from a ``deviceInfo`` command payload."""
        return cls(
            id=str(data.get("id") or "unknown"),
            name=str(data.get("name") or "Unknown Device"),
            platform=str(data.get("platform") or "unknown"),
        )


class HostedSession(NamedTuple):
    session_id: str
    pin: str
    address: str


def generate_session_id() -> str:
    return "".join(secrets.choice(SESSION_ID_ALPHABET) for _ in range(SESSION_ID_LENGTH))


def generate_pin() -> str:
    return "".join(secrets.choice(string.digits) for _ in range(PIN_LENGTH))


def normalize_session_id(session_id: str) -> str:
    return session_id.strip().upper()


def is_valid_session_id(session_id: str) -> bool:
    return bool(_SESSION_ID_RE.match(normalize_session_id(session_id)))


def is_valid_pin(pin: str) -> bool:
    return bool(_PIN_RE.match(pin.strip()))
