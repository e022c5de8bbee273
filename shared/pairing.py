"""Pairing codes shown by a host and validation of manually entered credentials."""
from __future__ import annotations
from dataclasses import dataclass

from shared.session import is_valid_pin, is_valid_session_id, normalize_session_id

PAIRING_SEPARATOR = "|"


def validate_host_address(address: str) -> str:
    """Accept ``host:port`` with a numeric port; returns the trimmed address."""
    address = address.strip()
    if not address:
        raise ValueError("Host address is required")
    parts = address.split(":")
    if len(parts) != 2 or not parts[0]:
        raise ValueError("Host address must look like 192.168.1.10:48632")
    if not parts[1].isdigit() or not (1 <= int(parts[1]) <= 65535):
        raise ValueError(f"Invalid port: {parts[1]}")
    return address


def validate_session_id(session_id: str) -> str:
    if not session_id.strip():
        raise ValueError("Session ID is required")
    if not is_valid_session_id(session_id):
        raise ValueError("Session ID must be 8 letters or digits")
    return normalize_session_id(session_id)


def validate_pin(pin: str) -> str:
    if not pin.strip():
        raise ValueError("PIN is required")
    if not is_valid_pin(pin):
        raise ValueError("PIN must be 6 digits")
    return pin.strip()


@dataclass(frozen=True)
class PairingCode:
    """``ip|port|SESSIONID|PIN``, the payload a host renders as a QR code."""
    host: str
    port: int
    session_id: str
    pin: str

    @property
    def host_address(self) -> str:
        return f"{self.host}:{self.port}"

    def format(self) -> str:
        return PAIRING_SEPARATOR.join((self.host, str(self.port), self.session_id, self.pin))

    @classmethod
    def from_session(cls, address: str, session_id: str, pin: str) -> "PairingCode":
        host, _, port = validate_host_address(address).partition(":")
        return cls(host=host, port=int(port), session_id=session_id, pin=pin)

    @classmethod
    def parse(cls, text: str) -> "PairingCode":
        parts = [p.strip() for p in text.strip().split(PAIRING_SEPARATOR)]
        if len(parts) != 4:
            raise ValueError("Invalid pairing code")
        host, port, session_id, pin = parts
        address = validate_host_address(f"{host}:{port}")
        return cls(
            host=host,
            port=int(address.rsplit(":", 1)[1]),
            session_id=validate_session_id(session_id),
            pin=validate_pin(pin),
        )
