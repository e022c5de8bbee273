"""Companion remote error taxonomy."""
from __future__ import annotations
from enum import Enum
from typing import Optional


class RemotePeerErrorType(str, Enum):
    CONNECTION_FAILED = "connectionFailed"
    PEER_DISCONNECTED = "peerDisconnected"  # reserved
    DATA_CHANNEL_ERROR = "dataChannelError"
    SERVER_ERROR = "serverError"
    TIMEOUT = "timeout"
    INVALID_SESSION = "invalidSession"  # reserved for callers; the handshake reports AUTH_FAILED
    AUTH_FAILED = "authFailed"
    NETWORK_ERROR = "networkError"
    UNKNOWN = "unknown"


class RemotePeerError(Exception):
    """Raised by session operations and delivered to ``on_error`` callbacks."""

    def __init__(self, error_type: RemotePeerErrorType, message: str,
                 original_error: Optional[BaseException] = None):
        super().__init__(message)
        self.error_type = error_type
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"RemotePeerError({self.error_type.value}): {self.message}"
