"""Persistent trusted devices and recently joined sessions (JSON files)."""
from __future__ import annotations
import datetime
import json
import logging
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Callable, Optional

from shared.errors import RemotePeerError, RemotePeerErrorType
from shared.session import RemoteDevice

logger = logging.getLogger("companion_remote.shared.store")

TRUSTED_DEVICES_FILE = "trusted_devices.json"
RECENT_SESSIONS_FILE = "recent_sessions.json"
MAX_RECENT_SESSIONS = 10


def _utc_now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def _read_json(path: Path):
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.error("Failed to load %s: %s", path, e)
        return None


def _write_json(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
    tmp.replace(path)


@dataclass
class TrustedDevice:
    peer_id: str
    device_name: str
    platform: str
    last_connected: str = field(default_factory=_utc_now)
    is_approved: bool = False


class TrustStore:
    """Devices that have completed a session with us, keyed by peer id."""

    def __init__(self, data_dir: Path):
        self._path = data_dir / TRUSTED_DEVICES_FILE
        self._devices: dict[str, TrustedDevice] = {}
        self.last_device_id: Optional[str] = None
        self._load()

    def _load(self) -> None:
        data = _read_json(self._path)
        if not isinstance(data, dict):
            return
        for raw in data.get("devices", []):
            try:
                device = TrustedDevice(**raw)
            except TypeError as e:
                logger.warning("Skipping malformed trusted device entry: %s", e)
                continue
            self._devices[device.peer_id] = device
        self.last_device_id = data.get("last_device_id")
        logger.debug("Loaded %d trusted devices", len(self._devices))

    def _save(self) -> None:
        _write_json(self._path, {
            "devices": [asdict(d) for d in self._devices.values()],
            "last_device_id": self.last_device_id,
        })

    @property
    def devices(self) -> list[TrustedDevice]:
        return list(self._devices.values())

    def get(self, peer_id: str) -> Optional[TrustedDevice]:
        return self._devices.get(peer_id)

    def find_by_name(self, device_name: str, platform: str) -> Optional[TrustedDevice]:
        for device in self._devices.values():
            if device.device_name == device_name and device.platform == platform:
                return device
        return None

    def is_trusted(self, peer_id: str) -> bool:
        device = self._devices.get(peer_id)
        return device is not None and device.is_approved

    def add_device(self, device: RemoteDevice, require_approval: bool = True,
                   approve: Optional[Callable[[RemoteDevice], bool]] = None,
                   remember_as_last: bool = False) -> TrustedDevice:
        """
        Record a connected device. Known devices get their name, platform and
        timestamp refreshed; approval, once granted, is kept. New devices are
        approved immediately unless ``require_approval``, in which case the
        ``approve`` callback decides.
        """
        existing = self._devices.get(device.id)
        if existing is not None:
            entry = replace(
                existing,
                device_name=device.name,
                platform=device.platform,
                last_connected=_utc_now(),
                is_approved=existing.is_approved or not require_approval,
            )
        else:
            approved = not require_approval
            if require_approval and approve is not None:
                approved = bool(approve(device))
            entry = TrustedDevice(
                peer_id=device.id,
                device_name=device.name,
                platform=device.platform,
                is_approved=approved,
            )
        self._devices[device.id] = entry
        if remember_as_last:
            self.last_device_id = device.id
        self._save()
        return entry

    def approve_device(self, peer_id: str) -> bool:
        device = self._devices.get(peer_id)
        if device is None:
            return False
        self._devices[peer_id] = replace(device, is_approved=True)
        self._save()
        return True

    def remove_device(self, peer_id: str) -> None:
        if self._devices.pop(peer_id, None) is not None:
            if self.last_device_id == peer_id:
                self.last_device_id = None
            self._save()


@dataclass
class RecentRemoteSession:
    session_id: str
    pin: str
    device_name: str
    platform: str
    last_connected: str = field(default_factory=_utc_now)
    host_address: Optional[str] = None

    def require_host_address(self) -> str:
        if not self.host_address:
            raise RemotePeerError(
                RemotePeerErrorType.INVALID_SESSION,
                "No host address available for this session. Please scan a new pairing code.",
            )
        return self.host_address


class RecentSessionStore:
    """Most recently joined sessions, newest first."""

    def __init__(self, data_dir: Path, max_sessions: int = MAX_RECENT_SESSIONS):
        self._path = data_dir / RECENT_SESSIONS_FILE
        self.max_sessions = max_sessions
        self._sessions: list[RecentRemoteSession] = []
        self._load()

    def _load(self) -> None:
        data = _read_json(self._path)
        if not isinstance(data, list):
            return
        for raw in data:
            try:
                self._sessions.append(RecentRemoteSession(**raw))
            except TypeError as e:
                logger.warning("Skipping malformed recent session entry: %s", e)
        logger.debug("Loaded %d recent sessions", len(self._sessions))

    def _save(self) -> None:
        _write_json(self._path, [asdict(s) for s in self._sessions])

    @property
    def sessions(self) -> list[RecentRemoteSession]:
        return list(self._sessions)

    def get(self, session_id: str) -> Optional[RecentRemoteSession]:
        session_id = session_id.upper()
        for session in self._sessions:
            if session.session_id == session_id:
                return session
        return None

    def add(self, session: RecentRemoteSession) -> None:
        self._sessions = [s for s in self._sessions if s.session_id != session.session_id]
        self._sessions.insert(0, session)
        del self._sessions[self.max_sessions:]
        self._save()

    def remove(self, session_id: str) -> None:
        before = len(self._sessions)
        self._sessions = [s for s in self._sessions if s.session_id != session_id.upper()]
        if len(self._sessions) != before:
            self._save()

    def clear(self) -> None:
        self._sessions = []
        self._save()
