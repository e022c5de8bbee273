"""Shared fixtures: loopback hosts and remotes with short timeouts."""
import asyncio
import json

import pytest
import pytest_asyncio
from websockets.asyncio.client import connect

from host.server import SessionHost
from remote.connection import SessionRemote


class EventRecorder:
    """Collects every callback a session engine fires."""

    def __init__(self, peer):
        self.commands = []
        self.connected = []
        self.disconnected = 0
        self.errors = []
        self.states = []
        peer.on_command_received = self.commands.append
        peer.on_device_connected = self.connected.append
        peer.on_device_disconnected = self._on_disconnected
        peer.on_error = self.errors.append
        peer.on_connection_state_changed = self.states.append

    def _on_disconnected(self):
        self.disconnected += 1

    def command_types(self):
        return [c.type_name for c in self.commands]


async def _wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def make_host(**kwargs):
    kwargs.setdefault("preferred_port", 0)
    kwargs.setdefault("auth_timeout", 2.0)
    kwargs.setdefault("address_resolver", lambda: "127.0.0.1")
    kwargs.setdefault("bind_host", "127.0.0.1")
    return SessionHost(**kwargs)


@pytest.fixture
def recorder():
    return EventRecorder


@pytest.fixture
def wait_until():
    return _wait_until


@pytest_asyncio.fixture
async def host():
    h = make_host()
    yield h
    await h.disconnect()


@pytest_asyncio.fixture
async def session(host):
    """A host that is listening, with its HostedSession."""
    hosted = await host.create_session("Living Room", "linux")
    return hosted


@pytest_asyncio.fixture
async def remote():
    r = SessionRemote(join_timeout=2.0, ping_interval=60.0)
    yield r
    await r.disconnect()


@pytest_asyncio.fixture
async def raw_client(host):
    """Open a bare websocket to the host and optionally authenticate it."""
    opened = []

    async def _open(session_id=None, pin=None, device_name="Phone", platform="android", auth=True):
        ws = await connect(f"ws://127.0.0.1:{host.port}/ws")
        opened.append(ws)
        if auth:
            await ws.send(json.dumps({
                "type": "auth",
                "sessionId": session_id if session_id is not None else host.session_id,
                "pin": pin if pin is not None else host.pin,
                "deviceName": device_name,
                "platform": platform,
            }))
        return ws

    yield _open
    for ws in opened:
        await ws.close()


async def recv_json(ws, timeout=2.0):
    return json.loads(await asyncio.wait_for(ws.recv(), timeout))


@pytest.fixture
def recv():
    return recv_json
