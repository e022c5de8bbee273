"""Tests for the session host, driven by bare websocket clients."""
import asyncio
import json
import socket

import pytest
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, InvalidStatus

from conftest import make_host
from shared.errors import RemotePeerError, RemotePeerErrorType
from shared.protocol import (
    CLOSE_AUTH_REQUIRED, CLOSE_AUTH_TIMEOUT, CLOSE_INVALID_CREDENTIALS,
    CLOSE_RATE_LIMITED, CLOSE_REPLACED, INVALID_CREDENTIALS_MESSAGE,
    RATE_LIMITED_MESSAGE, RemoteCommand, RemoteCommandType,
)
from shared.session import (
    RemoteDevice, RemoteSessionRole, RemoteSessionStatus, is_valid_pin, is_valid_session_id,
)
from shared.transport import ConnectOnlyTransport


async def _authenticated(raw_client, recv, **kwargs):
    ws = await raw_client(**kwargs)
    assert (await recv(ws))["type"] == "authSuccess"
    info = await recv(ws)
    assert info["type"] == "deviceInfo"
    return ws


async def _close_code(ws):
    with pytest.raises(ConnectionClosed) as exc:
        while True:
            await asyncio.wait_for(ws.recv(), 2)
    return exc.value.rcvd.code


@pytest.mark.asyncio
async def test_create_session(host, session):
    assert is_valid_session_id(session.session_id)
    assert is_valid_pin(session.pin)
    assert session.address == f"127.0.0.1:{host.port}"
    assert host.session_id == session.session_id
    assert host.host_address == session.address
    assert host.role == RemoteSessionRole.HOST
    assert host.is_host
    assert not host.is_connected
    assert host.status == RemoteSessionStatus.CONNECTING


@pytest.mark.asyncio
async def test_auth_success_is_case_insensitive(host, session, raw_client, recv, recorder):
    events = recorder(host)
    ws = await raw_client(session_id=session.session_id.lower())
    assert await recv(ws) == {"type": "authSuccess"}
    info = await recv(ws)
    assert info["type"] == "deviceInfo"
    assert info["data"]["name"] == "Living Room"
    assert info["data"]["platform"] == "linux"
    assert info["data"]["role"] == "host"
    assert events.connected == [RemoteDevice(id="remote-client", name="Phone", platform="android")]
    assert host.is_connected
    assert host.status == RemoteSessionStatus.CONNECTED


@pytest.mark.asyncio
async def test_wrong_pin_rejected_without_saying_which(host, session, raw_client, recv, recorder):
    events = recorder(host)
    wrong = "000000" if session.pin != "000000" else "111111"
    ws = await raw_client(pin=wrong)
    assert await recv(ws) == {"type": "authFailed", "message": INVALID_CREDENTIALS_MESSAGE}
    assert await _close_code(ws) == CLOSE_INVALID_CREDENTIALS
    ws = await raw_client(session_id="ZZZZ9999")
    assert (await recv(ws))["message"] == INVALID_CREDENTIALS_MESSAGE
    assert host.auth_guard.failed_attempts == 2
    assert events.connected == []


@pytest.mark.asyncio
async def test_four_failures_then_correct_credentials(host, session, raw_client, recv):
    for _ in range(4):
        ws = await raw_client(session_id="ZZZZ9999")
        assert (await recv(ws))["message"] == INVALID_CREDENTIALS_MESSAGE
    assert not host.auth_guard.is_locked_out()
    await _authenticated(raw_client, recv)
    assert host.auth_guard.failed_attempts == 0


@pytest.mark.asyncio
async def test_lockout_rejects_even_correct_credentials(host, session, raw_client, recv):
    for _ in range(5):
        ws = await raw_client(session_id="ZZZZ9999")
        assert (await recv(ws))["message"] == INVALID_CREDENTIALS_MESSAGE
    assert host.auth_guard.is_locked_out()
    ws = await raw_client()
    assert await recv(ws) == {"type": "authFailed", "message": RATE_LIMITED_MESSAGE}
    assert await _close_code(ws) == CLOSE_RATE_LIMITED
    assert host.auth_guard.failed_attempts == 5
    assert not host.is_connected


@pytest.mark.asyncio
async def test_lockout_expires():
    now = [0.0]
    host = make_host(clock=lambda: now[0])
    try:
        await host.create_session("Desk", "linux")
        for _ in range(5):
            async with connect(f"ws://127.0.0.1:{host.port}/ws") as ws:
                await ws.send(json.dumps({"type": "auth", "sessionId": "ZZZZ9999", "pin": "000000"}))
                await ws.recv()
        assert host.auth_guard.is_locked_out()
        now[0] += 31
        async with connect(f"ws://127.0.0.1:{host.port}/ws") as ws:
            await ws.send(json.dumps({"type": "auth", "sessionId": host.session_id, "pin": host.pin}))
            assert json.loads(await ws.recv()) == {"type": "authSuccess"}
    finally:
        await host.disconnect()


@pytest.mark.asyncio
async def test_first_message_must_be_auth(host, session, raw_client):
    ws = await raw_client(auth=False)
    await ws.send(json.dumps({"type": "play"}))
    assert await _close_code(ws) == CLOSE_AUTH_REQUIRED


@pytest.mark.asyncio
async def test_malformed_frame_before_auth_is_skipped(host, session, raw_client, recv):
    ws = await raw_client(auth=False)
    await ws.send("hello?")
    await ws.send(json.dumps({"type": "auth", "sessionId": session.session_id, "pin": session.pin}))
    assert (await recv(ws))["type"] == "authSuccess"


@pytest.mark.asyncio
async def test_auth_timeout():
    host = make_host(auth_timeout=0.2)
    try:
        await host.create_session("Desk", "linux")
        async with connect(f"ws://127.0.0.1:{host.port}/ws") as ws:
            assert await _close_code(ws) == CLOSE_AUTH_TIMEOUT
    finally:
        await host.disconnect()


@pytest.mark.asyncio
async def test_auth_timeout_cancelled_after_success():
    host = make_host(auth_timeout=0.2)
    try:
        await host.create_session("Desk", "linux")
        async with connect(f"ws://127.0.0.1:{host.port}/ws") as ws:
            await ws.send(json.dumps({"type": "auth", "sessionId": host.session_id, "pin": host.pin}))
            await ws.recv()
            await ws.recv()
            await asyncio.sleep(0.4)
            await ws.send(json.dumps({"type": "ping"}))
            assert json.loads(await ws.recv()) == {"type": "pong"}
    finally:
        await host.disconnect()


@pytest.mark.asyncio
async def test_ping_gets_one_pong_and_no_ack(host, session, raw_client, recv):
    ws = await _authenticated(raw_client, recv)
    await ws.send(json.dumps({"type": "ping"}))
    assert await recv(ws) == {"type": "pong"}
    # The next reply belongs to the stop command, so nothing else followed the pong.
    await ws.send(json.dumps({"type": "stop"}))
    assert await recv(ws) == {"type": "ack"}


@pytest.mark.asyncio
async def test_ack_policy(host, session, raw_client, recv, recorder):
    events = recorder(host)
    ws = await _authenticated(raw_client, recv)
    await ws.send(json.dumps({"type": "seek", "data": {"positionMs": 1000}}))
    assert await recv(ws) == {"type": "ack"}
    for kind in ("pong", "ack"):
        await ws.send(json.dumps({"type": kind}))
    await ws.send(json.dumps({"type": "deviceInfo", "data": {"id": "r", "name": "Phone", "platform": "ios"}}))
    await ws.send(json.dumps({"type": "ping"}))
    assert await recv(ws) == {"type": "pong"}
    await ws.send(json.dumps({"type": "customThing"}))
    assert await recv(ws) == {"type": "ack"}
    assert events.command_types() == ["seek", "pong", "ack", "deviceInfo", "ping", "customThing"]


@pytest.mark.asyncio
async def test_malformed_frames_after_auth_keep_connection(host, session, raw_client, recv, recorder):
    events = recorder(host)
    ws = await _authenticated(raw_client, recv)
    await ws.send("{not json")
    await ws.send("[1, 2, 3]")
    await ws.send(json.dumps({"type": "authSuccess"}))
    await ws.send(json.dumps({"type": "play"}))
    assert await recv(ws) == {"type": "ack"}
    assert events.command_types() == ["play"]
    assert events.errors == []
    assert host.is_connected


@pytest.mark.asyncio
async def test_callback_failure_reported_as_unknown(host, session, raw_client, recv, recorder):
    events = recorder(host)

    def explode(command):
        if command.type == RemoteCommandType.PING:
            raise RuntimeError("boom")

    host.on_command_received = explode
    ws = await _authenticated(raw_client, recv)
    await ws.send(json.dumps({"type": "ping"}))
    assert await recv(ws) == {"type": "pong"}
    await ws.send(json.dumps({"type": "play"}))
    assert await recv(ws) == {"type": "ack"}
    assert [e.error_type for e in events.errors] == [RemotePeerErrorType.UNKNOWN]
    assert host.is_connected


@pytest.mark.asyncio
async def test_new_controller_evicts_old(host, session, raw_client, recv, recorder, wait_until):
    events = recorder(host)
    first = await _authenticated(raw_client, recv, device_name="Old Phone")
    second = await _authenticated(raw_client, recv, device_name="New Phone")
    assert await _close_code(first) == CLOSE_REPLACED
    await host.send_command(RemoteCommand(type=RemoteCommandType.SYNC_STATE, data={"paused": True}))
    assert await recv(second) == {"type": "syncState", "data": {"paused": True}}
    assert [d.name for d in events.connected] == ["Old Phone", "New Phone"]
    await asyncio.sleep(0.05)
    assert events.disconnected == 0
    assert host.status == RemoteSessionStatus.CONNECTED


@pytest.mark.asyncio
async def test_eviction_does_not_wait_for_unresponsive_controller(host, session, raw_client, recv):
    first = await _authenticated(raw_client, recv, device_name="Old Phone")
    first.transport.pause_reading()
    loop = asyncio.get_running_loop()
    started = loop.time()
    second = await _authenticated(raw_client, recv, device_name="New Phone")
    assert loop.time() - started < 1.0
    await host.send_command(RemoteCommand(type=RemoteCommandType.SYNC_STATE, data={"paused": False}))
    assert await recv(second) == {"type": "syncState", "data": {"paused": False}}
    first.transport.resume_reading()
    assert await _close_code(first) == CLOSE_REPLACED


@pytest.mark.asyncio
async def test_failing_connect_callback_keeps_controller(host, session, raw_client, recv, recorder):
    events = recorder(host)

    def explode(device):
        raise RuntimeError("boom")

    host.on_device_connected = explode
    ws = await _authenticated(raw_client, recv)
    assert [e.error_type for e in events.errors] == [RemotePeerErrorType.UNKNOWN]
    assert host.is_connected
    assert host.status == RemoteSessionStatus.CONNECTED
    await ws.send(json.dumps({"type": "play"}))
    assert await recv(ws) == {"type": "ack"}


@pytest.mark.asyncio
async def test_controller_leaving_keeps_listener(host, session, raw_client, recv, recorder, wait_until):
    events = recorder(host)
    ws = await _authenticated(raw_client, recv)
    await ws.close()
    await wait_until(lambda: events.disconnected == 1)
    assert host.status == RemoteSessionStatus.DISCONNECTED
    assert not host.is_connected
    assert host.session_id == session.session_id
    await _authenticated(raw_client, recv)
    assert host.status == RemoteSessionStatus.CONNECTED


@pytest.mark.asyncio
async def test_send_without_controller_is_noop(host, session, recorder):
    events = recorder(host)
    await host.send_command(RemoteCommand(type=RemoteCommandType.PING))
    assert events.errors == []


@pytest.mark.asyncio
async def test_unknown_path_is_404(host, session):
    with pytest.raises(InvalidStatus) as exc:
        async with connect(f"ws://127.0.0.1:{host.port}/other"):
            pass
    assert exc.value.response.status_code == 404


@pytest.mark.asyncio
async def test_falls_back_to_ephemeral_port_when_busy():
    busy = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    busy.bind(("127.0.0.1", 0))
    busy.listen(1)
    busy_port = busy.getsockname()[1]
    host = make_host(preferred_port=busy_port)
    try:
        hosted = await host.create_session("Desk", "linux")
        assert host.port != busy_port
        assert hosted.address.endswith(f":{host.port}")
    finally:
        await host.disconnect()
        busy.close()


@pytest.mark.asyncio
async def test_hosting_unsupported_without_listen_capability(recorder):
    host = make_host(transport=ConnectOnlyTransport())
    with pytest.raises(RemotePeerError) as exc:
        await host.create_session("Browser", "web")
    assert exc.value.error_type == RemotePeerErrorType.SERVER_ERROR
    assert host.role is None
    assert host.port is None


@pytest.mark.asyncio
async def test_no_network_interface(recorder):
    def no_interface():
        raise RemotePeerError(RemotePeerErrorType.NETWORK_ERROR, "No network interface found")

    host = make_host(address_resolver=no_interface)
    events = recorder(host)
    with pytest.raises(RemotePeerError) as exc:
        await host.create_session("Desk", "linux")
    assert exc.value.error_type == RemotePeerErrorType.NETWORK_ERROR
    assert [e.error_type for e in events.errors] == [RemotePeerErrorType.SERVER_ERROR]
    assert host.status == RemoteSessionStatus.ERROR
    assert host.port is None
    assert host.session_id is None


@pytest.mark.asyncio
async def test_create_session_again_replaces_old(host, session, raw_client, recv):
    for _ in range(2):
        ws = await raw_client(session_id="ZZZZ9999")
        await recv(ws)
    second = await host.create_session("Living Room", "linux")
    assert host.auth_guard.failed_attempts == 0
    assert host.session_id == second.session_id
    assert host.pin == second.pin
    assert not host.is_connected
    assert host.status == RemoteSessionStatus.CONNECTING


@pytest.mark.asyncio
async def test_disconnect_is_idempotent(recorder):
    host = make_host()
    events = recorder(host)
    await host.disconnect()
    await host.disconnect()
    await host.create_session("Desk", "linux")
    await host.disconnect()
    await host.disconnect()
    assert not host.is_connected
    assert (host.session_id, host.pin, host.host_address, host.role, host.my_peer_id) == (None,) * 5
    assert host.port is None
    assert events.states == [RemoteSessionStatus.CONNECTING, RemoteSessionStatus.DISCONNECTED]
