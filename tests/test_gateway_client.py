"""
Tests for the resumable gateway client.

A fake websocket stands in for ``aiohttp``'s: the test feeds inbound frames
into it and inspects every frame the client wrote.
"""

import asyncio
import json
import random
from types import SimpleNamespace

import aiohttp
import pytest
from unittest.mock import AsyncMock

from core.config import BotSettings
from core.errors import HeartbeatTimeout, TransportError
from gateway.client import ConnectionState, GatewayClient, RestartReason
from gateway.protocol import Opcode


class FakeWebSocket:
    def __init__(self):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent = []
        self.closed = False
        self.close_code = None

    async def receive(self):
        return await self.incoming.get()

    async def send_str(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.closed = True

    def feed(self, op, d=None, s=None, t=None) -> None:
        frame = {"op": op, "d": d}
        if s is not None:
            frame["s"] = s
        if t is not None:
            frame["t"] = t
        self.incoming.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=json.dumps(frame)))

    def feed_close(self, code: int) -> None:
        self.incoming.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.CLOSE, data=code))

    def ops_sent(self):
        return [frame["op"] for frame in self.sent]


async def wait_until(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def settings():
    return BotSettings(user_token="tok", guild_id="1", channel_id="2", reconnect_delay_seconds=0.01)


def make_client(settings, ws):
    client = GatewayClient(settings, events=asyncio.Queue(), rng=random.Random(5))
    client._connect = AsyncMock(return_value=ws)
    return client


def ready(ws, seq=1, session_id="sess-1"):
    ws.feed(Opcode.DISPATCH, {"session_id": session_id, "resume_gateway_url": "wss://resume.example"},
            s=seq, t="READY")


@pytest.mark.asyncio
async def test_no_heartbeat_before_hello(settings):
    """Frames arriving before Hello are ignored and never trigger a heartbeat."""
    ws = FakeWebSocket()
    client = make_client(settings, ws)
    ws.feed(Opcode.HEARTBEAT)
    ws.feed(Opcode.HEARTBEAT_ACK)
    ws.feed(Opcode.DISPATCH, {"x": 1}, s=1, t="MESSAGE_CREATE")

    task = asyncio.create_task(client.connect_once())
    await asyncio.sleep(0.05)
    assert ws.sent == []
    assert client.state == ConnectionState.AWAIT_HELLO
    assert client.events.empty()

    ws.feed(Opcode.HELLO, {"heartbeat_interval": 200})
    await wait_until(lambda: Opcode.HEARTBEAT in ws.ops_sent())
    assert ws.ops_sent()[0] == Opcode.IDENTIFY

    await client.stop()
    assert await asyncio.wait_for(task, 1.0) == RestartReason.SHUTDOWN


@pytest.mark.asyncio
async def test_identify_when_no_session(settings):
    ws = FakeWebSocket()
    client = make_client(settings, ws)
    ws.feed(Opcode.HELLO, {"heartbeat_interval": 10_000})

    task = asyncio.create_task(client.connect_once())
    await wait_until(lambda: ws.sent)
    assert ws.sent[0] == {
        "op": 2,
        "d": {"token": "tok", "properties": {"os": "linux", "browser": "autofish", "device": "autofish"}},
    }
    assert client.state == ConnectionState.ACTIVE

    await client.stop()
    await asyncio.wait_for(task, 1.0)


@pytest.mark.asyncio
async def test_resume_with_stored_session(settings):
    ws = FakeWebSocket()
    client = make_client(settings, ws)
    client.session_state.session_id = "sess-9"
    client.session_state.sequence = 42
    ws.feed(Opcode.HELLO, {"heartbeat_interval": 10_000})

    task = asyncio.create_task(client.connect_once())
    await wait_until(lambda: ws.sent)
    assert ws.sent[0] == {"op": 6, "d": {"token": "tok", "session_id": "sess-9", "seq": 42}}
    assert client.state == ConnectionState.RESUMING

    ws.feed(Opcode.DISPATCH, None, s=43, t="RESUMED")
    await wait_until(lambda: client.state == ConnectionState.ACTIVE)

    await client.stop()
    await asyncio.wait_for(task, 1.0)


@pytest.mark.asyncio
async def test_dispatch_forwarded_in_order(settings):
    ws = FakeWebSocket()
    client = make_client(settings, ws)
    ws.feed(Opcode.HELLO, {"heartbeat_interval": 10_000})
    ready(ws, seq=1)
    ws.feed(Opcode.DISPATCH, {"id": "a"}, s=2, t="MESSAGE_CREATE")
    ws.feed(Opcode.DISPATCH, {"id": "b"}, s=3, t="MESSAGE_UPDATE")

    task = asyncio.create_task(client.connect_once())
    await wait_until(lambda: client.events.qsize() == 3)

    names = [client.events.get_nowait().event_name for _ in range(3)]
    assert names == ["READY", "MESSAGE_CREATE", "MESSAGE_UPDATE"]
    assert client.session_id == "sess-1"
    assert client.session_state.sequence == 3
    assert client.session_state.resume_url == "wss://resume.example"

    # Server-requested heartbeat carries the last sequence
    ws.feed(Opcode.HEARTBEAT)
    await wait_until(lambda: Opcode.HEARTBEAT in ws.ops_sent())
    assert [f for f in ws.sent if f["op"] == 1][0]["d"] == 3

    await client.stop()
    await asyncio.wait_for(task, 1.0)


@pytest.mark.asyncio
async def test_sequence_gap_forces_resume(settings):
    ws = FakeWebSocket()
    client = make_client(settings, ws)
    ws.feed(Opcode.HELLO, {"heartbeat_interval": 10_000})
    ready(ws, seq=1)
    ws.feed(Opcode.DISPATCH, {"id": "late"}, s=5, t="MESSAGE_CREATE")

    reason = await asyncio.wait_for(client.connect_once(), 1.0)
    assert reason == RestartReason.SEQUENCE_GAP
    assert client.events.qsize() == 1
    assert client.session_state.sequence == 1
    assert client.session_state.can_resume


@pytest.mark.asyncio
async def test_missed_heartbeat_ack_is_fatal_to_connection(settings):
    ws = FakeWebSocket()
    client = make_client(settings, ws)
    client.session_state.session_id = "sess-1"
    client.session_state.sequence = 4
    ws.feed(Opcode.HELLO, {"heartbeat_interval": 20})

    with pytest.raises(HeartbeatTimeout):
        await asyncio.wait_for(client.connect_once(), 1.0)
    assert ws.ops_sent().count(Opcode.HEARTBEAT) == 1
    assert ws.closed
    # Session survives so the next connection resumes
    assert client.session_state.can_resume


@pytest.mark.asyncio
async def test_acked_heartbeats_keep_connection(settings):
    ws = FakeWebSocket()
    client = make_client(settings, ws)
    ws.feed(Opcode.HELLO, {"heartbeat_interval": 60})

    async def acker():
        acked = 0
        while True:
            beats = ws.ops_sent().count(Opcode.HEARTBEAT)
            if beats > acked:
                acked = beats
                ws.feed(Opcode.HEARTBEAT_ACK)
            await asyncio.sleep(0.002)

    ack_task = asyncio.create_task(acker())
    task = asyncio.create_task(client.connect_once())
    await wait_until(lambda: ws.ops_sent().count(Opcode.HEARTBEAT) >= 3)
    assert not task.done()

    await client.stop()
    ack_task.cancel()
    assert await asyncio.wait_for(task, 1.0) == RestartReason.SHUTDOWN


@pytest.mark.asyncio
async def test_heartbeats_continue_while_consumer_stalls(settings):
    """A full event queue stalls dispatch forwarding but never the heartbeat."""
    ws = FakeWebSocket()
    client = GatewayClient(settings, events=asyncio.Queue(maxsize=1), rng=random.Random(5))
    client._connect = AsyncMock(return_value=ws)
    ws.feed(Opcode.HELLO, {"heartbeat_interval": 50})
    ready(ws, seq=1)
    ws.feed(Opcode.DISPATCH, {"id": "a"}, s=2, t="MESSAGE_CREATE")
    ws.feed(Opcode.DISPATCH, {"id": "b"}, s=3, t="MESSAGE_CREATE")

    async def acker():
        acked = 0
        while True:
            beats = ws.ops_sent().count(Opcode.HEARTBEAT)
            if beats > acked:
                acked = beats
                ws.feed(Opcode.HEARTBEAT_ACK)
            await asyncio.sleep(0.002)

    ack_task = asyncio.create_task(acker())
    task = asyncio.create_task(client.connect_once())
    await wait_until(lambda: ws.ops_sent().count(Opcode.HEARTBEAT) >= 5, timeout=2.0)
    assert client.events.full()
    assert not task.done()
    # The stalled event is not counted as seen, so a Resume would replay it
    assert client.session_state.sequence == 1

    await client.stop()
    ack_task.cancel()
    assert await asyncio.wait_for(task, 1.0) == RestartReason.SHUTDOWN


@pytest.mark.asyncio
async def test_write_failure_ends_connection(settings):
    ws = FakeWebSocket()
    ws.send_str = AsyncMock(side_effect=ConnectionResetError("gone"))
    client = make_client(settings, ws)
    ws.feed(Opcode.HELLO, {"heartbeat_interval": 10_000})

    with pytest.raises(TransportError):
        await asyncio.wait_for(client.connect_once(), 1.0)
    assert ws.closed


@pytest.mark.asyncio
async def test_reconnect_keeps_session(settings):
    ws = FakeWebSocket()
    client = make_client(settings, ws)
    ws.feed(Opcode.HELLO, {"heartbeat_interval": 10_000})
    ready(ws, seq=1)
    ws.feed(Opcode.RECONNECT)

    assert await asyncio.wait_for(client.connect_once(), 1.0) == RestartReason.RECONNECT
    assert client.session_state.can_resume


@pytest.mark.asyncio
async def test_invalid_session_clears_session(settings):
    ws = FakeWebSocket()
    client = make_client(settings, ws)
    ws.feed(Opcode.HELLO, {"heartbeat_interval": 10_000})
    ready(ws, seq=1)
    ws.feed(Opcode.INVALID_SESSION, False)

    assert await asyncio.wait_for(client.connect_once(), 1.0) == RestartReason.INVALID_SESSION
    assert client.session_state.session_id is None
    assert client.session_state.sequence is None


@pytest.mark.asyncio
async def test_second_hello_restarts_fresh(settings):
    ws = FakeWebSocket()
    client = make_client(settings, ws)
    ws.feed(Opcode.HELLO, {"heartbeat_interval": 10_000})
    ready(ws, seq=1)
    ws.feed(Opcode.HELLO, {"heartbeat_interval": 10_000})

    assert await asyncio.wait_for(client.connect_once(), 1.0) == RestartReason.SECOND_HELLO
    assert not client.session_state.can_resume


@pytest.mark.asyncio
async def test_malformed_frame_dropped(settings):
    ws = FakeWebSocket()
    client = make_client(settings, ws)
    ws.feed(Opcode.HELLO, {"heartbeat_interval": 10_000})
    ws.incoming.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data="{broken"))
    ready(ws, seq=1)

    task = asyncio.create_task(client.connect_once())
    await wait_until(lambda: client.events.qsize() == 1)
    await client.stop()
    await asyncio.wait_for(task, 1.0)


@pytest.mark.asyncio
async def test_non_resumable_close_code(settings):
    ws = FakeWebSocket()
    client = make_client(settings, ws)
    ws.feed(Opcode.HELLO, {"heartbeat_interval": 10_000})
    ready(ws, seq=1)
    ws.feed_close(4009)

    with pytest.raises(TransportError):
        await asyncio.wait_for(client.connect_once(), 1.0)
    assert not client.session_state.can_resume


@pytest.mark.asyncio
async def test_resumable_close_keeps_session(settings):
    ws = FakeWebSocket()
    client = make_client(settings, ws)
    ws.feed(Opcode.HELLO, {"heartbeat_interval": 10_000})
    ready(ws, seq=1)
    ws.feed_close(1006)

    with pytest.raises(TransportError):
        await asyncio.wait_for(client.connect_once(), 1.0)
    assert client.session_state.can_resume


@pytest.mark.asyncio
async def test_run_forever_retries_after_transport_failure(settings):
    ws = FakeWebSocket()
    ws.feed(Opcode.HELLO, {"heartbeat_interval": 10_000})
    client = GatewayClient(settings, events=asyncio.Queue(), rng=random.Random(5))
    client._connect = AsyncMock(side_effect=[aiohttp.ClientConnectionError("refused"), ws])

    task = asyncio.create_task(client.run_forever())
    await wait_until(lambda: ws.sent)
    assert client.connect_count == 2
    assert ws.sent[0]["op"] == Opcode.IDENTIFY

    await client.stop()
    await asyncio.wait_for(task, 1.0)
    assert client.state == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_run_forever_resumes_after_reconnect(settings):
    first, second = FakeWebSocket(), FakeWebSocket()
    first.feed(Opcode.HELLO, {"heartbeat_interval": 10_000})
    ready(first, seq=1, session_id="sess-r")
    first.feed(Opcode.RECONNECT)
    second.feed(Opcode.HELLO, {"heartbeat_interval": 10_000})

    client = GatewayClient(settings, events=asyncio.Queue(), rng=random.Random(5))
    client.PROTOCOL_RESTART_DELAY = 0.01
    client._connect = AsyncMock(side_effect=[first, second])

    task = asyncio.create_task(client.run_forever())
    await wait_until(lambda: second.sent)
    assert second.sent[0] == {"op": 6, "d": {"token": "tok", "session_id": "sess-r", "seq": 1}}

    await client.stop()
    await asyncio.wait_for(task, 1.0)
