"""
Tests for gateway frame encoding/decoding and session bookkeeping.
"""

import json

import pytest

from core.errors import ProtocolError
from gateway.protocol import (
    GatewayEnvelope,
    Opcode,
    SessionState,
    decode_frame,
    heartbeat_frame,
    hello_interval,
    identify_frame,
    resume_frame,
)


class TestDecodeFrame:

    def test_dispatch(self):
        env = decode_frame(json.dumps({"op": 0, "s": 7, "t": "MESSAGE_CREATE", "d": {"id": "1"}}))
        assert env.opcode == Opcode.DISPATCH
        assert env.sequence == 7
        assert env.event_name == "MESSAGE_CREATE"
        assert env.payload == {"id": "1"}
        assert env.is_dispatch

    def test_hello(self):
        env = decode_frame('{"op": 10, "d": {"heartbeat_interval": 41250}}')
        assert env.opcode == Opcode.HELLO
        assert env.sequence is None
        assert hello_interval(env) == 41250

    @pytest.mark.parametrize("text", [
        "not json",
        "[1, 2, 3]",
        '{"d": null}',
        '{"op": 99}',
        '{"op": 0, "s": "seven"}',
    ])
    def test_malformed_frames_raise(self, text):
        with pytest.raises(ProtocolError):
            decode_frame(text)

    def test_envelope_is_immutable(self):
        env = GatewayEnvelope(Opcode.HEARTBEAT_ACK)
        with pytest.raises(Exception):
            env.sequence = 3

    def test_hello_without_interval(self):
        with pytest.raises(ProtocolError):
            hello_interval(GatewayEnvelope(Opcode.HELLO, payload={}))


class TestEncodeFrames:

    def test_opcode_values(self):
        assert [int(o) for o in Opcode] == [0, 1, 2, 6, 7, 9, 10, 11]

    def test_heartbeat_payload(self):
        assert json.loads(heartbeat_frame(None)) == {"op": 1, "d": None}
        assert json.loads(heartbeat_frame(42)) == {"op": 1, "d": 42}

    def test_identify_payload(self):
        frame = json.loads(identify_frame("tok", {"os": "linux", "browser": "b", "device": "d"}))
        assert frame == {
            "op": 2,
            "d": {"token": "tok", "properties": {"os": "linux", "browser": "b", "device": "d"}},
        }

    def test_resume_payload(self):
        frame = json.loads(resume_frame("tok", "sess", 12))
        assert frame == {"op": 6, "d": {"token": "tok", "session_id": "sess", "seq": 12}}


class TestSessionState:

    def test_can_resume_requires_both(self):
        state = SessionState()
        assert not state.can_resume
        state.session_id = "abc"
        assert not state.can_resume
        state.sequence = 1
        assert state.can_resume

    def test_reset(self):
        state = SessionState(sequence=5, session_id="abc", heartbeat_acked=False,
                             resume_url="wss://resume")
        state.reset()
        assert state.sequence is None
        assert state.session_id is None
        assert state.resume_url is None
        assert state.heartbeat_acked
