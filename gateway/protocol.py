"""
Gateway wire protocol.

Frames are JSON text messages shaped ``{"op", "d", "s", "t"}``; only
Dispatch frames (``op`` 0) carry a sequence number ``s`` and an event name
``t``.  This module owns the opcode table, the immutable
:class:`GatewayEnvelope`, the resumable :class:`SessionState` and the
encode/decode helpers used by :mod:`gateway.client`.
"""

import json
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Optional

from core.errors import ProtocolError


class Opcode(IntEnum):
    DISPATCH = 0
    HEARTBEAT = 1
    IDENTIFY = 2
    RESUME = 6
    RECONNECT = 7
    INVALID_SESSION = 9
    HELLO = 10
    HEARTBEAT_ACK = 11


@dataclass(frozen=True)
class GatewayEnvelope:
    """One decoded gateway frame."""
    opcode: Opcode
    payload: Any = None
    sequence: Optional[int] = None
    event_name: Optional[str] = None

    @property
    def is_dispatch(self) -> bool:
        return self.opcode == Opcode.DISPATCH


@dataclass
class SessionState:
    """Resumable session bookkeeping.

    ``sequence`` and ``session_id`` survive reconnects so the next
    connection can Resume; :meth:`reset` forgets them and forces a fresh
    Identify.
    """
    sequence: Optional[int] = None
    session_id: Optional[str] = None
    heartbeat_interval_ms: Optional[int] = None
    heartbeat_acked: bool = True
    resume_url: Optional[str] = field(default=None, repr=False)

    @property
    def can_resume(self) -> bool:
        return self.session_id is not None and self.sequence is not None

    def reset(self) -> None:
        self.sequence = None
        self.session_id = None
        self.resume_url = None
        self.heartbeat_acked = True


def decode_frame(text: str) -> GatewayEnvelope:
    """Parse a text frame.

    Raises:
        ProtocolError: If the frame is not JSON, not an object, or carries
            an unknown opcode.
    """
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"Malformed frame: {e}") from e
    if not isinstance(data, dict) or "op" not in data:
        raise ProtocolError(f"Frame without opcode: {str(text)[:120]}")

    try:
        opcode = Opcode(data["op"])
    except (TypeError, ValueError):
        raise ProtocolError(f"Unknown opcode: {data['op']!r}") from None

    sequence = data.get("s")
    if sequence is not None and not isinstance(sequence, int):
        raise ProtocolError(f"Non-integer sequence: {sequence!r}")

    return GatewayEnvelope(
        opcode=opcode,
        payload=data.get("d"),
        sequence=sequence,
        event_name=data.get("t"),
    )


def encode_frame(opcode: Opcode, payload: Any) -> str:
    return json.dumps({"op": int(opcode), "d": payload})


def heartbeat_frame(sequence: Optional[int]) -> str:
    return encode_frame(Opcode.HEARTBEAT, sequence)


def identify_frame(token: str, properties: Dict[str, str]) -> str:
    """Identify payload: ``{"token", "properties": {"os", "browser", "device"}}``."""
    return encode_frame(Opcode.IDENTIFY, {
        "token": token,
        "properties": {
            "os": properties.get("os", "linux"),
            "browser": properties.get("browser", "autofish"),
            "device": properties.get("device", "autofish"),
        },
    })


def resume_frame(token: str, session_id: str, sequence: int) -> str:
    return encode_frame(Opcode.RESUME, {
        "token": token,
        "session_id": session_id,
        "seq": sequence,
    })


def hello_interval(envelope: GatewayEnvelope) -> int:
    """Heartbeat interval (ms) carried by a Hello frame.

    Raises:
        ProtocolError: If the interval is missing or not positive.
    """
    payload = envelope.payload if isinstance(envelope.payload, dict) else {}
    interval = payload.get("heartbeat_interval")
    if not isinstance(interval, (int, float)) or interval <= 0:
        raise ProtocolError(f"Hello without a valid heartbeat_interval: {envelope.payload!r}")
    return int(interval)
