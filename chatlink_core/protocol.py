"""Gateway frame model and builders.

Frames are JSON objects ``{"op": int, "d": any, "s": int | null, "t": str | null}``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from .config import PlatformMetadata
from .errors import ChatlinkProtocolError
from .safe_json import decode, is_structured_text


class GatewayOpcode(IntEnum):
    """Gateway opcodes consumed or produced by the session."""

    DISPATCH = 0
    HEARTBEAT = 1
    IDENTIFY = 2
    RESUME = 6
    RECONNECT = 7
    INVALID_SESSION = 9
    HELLO = 10
    HEARTBEAT_ACK = 11


# Close code used for client-initiated closes that keep the session resumable.
RESUMABLE_CLOSE_CODE = 4000
NORMAL_CLOSE_CODE = 1000

# Authentication failed, invalid shard, sharding required, invalid API
# version, invalid intents, disallowed intents.
FATAL_CLOSE_CODES: frozenset[int] = frozenset({4004, 4010, 4011, 4012, 4013, 4014})

# Invalid sequence, session timed out.
SESSION_RESET_CLOSE_CODES: frozenset[int] = frozenset({4007, 4009})


@dataclass(frozen=True)
class GatewayFrame:
    """A single gateway frame."""

    op: int
    d: Any = None
    s: int | None = None
    t: str | None = None

    @property
    def opcode(self) -> GatewayOpcode | None:
        """Known opcode, or None for opcodes this client does not handle."""
        try:
            return GatewayOpcode(self.op)
        except ValueError:
            return None

    def to_wire(self) -> dict[str, Any]:
        return {"op": self.op, "d": self.d, "s": self.s, "t": self.t}


def parse_frame(data: str | bytes) -> GatewayFrame:
    """Decode an inbound text frame.

    Raises:
        ChatlinkProtocolError: If the payload is not a JSON object with an
            integer ``op`` field
    """
    if not is_structured_text(data):
        raise ChatlinkProtocolError("Gateway frame is not JSON")
    try:
        message = decode(data)
    except ValueError as err:
        raise ChatlinkProtocolError("Gateway frame failed to decode") from err

    if not isinstance(message, dict):
        raise ChatlinkProtocolError("Gateway frame is not an object")

    op = message.get("op")
    if isinstance(op, bool) or not isinstance(op, int):
        raise ChatlinkProtocolError(f"Gateway frame has invalid op: {op!r}")

    seq = message.get("s")
    name = message.get("t")
    return GatewayFrame(
        op=op,
        d=message.get("d"),
        s=seq if isinstance(seq, int) and not isinstance(seq, bool) else None,
        t=name if isinstance(name, str) else None,
    )


def build_heartbeat(sequence: int | None) -> dict[str, Any]:
    return {"op": GatewayOpcode.HEARTBEAT.value, "d": sequence}


def build_identify(
    *,
    token: str,
    platform: PlatformMetadata,
    intents: int | None = None,
) -> dict[str, Any]:
    """Construct an IDENTIFY frame for a fresh session."""
    payload: dict[str, Any] = {
        "token": token,
        "properties": platform.to_properties(),
    }
    if intents is not None:
        payload["intents"] = intents
    return {"op": GatewayOpcode.IDENTIFY.value, "d": payload}


def build_resume(*, token: str, session_id: str, sequence: int) -> dict[str, Any]:
    """Construct a RESUME frame replaying events after ``sequence``."""
    return {
        "op": GatewayOpcode.RESUME.value,
        "d": {"token": token, "session_id": session_id, "seq": sequence},
    }


def classify_close_code(code: int | None) -> str:
    """Map a close code to ``"fatal"``, ``"reset"`` or ``"resume"``."""
    if code in FATAL_CLOSE_CODES:
        return "fatal"
    if code in SESSION_RESET_CLOSE_CODES:
        return "reset"
    return "resume"
