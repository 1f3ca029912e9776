# client/protocol/frames.py
"""
Wire-frame vocabulary for the conversation backend connection.

    client → server   "ping"                  liveness probe
    server → client   "pong"                  liveness reply (consumed)
    client → server   "register:<client-id>"  registration request
    server → client   "registered"            registration ack (consumed)
    client → server   binary                  one captured audio chunk
    server → client   binary                  one synthesized audio clip
    server → client   other text              application message (forwarded)

Usage example:

    kind = classify_inbound(raw)
    if kind is InboundKind.PONG:
        ...
    elif kind is InboundKind.AUDIO:
        playback.enqueue(raw)
"""

from __future__ import annotations

from enum import Enum

from constants import (
    FRAME_PING,
    FRAME_PONG,
    FRAME_REGISTER_PREFIX,
    FRAME_REGISTERED,
)


class FrameError(ValueError):
    """Raised for frames the client refuses to build."""


class InboundKind(str, Enum):
    """
    Classification of a frame received from the backend.

    PONG and REGISTERED are protocol frames handled by the session;
    everything else is surfaced to message listeners.
    """
    PONG = "pong"
    REGISTERED = "registered"
    TEXT = "text"
    AUDIO = "audio"


def ping_frame() -> str:
    return FRAME_PING


def registration_frame(client_id: str) -> str:
    """
    Build the registration request for client_id.

    Raises:
        FrameError if client_id is empty or contains whitespace.
    """
    if not client_id or any(ch.isspace() for ch in client_id):
        raise FrameError(f"invalid client id: {client_id!r}")
    return f"{FRAME_REGISTER_PREFIX}{client_id}"


def classify_inbound(frame: str | bytes) -> InboundKind:
    """Classify one inbound frame. Never raises."""
    if isinstance(frame, (bytes, bytearray, memoryview)):
        return InboundKind.AUDIO
    if frame == FRAME_PONG:
        return InboundKind.PONG
    if frame == FRAME_REGISTERED:
        return InboundKind.REGISTERED
    return InboundKind.TEXT
