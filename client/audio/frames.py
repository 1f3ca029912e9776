"""
Audio data containers.

Pure data containers plus media type sniffing.
No queues, no timing logic.
"""

from __future__ import annotations

from dataclasses import dataclass

from constants import MEDIA_TYPE_SIGNATURES, MEDIA_TYPE_UNKNOWN


@dataclass(frozen=True)
class AudioChunk:
    """
    One captured audio segment handed to the session for transmission.

    sequence_num:
        Monotonic per capture run, starting at 1. Debugging only.

    payload:
        Self-describing audio blob (PCM16 mono WAV). Opaque to the session.

    captured_at_ms:
        Wall-clock time the chunk was cut. Observability only.
    """
    sequence_num: int
    payload: bytes
    captured_at_ms: int


@dataclass(frozen=True)
class ActivityState:
    """Voice activity snapshot published for UI feedback."""
    active: bool
    changed_at_ms: int
    rms: float = 0.0


@dataclass(frozen=True)
class PlaybackItem:
    """
    One backend-delivered clip waiting for, or undergoing, playback.

    media_type is inferred from the payload's magic bytes.
    """
    sequence_num: int
    payload: bytes
    media_type: str
    received_at_ms: int


def sniff_media_type(payload: bytes) -> str:
    """Infer a media type from the leading bytes of payload."""
    head = bytes(payload[:12])
    for magic, media_type in MEDIA_TYPE_SIGNATURES:
        if head.startswith(magic):
            if magic == b"RIFF" and head[8:12] != b"WAVE":
                continue
            return media_type
    return MEDIA_TYPE_UNKNOWN
