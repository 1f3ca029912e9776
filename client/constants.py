"""
Behavioural constants for the voice client.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- AppConfig reads its defaults from this module; tests override through
  AppConfig, never by patching these values.
"""

from __future__ import annotations

from typing import Final, Tuple

# =============================================================================
# Backend endpoint / identity
# =============================================================================

DEFAULT_SERVER_URL: Final[str] = "ws://localhost:9002"
DEFAULT_CLIENT_ID: Final[str] = "default_user"

# =============================================================================
# Wire protocol (text frames)
# =============================================================================

FRAME_PING: Final[str] = "ping"
FRAME_PONG: Final[str] = "pong"
FRAME_REGISTER_PREFIX: Final[str] = "register:"
FRAME_REGISTERED: Final[str] = "registered"

# =============================================================================
# Session timing
# =============================================================================

HEARTBEAT_INTERVAL_S: Final[float] = 30.0
RECONNECT_DELAY_S: Final[float] = 3.0
REGISTRATION_RETRY_S: Final[float] = 2.0
REGISTRATION_MAX_ATTEMPTS: Final[int] = 10

# websockets library frame cap for inbound audio clips
MAX_INBOUND_FRAME_BYTES: Final[int] = 2**24

# =============================================================================
# Audio format (mono, sent as PCM16 WAV)
# =============================================================================

AUDIO_SAMPLE_RATE_HZ: Final[int] = 16_000
AUDIO_CHANNELS: Final[int] = 1

# =============================================================================
# Capture
# =============================================================================

CAPTURE_CHUNK_MS: Final[int] = 1000
CONNECTIVITY_CHECK_S: Final[float] = 5.0

# Upper bound on samples buffered between chunk ticks.
CAPTURE_BUFFER_MAX_S: Final[float] = 5.0

# =============================================================================
# Voice activity detection
# =============================================================================

VAD_THRESHOLD: Final[float] = 0.02
VAD_HOLD_MS: Final[int] = 500
VAD_REFRESH_HZ: Final[int] = 60

# Most recent samples considered per VAD evaluation
VAD_WINDOW_MS: Final[int] = 100

# =============================================================================
# Playback
# =============================================================================

# (magic prefix, media type), checked in order
MEDIA_TYPE_SIGNATURES: Final[Tuple[Tuple[bytes, str], ...]] = (
    (b"RIFF", "audio/wav"),
    (b"OggS", "audio/ogg"),
    (b"fLaC", "audio/flac"),
    (b"ID3", "audio/mpeg"),
    (b"\xff\xfb", "audio/mpeg"),
    (b"\xff\xf3", "audio/mpeg"),
    (b"\xff\xf2", "audio/mpeg"),
    (b"\x1a\x45\xdf\xa3", "audio/webm"),
)
MEDIA_TYPE_UNKNOWN: Final[str] = "application/octet-stream"

# =============================================================================
# Persistence
# =============================================================================

DEFAULT_SETTINGS_PATH: Final[str] = "~/.local/share/voice-session-client/settings.json"
