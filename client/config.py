"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No session logic
- No wire protocol handling
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import (
    AUDIO_SAMPLE_RATE_HZ,
    CAPTURE_CHUNK_MS,
    CONNECTIVITY_CHECK_S,
    DEFAULT_CLIENT_ID,
    DEFAULT_SERVER_URL,
    DEFAULT_SETTINGS_PATH,
    HEARTBEAT_INTERVAL_S,
    RECONNECT_DELAY_S,
    REGISTRATION_MAX_ATTEMPTS,
    REGISTRATION_RETRY_S,
    VAD_HOLD_MS,
    VAD_REFRESH_HZ,
    VAD_THRESHOLD,
)


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the session, capture and playback layers.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    enable_json_logs: bool = True

    # ------------------------------------------------------------------
    # Backend connection
    # ------------------------------------------------------------------

    server_url: str = DEFAULT_SERVER_URL
    client_id: str = DEFAULT_CLIENT_ID

    heartbeat_interval_s: float = HEARTBEAT_INTERVAL_S
    reconnect_delay_s: float = RECONNECT_DELAY_S
    registration_retry_s: float = REGISTRATION_RETRY_S
    registration_max_attempts: int = REGISTRATION_MAX_ATTEMPTS

    # ------------------------------------------------------------------
    # Capture / VAD
    # ------------------------------------------------------------------

    sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ
    capture_chunk_ms: int = CAPTURE_CHUNK_MS
    connectivity_check_s: float = CONNECTIVITY_CHECK_S

    vad_threshold: float = VAD_THRESHOLD
    vad_hold_ms: int = VAD_HOLD_MS
    vad_refresh_hz: int = VAD_REFRESH_HZ

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    settings_path: str = DEFAULT_SETTINGS_PATH

    def __post_init__(self) -> None:
        for name in (
            "heartbeat_interval_s",
            "reconnect_delay_s",
            "registration_retry_s",
            "connectivity_check_s",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        if self.registration_max_attempts < 1:
            raise ValueError("registration_max_attempts must be >= 1")
        if self.capture_chunk_ms <= 0:
            raise ValueError("capture_chunk_ms must be > 0")
        if self.sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be > 0")
        if self.vad_refresh_hz <= 0:
            raise ValueError("vad_refresh_hz must be > 0")
        if self.vad_hold_ms < 0:
            raise ValueError("vad_hold_ms must be >= 0")

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable cannot be parsed or is out of range.
        """
        env = os.environ
        return AppConfig(
            enable_json_logs=env.get("ENABLE_JSON_LOGS", "1") == "1",

            server_url=env.get("VOICE_SERVER_URL", DEFAULT_SERVER_URL),
            client_id=env.get("VOICE_CLIENT_ID", DEFAULT_CLIENT_ID),

            heartbeat_interval_s=float(env.get("HEARTBEAT_INTERVAL_S", HEARTBEAT_INTERVAL_S)),
            reconnect_delay_s=float(env.get("RECONNECT_DELAY_S", RECONNECT_DELAY_S)),
            registration_retry_s=float(env.get("REGISTRATION_RETRY_S", REGISTRATION_RETRY_S)),
            registration_max_attempts=int(
                env.get("REGISTRATION_MAX_ATTEMPTS", REGISTRATION_MAX_ATTEMPTS)
            ),

            sample_rate_hz=int(env.get("AUDIO_SAMPLE_RATE_HZ", AUDIO_SAMPLE_RATE_HZ)),
            capture_chunk_ms=int(env.get("CAPTURE_CHUNK_MS", CAPTURE_CHUNK_MS)),
            connectivity_check_s=float(env.get("CONNECTIVITY_CHECK_S", CONNECTIVITY_CHECK_S)),

            vad_threshold=float(env.get("VAD_THRESHOLD", VAD_THRESHOLD)),
            vad_hold_ms=int(env.get("VAD_HOLD_MS", VAD_HOLD_MS)),
            vad_refresh_hz=int(env.get("VAD_REFRESH_HZ", VAD_REFRESH_HZ)),

            settings_path=env.get("SETTINGS_PATH", DEFAULT_SETTINGS_PATH),
        )
