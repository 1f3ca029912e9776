"""Audio error taxonomy."""

from __future__ import annotations


class AudioError(Exception):
    """Base class for capture and playback errors."""


class DeviceAccessDenied(AudioError):
    """The OS or user refused microphone access. Requires user action."""


# Name used by callers that think in terms of permissions.
PermissionDenied = DeviceAccessDenied


class DeviceUnavailable(AudioError):
    """The requested device does not exist, is busy, or failed to open."""


class PlaybackFault(AudioError):
    """
    One clip could not be decoded or played.

    Handled inside AudioPlaybackQueue: the clip is discarded and the queue
    moves on to the next one.
    """

    def __init__(self, sequence_num: int, stage: str, reason: str) -> None:
        super().__init__(f"clip {sequence_num} failed during {stage}: {reason}")
        self.sequence_num = sequence_num
        self.stage = stage
        self.reason = reason
