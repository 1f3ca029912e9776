"""
A minimal, energy-based Voice Activity Detection (VAD) module.

Used for UI feedback only (the "is speaking" indicator); it never gates
transmission. Each observed window is reduced to the RMS of its deviation
from the window mean, compared against a fixed threshold, and smoothed with
a hold time so the indicator does not flicker between syllables.
"""
from __future__ import annotations

import numpy as np

from audio.frames import ActivityState
from audio.pcm import pcm16le_to_float32


def window_rms(f32: np.ndarray) -> float:
    """RMS of the window's deviation from its own mean (DC removed)."""
    if f32.size == 0:
        return 0.0
    centered = f32 - float(np.mean(f32))
    return float(np.sqrt(np.mean(np.square(centered))))


class VoiceActivityDetector:
    """
    Threshold VAD with hysteresis.

    active becomes True as soon as a window's RMS exceeds threshold. It
    stays True until hold_ms have passed since the last window above
    threshold, even if intermediate windows are quiet.
    """

    def __init__(self, threshold: float, hold_ms: int) -> None:
        if threshold < 0:
            raise ValueError("threshold must be >= 0")
        if hold_ms < 0:
            raise ValueError("hold_ms must be >= 0")
        self._threshold = threshold
        self._hold_ms = hold_ms
        self._active = False
        self._changed_at_ms = 0
        self._last_above_ms: int | None = None
        self._last_rms = 0.0

    @property
    def active(self) -> bool:
        return self._active

    @property
    def state(self) -> ActivityState:
        return ActivityState(
            active=self._active,
            changed_at_ms=self._changed_at_ms,
            rms=self._last_rms,
        )

    def observe(self, f32: np.ndarray, now_ms: int) -> ActivityState:
        """
        Observe one time-domain window and update activity.

        Args:
            f32:
                1D float32 samples in [-1, 1].
            now_ms:
                Monotonic or wall-clock milliseconds; only differences matter.

        Returns:
            The ActivityState after this observation.
        """
        rms = window_rms(np.asarray(f32, dtype=np.float32))
        self._last_rms = rms

        if rms > self._threshold:
            self._last_above_ms = now_ms
            self._transition(True, now_ms)
        elif self._active:
            assert self._last_above_ms is not None
            if now_ms - self._last_above_ms >= self._hold_ms:
                self._transition(False, now_ms)

        return self.state

    def observe_pcm16(self, pcm_bytes: bytes, now_ms: int) -> ActivityState:
        return self.observe(pcm16le_to_float32(pcm_bytes), now_ms)

    def reset(self) -> None:
        """Return to inactive with no history."""
        self._active = False
        self._changed_at_ms = 0
        self._last_above_ms = None
        self._last_rms = 0.0

    def _transition(self, active: bool, now_ms: int) -> None:
        if active != self._active:
            self._active = active
            self._changed_at_ms = now_ms
