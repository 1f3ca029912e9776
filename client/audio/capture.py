"""
Microphone capture bridged to the backend session.

Responsibilities:
- Acquire a microphone stream (explicit device, last-used device from the
  settings store, or system default)
- Cut the captured samples into one AudioChunk per chunk interval
- Hand each chunk to ConnectionSession.send only while the session is
  connected AND registered AND this capture run is still active
- Drive VoiceActivityDetector for UI feedback
- Stop automatically when a periodic connectivity check finds the session
  not ready

Non-responsibilities:
- No queuing or retry of gated chunks (they are dropped and logged)
- No mutation of session state

Device blocks arrive on the PortAudio thread and are handed to the event
loop with call_soon_threadsafe; all other work happens on the loop. Each
start() opens a new capture run; timers and device blocks carry the run
number and are ignored once it is stale.
"""

from __future__ import annotations

import asyncio
import time

import numpy as np

from audio.devices import DeviceId, DeviceProvider, InputHandle
from audio.errors import AudioError
from audio.frames import ActivityState, AudioChunk
from audio.pcm import encode_wav
from audio.queues import SampleBuffer
from audio.vad import VoiceActivityDetector
from config import AppConfig
from constants import CAPTURE_BUFFER_MAX_S, VAD_WINDOW_MS
from observability.logger import log_event, now_ms
from persistence.settings_store import SettingsError, SettingsStore
from session.channel import Channel
from session.connection import ConnectionSession
from session.errors import ConnectionUnavailable
from session.timers import IntervalTimer


def _monotonic_ms() -> int:
    return time.monotonic_ns() // 1_000_000


class AudioCaptureController:
    """
    Start/stop microphone capture and stream gated chunks to the session.

    Observable signals:
    - activity_channel: ActivityState on every VAD transition
    - auto_stop_channel: reason string when capture stops itself
    """

    def __init__(
        self,
        session: ConnectionSession,
        *,
        config: AppConfig,
        devices: DeviceProvider,
        settings_store: SettingsStore | None = None,
        vad: VoiceActivityDetector | None = None,
    ) -> None:
        self._session = session
        self._config = config
        self._devices = devices
        self._settings_store = settings_store
        self._vad = vad or VoiceActivityDetector(
            threshold=config.vad_threshold,
            hold_ms=config.vad_hold_ms,
        )

        self._buffer = SampleBuffer(
            sample_rate_hz=config.sample_rate_hz,
            max_depth_s=CAPTURE_BUFFER_MAX_S,
        )
        # Observation-only copy of the most recent samples for the VAD
        self._recent = SampleBuffer(
            sample_rate_hz=config.sample_rate_hz,
            max_depth_s=VAD_WINDOW_MS / 1000.0,
        )
        self._vad_window_samples = config.sample_rate_hz * VAD_WINDOW_MS // 1000

        self._capturing = False
        self._run = 0
        self._input: InputHandle | None = None
        self._device_id: DeviceId = None
        self._sequence = 0
        self._audio_active = False

        self.chunks_sent = 0
        self.chunks_dropped = 0

        self.activity_channel: Channel[ActivityState] = Channel("audio_activity")
        self.auto_stop_channel: Channel[str] = Channel("capture_auto_stop")

        self._chunk_timer = IntervalTimer(
            "capture_chunk",
            config.capture_chunk_ms / 1000.0,
            self._on_chunk_tick,
            is_current=self._is_current,
        )
        self._connectivity_timer = IntervalTimer(
            "connectivity_check",
            config.connectivity_check_s,
            self._on_connectivity_tick,
            is_current=self._is_current,
        )
        self._vad_timer = IntervalTimer(
            "vad_refresh",
            1.0 / config.vad_refresh_hz,
            self._on_vad_tick,
            is_current=self._is_current,
        )

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def is_capturing(self) -> bool:
        return self._capturing

    @property
    def is_audio_active(self) -> bool:
        return self._audio_active

    @property
    def device_id(self) -> DeviceId:
        return self._device_id

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(self, device_id: DeviceId = None) -> None:
        """
        Acquire the microphone and begin chunked capture.

        No-op if already capturing.

        Raises:
            DeviceAccessDenied, DeviceUnavailable: the device could not be
            opened; capture is not started.
        """
        if self._capturing:
            self._log("CAPTURE_ALREADY_ACTIVE")
            return

        resolved = device_id if device_id is not None else self._remembered_device()

        self._run += 1
        run = self._run
        loop = asyncio.get_running_loop()

        def _on_block(block: np.ndarray) -> None:
            # PortAudio thread
            try:
                loop.call_soon_threadsafe(self._accept_block, run, block)
            except RuntimeError:
                pass  # loop already closed during shutdown

        try:
            handle = await asyncio.to_thread(
                self._devices.open_input,
                resolved,
                sample_rate_hz=self._config.sample_rate_hz,
                on_block=_on_block,
            )
        except AudioError as e:
            self._log("CAPTURE_START_FAILED", device_id=resolved, error=str(e), error_type=type(e).__name__)
            raise

        if run != self._run:
            # Superseded by stop() or a newer start() while the device opened
            self._log("CAPTURE_START_SUPERSEDED", device_id=resolved)
            await self._close_input(handle)
            return

        self._input = handle
        self._device_id = resolved
        self._capturing = True
        self._sequence = 0
        self._buffer.clear()
        self._recent.clear()
        self._vad.reset()

        self._chunk_timer.start(run)
        self._connectivity_timer.start(run)
        self._vad_timer.start(run)

        self._log("CAPTURE_STARTED", device_id=resolved)

    async def stop(self, reason: str = "requested") -> None:
        """
        Stop capture and release the microphone.

        Idempotent: safe to call when already stopped. A start() still
        waiting on the device is cancelled and releases what it opened.
        """
        handle = self._detach(reason)
        if handle is not None:
            await self._close_input(handle)

    def _detach(self, reason: str) -> InputHandle | None:
        """Synchronous teardown; returns the input handle still to close."""
        self._run += 1
        if not self._capturing:
            return None

        self._capturing = False
        self._chunk_timer.cancel()
        self._connectivity_timer.cancel()
        self._vad_timer.cancel()

        handle = self._input
        self._input = None
        self._buffer.clear()
        self._recent.clear()
        self._vad.reset()
        self._set_audio_active(False, rms=0.0)

        self._log("CAPTURE_STOPPED", reason=reason, chunks_sent=self.chunks_sent)
        return handle

    # ------------------------------------------------------------------
    # Device hand-off
    # ------------------------------------------------------------------

    def _accept_block(self, run: int, block: np.ndarray) -> None:
        if run != self._run or not self._capturing:
            return
        self._buffer.append(block)
        self._recent.append(block)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    async def _on_chunk_tick(self) -> None:
        run = self._run
        samples = self._buffer.drain()
        if samples.size == 0:
            return

        self._sequence += 1
        chunk = AudioChunk(
            sequence_num=self._sequence,
            payload=encode_wav(samples, self._config.sample_rate_hz),
            captured_at_ms=now_ms(),
        )
        await self.transmit(chunk, run)

    async def transmit(self, chunk: AudioChunk, run: int | None = None) -> bool:
        """
        Gate and send one chunk.

        Returns:
            True if the chunk was handed to the socket, False if dropped.
        """
        reason = self._gate_reason(self._run if run is None else run)
        if reason is not None:
            self._drop(chunk, reason)
            return False

        try:
            await self._session.send(chunk.payload)
        except ConnectionUnavailable:
            self._drop(chunk, "send_failed")
            return False

        self.chunks_sent += 1
        self._log("CHUNK_SENT", seq_num=chunk.sequence_num, bytes=len(chunk.payload))
        return True

    async def _on_connectivity_tick(self) -> None:
        status = self._session.status
        if status.ready:
            return

        reason = "not_connected" if not status.connected else "not_registered"
        self._log("CAPTURE_AUTO_STOP", reason=reason)
        handle = self._detach(reason)
        # Listeners hear the reason before the device close is awaited
        self.auto_stop_channel.publish(reason)
        if handle is not None:
            await self._close_input(handle)

    def _on_vad_tick(self) -> None:
        window = self._recent.latest(self._vad_window_samples)
        state = self._vad.observe(window, _monotonic_ms())
        self._set_audio_active(state.active, rms=state.rms)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _gate_reason(self, run: int) -> str | None:
        """None if a chunk from run may be sent now, else the drop reason."""
        if not self._capturing or run != self._run:
            return "capture_stopped"
        status = self._session.status
        if not status.connected:
            return "not_connected"
        if not status.registered:
            return "not_registered"
        return None

    def _drop(self, chunk: AudioChunk, reason: str) -> None:
        self.chunks_dropped += 1
        self._log("CHUNK_DROPPED", seq_num=chunk.sequence_num, reason=reason)

    def _set_audio_active(self, active: bool, *, rms: float) -> None:
        if active == self._audio_active:
            return
        self._audio_active = active
        self.activity_channel.publish(
            ActivityState(active=active, changed_at_ms=_monotonic_ms(), rms=rms)
        )

    def _remembered_device(self) -> DeviceId:
        if self._settings_store is None:
            return None
        try:
            return self._settings_store.load().input_device_id
        except SettingsError as e:
            self._log("SETTINGS_UNAVAILABLE", error=str(e))
            return None

    def _is_current(self, run: int) -> bool:
        return self._capturing and run == self._run

    async def _close_input(self, handle: InputHandle) -> None:
        try:
            await asyncio.to_thread(handle.close)
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._log("INPUT_CLOSE_ERROR", error=repr(e))

    def _log(self, event_type: str, **fields: object) -> None:
        log_event({
            "event_type": event_type,
            "client_id": self._session.client_id,
            "capture_run": self._run,
            **fields,
        })
