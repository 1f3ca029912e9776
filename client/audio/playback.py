"""
Sequential playback of backend-delivered audio clips.

Responsibilities:
- Accept binary frames from the session's message channel (attach())
- Queue clips in arrival order and play them one at a time
- Report playing/not-playing transitions and per-clip start events

Non-responsibilities:
- No mixing, ducking or overlap: at most one clip plays at any time
- No retry of failed clips (logged as PLAYBACK_FAULT and skipped)

A single worker task drains the queue. Decoding and device playback block,
so both run on worker threads via asyncio.to_thread; the sink's play()
returns only when the clip has finished.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Deque

from audio.devices import AudioSink, DeviceId, SoundDeviceSink
from audio.errors import PlaybackFault
from audio.frames import PlaybackItem, sniff_media_type
from audio.pcm import decode_clip
from observability.logger import log_event, now_ms
from observability.metrics import timed
from session.channel import Channel, Subscription
from session.connection import ConnectionSession


class AudioPlaybackQueue:
    """FIFO clip player bound to one ConnectionSession."""

    def __init__(
        self,
        session: ConnectionSession,
        *,
        sink: AudioSink | None = None,
        output_device_id: DeviceId = None,
    ) -> None:
        self._session = session
        self._sink: AudioSink = sink or SoundDeviceSink()
        self._output_device_id = output_device_id

        self._pending: Deque[PlaybackItem] = deque()
        self._worker: asyncio.Task[None] | None = None
        self._subscription: Subscription | None = None
        self._sequence = 0
        self._playing = False

        self.clips_played = 0
        self.clips_failed = 0

        self.playing_channel: Channel[bool] = Channel("playback_playing")
        self.started_channel: Channel[PlaybackItem] = Channel("playback_started")

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def output_device_id(self) -> DeviceId:
        return self._output_device_id

    @output_device_id.setter
    def output_device_id(self, device_id: DeviceId) -> None:
        # Takes effect from the next clip
        self._output_device_id = device_id

    # ------------------------------------------------------------------
    # Session binding
    # ------------------------------------------------------------------

    def attach(self) -> None:
        """Start consuming binary frames from the session. Idempotent."""
        if self._subscription is not None and self._subscription.active:
            return
        self._subscription = self._session.add_message_listener(self._on_message)

    async def detach(self) -> None:
        """Stop consuming frames and stop playback."""
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        await self.stop()

    def _on_message(self, frame: str | bytes) -> None:
        if isinstance(frame, (bytes, bytearray, memoryview)):
            self.enqueue(bytes(frame))

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def enqueue(self, payload: bytes) -> PlaybackItem:
        """Append one clip and make sure the worker is running."""
        self._sequence += 1
        item = PlaybackItem(
            sequence_num=self._sequence,
            payload=payload,
            media_type=sniff_media_type(payload),
            received_at_ms=now_ms(),
        )
        self._pending.append(item)
        self._log(
            "CLIP_ENQUEUED",
            seq_num=item.sequence_num,
            media_type=item.media_type,
            bytes=len(payload),
            pending=len(self._pending),
        )

        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain(), name="playback")
        return item

    async def stop(self) -> None:
        """Interrupt the current clip and discard pending ones."""
        dropped = len(self._pending)
        self._pending.clear()

        worker = self._worker
        self._worker = None
        if worker is not None and not worker.done():
            worker.cancel()
            try:
                await asyncio.to_thread(self._sink.stop)
            except Exception as e:  # pylint: disable=broad-exception-caught
                self._log("PLAYBACK_STOP_ERROR", error=repr(e))
            await asyncio.gather(worker, return_exceptions=True)

        self._set_playing(False)
        if dropped:
            self._log("PLAYBACK_CLEARED", dropped=dropped)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def _drain(self) -> None:
        try:
            while self._pending:
                await self._play_one(self._pending.popleft())
        finally:
            self._set_playing(False)
            if self._worker is asyncio.current_task():
                self._worker = None

    async def _play_one(self, item: PlaybackItem) -> None:
        try:
            with timed(
                "clip_playback",
                client_id=self._session.client_id,
                details={"seq_num": item.sequence_num, "media_type": item.media_type},
            ):
                try:
                    samples, sample_rate_hz = await asyncio.to_thread(decode_clip, item.payload)
                except Exception as e:  # pylint: disable=broad-exception-caught
                    raise PlaybackFault(item.sequence_num, "decode", repr(e)) from e

                self._set_playing(True)
                self.started_channel.publish(item)
                self._log("CLIP_STARTED", seq_num=item.sequence_num, sample_rate_hz=sample_rate_hz)

                try:
                    await asyncio.to_thread(
                        self._sink.play,
                        samples,
                        sample_rate_hz,
                        self._output_device_id,
                    )
                except Exception as e:  # pylint: disable=broad-exception-caught
                    raise PlaybackFault(item.sequence_num, "play", repr(e)) from e
        except PlaybackFault as fault:
            self.clips_failed += 1
            self._log(
                "PLAYBACK_FAULT",
                seq_num=fault.sequence_num,
                stage=fault.stage,
                reason=fault.reason,
            )
            return

        self.clips_played += 1
        self._log("CLIP_FINISHED", seq_num=item.sequence_num)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_playing(self, playing: bool) -> None:
        if playing == self._playing:
            return
        self._playing = playing
        self.playing_channel.publish(playing)

    def _log(self, event_type: str, **fields: object) -> None:
        log_event({
            "event_type": event_type,
            "client_id": self._session.client_id,
            **fields,
        })
