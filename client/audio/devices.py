"""
Device access for capture and playback.

Responsibilities:
- Grant or deny microphone streams by optional device id
- Enumerate input and output devices
- Play one decoded clip to completion on an output device

The protocols here are what AudioCaptureController and AudioPlaybackQueue
depend on; SoundDeviceProvider and SoundDeviceSink are the PortAudio-backed
implementations used at runtime. Tests supply in-memory fakes.

Threading:
- open_input's on_block callback runs on the PortAudio thread. Consumers
  must hand blocks over to their event loop before touching shared state.
- SoundDeviceSink.play blocks until the clip finishes; run it off-loop.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Protocol

import numpy as np

from audio.errors import DeviceAccessDenied, DeviceUnavailable
from audio.pcm import to_mono
from constants import AUDIO_CHANNELS
from observability.logger import log_event


DeviceId = int | str | None
BlockCallback = Callable[[np.ndarray], None]

_DENIED_MARKERS = ("permission", "denied", "not authorized", "not permitted")


@dataclass(frozen=True)
class DeviceInfo:
    """One enumerated audio device."""
    index: int
    name: str
    channels: int
    default_samplerate: float
    is_default: bool = False


class InputHandle(Protocol):
    def close(self) -> None: ...


class DeviceProvider(Protocol):
    def open_input(
        self,
        device_id: DeviceId,
        *,
        sample_rate_hz: int,
        on_block: BlockCallback,
    ) -> InputHandle: ...

    def list_input_devices(self) -> list[DeviceInfo]: ...

    def list_output_devices(self) -> list[DeviceInfo]: ...


class AudioSink(Protocol):
    def play(self, samples: np.ndarray, sample_rate_hz: int, device_id: DeviceId) -> None: ...

    def stop(self) -> None: ...


def _sounddevice() -> Any:
    """
    Import sounddevice on first device access.

    The import loads the PortAudio shared library, which headless hosts may
    not have; that surfaces as DeviceUnavailable instead of an import error.
    """
    try:
        import sounddevice as sd  # pylint: disable=import-outside-toplevel
    except OSError as e:
        raise DeviceUnavailable(f"PortAudio library not available: {e}") from e
    return sd


def classify_device_error(exc: Exception, device_id: DeviceId) -> Exception:
    """Map a PortAudio/sounddevice failure to the audio error taxonomy."""
    message = str(exc)
    if any(marker in message.lower() for marker in _DENIED_MARKERS):
        return DeviceAccessDenied(f"microphone access denied ({device_id!r}): {message}")
    return DeviceUnavailable(f"input device {device_id!r} unavailable: {message}")


# ---------------------------------------------------------------------
# sounddevice implementation
# ---------------------------------------------------------------------

class _SoundDeviceInput:
    def __init__(self, stream: Any) -> None:
        self._stream = stream

    def close(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()


class SoundDeviceProvider:
    """PortAudio-backed DeviceProvider."""

    def open_input(
        self,
        device_id: DeviceId,
        *,
        sample_rate_hz: int,
        on_block: BlockCallback,
    ) -> InputHandle:
        """
        Open and start a mono float32 input stream.

        Raises:
            DeviceAccessDenied, DeviceUnavailable
        """
        sd = _sounddevice()

        def _callback(indata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
            if status:
                log_event({
                    "event_type": "INPUT_STREAM_STATUS",
                    "status": str(status),
                })
            on_block(to_mono(indata).copy())

        try:
            stream = sd.InputStream(
                device=device_id,
                samplerate=sample_rate_hz,
                channels=AUDIO_CHANNELS,
                dtype="float32",
                callback=_callback,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as e:
            raise classify_device_error(e, device_id) from e

        return _SoundDeviceInput(stream)

    def list_input_devices(self) -> list[DeviceInfo]:
        return self._list(kind="input")

    def list_output_devices(self) -> list[DeviceInfo]:
        return self._list(kind="output")

    def _list(self, *, kind: str) -> list[DeviceInfo]:
        key = "max_input_channels" if kind == "input" else "max_output_channels"
        sd = _sounddevice()
        try:
            devices = sd.query_devices()
            default_in, default_out = sd.default.device
        except sd.PortAudioError as e:
            raise DeviceUnavailable(f"cannot enumerate {kind} devices: {e}") from e

        default_index = default_in if kind == "input" else default_out
        out: list[DeviceInfo] = []
        for index, dev in enumerate(devices):
            channels = int(dev[key])
            if channels <= 0:
                continue
            out.append(
                DeviceInfo(
                    index=index,
                    name=str(dev["name"]),
                    channels=channels,
                    default_samplerate=float(dev["default_samplerate"]),
                    is_default=index == default_index,
                )
            )
        return out


class SoundDeviceSink:
    """Blocking clip player on top of sd.play / sd.wait."""

    def play(self, samples: np.ndarray, sample_rate_hz: int, device_id: DeviceId) -> None:
        sd = _sounddevice()
        sd.play(samples, sample_rate_hz, device=device_id)
        sd.wait()

    def stop(self) -> None:
        sd = _sounddevice()
        sd.stop()
