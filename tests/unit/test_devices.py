# pylint: disable=missing-module-docstring,missing-function-docstring

from types import SimpleNamespace
from typing import Any

import numpy as np
import pytest

import audio.devices as devices_mod
from audio.devices import SoundDeviceProvider, SoundDeviceSink, classify_device_error
from audio.errors import DeviceAccessDenied, DeviceUnavailable, PermissionDenied


class FakePortAudioError(Exception):
    pass


class FakeStream:
    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.started = False
        self.stopped = False
        self.closed = False

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def close(self) -> None:
        self.closed = True


def fake_sd(**overrides: Any) -> SimpleNamespace:
    streams: list[FakeStream] = []

    def input_stream(**kwargs: Any) -> FakeStream:
        stream = FakeStream(**kwargs)
        streams.append(stream)
        return stream

    calls: list[tuple[str, Any]] = []
    module = SimpleNamespace(
        PortAudioError=FakePortAudioError,
        InputStream=input_stream,
        streams=streams,
        calls=calls,
        default=SimpleNamespace(device=(1, 2)),
        query_devices=lambda: [
            {"name": "HDMI", "max_input_channels": 0, "max_output_channels": 2, "default_samplerate": 48000.0},
            {"name": "Built-in Mic", "max_input_channels": 1, "max_output_channels": 0, "default_samplerate": 44100.0},
            {"name": "Headset", "max_input_channels": 1, "max_output_channels": 2, "default_samplerate": 16000.0},
        ],
        play=lambda samples, sr, device=None: calls.append(("play", (len(samples), sr, device))),
        wait=lambda: calls.append(("wait", None)),
        stop=lambda: calls.append(("stop", None)),
    )
    for key, value in overrides.items():
        setattr(module, key, value)
    return module


# ---------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------

def test_permission_errors_map_to_access_denied():
    err = classify_device_error(FakePortAudioError("Error opening InputStream: Permission denied"), 0)

    assert isinstance(err, DeviceAccessDenied)
    assert isinstance(err, PermissionDenied)


def test_other_errors_map_to_unavailable():
    err = classify_device_error(ValueError("No input device matching 'USB'"), "USB")

    assert isinstance(err, DeviceUnavailable)


# ---------------------------------------------------------------------
# SoundDeviceProvider
# ---------------------------------------------------------------------

def test_open_input_starts_mono_float_stream(monkeypatch):
    sd = fake_sd()
    monkeypatch.setattr(devices_mod, "_sounddevice", lambda: sd)
    blocks: list[np.ndarray] = []

    handle = SoundDeviceProvider().open_input(2, sample_rate_hz=16000, on_block=blocks.append)

    stream = sd.streams[0]
    assert stream.started
    assert stream.kwargs["device"] == 2
    assert stream.kwargs["samplerate"] == 16000
    assert stream.kwargs["channels"] == 1
    assert stream.kwargs["dtype"] == "float32"

    stream.kwargs["callback"](np.ones((160, 1), dtype=np.float32), 160, None, None)
    assert blocks[0].shape == (160,)

    handle.close()
    handle.close()
    assert stream.stopped and stream.closed


def test_open_input_failure_is_classified(monkeypatch):
    def failing_stream(**_kwargs: Any) -> FakeStream:
        raise FakePortAudioError("Device unavailable [PaErrorCode -9985]")

    monkeypatch.setattr(devices_mod, "_sounddevice", lambda: fake_sd(InputStream=failing_stream))

    with pytest.raises(DeviceUnavailable):
        SoundDeviceProvider().open_input(None, sample_rate_hz=16000, on_block=lambda b: None)


def test_device_listing_filters_by_direction(monkeypatch):
    monkeypatch.setattr(devices_mod, "_sounddevice", fake_sd)
    provider = SoundDeviceProvider()

    inputs = provider.list_input_devices()
    outputs = provider.list_output_devices()

    assert [(d.index, d.name, d.is_default) for d in inputs] == [(1, "Built-in Mic", True), (2, "Headset", False)]
    assert [(d.index, d.name, d.is_default) for d in outputs] == [(0, "HDMI", False), (2, "Headset", True)]


def test_missing_portaudio_surfaces_as_unavailable(monkeypatch):
    def no_portaudio() -> Any:
        raise DeviceUnavailable("PortAudio library not available")

    monkeypatch.setattr(devices_mod, "_sounddevice", no_portaudio)

    with pytest.raises(DeviceUnavailable):
        SoundDeviceProvider().list_input_devices()


# ---------------------------------------------------------------------
# SoundDeviceSink
# ---------------------------------------------------------------------

def test_sink_plays_to_completion_on_device(monkeypatch):
    sd = fake_sd()
    monkeypatch.setattr(devices_mod, "_sounddevice", lambda: sd)
    sink = SoundDeviceSink()

    sink.play(np.zeros(240, dtype=np.float32), 24000, 3)
    sink.stop()

    assert sd.calls == [("play", (240, 24000, 3)), ("wait", None), ("stop", None)]
