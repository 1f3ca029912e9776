# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring

import asyncio
import json
import threading
from pathlib import Path
from typing import Any, Awaitable, Callable

import numpy as np
import pytest
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State as SocketState

from audio.devices import DeviceInfo
from config import AppConfig
from observability import logger
from session.channel import Channel
from session.connection_status import ConnectionStatus
from session.errors import ConnectionUnavailable


# ---------------------------------------------------------------------
# Log capture
# ---------------------------------------------------------------------

@pytest.fixture(autouse=True)
def events(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    """Every JSONL line emitted during the test, decoded."""
    captured: list[dict[str, Any]] = []

    def fake_print(line: str) -> None:
        captured.append(json.loads(line))

    monkeypatch.setattr(logger, "_print", fake_print)
    monkeypatch.setattr(logger, "_enabled", True)
    return captured


def of_type(events: list[dict[str, Any]], event_type: str) -> list[dict[str, Any]]:
    return [e for e in events if e.get("event_type") == event_type]


@pytest.fixture
def select_events() -> Callable[[list[dict[str, Any]], str], list[dict[str, Any]]]:
    return of_type


# ---------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------

@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., AppConfig]:
    """AppConfig with timings shrunk to milliseconds."""
    def _make(**overrides: Any) -> AppConfig:
        values: dict[str, Any] = {
            "heartbeat_interval_s": 5.0,
            "reconnect_delay_s": 0.02,
            "registration_retry_s": 0.02,
            "registration_max_attempts": 10,
            "capture_chunk_ms": 20,
            "connectivity_check_s": 5.0,
            "vad_refresh_hz": 100,
            "vad_hold_ms": 30,
            "settings_path": str(tmp_path / "settings.json"),
        }
        values.update(overrides)
        return AppConfig(**values)
    return _make


# ---------------------------------------------------------------------
# Polling helper
# ---------------------------------------------------------------------

async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    return _wait_until


# ---------------------------------------------------------------------
# Fake backend
# ---------------------------------------------------------------------

_EOF = object()


class FakeSocket:
    """In-memory stand-in for a websockets ClientConnection."""

    def __init__(self, *, auto_register: bool = False, auto_pong: bool = False) -> None:
        self.state = SocketState.OPEN
        self.sent: list[str | bytes] = []
        self.close_calls = 0
        self.auto_register = auto_register
        self.auto_pong = auto_pong
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()

    # client-facing API
    async def send(self, message: str | bytes) -> None:
        if self.state is not SocketState.OPEN:
            raise ConnectionClosed(None, None)
        self.sent.append(message)
        if self.auto_register and isinstance(message, str) and message.startswith("register:"):
            self.feed("registered")
        if self.auto_pong and message == "ping":
            self.feed("pong")

    async def close(self) -> None:
        self.close_calls += 1
        if self.state is not SocketState.CLOSED:
            self.state = SocketState.CLOSED
            self._inbox.put_nowait(_EOF)

    def __aiter__(self) -> "FakeSocket":
        return self

    async def __anext__(self) -> str | bytes:
        item = await self._inbox.get()
        if item is _EOF:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item

    # server-side controls
    def feed(self, frame: str | bytes) -> None:
        self._inbox.put_nowait(frame)

    def drop(self) -> None:
        """Server went away: the receive loop ends with a close."""
        self.state = SocketState.CLOSED
        self._inbox.put_nowait(ConnectionClosed(None, None))

    def text_sent(self, prefix: str = "") -> list[str]:
        return [m for m in self.sent if isinstance(m, str) and m.startswith(prefix)]

    def binary_sent(self) -> list[bytes]:
        return [m for m in self.sent if isinstance(m, bytes)]


class FakeServer:
    """Connector: each successful call hands out a fresh FakeSocket."""

    def __init__(
        self,
        *,
        auto_register: bool = False,
        auto_pong: bool = False,
        fail_connects: int = 0,
    ) -> None:
        self.auto_register = auto_register
        self.auto_pong = auto_pong
        self.fail_connects = fail_connects
        self.connect_calls = 0
        self.urls: list[str] = []
        self.sockets: list[FakeSocket] = []
        self.gate: asyncio.Event | None = None

    async def __call__(self, url: str) -> FakeSocket:
        self.connect_calls += 1
        self.urls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_connects > 0:
            self.fail_connects -= 1
            raise OSError("connection refused")
        ws = FakeSocket(auto_register=self.auto_register, auto_pong=self.auto_pong)
        self.sockets.append(ws)
        return ws

    @property
    def latest(self) -> FakeSocket:
        return self.sockets[-1]


@pytest.fixture
def fake_server_cls() -> type[FakeServer]:
    return FakeServer


# ---------------------------------------------------------------------
# Fake session (for capture/playback in isolation)
# ---------------------------------------------------------------------

class FakeSession:
    client_id = "test_user"

    def __init__(self, status: ConnectionStatus = ConnectionStatus()) -> None:
        self.status = status
        self.sent: list[str | bytes] = []
        self.send_error: Exception | None = None
        self.message_channel: Channel[str | bytes] = Channel("inbound_message")

    async def send(self, message: str | bytes) -> None:
        if self.send_error is not None:
            raise self.send_error
        if not self.status.connected:
            raise ConnectionUnavailable("socket not open")
        self.sent.append(message)

    def add_message_listener(self, listener: Callable[[Any], None]) -> Any:
        return self.message_channel.subscribe(listener)


@pytest.fixture
def fake_session_cls() -> type[FakeSession]:
    return FakeSession


# ---------------------------------------------------------------------
# Fake audio devices
# ---------------------------------------------------------------------

class FakeInput:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeDevices:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.opened: list[Any] = []
        self.inputs: list[FakeInput] = []
        self.on_block: Callable[[np.ndarray], None] | None = None
        self.sample_rates: list[int] = []
        self.open_gate: threading.Event | None = None

    def open_input(self, device_id: Any, *, sample_rate_hz: int, on_block: Callable[[np.ndarray], None]) -> FakeInput:
        if self.open_gate is not None:
            self.open_gate.wait(timeout=2.0)
        if self.error is not None:
            raise self.error
        self.opened.append(device_id)
        self.sample_rates.append(sample_rate_hz)
        self.on_block = on_block
        handle = FakeInput()
        self.inputs.append(handle)
        return handle

    def push(self, block: np.ndarray) -> None:
        assert self.on_block is not None
        self.on_block(block)

    def list_input_devices(self) -> list[DeviceInfo]:
        return [DeviceInfo(index=0, name="Fake Mic", channels=1, default_samplerate=16000.0, is_default=True)]

    def list_output_devices(self) -> list[DeviceInfo]:
        return [DeviceInfo(index=1, name="Fake Speaker", channels=2, default_samplerate=48000.0, is_default=True)]


@pytest.fixture
def fake_devices_cls() -> type[FakeDevices]:
    return FakeDevices


class FakeSink:
    """Records clips; play() runs on a worker thread like the real sink."""

    def __init__(self, *, duration_s: float = 0.0, fail_calls: tuple[int, ...] = ()) -> None:
        self.duration_s = duration_s
        self.fail_calls = set(fail_calls)
        self.played: list[tuple[int, int, Any]] = []
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self.stop_calls = 0
        self._lock = threading.Lock()
        self._interrupt = threading.Event()

    def play(self, samples: np.ndarray, sample_rate_hz: int, device_id: Any) -> None:
        with self._lock:
            self.calls += 1
            call = self.calls
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.duration_s:
                self._interrupt.wait(self.duration_s)
            if call in self.fail_calls:
                raise RuntimeError("device lost")
            self.played.append((len(samples), sample_rate_hz, device_id))
        finally:
            with self._lock:
                self.active -= 1

    def stop(self) -> None:
        self.stop_calls += 1
        self._interrupt.set()


@pytest.fixture
def fake_sink_cls() -> type[FakeSink]:
    return FakeSink


def sine(num_samples: int, amplitude: float = 0.5, sample_rate_hz: int = 16000) -> np.ndarray:
    t = np.arange(num_samples, dtype=np.float32) / sample_rate_hz
    return (amplitude * np.sin(2 * np.pi * 440.0 * t)).astype(np.float32)


@pytest.fixture
def make_sine() -> Callable[..., np.ndarray]:
    return sine
