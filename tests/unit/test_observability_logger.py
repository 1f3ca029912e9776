# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from typing import Any

import pytest

from observability import logger, metrics


def test_log_event_emits_valid_jsonl(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """
    Contract:
    - log_event emits exactly one JSONL line
    - payload is serialized as-is, plus ts_ms when missing
    - output sink is patchable
    """
    captured: list[str] = []

    def fake_print(line: str) -> None:
        captured.append(line)

    # Patch the explicit output sink used by logger
    monkeypatch.setattr(logger, "_print", fake_print)

    payload: dict[str, Any] = {
        "event_type": "TEST",
        "value": 123,
    }

    logger.log_event(payload)

    # Exactly one line emitted
    assert len(captured) == 1
    assert "\n" not in captured[0]

    decoded = json.loads(captured[0])
    ts_ms = decoded.pop("ts_ms")
    assert isinstance(ts_ms, int)
    assert decoded == payload

    # Caller's dict is not mutated
    assert "ts_ms" not in payload


def test_log_event_keeps_caller_timestamp(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: list[str] = []
    monkeypatch.setattr(logger, "_print", captured.append)

    logger.log_event({"event_type": "TEST", "ts_ms": 42})

    assert json.loads(captured[0])["ts_ms"] == 42


def test_unserializable_event_falls_back(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: list[str] = []
    monkeypatch.setattr(logger, "_print", captured.append)

    logger.log_event({"event_type": "TEST", "bad": object()})

    decoded = json.loads(captured[0])
    assert decoded["event_type"] == "LOGGER_SERIALIZATION_ERROR"
    assert "original_event_repr" in decoded


def test_broken_sink_never_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken(_line: str) -> None:
        raise OSError("stdout closed")

    monkeypatch.setattr(logger, "_print", broken)

    logger.log_event({"event_type": "TEST"})


def test_disabled_logger_is_silent(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: list[str] = []
    monkeypatch.setattr(logger, "_print", captured.append)

    logger.set_enabled(False)
    try:
        logger.log_event({"event_type": "TEST"})
    finally:
        logger.set_enabled(True)

    assert captured == []


def test_timed_emits_one_metric_even_on_error(events, select_events) -> None:
    with pytest.raises(ValueError):
        with metrics.timed("socket_connect", client_id="u1", details={"attempt": 1}):
            raise ValueError("boom")

    emitted = select_events(events, "METRIC_TIMER")
    assert len(emitted) == 1
    assert emitted[0]["metric"] == "socket_connect"
    assert emitted[0]["client_id"] == "u1"
    assert emitted[0]["details"] == {"attempt": 1}
    assert emitted[0]["value_ms"] >= 0
    assert metrics.pending_timers() == 0


def test_stop_timer_unknown_id_returns_none(events) -> None:
    assert metrics.stop_timer("timer_missing") is None
    assert events == []
