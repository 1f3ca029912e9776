"""
Metrics and timing helpers.

Responsibilities:
- Measure durations using monotonic time (immune to clock changes)
- Emit metrics as JSONL events via observability.logger
- Never aggregate: one metric = one log event
- Provide safe APIs that prevent timer leaks

Durations use monotonic time; event timestamps (ts_ms) use wall-clock time.
Prefer the `timed()` context manager to avoid leaked timers.
"""

from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event, now_ms


# timer_id -> (metric_name, start_time_ns)
_active_timers: dict[str, tuple[str, int]] = {}


def start_timer(name: str) -> str:
    """
    Start a monotonic timer.

    Returns an opaque timer_id required by stop_timer(). Callers MUST
    stop the timer in a finally block unless using `timed()`.
    """
    timer_id = f"timer_{uuid.uuid4().hex[:12]}"
    _active_timers[timer_id] = (name, time.monotonic_ns())
    return timer_id


def stop_timer(
    timer_id: str,
    *,
    client_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> int | None:
    """
    Stop a previously started timer and emit a METRIC_TIMER event.

    Returns:
        duration_ms if the timer existed, else None
    """
    entry = _active_timers.pop(timer_id, None)
    if entry is None:
        return None

    name, start_ns = entry
    duration_ms = (time.monotonic_ns() - start_ns) // 1_000_000

    log_event({
        "ts_ms": now_ms(),
        "event_type": "METRIC_TIMER",
        "metric": name,
        "value_ms": duration_ms,
        "client_id": client_id,
        "details": details or {},
    })

    return duration_ms


def pending_timers() -> int:
    """Number of timers started but not yet stopped."""
    return len(_active_timers)


@contextmanager
def timed(
    name: str,
    *,
    client_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[None]:
    """
    Context manager for measuring durations safely.

    The timer is always stopped and the metric emitted exactly once, even
    when the block raises.

    Usage:
        with timed("clip_playback", client_id=cfg.client_id):
            await sink.play(clip)
    """
    timer_id = start_timer(name)
    try:
        yield
    finally:
        stop_timer(timer_id, client_id=client_id, details=details)
