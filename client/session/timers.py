"""
Generation-bound timer primitives.

Responsibilities:
- Run a callback once after a delay (DelayTimer) or repeatedly at a fixed
  period (IntervalTimer) as an asyncio task
- Bind every started timer to the generation it was created for and skip
  the callback when that generation is no longer current
- Provide idempotent cancel()

Non-responsibilities:
- No knowledge of what the callback does
- No retry or backoff policy

Cancelling a timer from inside its own callback is allowed: the running
task is detached instead of cancelled and exits at its next check.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Awaitable, Callable, Union

from observability.logger import log_event


TimerCallback = Callable[[], Union[Awaitable[None], None]]
GenerationCheck = Callable[[int], bool]


def _always_current(_generation: int) -> bool:
    return True


class _TimerBase:
    """Shared task bookkeeping for DelayTimer and IntervalTimer."""

    def __init__(
        self,
        name: str,
        callback: TimerCallback,
        *,
        is_current: GenerationCheck = _always_current,
    ) -> None:
        self.name = name
        self._callback = callback
        self._is_current = is_current
        self._task: asyncio.Task[None] | None = None
        self._generation: int | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def generation(self) -> int | None:
        """Generation the running timer was started for (None when idle)."""
        return self._generation if self.active else None

    def cancel(self) -> None:
        """
        Stop the timer if running.

        Idempotent: safe to call when never started or already stopped.
        """
        task = self._task
        self._task = None
        self._generation = None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        task.cancel()

    def _owns(self, generation: int) -> bool:
        return self._task is asyncio.current_task() and self._is_current(generation)

    async def _fire(self) -> None:
        try:
            result = self._callback()
            if inspect.isawaitable(result):
                await result
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "TIMER_CALLBACK_ERROR",
                "timer": self.name,
                "generation": self._generation,
                "error": repr(e),
            })


class DelayTimer(_TimerBase):
    """Fire-once timer (reconnect delay)."""

    def __init__(
        self,
        name: str,
        delay_s: float,
        callback: TimerCallback,
        *,
        is_current: GenerationCheck = _always_current,
    ) -> None:
        super().__init__(name, callback, is_current=is_current)
        self.delay_s = delay_s

    def start(self, generation: int) -> None:
        """Start or restart the timer for generation."""
        self.cancel()
        self._generation = generation
        self._task = asyncio.create_task(self._run(generation), name=f"timer:{self.name}")

    async def _run(self, generation: int) -> None:
        try:
            await asyncio.sleep(self.delay_s)
        except asyncio.CancelledError:
            return

        if not self._owns(generation):
            return

        self._task = None
        await self._fire()


class IntervalTimer(_TimerBase):
    """
    Fixed-period timer (heartbeat, registration retry, capture ticks).

    The first callback runs one period after start().
    """

    def __init__(
        self,
        name: str,
        period_s: float,
        callback: TimerCallback,
        *,
        is_current: GenerationCheck = _always_current,
    ) -> None:
        if period_s <= 0:
            raise ValueError("period_s must be > 0")
        super().__init__(name, callback, is_current=is_current)
        self.period_s = period_s

    def start(self, generation: int) -> None:
        """Start or restart the timer for generation."""
        self.cancel()
        self._generation = generation
        self._task = asyncio.create_task(self._run(generation), name=f"timer:{self.name}")

    async def _run(self, generation: int) -> None:
        try:
            while True:
                await asyncio.sleep(self.period_s)
                if not self._owns(generation):
                    return
                await self._fire()
                if not self._owns(generation):
                    return
        except asyncio.CancelledError:
            return
