"""
Typed publish/subscribe channel.

Each subscribe() returns its own Subscription handle; calling it (or
.cancel()) removes exactly that listener. Publishing is synchronous: every
listener registered at publish time is invoked before publish() returns.
"""

from __future__ import annotations

from typing import Callable, Generic, TypeVar

from observability.logger import log_event


T = TypeVar("T")

Listener = Callable[[T], None]


class Subscription:
    """Unsubscribe handle. Idempotent."""

    def __init__(self, channel: Channel, token: int) -> None:
        self._channel: Channel | None = channel
        self._token = token

    @property
    def active(self) -> bool:
        return self._channel is not None and self._channel._has(self._token)

    def cancel(self) -> None:
        channel = self._channel
        self._channel = None
        if channel is not None:
            channel._remove(self._token)

    def __call__(self) -> None:
        self.cancel()


class Channel(Generic[T]):
    """
    Broadcast channel for one event type.

    Listener failures are logged (LISTENER_ERROR) and do not prevent the
    remaining listeners from being notified.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: dict[int, Listener] = {}
        self._next_token = 0

    def subscribe(self, listener: Listener) -> Subscription:
        token = self._next_token
        self._next_token += 1
        self._listeners[token] = listener
        return Subscription(self, token)

    def publish(self, value: T) -> None:
        # Snapshot: listeners added or removed during publish take effect next time
        for listener in list(self._listeners.values()):
            try:
                listener(value)
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "LISTENER_ERROR",
                    "channel": self.name,
                    "error": repr(e),
                })

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)

    def _has(self, token: int) -> bool:
        return token in self._listeners

    def _remove(self, token: int) -> None:
        self._listeners.pop(token, None)
