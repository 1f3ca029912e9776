"""Session error taxonomy."""

from __future__ import annotations


class SessionError(Exception):
    """Base class for connection session errors."""


class ConnectionUnavailable(SessionError):
    """
    send() was attempted while the socket is not open.

    Non-fatal: the message is dropped. Callers should check status first.
    """


# Name used by callers that think in terms of "not connected".
NotConnected = ConnectionUnavailable


class SessionClosed(SessionError):
    """connect() was called on a session that has been deliberately shut down."""


class SocketFault(SessionError):
    """
    Transport-level failure (open, receive or heartbeat detected).

    Internal only: always converted into teardown + scheduled reconnect and
    never raised to callers.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class RegistrationExhausted(SessionError):
    """
    Registration retries reached the configured maximum.

    Not raised. The session records it (registration_exhausted) and logs a
    REGISTRATION_EXHAUSTED event; the connection stays open for liveness.
    """
