"""
Persistent backend connection session.

Responsibilities:
- Own the single WebSocket to the conversation backend
- Drive the ConnectionState machine
- Run the heartbeat and registration sub-protocols
- Reconnect automatically (fixed delay, unbounded retries) after any close
  or transport fault not caused by disconnect()
- Publish {connected, registered} status changes and non-protocol inbound
  frames to subscribers

Non-responsibilities:
- No queuing of outbound messages (send() fails fast when not open)
- No interpretation of application text frames
- No audio handling

Concurrency model:
- Everything runs on one asyncio loop; callbacks never interleave inside a
  synchronous section, so no locks are used.
- Every connect() and disconnect() bumps the session generation. Timers and
  the connection task carry the generation they were started for and
  become no-ops once it is stale.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State as SocketState

from config import AppConfig
from constants import MAX_INBOUND_FRAME_BYTES
from observability.logger import log_event
from observability.metrics import timed
from protocol.frames import InboundKind, classify_inbound, ping_frame, registration_frame
from session.channel import Channel, Listener, Subscription
from session.connection_status import (
    DISCONNECTED_STATUS,
    ConnectionState,
    ConnectionStatus,
)
from session.errors import (
    ConnectionUnavailable,
    RegistrationExhausted,
    SessionClosed,
    SocketFault,
)
from session.timers import DelayTimer, IntervalTimer


Connector = Callable[[str], Awaitable[Any]]


async def websocket_connector(url: str) -> Any:
    """
    Open a client WebSocket to url.

    Library keepalive pings are disabled; liveness is the session's own
    ping/pong heartbeat.
    """
    return await ws_connect(
        url,
        ping_interval=None,
        max_size=MAX_INBOUND_FRAME_BYTES,
    )


class ConnectionSession:
    """
    One session == one logical connection to the backend.

    Constructed explicitly and passed to its consumers (capture, playback,
    UI bindings). Several sessions may coexist, e.g. in tests.

    Lifecycle:
        DISCONNECTED --connect()--> CONNECTING --open--> OPEN_UNREGISTERED
        OPEN_UNREGISTERED --"registered"--> OPEN_REGISTERED
        CONNECTING/OPEN_* --close/fault--> DISCONNECTED --delay--> CONNECTING
        any --disconnect()--> CLOSING (terminal)
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        connector: Connector | None = None,
    ) -> None:
        self._config = config
        self._connector: Connector = connector or websocket_connector
        self._registration_msg = registration_frame(config.client_id)

        self._state = ConnectionState.DISCONNECTED
        self._last_status: ConnectionStatus = DISCONNECTED_STATUS
        self._generation = 0
        self._shutdown = False

        self._ws: Any = None
        self._conn_task: asyncio.Task[None] | None = None
        self._closing_tasks: set[asyncio.Task[None]] = set()

        self._registration_attempts = 0
        self._registration_exhausted = False

        self.status_channel: Channel[ConnectionStatus] = Channel("connection_status")
        self.message_channel: Channel[str | bytes] = Channel("inbound_message")

        self._heartbeat = IntervalTimer(
            "heartbeat",
            config.heartbeat_interval_s,
            self._on_heartbeat_tick,
            is_current=self._is_current,
        )
        self._registration = IntervalTimer(
            "registration",
            config.registration_retry_s,
            self._on_registration_tick,
            is_current=self._is_current,
        )
        self._reconnect = DelayTimer(
            "reconnect",
            config.reconnect_delay_s,
            self._on_reconnect_due,
            is_current=self._is_current,
        )

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._last_status

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def registration_attempts(self) -> int:
        return self._registration_attempts

    @property
    def registration_exhausted(self) -> bool:
        return self._registration_exhausted

    @property
    def client_id(self) -> str:
        return self._config.client_id

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def add_status_listener(self, listener: Listener) -> Subscription:
        return self.status_channel.subscribe(listener)

    def add_message_listener(self, listener: Listener) -> Subscription:
        return self.message_channel.subscribe(listener)

    async def wait_for(
        self,
        predicate: Callable[[ConnectionStatus], bool],
        timeout: float | None = None,
    ) -> ConnectionStatus:
        """
        Wait until predicate(status) holds.

        Raises:
            asyncio.TimeoutError if timeout elapses first.
        """
        if predicate(self._last_status):
            return self._last_status

        fut: asyncio.Future[ConnectionStatus] = asyncio.get_running_loop().create_future()

        def _listener(status: ConnectionStatus) -> None:
            if predicate(status) and not fut.done():
                fut.set_result(status)

        sub = self.status_channel.subscribe(_listener)
        try:
            return await asyncio.wait_for(fut, timeout)
        finally:
            sub.cancel()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """
        Start (or restart) the connection.

        Calling connect() while CONNECTING or OPEN tears down the current
        socket and timers first. The socket is opened by a background task;
        observe progress through the status channel.

        Raises:
            SessionClosed if disconnect() has been called on this session.
        """
        if self._state is ConnectionState.CLOSING:
            self._log("CONNECT_REJECTED", reason="session_closing")
            raise SessionClosed("session has been disconnected; create a new session")

        if self._state is not ConnectionState.DISCONNECTED:
            self._log("CONNECT_RESTART")

        self._stop_timers()
        self._release_socket()

        self._generation += 1
        generation = self._generation
        self._set_state(ConnectionState.CONNECTING)
        self._log("SESSION_CONNECTING", url=self._config.server_url)

        self._conn_task = asyncio.create_task(
            self._run_connection(generation),
            name=f"session:{generation}",
        )

    async def disconnect(self) -> None:
        """
        Deliberately shut the session down.

        Everything before the first await runs as one synchronous step:
        the shutdown flag, generation bump and timer cancellation happen
        before the socket is closed, so a belated close/error from the
        transport can never schedule a reconnect.
        """
        self._shutdown = True
        self._generation += 1
        self._stop_timers()

        task = self._conn_task
        self._conn_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        ws = self._ws
        self._ws = None

        self._set_state(ConnectionState.CLOSING)
        self._log("SESSION_DISCONNECTED")

        if ws is not None:
            await self._close_quietly(ws)
        if task is not None and task is not asyncio.current_task():
            await asyncio.gather(task, return_exceptions=True)
        if self._closing_tasks:
            await asyncio.gather(*self._closing_tasks, return_exceptions=True)

    async def send(self, message: str | bytes) -> None:
        """
        Write one frame to the socket.

        Raises:
            ConnectionUnavailable if the socket is not open or the write fails.
        """
        ws = self._ws
        if ws is None or not self._state.is_open or ws.state is not SocketState.OPEN:
            raise ConnectionUnavailable(f"socket not open (state={self._state.value})")

        try:
            await ws.send(message)
        except (ConnectionClosed, OSError) as e:
            self._log("SEND_FAILED", error=repr(e))
            raise ConnectionUnavailable(f"send failed: {e!r}") from e

    # ------------------------------------------------------------------
    # Connection task
    # ------------------------------------------------------------------

    async def _run_connection(self, generation: int) -> None:
        try:
            with timed("socket_connect", client_id=self._config.client_id):
                ws = await self._connector(self._config.server_url)
        except asyncio.CancelledError:
            return
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._on_fault(generation, SocketFault(f"connect_failed: {e!r}"))
            return

        if not self._is_current(generation):
            await self._close_quietly(ws)
            return

        self._ws = ws

        try:
            await self._on_open(generation)
            async for frame in ws:
                if not self._is_current(generation):
                    return
                self._on_frame(frame)
        except asyncio.CancelledError:
            return
        except ConnectionClosed as e:
            self._on_socket_closed(generation, f"closed: code={e.rcvd.code if e.rcvd else None}")
            return
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._on_fault(generation, SocketFault(f"receive_failed: {e!r}"))
            return

        self._on_socket_closed(generation, "closed")

    async def _on_open(self, generation: int) -> None:
        self._registration_attempts = 0
        self._registration_exhausted = False
        self._set_state(ConnectionState.OPEN_UNREGISTERED)
        self._log("SOCKET_OPEN")

        self._heartbeat.start(generation)
        await self._send_registration()
        if self._is_current(generation) and self._state is ConnectionState.OPEN_UNREGISTERED:
            self._registration.start(generation)

    def _on_frame(self, frame: str | bytes) -> None:
        kind = classify_inbound(frame)

        if kind is InboundKind.PONG:
            self._log("HEARTBEAT_PONG")
            return

        if kind is InboundKind.REGISTERED:
            self._on_registered()
            return

        self.message_channel.publish(frame)

    def _on_registered(self) -> None:
        if self._state is not ConnectionState.OPEN_UNREGISTERED:
            self._log("REGISTERED_IGNORED")
            return

        self._registration.cancel()
        self._set_state(ConnectionState.OPEN_REGISTERED)
        self._log("REGISTERED", attempts=self._registration_attempts)

    # ------------------------------------------------------------------
    # Close / fault handling
    # ------------------------------------------------------------------

    def _accepts_transport_event(self, generation: int) -> bool:
        """
        True if a close/fault for generation should be acted upon.

        Suppressed after disconnect(), for superseded generations and for
        the second notification of the same close.
        """
        return (
            not self._shutdown
            and generation == self._generation
            and self._state in (
                ConnectionState.CONNECTING,
                ConnectionState.OPEN_UNREGISTERED,
                ConnectionState.OPEN_REGISTERED,
            )
        )

    def _on_fault(self, generation: int, fault: SocketFault) -> None:
        if not self._accepts_transport_event(generation):
            self._log("SOCKET_EVENT_SUPPRESSED", reason=fault.reason, event_generation=generation)
            return

        self._log("SOCKET_FAULT", reason=fault.reason)
        # Force the socket closed before running the close path
        self._release_socket()
        self._on_socket_closed(generation, fault.reason)

    def _on_socket_closed(self, generation: int, reason: str) -> None:
        if not self._accepts_transport_event(generation):
            self._log("SOCKET_EVENT_SUPPRESSED", reason=reason, event_generation=generation)
            return

        self._stop_timers()
        self._release_socket()
        self._set_state(ConnectionState.DISCONNECTED)
        self._log("SOCKET_CLOSED", reason=reason)

        self._reconnect.start(generation)
        self._log("RECONNECT_SCHEDULED", delay_s=self._config.reconnect_delay_s)

    def _on_reconnect_due(self) -> None:
        if self._shutdown or self._state is not ConnectionState.DISCONNECTED:
            return
        self.connect()

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    async def _on_heartbeat_tick(self) -> None:
        ws = self._ws
        if ws is None or not self._state.is_open:
            return

        if ws.state is SocketState.OPEN:
            self._log("HEARTBEAT_PING")
            try:
                await ws.send(ping_frame())
            except (ConnectionClosed, OSError) as e:
                # The receive loop observes the close and drives reconnect
                self._log("HEARTBEAT_SEND_FAILED", error=repr(e))
            return

        if ws.state is SocketState.CONNECTING:
            return

        self._log("HEARTBEAT_STALE_SOCKET", socket_state=ws.state.name)
        self._on_fault(self._generation, SocketFault("stale_socket"))

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def _send_registration(self) -> None:
        ws = self._ws
        if ws is None or ws.state is not SocketState.OPEN:
            return
        if self._registration_attempts >= self._config.registration_max_attempts:
            return

        self._registration_attempts += 1
        self._log(
            "REGISTRATION_SENT",
            attempt=self._registration_attempts,
            max_attempts=self._config.registration_max_attempts,
        )
        try:
            await ws.send(self._registration_msg)
        except (ConnectionClosed, OSError) as e:
            self._log("REGISTRATION_SEND_FAILED", error=repr(e))

    async def _on_registration_tick(self) -> None:
        if self._state is not ConnectionState.OPEN_UNREGISTERED:
            self._registration.cancel()
            return

        ws = self._ws
        if ws is None or ws.state is not SocketState.OPEN:
            self._registration.cancel()
            return

        if self._registration_attempts >= self._config.registration_max_attempts:
            self._registration.cancel()
            self._registration_exhausted = True
            exhausted = RegistrationExhausted(
                f"no registration ack after {self._registration_attempts} attempts"
            )
            self._log(
                "REGISTRATION_EXHAUSTED",
                attempts=self._registration_attempts,
                error=str(exhausted),
            )
            return

        await self._send_registration()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_current(self, generation: int) -> bool:
        return not self._shutdown and generation == self._generation

    def _stop_timers(self) -> None:
        self._heartbeat.cancel()
        self._registration.cancel()
        self._reconnect.cancel()

    def _release_socket(self) -> None:
        """Detach and close the socket and connection task without awaiting."""
        task = self._conn_task
        self._conn_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        ws = self._ws
        self._ws = None
        if ws is not None:
            closing = asyncio.create_task(self._close_quietly(ws))
            self._closing_tasks.add(closing)
            closing.add_done_callback(self._closing_tasks.discard)

    async def _close_quietly(self, ws: Any) -> None:
        try:
            await ws.close()
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._log("SOCKET_CLOSE_ERROR", error=repr(e))

    def _set_state(self, new_state: ConnectionState) -> None:
        if new_state is self._state:
            return

        previous = self._state
        self._state = new_state
        self._log("STATE_CHANGED", previous=previous.value)

        status = ConnectionStatus.from_state(new_state)
        if status != self._last_status:
            self._last_status = status
            self._log("STATUS_CHANGED", **status.as_dict())
            self.status_channel.publish(status)

    def _log(self, event_type: str, **fields: Any) -> None:
        log_event({
            "event_type": event_type,
            "client_id": self._config.client_id,
            "generation": self._generation,
            "state": self._state.value,
            **fields,
        })
