"""
Persistent transport session for the live flight feed.

One TransportSession owns at most one websocket at a time. It reconnects
with capped exponential backoff, sends an application-level heartbeat,
re-sends the subscription filter on every open and publishes typed events
on a single channel (see tracker.events).

Retry bookkeeping lives in the session's own ConnectionStateMachine, so
independent sessions never share state.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from contracts.constants import FILTER_TYPES
from tracker.codec import decode_message, encode_ping, encode_set_filter
from tracker.config import SessionSettings
from tracker.events import (
    Connected,
    Disconnected,
    HeartbeatAck,
    SessionEvent,
    StatusNotice,
    TerminalFailure,
)
from tracker.metrics import CONNECTION_ATTEMPTS, SESSION_FAILURES

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Any]]

_END_OF_STREAM = object()


async def open_websocket(url: str):
    """Default connector. The session enforces its own open timeout and heartbeat."""
    return await websockets.connect(url, ping_interval=None, open_timeout=None, max_size=4_000_000)


class SessionState(str, Enum):
    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    FAILED = "failed"
    STOPPED = "stopped"


class Trigger(str, Enum):
    CONNECT = "connect"
    OPENED = "opened"
    FAILED = "failed"  # error, close or connect timeout
    CLOSE = "close"
    RESTART = "restart"
    TEARDOWN = "teardown"


class InvalidTransition(Exception):
    """Raised when a trigger is not valid in the current state."""


class ReconnectPolicy:
    """
    Exponential backoff with a ceiling and a retry budget.

    delay(attempt) = min(base_delay * multiplier^(attempt-1), max_delay)
    """

    def __init__(
        self,
        base_delay: float,
        multiplier: float,
        max_delay: float,
        max_attempts: int,
    ):
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.attempt = 0

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)

    def record_failure(self) -> Optional[float]:
        """Count a failure. Returns the reconnect delay, or None once exhausted."""
        self.attempt += 1
        if self.exhausted:
            return None
        return self.delay_for(self.attempt)

    @property
    def exhausted(self) -> bool:
        return self.attempt > self.max_attempts

    def reset(self):
        self.attempt = 0


class ConnectionStateMachine:
    """
    CLOSED -> CONNECTING -> OPEN -> (CLOSING) -> CLOSED, plus FAILED once
    the retry budget is spent and STOPPED after teardown.
    """

    _TRANSITIONS = {
        (SessionState.CLOSED, Trigger.CONNECT): SessionState.CONNECTING,
        (SessionState.CONNECTING, Trigger.OPENED): SessionState.OPEN,
        (SessionState.CONNECTING, Trigger.FAILED): SessionState.CLOSED,
        (SessionState.OPEN, Trigger.FAILED): SessionState.CLOSED,
        (SessionState.OPEN, Trigger.CLOSE): SessionState.CLOSING,
        (SessionState.CLOSING, Trigger.FAILED): SessionState.CLOSED,
        (SessionState.FAILED, Trigger.RESTART): SessionState.CLOSED,
    }

    def __init__(self, policy: ReconnectPolicy):
        self.policy = policy
        self.state = SessionState.CLOSED
        self.retry_delay: Optional[float] = None

    def transition(self, trigger: Trigger) -> SessionState:
        if trigger is Trigger.TEARDOWN:
            self.state = SessionState.STOPPED
            return self.state

        target = self._TRANSITIONS.get((self.state, trigger))
        if target is None:
            raise InvalidTransition(f"{trigger.value} is not valid in state {self.state.value}")

        if trigger is Trigger.OPENED:
            self.policy.reset()
            self.retry_delay = None
        elif trigger is Trigger.FAILED:
            self.retry_delay = self.policy.record_failure()
            if self.retry_delay is None:
                target = SessionState.FAILED
        elif trigger is Trigger.RESTART:
            self.policy.reset()
            self.retry_delay = None

        logger.debug(f"Session {self.state.value} --{trigger.value}--> {target.value}")
        self.state = target
        return target


class TransportSession:
    """Resilient websocket session producing a typed event stream."""

    def __init__(
        self,
        url: str,
        settings: Optional[SessionSettings] = None,
        connector: Optional[Connector] = None,
    ):
        self.url = url
        self.settings = settings or SessionSettings()
        if self.settings.initial_filter not in FILTER_TYPES:
            raise ValueError(f"Unknown filter {self.settings.initial_filter!r}; expected one of {FILTER_TYPES}")

        self._connector = connector or open_websocket
        self._machine = ConnectionStateMachine(ReconnectPolicy(
            base_delay=self.settings.reconnect_base_delay,
            multiplier=self.settings.reconnect_multiplier,
            max_delay=self.settings.reconnect_max_delay,
            max_attempts=self.settings.max_reconnect_attempts,
        ))
        self._pending_filter = self.settings.initial_filter
        self._events: asyncio.Queue = asyncio.Queue()
        self._restart = asyncio.Event()
        self._connection = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._task: Optional[asyncio.Task] = None
        self._stopping = False
        self._torn_down = False

        self.degraded = False
        self.last_heartbeat_ack: Optional[float] = None

    @property
    def state(self) -> SessionState:
        return self._machine.state

    @property
    def is_open(self) -> bool:
        return self._machine.state is SessionState.OPEN

    @property
    def attempt(self) -> int:
        return self._machine.policy.attempt

    @property
    def pending_filter(self) -> str:
        return self._pending_filter

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task:
        """Run the session in a background task on the current loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def run(self):
        """Connect/reconnect loop. Returns only after close()."""
        if self._task is None:
            self._task = asyncio.current_task()
        try:
            while not self._stopping:
                self._machine.transition(Trigger.CONNECT)
                connection = await self._establish()
                reason = "connect failed"
                if connection is not None:
                    reason = await self._serve(connection)
                if self._stopping:
                    break

                state = self._machine.transition(Trigger.FAILED)
                if state is SessionState.FAILED:
                    attempts = self._machine.policy.max_attempts
                    SESSION_FAILURES.labels(kind="terminal").inc()
                    logger.error(
                        f"Giving up on {self.url} after {attempts} reconnect attempts; "
                        f"waiting for restart"
                    )
                    self._emit(TerminalFailure(attempts=attempts))
                    await self._wait_for_restart()
                    continue

                delay = self._machine.retry_delay
                SESSION_FAILURES.labels(kind="transient").inc()
                logger.warning(
                    f"Connection lost ({reason}); reconnect attempt "
                    f"{self.attempt}/{self._machine.policy.max_attempts} in {delay:.1f}s"
                )
                self._emit(Disconnected(attempt=self.attempt, retry_in=delay, reason=reason))
                await asyncio.sleep(delay)
        finally:
            await self._teardown()

    def restart(self):
        """External trigger that resumes a session whose budget ran out."""
        if self.state is SessionState.FAILED:
            logger.info("Restarting session after terminal failure")
            self._restart.set()

    async def close(self):
        """Tear down: cancel every timer and close the live connection."""
        self._stopping = True
        if self.state is SessionState.OPEN:
            self._machine.transition(Trigger.CLOSE)

        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        else:
            await self._teardown()

    async def _wait_for_restart(self):
        await self._restart.wait()
        self._restart.clear()
        self._machine.transition(Trigger.RESTART)

    async def _teardown(self):
        if self._torn_down:
            return
        self._torn_down = True
        await self._stop_heartbeat()
        connection, self._connection = self._connection, None
        if connection is not None:
            await self._close_quietly(connection)
        self._machine.transition(Trigger.TEARDOWN)
        self._events.put_nowait(_END_OF_STREAM)
        logger.info("Session closed")

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    async def _establish(self):
        timeout = self.settings.connect_timeout
        try:
            connection = await asyncio.wait_for(self._connector(self.url), timeout=timeout)
        except asyncio.TimeoutError:
            CONNECTION_ATTEMPTS.labels(outcome="timeout").inc()
            logger.warning(f"Connection to {self.url} timed out after {timeout}s")
            return None
        except Exception as e:
            CONNECTION_ATTEMPTS.labels(outcome="error").inc()
            logger.warning(f"Connection to {self.url} failed: {e}")
            return None

        CONNECTION_ATTEMPTS.labels(outcome="opened").inc()
        return connection

    async def _serve(self, connection) -> str:
        """Run one open connection until it fails. Returns the failure reason."""
        self._connection = connection
        self._machine.transition(Trigger.OPENED)
        self.degraded = False
        logger.info(f"Connected to {self.url}")
        self._emit(Connected(url=self.url))
        self._heartbeat_task = asyncio.create_task(self._heartbeat(connection))

        try:
            await connection.send(encode_set_filter(self._pending_filter))
            while True:
                raw = await connection.recv()
                self._handle_frame(raw)
        except ConnectionClosed as e:
            logger.info(f"Connection closed: {e}")
            return "closed"
        except Exception as e:
            logger.warning(f"Transport error: {e}")
            return f"error: {e}"
        finally:
            await self._stop_heartbeat()
            if self._connection is connection:
                self._connection = None
            await self._close_quietly(connection)

    def _handle_frame(self, raw):
        event = decode_message(raw)
        if event is None:
            return
        if isinstance(event, HeartbeatAck):
            self.last_heartbeat_ack = asyncio.get_running_loop().time()
            return
        if isinstance(event, StatusNotice):
            self.degraded = event.degraded
            if event.degraded:
                logger.warning(f"Server reports {event.status}: {event.message or 'no details'}")
        self._emit(event)

    async def _heartbeat(self, connection):
        while True:
            await asyncio.sleep(self.settings.heartbeat_interval)
            try:
                await connection.send(encode_ping())
            except Exception as e:
                logger.warning(f"Heartbeat failed: {e}")
                # Closing wakes the receive loop, which takes the failure path
                await self._close_quietly(connection)
                return

    async def _stop_heartbeat(self):
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _close_quietly(self, connection):
        try:
            await connection.close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing connection: {e}")

    # ------------------------------------------------------------------
    # Subscription filter
    # ------------------------------------------------------------------

    async def set_filter(self, flight_filter: str):
        """
        Change the subscription filter.

        Sent immediately while open; otherwise it goes out with the next
        open. Repeated values are sent again, never suppressed.
        """
        if flight_filter not in FILTER_TYPES:
            raise ValueError(f"Unknown filter {flight_filter!r}; expected one of {FILTER_TYPES}")
        self._pending_filter = flight_filter

        connection = self._connection
        if connection is None or not self.is_open:
            logger.debug(f"Filter {flight_filter!r} will be sent on next open")
            return
        try:
            await connection.send(encode_set_filter(flight_filter))
        except Exception as e:
            # The next open re-sends the pending filter
            logger.warning(f"Failed to send filter update: {e}")

    # ------------------------------------------------------------------
    # Event channel
    # ------------------------------------------------------------------

    def _emit(self, event: SessionEvent):
        self._events.put_nowait(event)

    async def events(self) -> AsyncIterator[SessionEvent]:
        """Events in the order they occurred. Ends after teardown."""
        while True:
            event = await self._events.get()
            if event is _END_OF_STREAM:
                return
            yield event
