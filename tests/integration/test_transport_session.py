"""
Integration test: TransportSession against an in-memory websocket.

This test verifies:
1. setFilter is sent on every open, including after reconnects
2. Heartbeat pings go out and pongs are consumed silently
3. Connect timeouts and refused connections are retried with backoff
4. Exhausting the retry budget is terminal until restart()
5. Malformed frames are dropped without breaking the stream
6. close() tears everything down and ends the event stream
"""

import asyncio
import json
from pathlib import Path
import sys

import pytest
from websockets.exceptions import ConnectionClosed

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from tracker.config import SessionSettings
from tracker.events import Connected, Disconnected, FlightsReceived, ServerError, StatusNotice, TerminalFailure
from tracker.session import SessionState, TransportSession

TEST_TIMEOUT = 2  # seconds

_CLOSE = object()
_HANG = object()


class FakeConnection:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self):
        self.sent = []
        self.closed = False
        self.broken = False
        self._inbox = asyncio.Queue()

    async def send(self, data):
        if self.closed or self.broken:
            raise ConnectionClosed(None, None)
        self.sent.append(json.loads(data))

    async def recv(self):
        item = await self._inbox.get()
        if item is _CLOSE:
            raise ConnectionClosed(None, None)
        return item

    async def close(self):
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(_CLOSE)

    def push(self, message):
        self._inbox.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self):
        """Server-side close."""
        self._inbox.put_nowait(_CLOSE)

    def sent_types(self):
        return [m["type"] for m in self.sent]


class FakeConnector:
    """Returns scripted outcomes; refuses once the script runs out."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self, url):
        self.calls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else ConnectionRefusedError("refused")
        if outcome is _HANG:
            await asyncio.sleep(3600)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def fast_settings(**overrides) -> SessionSettings:
    values = dict(
        connect_timeout=0.05,
        heartbeat_interval=3600,
        reconnect_base_delay=0.001,
        reconnect_multiplier=1.5,
        reconnect_max_delay=0.01,
        max_reconnect_attempts=3,
    )
    values.update(overrides)
    return SessionSettings(**values)


async def next_event(stream):
    return await asyncio.wait_for(stream.__anext__(), TEST_TIMEOUT)


async def wait_until(predicate):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + TEST_TIMEOUT
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Condition not met before timeout")
        await asyncio.sleep(0.001)


def run(coro):
    return asyncio.run(coro)


class TestSubscriptionFilter:

    def test_filter_sent_on_open(self):
        async def scenario():
            conn = FakeConnection()
            session = TransportSession("ws://hub", settings=fast_settings(initial_filter="private"),
                                       connector=FakeConnector(conn))
            stream = session.events()
            session.start()

            event = await next_event(stream)
            assert isinstance(event, Connected)
            await wait_until(lambda: conn.sent)
            assert conn.sent[0] == {"type": "setFilter", "filter": "private"}
            assert session.is_open
            await session.close()

        run(scenario())

    def test_latest_filter_resent_after_reconnect(self):
        async def scenario():
            first, second = FakeConnection(), FakeConnection()
            session = TransportSession("ws://hub", settings=fast_settings(),
                                       connector=FakeConnector(first, second))
            stream = session.events()
            session.start()
            assert isinstance(await next_event(stream), Connected)

            await session.set_filter("cargo")
            assert first.sent[-1] == {"type": "setFilter", "filter": "cargo"}

            first.drop()
            event = await next_event(stream)
            assert isinstance(event, Disconnected)
            assert event.attempt == 1
            assert isinstance(await next_event(stream), Connected)

            await wait_until(lambda: second.sent)
            assert second.sent[0] == {"type": "setFilter", "filter": "cargo"}
            await session.close()

        run(scenario())

    def test_filter_set_while_closed_goes_out_on_next_open(self):
        async def scenario():
            conn = FakeConnection()
            session = TransportSession("ws://hub", settings=fast_settings(),
                                       connector=FakeConnector(ConnectionRefusedError("no"), conn))
            await session.set_filter("commercial")
            stream = session.events()
            session.start()

            assert isinstance(await next_event(stream), Disconnected)
            assert isinstance(await next_event(stream), Connected)
            await wait_until(lambda: conn.sent)
            assert conn.sent[0]["filter"] == "commercial"
            await session.close()

        run(scenario())

    def test_repeated_filter_not_suppressed(self):
        async def scenario():
            conn = FakeConnection()
            session = TransportSession("ws://hub", settings=fast_settings(), connector=FakeConnector(conn))
            stream = session.events()
            session.start()
            await next_event(stream)
            await wait_until(lambda: conn.sent)

            await session.set_filter("all")
            await session.set_filter("all")

            assert conn.sent_types() == ["setFilter", "setFilter", "setFilter"]
            await session.close()

        run(scenario())

    def test_unknown_filter_rejected(self):
        async def scenario():
            session = TransportSession("ws://hub", settings=fast_settings(), connector=FakeConnector())
            with pytest.raises(ValueError):
                await session.set_filter("military")
            assert session.pending_filter == "all"

        run(scenario())

    def test_unknown_initial_filter_rejected(self):
        with pytest.raises(ValueError):
            TransportSession("ws://hub", settings=fast_settings(initial_filter="military"))


class TestHeartbeat:

    def test_ping_sent_and_pong_consumed(self):
        async def scenario():
            conn = FakeConnection()
            session = TransportSession("ws://hub", settings=fast_settings(heartbeat_interval=0.01),
                                       connector=FakeConnector(conn))
            stream = session.events()
            session.start()
            await next_event(stream)

            await wait_until(lambda: "ping" in conn.sent_types())
            conn.push({"type": "pong"})
            conn.push({"type": "flights", "flights": [{"id": "A1"}]})

            event = await next_event(stream)
            assert isinstance(event, FlightsReceived)
            assert session.last_heartbeat_ack is not None
            await session.close()

        run(scenario())

    def test_failed_ping_triggers_reconnect(self):
        async def scenario():
            first, second = FakeConnection(), FakeConnection()
            session = TransportSession("ws://hub", settings=fast_settings(heartbeat_interval=0.01),
                                       connector=FakeConnector(first, second))
            stream = session.events()
            session.start()
            await next_event(stream)
            await wait_until(lambda: first.sent)

            # Half-open socket: sends fail but nothing arrives
            first.broken = True

            assert isinstance(await next_event(stream), Disconnected)
            assert isinstance(await next_event(stream), Connected)
            await session.close()

        run(scenario())


class TestReconnect:

    def test_connect_timeout_is_a_failure(self):
        async def scenario():
            conn = FakeConnection()
            connector = FakeConnector(_HANG, conn)
            session = TransportSession("ws://hub", settings=fast_settings(), connector=connector)
            stream = session.events()
            session.start()

            event = await next_event(stream)
            assert isinstance(event, Disconnected)
            assert event.reason == "connect failed"
            assert isinstance(await next_event(stream), Connected)
            assert connector.calls == 2
            await session.close()

        run(scenario())

    def test_attempts_reset_after_successful_open(self):
        async def scenario():
            conn = FakeConnection()
            connector = FakeConnector(OSError("a"), OSError("b"), conn)
            session = TransportSession("ws://hub", settings=fast_settings(), connector=connector)
            stream = session.events()
            session.start()

            attempts = [(await next_event(stream)).attempt for _ in range(2)]
            assert attempts == [1, 2]
            assert isinstance(await next_event(stream), Connected)
            assert session.attempt == 0

            conn.drop()
            event = await next_event(stream)
            assert event.attempt == 1
            assert event.first
            await session.close()

        run(scenario())

    def test_budget_exhaustion_is_terminal_until_restart(self):
        async def scenario():
            connector = FakeConnector()
            session = TransportSession("ws://hub", settings=fast_settings(max_reconnect_attempts=2),
                                       connector=connector)
            stream = session.events()
            session.start()

            first = await next_event(stream)
            second = await next_event(stream)
            terminal = await next_event(stream)
            assert [first.attempt, second.attempt] == [1, 2]
            assert isinstance(terminal, TerminalFailure)
            assert terminal.attempts == 2
            assert session.state is SessionState.FAILED
            assert connector.calls == 3

            # No further attempts without an explicit restart
            await asyncio.sleep(0.05)
            assert connector.calls == 3

            conn = FakeConnection()
            connector.outcomes.append(conn)
            session.restart()
            assert isinstance(await next_event(stream), Connected)
            await session.close()

        run(scenario())

    def test_independent_sessions_do_not_share_retry_state(self):
        async def scenario():
            failing = TransportSession("ws://a", settings=fast_settings(), connector=FakeConnector())
            healthy_conn = FakeConnection()
            healthy = TransportSession("ws://b", settings=fast_settings(), connector=FakeConnector(healthy_conn))

            failing_events = failing.events()
            healthy_events = healthy.events()
            failing.start()
            healthy.start()
            await next_event(failing_events)
            await next_event(failing_events)
            assert isinstance(await next_event(healthy_events), Connected)

            assert failing.attempt >= 2
            assert healthy.attempt == 0
            await failing.close()
            await healthy.close()

        run(scenario())


class TestInboundFrames:

    def test_malformed_frames_dropped(self):
        async def scenario():
            conn = FakeConnection()
            session = TransportSession("ws://hub", settings=fast_settings(), connector=FakeConnector(conn))
            stream = session.events()
            session.start()
            await next_event(stream)

            conn.push("{not json")
            conn.push({"type": "anomaly"})
            conn.push({"no": "type"})
            conn.push({"type": "flightUpdate", "data": [{"id": "A1"}]})

            event = await next_event(stream)
            assert isinstance(event, FlightsReceived)
            assert event.kind == "flightUpdate"
            assert session.is_open
            await session.close()

        run(scenario())

    def test_deeply_nested_frame_keeps_connection_open(self):
        async def scenario():
            conn = FakeConnection()
            connector = FakeConnector(conn)
            session = TransportSession("ws://hub", settings=fast_settings(), connector=connector)
            stream = session.events()
            session.start()
            await next_event(stream)

            depth = 200_000
            conn.push("[" * depth + "]" * depth)
            conn.push({"type": "flights", "flights": [{"id": "A1"}]})

            event = await next_event(stream)
            assert isinstance(event, FlightsReceived)
            assert session.is_open
            assert not conn.closed
            assert connector.calls == 1
            await session.close()

        run(scenario())

    def test_events_preserve_arrival_order(self):
        async def scenario():
            conn = FakeConnection()
            session = TransportSession("ws://hub", settings=fast_settings(), connector=FakeConnector(conn))
            stream = session.events()
            session.start()
            await next_event(stream)

            conn.push({"type": "flights", "flights": [{"id": "A1"}]})
            conn.push({"type": "connectionStatus", "status": "throttled", "message": "slow"})
            conn.push({"type": "error", "message": "oops"})
            conn.push({"type": "flightUpdate", "data": [{"id": "A2"}]})

            events = [await next_event(stream) for _ in range(4)]
            assert [type(e) for e in events] == [FlightsReceived, StatusNotice, ServerError, FlightsReceived]
            assert events[1].degraded
            assert session.degraded
            assert session.is_open
            await session.close()

        run(scenario())


class TestTeardown:

    def test_close_ends_stream_and_stops_reconnecting(self):
        async def scenario():
            conn = FakeConnection()
            connector = FakeConnector(conn)
            session = TransportSession("ws://hub", settings=fast_settings(heartbeat_interval=0.01),
                                       connector=connector)
            stream = session.events()
            session.start()
            await next_event(stream)

            await session.close()

            remaining = [event async for event in stream]
            assert remaining == []
            assert conn.closed
            assert session.state is SessionState.STOPPED

            pings = conn.sent_types().count("ping")
            await asyncio.sleep(0.05)
            assert conn.sent_types().count("ping") == pings
            assert connector.calls == 1

        run(scenario())

    def test_close_during_backoff(self):
        async def scenario():
            connector = FakeConnector()
            session = TransportSession("ws://hub", settings=fast_settings(reconnect_base_delay=3600,
                                                                          reconnect_max_delay=3600),
                                       connector=connector)
            stream = session.events()
            session.start()
            assert isinstance(await next_event(stream), Disconnected)

            await session.close()

            assert [event async for event in stream] == []
            assert connector.calls == 1

        run(scenario())

    def test_close_before_start(self):
        async def scenario():
            session = TransportSession("ws://hub", settings=fast_settings(), connector=FakeConnector())
            await session.close()
            assert session.state is SessionState.STOPPED
            assert [event async for event in session.events()] == []

        run(scenario())
