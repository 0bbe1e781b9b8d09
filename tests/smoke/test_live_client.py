"""
Smoke test: LiveFlightClient end to end over an in-memory websocket.

Verifies:
1. Snapshot then update for the same id leaves one entity at the new position
2. The map frame follows store changes and viewport settles
3. Connectivity flag and notices track the session lifecycle
"""

import asyncio
import json
from pathlib import Path
import sys

import pytest
from websockets.exceptions import ConnectionClosed

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from tracker.client import TERMINAL_FAILURE_MESSAGE, LiveFlightClient
from tracker.config import SessionSettings
from tracker.events import Connected, Disconnected, FlightsReceived, ServerError, StatusNotice, TerminalFailure
from tracker.viewport import Bounds

TEST_TIMEOUT = 2  # seconds

_CLOSE = object()


class FakeConnection:
    def __init__(self):
        self.sent = []
        self._inbox = asyncio.Queue()

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def recv(self):
        item = await self._inbox.get()
        if item is _CLOSE:
            raise ConnectionClosed(None, None)
        return item

    async def close(self):
        self._inbox.put_nowait(_CLOSE)

    def push(self, message: dict):
        self._inbox.put_nowait(json.dumps(message))


def connector_for(*connections):
    queue = list(connections)

    async def connect(url):
        if not queue:
            raise ConnectionRefusedError("refused")
        return queue.pop(0)

    return connect


SETTINGS = SessionSettings(
    connect_timeout=0.05,
    heartbeat_interval=3600,
    reconnect_base_delay=0.001,
    reconnect_multiplier=1.5,
    reconnect_max_delay=0.01,
    max_reconnect_attempts=2,
)


async def wait_until(predicate):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + TEST_TIMEOUT
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Condition not met before timeout")
        await asyncio.sleep(0.001)


def position(lat, lng):
    return {"latitude": lat, "longitude": lng, "altitudeFeet": 30000}


class TestLiveClientEndToEnd:

    def test_snapshot_then_update_keeps_one_entity(self):
        async def scenario():
            conn = FakeConnection()
            client = LiveFlightClient("ws://hub", settings=SETTINGS, connector=connector_for(conn))
            client.viewport.on_viewport_settled(Bounds(0, 0, 20, 20), 9)
            frames = []
            client.view.subscribe(frames.append)
            runner = asyncio.create_task(client.run())

            await wait_until(lambda: client.is_connected)
            conn.push({"type": "flights", "flights": [{"id": "A1", "position": position(10, 10)}]})
            await wait_until(lambda: client.store.size() == 1)
            conn.push({"type": "flightUpdate", "data": [{"id": "A1", "position": position(11, 11)}]})
            await wait_until(lambda: client.store.get("A1").coordinates == (11.0, 11.0))

            assert client.store.ids() == {"A1"}
            assert [f.id for f in client.view.frame.individual_markers] == ["A1"]
            assert client.view.frame.individual_markers[0].coordinates == (11.0, 11.0)
            assert len(frames) == 2

            await client.close()
            await asyncio.wait_for(runner, TEST_TIMEOUT)
            assert not client.is_connected

        asyncio.run(scenario())

    def test_viewport_change_refilters_known_flights(self):
        async def scenario():
            conn = FakeConnection()
            client = LiveFlightClient("ws://hub", settings=SETTINGS, connector=connector_for(conn))
            client.viewport.on_viewport_settled(Bounds(0, 0, 20, 20), 4)
            runner = asyncio.create_task(client.run())

            await wait_until(lambda: client.is_connected)
            conn.push({"type": "flights", "flights": [
                {"id": "A1", "position": position(10, 10)},
                {"id": "A2", "position": position(50, 50)},
                {"id": "NOPOS"},
            ]})
            await wait_until(lambda: client.store.size() == 3)
            assert [f.id for f in client.view.frame.visible] == ["A1"]

            client.viewport.on_viewport_settled(Bounds(40, 40, 60, 60), 4)
            assert [f.id for f in client.view.frame.visible] == ["A2"]

            await client.close()
            await asyncio.wait_for(runner, TEST_TIMEOUT)

        asyncio.run(scenario())

    def test_filter_change_reaches_server(self):
        async def scenario():
            conn = FakeConnection()
            client = LiveFlightClient("ws://hub", settings=SETTINGS, connector=connector_for(conn))
            runner = asyncio.create_task(client.run())
            await wait_until(lambda: client.is_connected)

            await client.set_filter("cargo")

            await wait_until(lambda: len(conn.sent) == 2)
            assert conn.sent == [
                {"type": "setFilter", "filter": "all"},
                {"type": "setFilter", "filter": "cargo"},
            ]
            await client.close()
            await asyncio.wait_for(runner, TEST_TIMEOUT)

        asyncio.run(scenario())

    def test_terminal_failure_blocks_until_restart(self):
        async def scenario():
            client = LiveFlightClient("ws://hub", settings=SETTINGS, connector=connector_for())
            runner = asyncio.create_task(client.run())

            await wait_until(lambda: client.failure is not None)
            assert client.failure == TERMINAL_FAILURE_MESSAGE
            titles = [n.title for n in client.notices]
            # One disconnect notice per outage, then the blocking failure
            assert titles == ["Disconnected", "Connection failed"]
            assert client.notices[-1].blocking

            await client.close()
            await asyncio.wait_for(runner, TEST_TIMEOUT)

        asyncio.run(scenario())


class TestDispatch:
    """Event handling without a transport."""

    @pytest.fixture
    def client(self):
        return LiveFlightClient("ws://hub", settings=SETTINGS, connector=connector_for())

    def test_connected_notice(self, client):
        client.dispatch(Connected(url="ws://hub"))

        assert client.is_connected
        assert client.notices[-1].message == "Real-time flight tracking activated"

    def test_only_first_disconnect_notifies(self, client):
        client.dispatch(Connected(url="ws://hub"))
        for attempt in (1, 2, 3):
            client.dispatch(Disconnected(attempt=attempt, retry_in=1.0, reason="closed"))

        assert not client.is_connected
        assert [n.title for n in client.notices].count("Disconnected") == 1

    def test_throttle_notice_clears_connected_flag(self, client):
        client.is_connected = True
        client.dispatch(StatusNotice(status="throttled", message="slow down", degraded=True))

        assert not client.is_connected
        assert client.notices[-1].level == "warning"
        assert client.notices[-1].message == "slow down"

    def test_server_error_is_non_fatal(self, client):
        client.dispatch(ServerError(message="upstream hiccup"))

        assert client.failure is None
        assert client.notices[-1].message == "upstream hiccup"

    def test_terminal_failure(self, client):
        client.dispatch(TerminalFailure(attempts=10))

        assert client.failure == TERMINAL_FAILURE_MESSAGE
        assert client.notices[-1].blocking

    def test_malformed_batch_does_not_recompute(self, client):
        client.viewport.on_viewport_settled(Bounds(0, 0, 1, 1), 3)
        sequence = client.view.frame.sequence

        client.dispatch(FlightsReceived(kind="flights", flights="garbage"))
        client.dispatch(FlightsReceived(kind="flightUpdate", flights=[]))

        assert client.view.frame.sequence == sequence
        assert client.store.size() == 0

    def test_oversized_coordinate_keeps_rest_of_batch(self, client):
        client.viewport.on_viewport_settled(Bounds(0, 0, 20, 20), 9)
        huge = int("9" * 400)

        client.dispatch(FlightsReceived(kind="flights", flights=[
            {"id": "GOOD", "position": position(10, 10)},
            {"id": "BAD", "position": {"latitude": huge, "longitude": 10}},
        ]))

        assert client.store.ids() == {"GOOD", "BAD"}
        assert [f.id for f in client.view.frame.visible] == ["GOOD"]

    def test_notice_listeners(self, client):
        seen = []
        client.on_notice(seen.append)
        client.dispatch(ServerError(message=None))

        assert seen[0].message == "Unknown server error"
