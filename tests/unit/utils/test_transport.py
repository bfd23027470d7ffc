"""
Unit tests for utils.transport module.

The websocket is replaced by a mock; incoming frames are injected through the
reader's dispatch method.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from relayreq.models import AuthChallenge, ClosedMessage, EoseMessage, EventMessage, Filter
from relayreq.utils.transport import RelayConnection


URL = "wss://relay.example.com"
EVENT = {"id": "e" * 64, "pubkey": "a" * 64, "created_at": 100, "kind": 1}


@pytest.fixture
def ws() -> MagicMock:
    ws = MagicMock()
    ws.closed = False
    ws.send_str = AsyncMock()
    ws.close = AsyncMock()
    return ws


@pytest.fixture
def connection(ws: MagicMock) -> RelayConnection:
    session = MagicMock()
    session.close = AsyncMock()
    return RelayConnection(URL, session, ws)


def _sent(ws: MagicMock) -> list[list]:
    return [json.loads(call.args[0]) for call in ws.send_str.await_args_list]


async def _next(agen):
    """Start fetching the next item and let the generator reach its await."""
    task = asyncio.ensure_future(agen.__anext__())
    for _ in range(5):
        await asyncio.sleep(0)
    return task


# ============================================================================
# Subscription Tests
# ============================================================================


class TestSubscribe:
    """Tests for RelayConnection.subscribe."""

    @pytest.mark.asyncio
    async def test_sends_req_and_yields_messages(
        self, connection: RelayConnection, ws: MagicMock
    ) -> None:
        agen = connection.subscribe("req", Filter(kinds=[1], limit=2))
        task = await _next(agen)
        assert _sent(ws) == [["REQ", "req", {"kinds": [1], "limit": 2}]]

        connection._dispatch(json.dumps(["EVENT", "req", EVENT]))
        message = await task
        assert isinstance(message, EventMessage)
        assert message.event.id == EVENT["id"]

        task = await _next(agen)
        connection._dispatch('["EOSE","req"]')
        assert await task == EoseMessage("req")
        await agen.aclose()

    @pytest.mark.asyncio
    async def test_close_sends_close(self, connection: RelayConnection, ws: MagicMock) -> None:
        agen = connection.subscribe("req", Filter())
        task = await _next(agen)
        connection._dispatch('["EOSE","req"]')
        await task
        await agen.aclose()
        assert _sent(ws)[-1] == ["CLOSE", "req"]
        assert "req" not in connection._queues

    @pytest.mark.asyncio
    async def test_other_subscription_ignored(self, connection: RelayConnection) -> None:
        agen = connection.subscribe("req", Filter())
        task = await _next(agen)
        connection._dispatch(json.dumps(["EVENT", "other", EVENT]))
        connection._dispatch('["EOSE","req"]')
        assert await task == EoseMessage("req")
        await agen.aclose()

    @pytest.mark.asyncio
    async def test_duplicate_subscription_id(self, connection: RelayConnection) -> None:
        agen = connection.subscribe("req", Filter())
        task = await _next(agen)
        second = connection.subscribe("req", Filter())
        with pytest.raises(ValueError, match="already active"):
            await second.__anext__()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        await agen.aclose()

    @pytest.mark.asyncio
    async def test_auth_required_yields_challenge(
        self, connection: RelayConnection, ws: MagicMock
    ) -> None:
        connection._dispatch('["AUTH","chal-1"]')
        agen = connection.subscribe("req", Filter())
        task = await _next(agen)
        connection._dispatch('["CLOSED","req","auth-required: members only"]')
        assert await task == AuthChallenge(URL, "chal-1")
        with pytest.raises(StopAsyncIteration):
            await agen.__anext__()
        assert ["CLOSE", "req"] not in _sent(ws)

    @pytest.mark.asyncio
    async def test_auth_required_without_challenge(self, connection: RelayConnection) -> None:
        agen = connection.subscribe("req", Filter(), challenge_timeout=0.01)
        task = await _next(agen)
        connection._dispatch('["CLOSED","req","auth-required: members only"]')
        message = await task
        assert isinstance(message, ClosedMessage)
        assert message.auth_required

    @pytest.mark.asyncio
    async def test_connection_lost(self, connection: RelayConnection) -> None:
        agen = connection.subscribe("req", Filter())
        task = await _next(agen)
        connection._mark_lost()
        with pytest.raises(ConnectionError, match="lost"):
            await task

    @pytest.mark.asyncio
    async def test_send_on_lost_connection(self, connection: RelayConnection) -> None:
        connection._mark_lost()
        with pytest.raises(ConnectionError, match="closed"):
            await connection.subscribe("req", Filter()).__anext__()


# ============================================================================
# Challenge and OK Tests
# ============================================================================


class TestChallengeAndOk:
    """Tests for wait_for_challenge, authenticate and publish."""

    @pytest.mark.asyncio
    async def test_wait_for_challenge_timeout(self, connection: RelayConnection) -> None:
        assert await connection.wait_for_challenge(0.01) is None

    @pytest.mark.asyncio
    async def test_wait_for_challenge_arrives(self, connection: RelayConnection) -> None:
        waiter = asyncio.ensure_future(connection.wait_for_challenge(1.0))
        await asyncio.sleep(0)
        connection._dispatch('["AUTH","tok"]')
        assert await waiter == "tok"
        assert connection.challenge == "tok"

    @pytest.mark.asyncio
    async def test_authenticate_waits_for_ok(
        self, connection: RelayConnection, ws: MagicMock
    ) -> None:
        event_json = json.dumps({"id": "f" * 64, "kind": 22242})
        task = asyncio.ensure_future(connection.authenticate(event_json, timeout=1.0))
        for _ in range(3):
            await asyncio.sleep(0)
        assert _sent(ws) == [["AUTH", {"id": "f" * 64, "kind": 22242}]]
        connection._dispatch(json.dumps(["OK", "f" * 64, True, ""]))
        ok = await task
        assert ok.accepted is True

    @pytest.mark.asyncio
    async def test_publish_sends_event_and_waits_for_ok(
        self, connection: RelayConnection, ws: MagicMock
    ) -> None:
        event_json = json.dumps(EVENT)
        task = asyncio.ensure_future(connection.publish(event_json, timeout=1.0))
        for _ in range(3):
            await asyncio.sleep(0)
        assert _sent(ws) == [["EVENT", EVENT]]
        connection._dispatch(json.dumps(["OK", EVENT["id"], False, "blocked: spam"]))
        ok = await task
        assert ok.accepted is False
        assert connection._pending_ok == {}

    @pytest.mark.asyncio
    async def test_authenticate_timeout(self, connection: RelayConnection) -> None:
        with pytest.raises(TimeoutError):
            await connection.authenticate(json.dumps({"id": "f" * 64}), timeout=0.01)
        assert connection._pending_ok == {}

    @pytest.mark.asyncio
    async def test_invalid_frames_ignored(self, connection: RelayConnection) -> None:
        connection._dispatch("garbage")
        connection._dispatch('["NOTICE","hello"]')
        assert connection.challenge is None


# ============================================================================
# Lifecycle Tests
# ============================================================================


class TestLifecycle:
    """Tests for open and close."""

    @pytest.mark.asyncio
    async def test_close(self, connection: RelayConnection, ws: MagicMock) -> None:
        await connection.close()
        ws.close.assert_awaited_once()
        connection._session.close.assert_awaited_once()
        assert connection.is_connected is False

    @pytest.mark.asyncio
    async def test_open_unreachable(self) -> None:
        with pytest.raises((OSError, TimeoutError)):
            await RelayConnection.open("ws://127.0.0.1:1", timeout=2.0)
