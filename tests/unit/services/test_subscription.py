"""
Unit tests for services.subscription module.

Tests:
- Eose terminates only after every relay signals EOSE
- Stream never terminates on EOSE
- Cross-relay deduplication
- Auth-required refusal resubscribes exactly once
- Dropped and closed relays are isolated
"""

import asyncio

import pytest

from relayreq.models import EoseMessage, EventKind, EventMessage, Filter
from relayreq.services.auth import AuthHandler
from relayreq.services.configs import AuthConfig, ConnectionConfig, Eose, Stream
from relayreq.services.context import AuthContext
from relayreq.services.pool import ConnectionPool
from relayreq.services.subscription import RoundStats, Subscription, SubscriptionEngine
from tests.conftest import (
    FakeOpener,
    FakeRelayConnection,
    auth_required_script,
    closed_script,
    make_event,
    make_events,
)


A = "wss://a.example.com"
B = "wss://b.example.com"


async def _engine(
    auth: AuthHandler, connections: list[FakeRelayConnection]
) -> tuple[ConnectionPool, SubscriptionEngine]:
    opener = FakeOpener({c.url: c for c in connections})
    pool = ConnectionPool(ConnectionConfig(), auth, opener=opener)
    await pool.connect([c.url for c in connections])
    return pool, SubscriptionEngine(pool, auth)


async def _collect(engine: SubscriptionEngine, delivery, filter_: Filter) -> list[str]:
    return [e.id async for e in engine.stream(delivery, filter_)]


# ============================================================================
# Eose Tests
# ============================================================================


class TestEose:
    """Tests for one-shot delivery."""

    @pytest.mark.asyncio
    async def test_merges_all_relays(self, auth_handler: AuthHandler) -> None:
        a = FakeRelayConnection(A, make_events([10, 20], start=1))
        b = FakeRelayConnection(B, make_events([15], start=10))
        _, engine = await _engine(auth_handler, [a, b])
        ids = await _collect(engine, Eose(), Filter())
        assert sorted(ids) == sorted(f"{n:064x}" for n in (1, 2, 10))

    @pytest.mark.asyncio
    async def test_waits_for_slowest_relay(self, auth_handler: AuthHandler) -> None:
        release = asyncio.Event()
        late = make_event(99, 50)

        async def slow_subscribe(subscription_id, filter_, *, challenge_timeout=0.0):
            await release.wait()
            yield EventMessage(subscription_id, late)
            yield EoseMessage(subscription_id)

        a = FakeRelayConnection(A, make_events([10]))
        b = FakeRelayConnection(B)
        b.subscribe = slow_subscribe  # type: ignore[method-assign]
        _, engine = await _engine(auth_handler, [a, b])

        task = asyncio.ensure_future(_collect(engine, Eose(), Filter()))
        for _ in range(10):
            await asyncio.sleep(0)
        assert not task.done()
        release.set()
        assert late.id in await task

    @pytest.mark.asyncio
    async def test_deduplicates_across_relays(self, auth_handler: AuthHandler) -> None:
        shared = make_events([10, 20])
        a = FakeRelayConnection(A, shared)
        b = FakeRelayConnection(B, shared)
        _, engine = await _engine(auth_handler, [a, b])
        ids = await _collect(engine, Eose(), Filter())
        assert len(ids) == 2

    @pytest.mark.asyncio
    async def test_filter_sent_to_every_relay(self, auth_handler: AuthHandler) -> None:
        a, b = FakeRelayConnection(A), FakeRelayConnection(B)
        _, engine = await _engine(auth_handler, [a, b])
        await _collect(engine, Eose(), Filter(kinds=[1]))
        assert a.requests == [Filter(kinds=[1])]
        assert b.requests == [Filter(kinds=[1])]

    @pytest.mark.asyncio
    async def test_dropped_relay_isolated(self, auth_handler: AuthHandler) -> None:
        a = FakeRelayConnection(A, make_events([10]))
        b = FakeRelayConnection(B, script=lambda f, i: [ConnectionError("lost")])
        _, engine = await _engine(auth_handler, [a, b])
        assert await _collect(engine, Eose(), Filter()) == [f"{1:064x}"]

    @pytest.mark.asyncio
    async def test_closed_relay_isolated(self, auth_handler: AuthHandler) -> None:
        a = FakeRelayConnection(A, make_events([10]))
        b = FakeRelayConnection(B, script=closed_script("error: shutting down"))
        _, engine = await _engine(auth_handler, [a, b])
        assert await _collect(engine, Eose(), Filter()) == [f"{1:064x}"]

    @pytest.mark.asyncio
    async def test_round_stats(self, auth_handler: AuthHandler) -> None:
        a = FakeRelayConnection(A, make_events([10, 30], start=1))
        b = FakeRelayConnection(B, make_events([5], start=5))
        _, engine = await _engine(auth_handler, [a, b])
        stats = RoundStats()
        events = [e async for e in engine.run_round([A, B], Filter(), stats=stats)]
        assert stats.received == len(events) == 3
        assert stats.eose_seen == {A, B}
        assert stats.oldest_by_relay == {A: 10, B: 5}
        assert stats.min_created_at == 5


# ============================================================================
# Stream Tests
# ============================================================================


class TestStream:
    """Tests for streaming delivery."""

    @pytest.mark.asyncio
    async def test_does_not_end_on_eose(self, auth_handler: AuthHandler) -> None:
        a = FakeRelayConnection(A, make_events([10, 20]), hold_open=True)
        _, engine = await _engine(auth_handler, [a])
        received: list[str] = []

        async def consume() -> None:
            async for event in engine.stream(Stream(), Filter()):
                received.append(event.id)

        with pytest.raises(TimeoutError):
            await asyncio.wait_for(consume(), timeout=0.1)
        assert len(received) == 2

    @pytest.mark.asyncio
    async def test_ends_when_every_connection_is_lost(self, auth_handler: AuthHandler) -> None:
        a = FakeRelayConnection(
            A,
            script=lambda f, i: [
                EventMessage("req", make_event(1, 10)),
                EoseMessage("req"),
                ConnectionError("lost"),
            ],
        )
        _, engine = await _engine(auth_handler, [a])
        assert await _collect(engine, Stream(), Filter()) == [f"{1:064x}"]


# ============================================================================
# Auth Tests
# ============================================================================


class TestAuthRequired:
    """Tests for auth-required refusals during subscriptions."""

    @pytest.mark.asyncio
    async def test_resubscribes_once_after_auth(self, auth_handler: AuthHandler) -> None:
        events = make_events([10, 20])
        a = FakeRelayConnection(A, script=auth_required_script(A, events))
        _, engine = await _engine(auth_handler, [a])
        ids = await _collect(engine, Eose(), Filter(kinds=[4]))
        assert len(ids) == 2
        assert len(a.requests) == 2
        assert len(a.auth_events) == 1

    @pytest.mark.asyncio
    async def test_refused_without_opt_in(self, refusing_auth_handler: AuthHandler) -> None:
        a = FakeRelayConnection(A, script=auth_required_script(A, make_events([10])))
        b = FakeRelayConnection(B, make_events([5], start=7))
        _, engine = await _engine(refusing_auth_handler, [a, b])
        assert await _collect(engine, Eose(), Filter()) == [f"{7:064x}"]
        assert len(a.requests) == 1
        assert a.auth_events == []

    @pytest.mark.asyncio
    async def test_second_challenge_stops_relay(self, auth_handler: AuthHandler) -> None:
        a = FakeRelayConnection(A, script=lambda f, i: [auth_required_script(A, [])(f, 0)[0]])
        _, engine = await _engine(auth_handler, [a])
        assert await _collect(engine, Eose(), Filter()) == []
        assert len(a.requests) == 2
        assert len(a.auth_events) == 1


class TestRun:
    """Tests for SubscriptionEngine.run."""

    @pytest.mark.asyncio
    async def test_queries_only_subscription_relays(self, auth_handler: AuthHandler) -> None:
        a = FakeRelayConnection(A, make_events([10]))
        b = FakeRelayConnection(B, make_events([20], start=5))
        _, engine = await _engine(auth_handler, [a, b])
        subscription = Subscription(filter=Filter(), delivery=Eose(), relays=(B,))
        assert [e.id async for e in engine.run(subscription)] == [f"{5:064x}"]
        assert a.requests == []


# ============================================================================
# Failure Isolation Tests
# ============================================================================


class TestWorkerFailures:
    """Tests for unexpected per-relay failures."""

    @pytest.mark.asyncio
    async def test_unexpected_error_logged_and_isolated(
        self, auth_handler: AuthHandler, caplog: pytest.LogCaptureFixture
    ) -> None:
        a = FakeRelayConnection(A, make_events([10]))
        b = FakeRelayConnection(B, script=lambda f, i: [RuntimeError("boom")])
        _, engine = await _engine(auth_handler, [a, b])
        caplog.set_level("ERROR")
        assert await _collect(engine, Eose(), Filter()) == [f"{1:064x}"]
        failures = [r for r in caplog.records if r.getMessage() == "relay_worker_failed"]
        assert len(failures) == 1
        assert failures[0].structured_kv["relay"] == B
        assert failures[0].exc_info is not None


class TestLocalKeyAuth:
    """Tests for the auth-required flow signed with a real local key."""

    @pytest.mark.asyncio
    async def test_default_key_authenticates_and_resubscribes(self) -> None:
        handler = AuthHandler(AuthConfig(enabled=True), AuthContext(), ConnectionConfig())
        events = make_events([10, 20])
        a = FakeRelayConnection(A, script=auth_required_script(A, events, token="tok"))
        _, engine = await _engine(handler, [a])
        assert len(await _collect(engine, Eose(), Filter())) == 2
        assert len(a.requests) == 2
        auth_event = a.auth_events[0]
        assert auth_event["kind"] == EventKind.CLIENT_AUTH
        assert ["challenge", "tok"] in auth_event["tags"]
