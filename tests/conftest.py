"""
Pytest configuration and shared fixtures for relayreq tests.

Provides:
- In-memory fake relay connections that answer REQ like a real relay
- A fake signer and auth handler wiring
- Event factories
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable, Iterable
from typing import Any

import pytest

from relayreq.models import (
    AuthChallenge,
    ClosedMessage,
    EoseMessage,
    Event,
    EventKind,
    EventMessage,
    Filter,
    OkMessage,
)
from relayreq.services.auth import AuthHandler
from relayreq.services.configs import AuthConfig, ConnectionConfig
from relayreq.services.context import AuthContext


PUBKEY = "ab" * 32


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    """Configure logging for tests."""
    logging.basicConfig(level=logging.DEBUG)


# ============================================================================
# Event Factories
# ============================================================================


def make_event(n: int, created_at: int, kind: int = 1) -> Event:
    """Build an event whose id is ``n`` as 64-char hex."""
    return Event.from_dict(
        {
            "id": f"{n:064x}",
            "pubkey": PUBKEY,
            "created_at": created_at,
            "kind": kind,
            "tags": [],
            "content": f"event {n}",
            "sig": "00" * 64,
        }
    )


def make_events(timestamps: Iterable[int], start: int = 1) -> list[Event]:
    """Build one event per timestamp with consecutive ids."""
    return [make_event(start + i, ts) for i, ts in enumerate(timestamps)]


# ============================================================================
# Fake Relay Connection
# ============================================================================


Script = Callable[[Filter, int], list[Any]]


class FakeRelayConnection:
    """In-memory stand-in for ``RelayConnection``.

    Without a ``script`` it answers every REQ like a relay holding
    ``events``: matching events newest first, capped by ``limit``, then
    EOSE. ``page_size`` caps every answer the way relays cap their own
    result sets. A ``script`` receives ``(filter, request_index)`` and returns the
    messages (or exceptions) to emit. With ``hold_open`` the subscription
    stays open after the scripted messages.
    """

    def __init__(
        self,
        url: str,
        events: list[Event] | None = None,
        *,
        script: Script | None = None,
        hold_open: bool = False,
        challenge: str | None = None,
        auth_accepted: bool = True,
        page_size: int | None = None,
    ) -> None:
        self.url = url
        self.events = list(events or [])
        self.script = script
        self.hold_open = hold_open
        self.challenge = challenge
        self.auth_accepted = auth_accepted
        self.page_size = page_size
        self.requests: list[Filter] = []
        self.auth_events: list[dict[str, Any]] = []
        self.closed = False

    def matching(self, filter_: Filter) -> list[Event]:
        found = [
            e
            for e in self.events
            if (filter_.until is None or e.created_at <= filter_.until)
            and (filter_.since is None or e.created_at >= filter_.since)
        ]
        found.sort(key=lambda e: e.created_at, reverse=True)
        if filter_.limit_zero:
            return []
        if filter_.limit is not None:
            found = found[: filter_.limit]
        if self.page_size is not None:
            found = found[: self.page_size]
        return found

    async def wait_for_challenge(self, timeout: float) -> str | None:
        return self.challenge

    async def subscribe(
        self, subscription_id: str, filter_: Filter, *, challenge_timeout: float = 0.0
    ) -> AsyncIterator[Any]:
        index = len(self.requests)
        self.requests.append(filter_)
        if self.script is not None:
            items = self.script(filter_, index)
        else:
            items = [EventMessage(subscription_id, e) for e in self.matching(filter_)]
            items.append(EoseMessage(subscription_id))
        for item in items:
            await asyncio.sleep(0)
            if isinstance(item, BaseException):
                raise item
            yield item
        if self.hold_open:
            await asyncio.Event().wait()

    async def authenticate(self, event_json: str, *, timeout: float = 0.0) -> OkMessage:
        event = json.loads(event_json)
        self.auth_events.append(event)
        return OkMessage(event["id"], self.auth_accepted, "" if self.auth_accepted else "blocked")

    async def close(self) -> None:
        self.closed = True


def auth_required_script(url: str, events: list[Event], token: str = "challenge-1") -> Script:
    """Refuse the first REQ pending auth, answer the next one normally."""

    def script(filter_: Filter, index: int) -> list[Any]:
        if index == 0:
            return [AuthChallenge(url, token)]
        return [*(EventMessage("req", e) for e in events), EoseMessage("req")]

    return script


def closed_script(reason: str) -> Script:
    def script(filter_: Filter, index: int) -> list[Any]:
        return [ClosedMessage("req", reason)]

    return script


class FakeOpener:
    """Connection factory returning prepared fakes; unknown URLs fail."""

    def __init__(self, connections: dict[str, FakeRelayConnection]) -> None:
        self.connections = connections
        self.calls: list[str] = []

    async def __call__(self, url: str, **kwargs: Any) -> FakeRelayConnection:
        self.calls.append(url)
        if url not in self.connections:
            raise OSError(f"Connection failed: {url}")
        return self.connections[url]


# ============================================================================
# Signing Fixtures
# ============================================================================


class FakeSigner:
    """Signer returning a fixed pubkey and a minimal kind-22242 event."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.signed: list[tuple[str, str]] = []

    async def get_public_key(self) -> str:
        return PUBKEY

    async def sign_auth(self, challenge: str, relay_url: str) -> str:
        if self.fail:
            raise OSError("signer unreachable")
        self.signed.append((challenge, relay_url))
        return json.dumps(
            {
                "id": f"{len(self.signed):064x}",
                "pubkey": PUBKEY,
                "kind": int(EventKind.CLIENT_AUTH),
                "tags": [["relay", relay_url], ["challenge", challenge]],
            }
        )


@pytest.fixture
def fake_signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def auth_context(fake_signer: FakeSigner) -> AuthContext:
    context = AuthContext()
    context._signer = fake_signer
    return context


@pytest.fixture
def auth_handler(auth_context: AuthContext) -> AuthHandler:
    """Handler with authentication enabled."""
    return AuthHandler(AuthConfig(enabled=True), auth_context, ConnectionConfig())


@pytest.fixture
def refusing_auth_handler(auth_context: AuthContext) -> AuthHandler:
    """Handler where the operator did not opt into authentication."""
    return AuthHandler(AuthConfig(), auth_context, ConnectionConfig())
