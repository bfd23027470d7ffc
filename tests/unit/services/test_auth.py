"""
Unit tests for services.auth module.

Tests:
- Refusal when the operator did not opt in
- Successful authentication path and logging
- Second challenge on the same attempt is refused
- Rejected OK, missing OK and signer failures
"""

from unittest.mock import AsyncMock

import pytest

from relayreq.core.exceptions import SigningError
from relayreq.models import AuthChallenge
from relayreq.services.auth import AuthHandler, AuthState
from relayreq.services.configs import AuthConfig, ConnectionConfig
from relayreq.services.context import AuthContext
from tests.conftest import PUBKEY, FakeRelayConnection, FakeSigner


URL = "wss://relay.example.com"


@pytest.fixture
def connection() -> FakeRelayConnection:
    return FakeRelayConnection(URL)


class TestAuthAttempt:
    """Tests for the AuthAttempt state machine."""

    @pytest.mark.asyncio
    async def test_initial_state(self, auth_handler: AuthHandler) -> None:
        assert auth_handler.begin(URL).state == AuthState.NO_AUTH

    @pytest.mark.asyncio
    async def test_refused_without_opt_in(
        self,
        refusing_auth_handler: AuthHandler,
        connection: FakeRelayConnection,
        fake_signer: FakeSigner,
    ) -> None:
        attempt = refusing_auth_handler.begin(URL)
        state = await attempt.on_challenge(AuthChallenge(URL, "c"), connection)
        assert state == AuthState.REFUSED
        assert fake_signer.signed == []
        assert connection.auth_events == []

    @pytest.mark.asyncio
    async def test_authed(
        self,
        auth_handler: AuthHandler,
        connection: FakeRelayConnection,
        fake_signer: FakeSigner,
    ) -> None:
        attempt = auth_handler.begin(URL)
        state = await attempt.on_challenge(AuthChallenge(URL, "chal"), connection)
        assert state == AuthState.AUTHED
        assert fake_signer.signed == [("chal", URL)]
        assert connection.auth_events[0]["kind"] == 22242

    @pytest.mark.asyncio
    async def test_logs_pubkey(
        self,
        auth_handler: AuthHandler,
        connection: FakeRelayConnection,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        caplog.set_level("INFO")
        await auth_handler.begin(URL).on_challenge(AuthChallenge(URL, "chal"), connection)
        records = [r for r in caplog.records if r.getMessage() == "auth_performing"]
        assert records
        assert records[0].structured_kv["pubkey"] == PUBKEY

    @pytest.mark.asyncio
    async def test_second_challenge_refused(
        self,
        auth_handler: AuthHandler,
        connection: FakeRelayConnection,
        fake_signer: FakeSigner,
    ) -> None:
        attempt = auth_handler.begin(URL)
        assert await attempt.on_challenge(AuthChallenge(URL, "one"), connection) == AuthState.AUTHED
        state = await attempt.on_challenge(AuthChallenge(URL, "two"), connection)
        assert state == AuthState.REFUSED
        assert len(fake_signer.signed) == 1

    @pytest.mark.asyncio
    async def test_independent_attempts(
        self, auth_handler: AuthHandler, connection: FakeRelayConnection
    ) -> None:
        first = auth_handler.begin(URL)
        second = auth_handler.begin(URL)
        await first.on_challenge(AuthChallenge(URL, "one"), connection)
        assert second.state == AuthState.NO_AUTH

    @pytest.mark.asyncio
    async def test_rejected_ok(self, auth_handler: AuthHandler) -> None:
        connection = FakeRelayConnection(URL, auth_accepted=False)
        state = await auth_handler.begin(URL).on_challenge(AuthChallenge(URL, "c"), connection)
        assert state == AuthState.REFUSED

    @pytest.mark.asyncio
    async def test_missing_ok(self, auth_handler: AuthHandler) -> None:
        connection = FakeRelayConnection(URL)
        connection.authenticate = AsyncMock(  # type: ignore[method-assign]
            side_effect=TimeoutError()
        )
        state = await auth_handler.begin(URL).on_challenge(AuthChallenge(URL, "c"), connection)
        assert state == AuthState.REFUSED

    @pytest.mark.asyncio
    async def test_connection_lost_during_auth(self, auth_handler: AuthHandler) -> None:
        connection = FakeRelayConnection(URL)
        connection.authenticate = AsyncMock(  # type: ignore[method-assign]
            side_effect=ConnectionError("gone")
        )
        state = await auth_handler.begin(URL).on_challenge(AuthChallenge(URL, "c"), connection)
        assert state == AuthState.REFUSED

    @pytest.mark.asyncio
    async def test_signer_failure(self, connection: FakeRelayConnection) -> None:
        context = AuthContext()
        context._signer = FakeSigner(fail=True)
        handler = AuthHandler(AuthConfig(enabled=True), context, ConnectionConfig())
        state = await handler.begin(URL).on_challenge(AuthChallenge(URL, "c"), connection)
        assert state == AuthState.REFUSED
        assert connection.auth_events == []

    @pytest.mark.asyncio
    async def test_undecodable_secret_fails_closed(self, connection: FakeRelayConnection) -> None:
        context = AuthContext(secret="not-a-key")
        handler = AuthHandler(AuthConfig(enabled=True), context, ConnectionConfig())
        state = await handler.begin(URL).on_challenge(AuthChallenge(URL, "c"), connection)
        assert state == AuthState.REFUSED
        assert connection.auth_events == []


class TestAuthContext:
    """Tests for AuthContext preparation."""

    def test_prepare_invalid_secret(self) -> None:
        with pytest.raises(SigningError):
            AuthContext(secret="not-a-key").prepare()

    @pytest.mark.asyncio
    async def test_prompted_secret(self) -> None:
        context = AuthContext(prompt_secret=True, prompt=lambda: "0" * 63 + "2")
        signer = await context.signer()
        assert await signer.get_public_key() != PUBKEY

    @pytest.mark.asyncio
    async def test_signer_cached(self) -> None:
        context = AuthContext()
        assert await context.signer() is await context.signer()

    def test_invalid_bunker_uri(self) -> None:
        with pytest.raises(SigningError):
            AuthContext(bunker_url="bunker://not-valid").prepare()
