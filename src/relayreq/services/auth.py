"""NIP-42 challenge-response authentication.

Each request that may be refused gets its own
[AuthAttempt][relayreq.services.auth.AuthAttempt], an explicit state machine
driven only by [on_challenge()][relayreq.services.auth.AuthAttempt.on_challenge]:

```text
NO_AUTH -> CHALLENGE_RECEIVED -> SIGNING -> AUTHED
                 |                  |
                 +----> REFUSED <---+
```

* A challenge when the operator did not opt in is refused immediately.
* Signing builds a kind-22242 event binding challenge and relay URL, sends
  it as ``["AUTH", event]`` on the same connection and waits for ``OK``.
* After ``AUTHED`` the caller resends the original request exactly once; a
  further challenge on the same attempt is refused, so there is no retry loop.

See Also:
    [relayreq.services.context.AuthContext][relayreq.services.context.AuthContext]:
        Provides the signer.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

from nostr_sdk import NostrSdkError

from relayreq.core.exceptions import SigningError
from relayreq.core.logger import Logger


if TYPE_CHECKING:
    from relayreq.models.messages import AuthChallenge
    from relayreq.utils.transport import RelayConnection

    from .configs import AuthConfig, ConnectionConfig
    from .context import AuthContext


class AuthState(StrEnum):
    """States of one authentication attempt."""

    NO_AUTH = "no_auth"
    CHALLENGE_RECEIVED = "challenge_received"
    SIGNING = "signing"
    AUTHED = "authed"
    REFUSED = "refused"


class AuthAttempt:
    """Authentication state for one request on one relay."""

    def __init__(self, handler: AuthHandler, relay: str) -> None:
        self._handler = handler
        self._relay = relay
        self._state = AuthState.NO_AUTH
        self._logger = handler.logger.bind(relay=relay)

    def __repr__(self) -> str:
        return f"AuthAttempt(relay={self._relay!r}, state={self._state.value})"

    @property
    def relay(self) -> str:
        return self._relay

    @property
    def state(self) -> AuthState:
        return self._state

    def _refuse(self, reason: str) -> AuthState:
        self._state = AuthState.REFUSED
        self._logger.warning("auth_refused", reason=reason)
        return self._state

    async def on_challenge(
        self, challenge: AuthChallenge, connection: RelayConnection
    ) -> AuthState:
        """Advance the state machine with a relay challenge.

        Returns:
            ``AUTHED`` when the relay accepted the auth event (the caller may
            resend its request once), otherwise ``REFUSED``.
        """
        if self._state != AuthState.NO_AUTH:
            return self._refuse("challenged again after authentication")
        self._state = AuthState.CHALLENGE_RECEIVED

        if not self._handler.config.opted_in:
            return self._refuse("auth not authorized")

        self._state = AuthState.SIGNING
        try:
            signer = await self._handler.context.signer()
            pubkey = await signer.get_public_key()
            self._logger.info("auth_performing", pubkey=pubkey)
            event_json = await signer.sign_auth(challenge.challenge, challenge.relay)
        except (SigningError, NostrSdkError, OSError, TimeoutError) as e:
            return self._refuse(f"signing failed: {e}")

        try:
            ok = await connection.authenticate(
                event_json, timeout=self._handler.connection_config.ok_timeout
            )
        except TimeoutError:
            return self._refuse("no OK received")
        except ConnectionError as e:
            return self._refuse(f"connection lost: {e}")

        if not ok.accepted:
            return self._refuse(f"rejected: {ok.message}")

        self._state = AuthState.AUTHED
        self._logger.info("auth_succeeded")
        return self._state


class AuthHandler:
    """Creates authentication attempts sharing one config and signing context."""

    def __init__(
        self,
        config: AuthConfig,
        context: AuthContext,
        connection_config: ConnectionConfig,
    ) -> None:
        self.config = config
        self.context = context
        self.connection_config = connection_config
        self.logger = Logger("auth")

    def begin(self, relay: str) -> AuthAttempt:
        """Start a fresh attempt for one request on ``relay``."""
        return AuthAttempt(self, relay)
