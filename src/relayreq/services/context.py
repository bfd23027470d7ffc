"""Ambient signing context for authentication.

[AuthContext][relayreq.services.context.AuthContext] carries the signing
material of one invocation (local secret, prompt, NIP-46 bunker) explicitly
instead of reading flags from inside the auth callback. Exactly one signing
path is used: the bunker when ``bunker_url`` is set, otherwise the local key.
"""

from __future__ import annotations

import getpass
from collections.abc import Callable
from dataclasses import dataclass, field

from nostr_sdk import NostrSdkError

from relayreq.core.exceptions import SigningError
from relayreq.utils.keys import DEFAULT_SECRET_KEY, load_keys
from relayreq.utils.signing import LocalSigner, RemoteSigner, Signer


def _prompt_secret() -> str:
    return getpass.getpass("type your secret key as nsec or hex: ")


@dataclass(slots=True)
class AuthContext:
    """Signing material for NIP-42 authentication.

    Attributes:
        secret: Local secret key (hex or nsec).
        prompt_secret: Ask for the secret interactively instead of ``secret``.
        bunker_url: ``bunker://`` URI of a NIP-46 remote signer.
        connect_as: Client secret used to talk to the bunker (random if unset).
        timeout: Remote signer round-trip timeout in seconds.
        prompt: Callable reading the secret when ``prompt_secret`` is set.
    """

    secret: str = DEFAULT_SECRET_KEY
    prompt_secret: bool = False
    bunker_url: str | None = None
    connect_as: str | None = None
    timeout: float = 60.0
    prompt: Callable[[], str] = _prompt_secret
    _signer: Signer | None = field(default=None, init=False, repr=False)

    @property
    def uses_bunker(self) -> bool:
        return bool(self.bunker_url)

    def prepare(self) -> None:
        """Decode the configured key material once, failing closed.

        Builds the local signer eagerly; the remote signer session is only
        opened on first use by [signer()][relayreq.services.context.AuthContext.signer].

        Raises:
            SigningError: If the secret, client key or bunker URI is invalid.
        """
        if self._signer is not None:
            return
        try:
            if self.uses_bunker:
                client_keys = load_keys(self.connect_as) if self.connect_as else None
                self._signer = RemoteSigner(self.bunker_url or "", client_keys, self.timeout)
            else:
                secret = self.prompt() if self.prompt_secret else self.secret
                self._signer = LocalSigner(load_keys(secret))
        except (NostrSdkError, ValueError) as e:
            raise SigningError(f"invalid signing key material: {e}") from e

    async def signer(self) -> Signer:
        """Return the prepared signer, preparing it on first call."""
        if self._signer is None:
            self.prepare()
        assert self._signer is not None  # noqa: S101
        return self._signer

