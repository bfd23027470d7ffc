"""Signers for NIP-42 authentication events.

Two implementations of the [Signer][relayreq.utils.signing.Signer] protocol:

* [LocalSigner][relayreq.utils.signing.LocalSigner] signs with an in-memory
  ``nostr_sdk.Keys``;
* [RemoteSigner][relayreq.utils.signing.RemoteSigner] delegates to a NIP-46
  bunker through ``nostr_sdk.NostrConnect``. The remote session is opened on
  first use and reused afterwards.

Both build a kind-22242 event binding the relay's challenge and URL, and
return its JSON text ready for ``["AUTH", event]``.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Protocol

from nostr_sdk import EventBuilder, Keys, NostrConnect, NostrConnectUri, NostrSigner, RelayUrl


class Signer(Protocol):
    async def get_public_key(self) -> str: ...

    async def sign_auth(self, challenge: str, relay_url: str) -> str: ...


class LocalSigner:
    """Signs auth events with a local secret key."""

    def __init__(self, keys: Keys) -> None:
        self._keys = keys

    async def get_public_key(self) -> str:
        return self._keys.public_key().to_hex()

    async def sign_auth(self, challenge: str, relay_url: str) -> str:
        builder = EventBuilder.auth(challenge, RelayUrl.parse(relay_url))
        return builder.sign_with_keys(self._keys).as_json()


class RemoteSigner:
    """Signs auth events through a NIP-46 remote signer (``bunker://`` URI).

    Args:
        bunker_url: The ``bunker://...`` connection URI.
        client_keys: Keys identifying this client to the bunker; a random
            key pair is generated when omitted.
        timeout: Maximum wait for each bunker round trip, in seconds.

    Raises:
        nostr_sdk.NostrSdkError: If ``bunker_url`` is not a valid URI.
    """

    def __init__(
        self, bunker_url: str, client_keys: Keys | None = None, timeout: float = 60.0
    ) -> None:
        uri = NostrConnectUri.parse(bunker_url)
        app_keys = client_keys if client_keys is not None else Keys.generate()
        self._signer = NostrSigner.nostr_connect(
            NostrConnect(uri, app_keys, timedelta(seconds=timeout), None)
        )
        self._public_key: str | None = None

    async def get_public_key(self) -> str:
        if self._public_key is None:
            self._public_key = (await self._signer.get_public_key()).to_hex()
        return self._public_key

    async def sign_auth(self, challenge: str, relay_url: str) -> str:
        builder = EventBuilder.auth(challenge, RelayUrl.parse(relay_url))
        event = await builder.sign(self._signer)
        return event.as_json()
