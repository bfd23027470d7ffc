"""Nostr key and identifier decoding.

Loads the secret key used to sign NIP-42 auth events and normalizes the
author and id arguments given on the command line to 64-char hex, accepting
their NIP-19 bech32 forms.

Warning:
    Secret keys must never be logged. Only the derived public key is ever
    written to diagnostics.

Examples:
    ```python
    keys = load_keys("nsec1...")  # pragma: allowlist secret
    normalize_pubkey("npub1...")  # -> "3bf0c63f..."
    ```
"""

from __future__ import annotations

import os
from typing import Final

from nostr_sdk import EventId, Keys, Nip19Event, Nip19Profile, PublicKey


ENV_SECRET_KEY: Final = "NOSTR_SECRET_KEY"  # pragma: allowlist secret
DEFAULT_SECRET_KEY: Final = "0" * 63 + "1"  # pragma: allowlist secret


def load_keys(secret: str) -> Keys:
    """Parse a secret key given as 64-char hex or ``nsec1`` bech32.

    Raises:
        ValueError: If ``secret`` is empty.
        nostr_sdk.NostrSdkError: If the key value is malformed.
    """
    secret = secret.strip()
    if not secret:
        raise ValueError("secret key is empty")
    return Keys.parse(secret)


def default_secret(env_var: str = ENV_SECRET_KEY) -> str:
    """Return the secret from ``env_var``, or the well-known key ``1``."""
    return os.getenv(env_var) or DEFAULT_SECRET_KEY


def normalize_pubkey(value: str) -> str:
    """Decode a hex, ``npub1`` or ``nprofile1`` public key to lowercase hex.

    Raises:
        nostr_sdk.NostrSdkError: If the value cannot be decoded.
    """
    value = value.strip()
    if value.startswith("nprofile1"):
        return Nip19Profile.from_bech32(value).public_key().to_hex()
    return PublicKey.parse(value).to_hex()


def normalize_event_id(value: str) -> str:
    """Decode a hex, ``note1`` or ``nevent1`` event id to lowercase hex.

    Raises:
        nostr_sdk.NostrSdkError: If the value cannot be decoded.
    """
    value = value.strip()
    if value.startswith("nevent1"):
        return Nip19Event.from_bech32(value).event_id().to_hex()
    return EventId.parse(value).to_hex()
