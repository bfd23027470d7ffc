"""I/O utilities: relay websocket transport, key decoding, signing, time parsing.

Depends only on [relayreq.models][]; must not import from
[relayreq.core][]. Errors surface as builtin exceptions and are translated by
the services layer.
"""

from .keys import (
    DEFAULT_SECRET_KEY,
    ENV_SECRET_KEY,
    default_secret,
    load_keys,
    normalize_event_id,
    normalize_pubkey,
)
from .signing import LocalSigner, RemoteSigner, Signer
from .timeparse import parse_duration, parse_timestamp
from .transport import DEFAULT_TIMEOUT, RelayConnection


__all__ = [
    "DEFAULT_SECRET_KEY",
    "DEFAULT_TIMEOUT",
    "ENV_SECRET_KEY",
    "LocalSigner",
    "RelayConnection",
    "RemoteSigner",
    "Signer",
    "default_secret",
    "load_keys",
    "normalize_event_id",
    "normalize_pubkey",
    "parse_duration",
    "parse_timestamp",
]
