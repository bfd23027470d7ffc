"""Shared constants for the models layer.

Defines enumerations and other constants used across model, service, and
CLI modules. Placing them here avoids circular dependencies between the
models and services layers.

See Also:
    [relayreq.models.relay][]: Uses [NetworkType][relayreq.models.constants.NetworkType]
        to classify relay URLs during construction.
    [relayreq.services.subscription][]: Selects a delivery strategy from
        [DeliveryMode][relayreq.models.constants.DeliveryMode].
"""

from __future__ import annotations

from enum import IntEnum, StrEnum


class NetworkType(StrEnum):
    """Network type enum for relay classification.

    Each relay URL is classified into exactly one network type during
    [Relay][relayreq.models.relay.Relay] construction. Unlike a crawler, a
    query client routinely talks to development relays, so ``LOCAL`` is a
    valid outcome rather than a rejection.

    Attributes:
        CLEARNET: Public internet relay.
        TOR: Tor hidden service identified by a ``.onion`` hostname.
        I2P: I2P eepsite identified by a ``.i2p`` hostname.
        LOKI: Lokinet service identified by a ``.loki`` hostname.
        LOCAL: Loopback, private IP, or single-label hostname.
        UNKNOWN: Hostname that could not be classified (rejected during validation).
    """

    CLEARNET = "clearnet"
    TOR = "tor"
    I2P = "i2p"
    LOKI = "loki"
    LOCAL = "local"
    UNKNOWN = "unknown"


class DeliveryMode(StrEnum):
    """How events are delivered for one subscription.

    Attributes:
        EOSE: One-shot: close once every relay has sent EOSE (default).
        STREAM: Keep the subscription open after EOSE until cancelled.
        PAGINATE: Repeated EOSE rounds with a decreasing ``until``.
    """

    EOSE = "eose"
    STREAM = "stream"
    PAGINATE = "paginate"


class ExitCode(IntEnum):
    """Process exit codes returned by the CLI.

    Attributes:
        OK: Every input line was processed.
        FAILURE: Setup error, or at least one line failed.
        NO_RELAYS: Relays were requested but none could be reached.
        INTERRUPTED: Cancelled by SIGINT/SIGTERM.
    """

    OK = 0
    FAILURE = 1
    NO_RELAYS = 3
    INTERRUPTED = 130


class EventKind(IntEnum):
    """Well-known Nostr event kinds used by the client.

    Attributes:
        CLIENT_AUTH: Kind 22242 -- NIP-42 client authentication event.
    """

    CLIENT_AUTH = 22_242


EVENT_KIND_MAX = 65_535

HEX_ID_LENGTH = 64

DEFAULT_SUBSCRIPTION_ID = "req"
