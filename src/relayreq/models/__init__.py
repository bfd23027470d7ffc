"""Pure frozen dataclasses with zero I/O for filters, events, and relay messages.

The models layer is the foundation of the diamond DAG. It has **no
dependencies** on any other relayreq package. Every model uses
``@dataclass(frozen=True, slots=True)`` and validates in ``__post_init__``
so invalid instances never escape the constructor; validation failures are
plain ``ValueError``/``TypeError`` which the services layer maps onto the
[relayreq.core.exceptions][] taxonomy.

Attributes:
    Filter: Canonical NIP-01 filter with wire serialization.
    Event: Opaque signed event as received from a relay.
    Relay: Normalized relay URL with network detection.
    AuthChallenge: NIP-42 challenge raised for one refused request.
    parse_relay_message: Typed parsing of relay-to-client frames.
"""

from .constants import (
    DEFAULT_SUBSCRIPTION_ID,
    EVENT_KIND_MAX,
    DeliveryMode,
    EventKind,
    ExitCode,
    NetworkType,
)
from .event import Event
from .filter import Filter
from .messages import (
    AuthChallenge,
    AuthMessage,
    ClosedMessage,
    CountMessage,
    EoseMessage,
    EventMessage,
    NoticeMessage,
    OkMessage,
    RelayMessage,
    SubscriptionMessage,
    parse_relay_message,
)
from .relay import Relay


__all__ = [
    "DEFAULT_SUBSCRIPTION_ID",
    "EVENT_KIND_MAX",
    "AuthChallenge",
    "AuthMessage",
    "ClosedMessage",
    "CountMessage",
    "DeliveryMode",
    "EoseMessage",
    "Event",
    "EventKind",
    "EventMessage",
    "ExitCode",
    "Filter",
    "NetworkType",
    "NoticeMessage",
    "OkMessage",
    "Relay",
    "RelayMessage",
    "SubscriptionMessage",
    "parse_relay_message",
]
