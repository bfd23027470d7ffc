"""
Relay-to-client protocol messages (NIP-01, NIP-42).

[parse_relay_message()][relayreq.models.messages.parse_relay_message] turns
one websocket text frame into a typed message. The transport routes them by
subscription id; [AuthChallenge][relayreq.models.messages.AuthChallenge] is
the client-side message raised when a relay refuses a request with an
``auth-required:`` reason, and is consumed by the auth state machine.

See Also:
    [relayreq.utils.transport][]: Reader loop that parses and routes these.
    [relayreq.services.auth][]: State machine driven by ``AuthChallenge``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from ._validation import validate_str_no_null
from .event import Event


AUTH_REQUIRED_PREFIX = "auth-required:"


@dataclass(frozen=True, slots=True)
class EventMessage:
    """``["EVENT", <subscription_id>, <event>]``."""

    subscription_id: str
    event: Event


@dataclass(frozen=True, slots=True)
class EoseMessage:
    """``["EOSE", <subscription_id>]``: end of stored events."""

    subscription_id: str


@dataclass(frozen=True, slots=True)
class ClosedMessage:
    """``["CLOSED", <subscription_id>, <reason>]``: the relay ended a subscription."""

    subscription_id: str
    reason: str = ""

    @property
    def auth_required(self) -> bool:
        """Whether the relay refused the request pending NIP-42 authentication."""
        return self.reason.startswith(AUTH_REQUIRED_PREFIX)


@dataclass(frozen=True, slots=True)
class NoticeMessage:
    """``["NOTICE", <message>]``."""

    message: str


@dataclass(frozen=True, slots=True)
class AuthMessage:
    """``["AUTH", <challenge>]``: a NIP-42 challenge sent by the relay."""

    challenge: str


@dataclass(frozen=True, slots=True)
class OkMessage:
    """``["OK", <event_id>, <accepted>, <message>]``."""

    event_id: str
    accepted: bool
    message: str = ""


@dataclass(frozen=True, slots=True)
class CountMessage:
    """``["COUNT", <subscription_id>, {"count": <n>}]`` (NIP-45)."""

    subscription_id: str
    count: int


@dataclass(frozen=True, slots=True)
class AuthChallenge:
    """A request refused until the client authenticates.

    Attributes:
        relay: URL of the relay that issued the challenge.
        challenge: Token to bind into the signed kind-22242 event.
    """

    relay: str
    challenge: str

    def __post_init__(self) -> None:
        validate_str_no_null(self.relay, "relay")
        validate_str_no_null(self.challenge, "challenge")


RelayMessage = (
    EventMessage
    | EoseMessage
    | ClosedMessage
    | NoticeMessage
    | AuthMessage
    | OkMessage
    | CountMessage
)

SubscriptionMessage = EventMessage | EoseMessage | ClosedMessage | AuthChallenge


def _str_at(items: list[Any], index: int, name: str, default: str | None = None) -> str:
    if len(items) <= index:
        if default is not None:
            return default
        raise ValueError(f"missing {name}")
    value = items[index]
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a str, got {type(value).__name__}")
    return value


def parse_relay_message(raw: str) -> RelayMessage:
    """Parse one relay text frame.

    Args:
        raw: JSON text of the frame.

    Returns:
        The typed message.

    Raises:
        ValueError: On invalid JSON, an unknown label, or a malformed payload.
        TypeError: On payload elements of the wrong type.
    """
    items = json.loads(raw)
    if not isinstance(items, list) or not items:
        raise ValueError("relay message must be a non-empty JSON array")

    label = _str_at(items, 0, "label")

    if label == "EVENT":
        if len(items) < 3:  # noqa: PLR2004
            raise ValueError("EVENT message requires a subscription id and an event")
        return EventMessage(_str_at(items, 1, "subscription id"), Event.from_dict(items[2]))
    if label == "EOSE":
        return EoseMessage(_str_at(items, 1, "subscription id"))
    if label == "CLOSED":
        return ClosedMessage(
            _str_at(items, 1, "subscription id"), _str_at(items, 2, "reason", default="")
        )
    if label == "NOTICE":
        return NoticeMessage(_str_at(items, 1, "notice", default=""))
    if label == "AUTH":
        return AuthMessage(_str_at(items, 1, "challenge"))
    if label == "OK":
        accepted = items[2] if len(items) > 2 else False  # noqa: PLR2004
        if not isinstance(accepted, bool):
            raise TypeError("OK accepted flag must be a bool")
        return OkMessage(
            _str_at(items, 1, "event id"), accepted, _str_at(items, 3, "message", default="")
        )

    if label == "COUNT":
        payload = items[2] if len(items) > 2 else None  # noqa: PLR2004
        if not isinstance(payload, dict) or not isinstance(payload.get("count"), int):
            raise ValueError("COUNT message requires a {\"count\": <int>} payload")
        return CountMessage(_str_at(items, 1, "subscription id"), payload["count"])

    raise ValueError(f"unknown relay message type: {label!r}")
