"""
Opaque Nostr event as received from a relay.

The client never mutates or re-signs events it reads; it only needs the
``id`` to deduplicate across relays and the ``created_at`` timestamp to
drive pagination. Everything else is carried verbatim in
[raw][relayreq.models.event.Event] and written back out unchanged.

Note:
    Signatures are not verified: the client forwards what relays return.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ._validation import validate_hex64, validate_instance, validate_kind, validate_timestamp


@dataclass(frozen=True, slots=True)
class Event:
    """Immutable signed event wrapper.

    Attributes:
        id: Event id (64-char hex).
        created_at: Unix timestamp of event creation.
        pubkey: Author public key as sent by the relay.
        kind: Event kind as sent by the relay.
        raw: Compact JSON text of the event object, forwarded unchanged.

    Raises:
        ValueError: If ``id`` or ``created_at`` is malformed.
        TypeError: If a field has the wrong type.
    """

    id: str
    created_at: int
    pubkey: str = ""
    kind: int = 0
    raw: str = field(default="", repr=False, compare=False)

    def __post_init__(self) -> None:
        validate_hex64(self.id, "event id")
        validate_timestamp(self.created_at, "created_at")
        validate_instance(self.pubkey, str, "pubkey")
        validate_kind(self.kind, "kind")
        validate_instance(self.raw, str, "raw")
        if not self.raw:
            minimal = {
                "id": self.id,
                "pubkey": self.pubkey,
                "created_at": self.created_at,
                "kind": self.kind,
            }
            object.__setattr__(self, "raw", json.dumps(minimal, separators=(",", ":")))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Event:
        """Parse an event object from a relay ``EVENT`` message."""
        validate_instance(data, Mapping, "event")
        return cls(
            id=data.get("id"),  # type: ignore[arg-type]
            created_at=data.get("created_at"),  # type: ignore[arg-type]
            pubkey=data.get("pubkey", ""),
            kind=data.get("kind", 0),
            raw=json.dumps(dict(data), separators=(",", ":"), ensure_ascii=False),
        )

    def to_json(self) -> str:
        """Return the event JSON exactly as it will be printed."""
        return self.raw

    def to_dict(self) -> dict[str, Any]:
        """Return a fresh ``dict`` of the raw event."""
        data: dict[str, Any] = json.loads(self.raw)
        return data
