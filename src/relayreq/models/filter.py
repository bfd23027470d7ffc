"""
Canonical NIP-01 filter with wire serialization.

A [Filter][relayreq.models.filter.Filter] is the read-side query sent to
relays inside a ``["REQ", <subscription_id>, <filter>]`` envelope. The model
normalizes its list fields on construction so two filters built from the
same attributes in a different order compare equal and serialize
identically, while tag values keep their insertion order.

See Also:
    [relayreq.services.filters][]: Builds filters from CLI flags and piped
        JSON documents.
    [relayreq.services.pagination][]: Narrows ``until`` between rounds via
        [with_until()][relayreq.models.filter.Filter.with_until].
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

from ._validation import (
    validate_hex64,
    validate_instance,
    validate_kind,
    validate_str_no_null,
    validate_timestamp,
)
from .constants import DEFAULT_SUBSCRIPTION_ID


TAG_PREFIX = "#"


@dataclass(frozen=True, slots=True)
class Filter:
    """Immutable NIP-01 filter.

    Attributes:
        ids: Event ids (64-char hex), deduplicated and sorted.
        authors: Author public keys (64-char hex), deduplicated and sorted.
        kinds: Event kinds, deduplicated and sorted.
        tags: Single-letter tag key to ordered tuple of values.
        since: Inclusive lower ``created_at`` bound.
        until: Inclusive upper ``created_at`` bound.
        limit: Positive per-relay result limit, or ``None`` when unset.
        limit_zero: ``True`` when ``limit=0`` was requested explicitly.
            Relays read it as "send EOSE right away, no stored events", which
            is not the same as an unset limit.
        search: NIP-50 full-text query.

    Raises:
        ValueError: On malformed ids, out-of-range kinds, tag keys that are
            not exactly one character, negative timestamps, or a non-positive
            ``limit``.
        TypeError: On values of the wrong type.

    Examples:
        ```python
        f = Filter(kinds=[1, 0], tags={"t": ["spam", "spam2"]}, limit=5)
        f.kinds          # (0, 1)
        f.to_json()      # '{"kinds":[0,1],"#t":["spam","spam2"],"limit":5}'
        ```
    """

    ids: tuple[str, ...] = ()
    authors: tuple[str, ...] = ()
    kinds: tuple[int, ...] = ()
    tags: Mapping[str, tuple[str, ...]] = field(default_factory=dict, hash=False)
    since: int | None = None
    until: int | None = None
    limit: int | None = None
    limit_zero: bool = False
    search: str | None = None

    def __post_init__(self) -> None:
        ids = self._normalize_hex(self.ids, "ids")
        authors = self._normalize_hex(self.authors, "authors")

        kinds_in = self._as_sequence(self.kinds, "kinds")
        for kind in kinds_in:
            validate_kind(kind, "kind")
        kinds = tuple(sorted(set(kinds_in)))

        validate_instance(self.tags, Mapping, "tags")
        tags: dict[str, tuple[str, ...]] = {}
        for key, values in self.tags.items():
            validate_str_no_null(key, "tag key")
            if len(key) != 1:
                raise ValueError(f"tag key must be exactly one character, got {key!r}")
            tag_values = self._as_sequence(values, f"tag {key!r} values")
            for value in tag_values:
                validate_str_no_null(value, f"tag {key!r} value")
            tags[key] = tuple(tag_values)

        for name in ("since", "until"):
            value = getattr(self, name)
            if value is not None:
                validate_timestamp(value, name)

        if self.limit is not None:
            validate_timestamp(self.limit, "limit")
            if self.limit == 0:
                raise ValueError("limit must be positive; use limit_zero for an explicit zero")
            if self.limit_zero:
                raise ValueError("limit and limit_zero are mutually exclusive")
        validate_instance(self.limit_zero, bool, "limit_zero")

        search = self.search
        if search is not None:
            validate_str_no_null(search, "search")
            search = search or None

        object.__setattr__(self, "ids", ids)
        object.__setattr__(self, "authors", authors)
        object.__setattr__(self, "kinds", kinds)
        object.__setattr__(self, "tags", MappingProxyType(tags))
        object.__setattr__(self, "search", search)

    @staticmethod
    def _as_sequence(value: Any, name: str) -> tuple[Any, ...]:
        if isinstance(value, str | bytes) or not isinstance(value, Iterable):
            raise TypeError(f"{name} must be a list, got {type(value).__name__}")
        return tuple(value)

    @classmethod
    def _normalize_hex(cls, values: Any, name: str) -> tuple[str, ...]:
        items = cls._as_sequence(values, name)
        for item in items:
            validate_hex64(item, name[:-1])
        return tuple(sorted(set(items)))

    # -------------------------------------------------------------------------
    # Derived filters
    # -------------------------------------------------------------------------

    def with_until(self, until: int | None) -> Filter:
        """Return a copy with ``until`` replaced, every other field unchanged."""
        return replace(self, until=until)

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Return the NIP-01 wire representation.

        Keys appear in the order ``ids, kinds, authors, #<tag>..., since,
        until, limit, search``; empty list fields and unset scalars are
        omitted. An explicit zero limit is emitted as ``"limit": 0``.
        """
        data: dict[str, Any] = {}
        if self.ids:
            data["ids"] = list(self.ids)
        if self.kinds:
            data["kinds"] = list(self.kinds)
        if self.authors:
            data["authors"] = list(self.authors)
        for key, values in self.tags.items():
            data[TAG_PREFIX + key] = list(values)
        if self.since is not None:
            data["since"] = self.since
        if self.until is not None:
            data["until"] = self.until
        if self.limit is not None:
            data["limit"] = self.limit
        elif self.limit_zero:
            data["limit"] = 0
        if self.search is not None:
            data["search"] = self.search
        return data

    def to_json(self) -> str:
        """Return the compact JSON text of [to_dict()][relayreq.models.filter.Filter.to_dict]."""
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)

    def to_req(self, subscription_id: str = DEFAULT_SUBSCRIPTION_ID) -> list[Any]:
        """Return the ``["REQ", subscription_id, filter]`` envelope."""
        return ["REQ", subscription_id, self.to_dict()]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Filter:
        """Build a filter from its NIP-01 wire representation.

        Unknown keys are ignored. ``"limit": 0`` maps to ``limit_zero=True``.

        Raises:
            ValueError: If any field fails validation.
            TypeError: If *data* is not a mapping or a field has the wrong type.
        """
        validate_instance(data, Mapping, "filter")

        tags: dict[str, Any] = {}
        for key, value in data.items():
            if isinstance(key, str) and key.startswith(TAG_PREFIX):
                tags[key[len(TAG_PREFIX) :]] = value if value is not None else ()

        limit = data.get("limit")
        limit_zero = False
        if limit == 0 and not isinstance(limit, bool):
            limit = None
            limit_zero = True

        return cls(
            ids=data.get("ids") or (),
            authors=data.get("authors") or (),
            kinds=data.get("kinds") or (),
            tags=tags,
            since=data.get("since"),
            until=data.get("until"),
            limit=limit,
            limit_zero=limit_zero,
            search=data.get("search"),
        )
