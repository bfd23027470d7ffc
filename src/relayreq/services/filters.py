"""Filter construction from command-line flags and piped base filters.

[FilterOverrides][relayreq.services.filters.FilterOverrides] is parsed once
from the command line; [build()][relayreq.services.filters.build] merges it
into each base filter read from stdin (or into an empty filter).

Merge rules:

* ``authors``, ``ids`` and ``kinds`` are appended to the base lists;
* tag values are appended per key in encounter order: every ``--tag``
  entry, then every ``-e``, then every ``-p``, then every ``-d``;
* ``since``, ``until`` and ``search`` replace the base values;
* ``limit=0`` becomes an explicit zero limit (``limit_zero``), a positive
  limit is taken verbatim, no limit keeps the base values.
"""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass, field
from typing import Any

from nostr_sdk import NostrSdkError

from relayreq.core.exceptions import (
    ConfigurationError,
    FilterError,
    InvalidFilterJSON,
    InvalidTag,
)
from relayreq.models.filter import TAG_PREFIX, Filter
from relayreq.utils.keys import normalize_event_id, normalize_pubkey


def parse_tag_flag(value: str) -> tuple[str, str]:
    """Split a ``--tag key=value`` flag on its first ``=``.

    Raises:
        InvalidTag: If there is no ``=`` or the key is not one character.
    """
    key, sep, tag_value = value.partition("=")
    if not sep or len(key) != 1:
        raise InvalidTag(f"invalid --tag {value!r}: expected <single-letter>=<value>")
    return key, tag_value


@dataclass(frozen=True, slots=True)
class FilterOverrides:
    """Filter attributes given on the command line.

    Attributes:
        authors: Author pubkeys (hex) to add.
        ids: Event ids (hex) to add.
        kinds: Kinds to add.
        tags: ``(key, value)`` pairs in merge order.
        since: Replacement lower time bound.
        until: Replacement upper time bound.
        limit: Replacement limit; ``0`` means an explicit zero limit.
        search: Replacement NIP-50 search query.
    """

    authors: tuple[str, ...] = ()
    ids: tuple[str, ...] = ()
    kinds: tuple[int, ...] = ()
    tags: tuple[tuple[str, str], ...] = field(default=())
    since: int | None = None
    until: int | None = None
    limit: int | None = None
    search: str | None = None

    @classmethod
    def from_flags(
        cls,
        *,
        authors: list[str] | None = None,
        ids: list[str] | None = None,
        kinds: list[int] | None = None,
        tags: list[str] | None = None,
        e: list[str] | None = None,
        p: list[str] | None = None,
        d: list[str] | None = None,
        since: int | None = None,
        until: int | None = None,
        limit: int | None = None,
        search: str | None = None,
    ) -> FilterOverrides:
        """Parse and validate raw flag values.

        Raises:
            InvalidTag: On a malformed ``--tag``.
            ConfigurationError: On an undecodable author or id, or any other
                value a filter cannot carry.
        """
        pairs = [parse_tag_flag(t) for t in tags or []]
        pairs += [("e", v) for v in e or []]
        pairs += [("p", v) for v in p or []]
        pairs += [("d", v) for v in d or []]

        try:
            decoded_authors = tuple(normalize_pubkey(a) for a in authors or [])
            decoded_ids = tuple(normalize_event_id(i) for i in ids or [])
        except NostrSdkError as exc:
            raise ConfigurationError(f"invalid author or id: {exc}") from exc

        overrides = cls(
            authors=decoded_authors,
            ids=decoded_ids,
            kinds=tuple(kinds or []),
            tags=tuple(pairs),
            since=since,
            until=until,
            limit=limit,
            search=search or None,
        )
        if limit is not None and limit < 0:
            raise ConfigurationError(f"limit must be non-negative, got {limit}")
        try:
            build(None, overrides)
        except FilterError as exc:
            raise ConfigurationError(str(exc)) from exc
        return overrides


def build(base: Filter | None, overrides: FilterOverrides) -> Filter:
    """Merge ``overrides`` into ``base`` (or an empty filter).

    Raises:
        FilterError: If the merged attributes do not form a valid filter.
    """
    base = base if base is not None else Filter()

    tags: dict[str, list[str]] = {k: list(v) for k, v in base.tags.items()}
    for key, value in overrides.tags:
        tags.setdefault(key, []).append(value)

    changes: dict[str, Any] = {
        "ids": (*base.ids, *overrides.ids),
        "authors": (*base.authors, *overrides.authors),
        "kinds": (*base.kinds, *overrides.kinds),
        "tags": {k: tuple(v) for k, v in tags.items()},
    }
    if overrides.since is not None:
        changes["since"] = overrides.since
    if overrides.until is not None:
        changes["until"] = overrides.until
    if overrides.search is not None:
        changes["search"] = overrides.search
    if overrides.limit == 0:
        changes["limit"] = None
        changes["limit_zero"] = True
    elif overrides.limit is not None:
        changes["limit"] = overrides.limit
        changes["limit_zero"] = False

    try:
        return dataclasses.replace(base, **changes)
    except (ValueError, TypeError) as exc:
        raise FilterError(f"invalid filter: {exc}") from exc


def parse_line(line: str) -> Filter | None:
    """Parse one piped input line into a base filter.

    Returns:
        ``None`` for a blank line (use the default filter).

    Raises:
        InvalidTag: If a ``#`` key is not followed by exactly one character.
        InvalidFilterJSON: If the line is not a valid filter JSON object.
    """
    text = line.strip()
    if not text:
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise InvalidFilterJSON(f"invalid filter {text!r}: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidFilterJSON(f"invalid filter {text!r}: not a JSON object")

    for key in data:
        if key.startswith(TAG_PREFIX) and len(key) != len(TAG_PREFIX) + 1:
            raise InvalidTag(f"invalid tag key {key!r} in filter {text!r}")

    try:
        return Filter.from_dict(data)
    except (ValueError, TypeError) as exc:
        raise InvalidFilterJSON(f"invalid filter {text!r}: {exc}") from exc


class FilterBuilder:
    """Builds the filter for each input line from fixed command-line overrides."""

    def __init__(self, overrides: FilterOverrides | None = None) -> None:
        self._overrides = overrides if overrides is not None else FilterOverrides()

    @property
    def overrides(self) -> FilterOverrides:
        return self._overrides

    def from_line(self, line: str) -> Filter:
        """Parse ``line`` and merge the overrides into it.

        Raises:
            FilterError: If the line cannot become a filter.
        """
        return build(parse_line(line), self._overrides)
