"""relayreq exception hierarchy.

Typed exceptions for every error category, so callers can tell a per-line
failure from a per-relay failure from a fatal setup error, and so
``CancelledError`` is never caught by accident.

Exception hierarchy:

```text
RelayReqError (base -- never raised directly)
├── ConfigurationError       -- bad flags, config file, undecodable keys
├── FilterError              -- one input line could not become a filter
│   ├── InvalidTag           -- tag key not exactly one character, bad --tag
│   └── InvalidFilterJSON    -- piped line is not a valid filter document
├── ConnectivityError        -- relay/network failures
│   ├── NoRelaysConnected    -- every requested relay was unreachable
│   └── ConnectionDropped    -- one relay went away mid-subscription
└── AuthError                -- NIP-42 authentication failures
    ├── AuthRefused          -- a request stays refused (not opted in, rejected, retried)
    └── SigningError         -- the signer could not produce an auth event
```

Scope of each failure:

* ``FilterError`` aborts only the current input line.
* ``ConnectionDropped`` and ``AuthRefused`` end one relay's contribution.
* ``NoRelaysConnected``, ``ConfigurationError`` and a ``SigningError``
  raised while preparing the signer abort the whole invocation.

See Also:
    [relayreq.services.req.Req][relayreq.services.req.Req]: Maps these onto
        [ExitCode][relayreq.models.constants.ExitCode] values.
"""

from __future__ import annotations


class RelayReqError(Exception):
    """Base exception for all relayreq errors.

    Never raised directly -- always use a specific subclass.
    """


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(RelayReqError):
    """Invalid or missing configuration (YAML, env vars, CLI flags)."""


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


class FilterError(RelayReqError):
    """Base for errors that make one input line unusable."""


class InvalidTag(FilterError):  # noqa: N818
    """A tag key is not exactly one character, or a ``--tag`` is not ``key=value``."""


class InvalidFilterJSON(FilterError):  # noqa: N818
    """A piped line is not a valid filter JSON document."""


# ---------------------------------------------------------------------------
# Connectivity
# ---------------------------------------------------------------------------


class ConnectivityError(RelayReqError):
    """Base for all relay/network connectivity errors."""


class NoRelaysConnected(ConnectivityError):  # noqa: N818
    """Relays were requested but none of them could be reached.

    Attributes:
        requested: The relay addresses that were attempted.
    """

    def __init__(self, requested: list[str]) -> None:
        self.requested = list(requested)
        super().__init__(f"failed to connect to any of the {len(self.requested)} given relays")


class ConnectionDropped(ConnectivityError):  # noqa: N818
    """A relay connection was lost; only that relay's contribution stops."""


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class AuthError(RelayReqError):
    """Base for NIP-42 authentication failures."""


class AuthRefused(AuthError):  # noqa: N818
    """A request remains refused by the relay.

    Raised when the operator did not opt into authentication, when the relay
    rejects the auth event, or when a request is challenged again after one
    successful authentication.
    """


class SigningError(AuthError):
    """The configured signer could not produce a signed auth event."""
