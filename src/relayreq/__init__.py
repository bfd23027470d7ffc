r"""relayreq -- Nostr REQ client with multi-relay subscriptions and NIP-42 auth.

Builds NIP-01 filters from command-line flags and piped JSON, sends them to
many relays concurrently, and prints the matching events. Relays that demand
NIP-42 authentication are answered with a local key or a NIP-46 remote
signer when the operator opts in.

Architecture follows a **diamond DAG** dependency structure where imports
flow strictly downward:

```text
              services         Filter building, pool, auth, subscriptions
             /        \
          core        utils    Logging/errors/config | transport/keys/time
             \        /
              models           Pure frozen dataclasses (zero I/O)
```

Note:
    Top-level imports (``from relayreq import Filter``) use lazy loading
    and resolve on first access.
"""

import importlib
from importlib.metadata import version as _get_version


__version__ = _get_version("relayreq")

__all__ = [
    "AuthHandler",
    "ConnectionPool",
    "Event",
    "Filter",
    "FilterBuilder",
    "Logger",
    "PaginationController",
    "Relay",
    "RelayConnection",
    "RelayReqError",
    "Req",
    "ReqConfig",
    "SubscriptionEngine",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "Logger": ("relayreq.core", "Logger"),
    "RelayReqError": ("relayreq.core", "RelayReqError"),
    "Event": ("relayreq.models", "Event"),
    "Filter": ("relayreq.models", "Filter"),
    "Relay": ("relayreq.models", "Relay"),
    "RelayConnection": ("relayreq.utils", "RelayConnection"),
    "AuthHandler": ("relayreq.services", "AuthHandler"),
    "ConnectionPool": ("relayreq.services", "ConnectionPool"),
    "FilterBuilder": ("relayreq.services", "FilterBuilder"),
    "PaginationController": ("relayreq.services", "PaginationController"),
    "Req": ("relayreq.services", "Req"),
    "ReqConfig": ("relayreq.services", "ReqConfig"),
    "SubscriptionEngine": ("relayreq.services", "SubscriptionEngine"),
}


def __getattr__(name: str) -> object:
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_path)
        value = getattr(module, attr_name)
        globals()[name] = value  # Cache for subsequent access
        return value
    raise AttributeError(f"module 'relayreq' has no attribute {name!r}")


def __dir__() -> list[str]:
    return __all__
