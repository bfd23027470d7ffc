"""Request services: filter building, relay pool, authentication, subscriptions.

Attributes:
    Req: Per-invocation orchestrator.
    FilterBuilder: Merges command-line overrides into piped base filters.
    ConnectionPool: Concurrent relay connections.
    AuthHandler: NIP-42 state machine factory.
    SubscriptionEngine: Eose / Stream / Paginate delivery.
    PaginationController: Narrowing-``until`` rounds.
"""

from .auth import AuthAttempt, AuthHandler, AuthState
from .configs import (
    AuthConfig,
    ConnectionConfig,
    Delivery,
    Eose,
    OutputConfig,
    Paginate,
    PaginationConfig,
    ReqConfig,
    Stream,
    load_config,
)
from .context import AuthContext
from .filters import FilterBuilder, FilterOverrides, build, parse_line, parse_tag_flag
from .pagination import PaginationController, PaginationState
from .pool import ConnectionPool
from .req import Req
from .subscription import RoundStats, Subscription, SubscriptionEngine


__all__ = [
    "AuthAttempt",
    "AuthConfig",
    "AuthContext",
    "AuthHandler",
    "AuthState",
    "ConnectionConfig",
    "ConnectionPool",
    "Delivery",
    "Eose",
    "FilterBuilder",
    "FilterOverrides",
    "OutputConfig",
    "Paginate",
    "PaginationConfig",
    "PaginationController",
    "PaginationState",
    "Req",
    "ReqConfig",
    "RoundStats",
    "Stream",
    "Subscription",
    "SubscriptionEngine",
    "build",
    "load_config",
    "parse_line",
    "parse_tag_flag",
]
