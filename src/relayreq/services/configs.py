"""Invocation configuration models.

[ReqConfig][relayreq.services.configs.ReqConfig] gathers everything one
``relayreq`` invocation needs besides the filter itself. Values come from an
optional YAML file (``--config``) and are overridden by command-line flags
through [load_config()][relayreq.services.configs.load_config].

The delivery strategy is selected once from ``delivery_mode`` and handed to
the subscription engine as a tagged variant: [Eose][relayreq.services.configs.Eose],
[Stream][relayreq.services.configs.Stream] or
[Paginate][relayreq.services.configs.Paginate].

See Also:
    [relayreq.core.yaml.load_yaml][relayreq.core.yaml.load_yaml]: YAML loader.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from relayreq.core.exceptions import ConfigurationError
from relayreq.core.yaml import load_yaml
from relayreq.models.constants import DEFAULT_SUBSCRIPTION_ID, DeliveryMode


# ---------------------------------------------------------------------------
# Delivery variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Eose:
    """Close each relay's subscription at EOSE; end when every relay is done."""


@dataclass(frozen=True, slots=True)
class Stream:
    """Keep every subscription open until cancelled or all connections drop."""


@dataclass(frozen=True, slots=True)
class Paginate:
    """Repeat one-shot rounds with a decreasing ``until``.

    Attributes:
        interval: Seconds to wait between rounds.
        global_limit: Total events after which pagination stops (None = no cap).
        zero_limit_single_round: Run a single round when the filter carries an
            explicit ``limit: 0``.
    """

    interval: float = 0.0
    global_limit: int | None = None
    zero_limit_single_round: bool = True


Delivery = Eose | Stream | Paginate


# ---------------------------------------------------------------------------
# Config models
# ---------------------------------------------------------------------------


class ConnectionConfig(BaseModel):
    """Relay connection and protocol wait limits, in seconds."""

    timeout: float = Field(default=10.0, gt=0.0, le=120.0, description="Connect timeout")
    allow_insecure: bool = Field(
        default=False, description="Retry without TLS verification on certificate errors"
    )
    pre_auth_timeout: float = Field(
        default=5.0, gt=0.0, le=60.0, description="Wait for an AUTH challenge in pre-auth mode"
    )
    challenge_timeout: float = Field(
        default=3.0,
        gt=0.0,
        le=60.0,
        description="Wait for a challenge after an auth-required CLOSED",
    )
    ok_timeout: float = Field(
        default=10.0, gt=0.0, le=120.0, description="Wait for the relay's OK to an AUTH event"
    )


class AuthConfig(BaseModel):
    """NIP-42 authentication opt-in.

    Note:
        Authentication is refused unless ``enabled`` or ``force_pre_auth`` is
        set; relays demanding auth then simply contribute nothing.
    """

    enabled: bool = Field(default=False, description="Answer auth-required refusals")
    force_pre_auth: bool = Field(
        default=False, description="Wait for and answer a challenge before sending REQ"
    )
    bunker_timeout: float = Field(
        default=60.0, gt=0.0, description="Timeout for each NIP-46 remote signer round trip"
    )

    @property
    def opted_in(self) -> bool:
        return self.enabled or self.force_pre_auth


class PaginationConfig(BaseModel):
    """Settings for ``--paginate``."""

    interval: float = Field(default=0.0, ge=0.0, description="Seconds between rounds")
    global_limit: int | None = Field(
        default=None, ge=1, description="Stop after this many events (None = filter limit)"
    )
    zero_limit_single_round: bool = Field(
        default=True, description="Treat an explicit limit of 0 as a single round"
    )


class OutputConfig(BaseModel):
    """Output settings for printed filters."""

    bare: bool = Field(default=False, description="Print the filter without the REQ envelope")
    subscription_id: str = Field(
        default=DEFAULT_SUBSCRIPTION_ID, min_length=1, description="Subscription id for REQ"
    )


class ReqConfig(BaseModel):
    """Complete configuration of one invocation."""

    relays: list[str] = Field(default_factory=list, description="Relay addresses to query")
    delivery_mode: DeliveryMode = Field(default=DeliveryMode.EOSE)
    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    pagination: PaginationConfig = Field(default_factory=PaginationConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)

    @field_validator("relays", mode="after")
    @classmethod
    def strip_relays(cls, v: list[str]) -> list[str]:
        """Drop blank entries."""
        return [r.strip() for r in v if r.strip()]

    def delivery(self, *, limit: int | None = None) -> Delivery:
        """Build the delivery variant for ``delivery_mode``.

        Args:
            limit: The filter's ``limit``, used as the pagination global limit
                when none is configured.
        """
        if self.delivery_mode == DeliveryMode.STREAM:
            return Stream()
        if self.delivery_mode == DeliveryMode.PAGINATE:
            global_limit = self.pagination.global_limit
            return Paginate(
                interval=self.pagination.interval,
                global_limit=global_limit if global_limit is not None else limit,
                zero_limit_single_round=self.pagination.zero_limit_single_round,
            )
        return Eose()


def _merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(
    path: str | Path | None = None, overrides: dict[str, Any] | None = None
) -> ReqConfig:
    """Build a [ReqConfig][relayreq.services.configs.ReqConfig] from YAML plus overrides.

    Args:
        path: Optional YAML file providing defaults.
        overrides: Nested values (typically from CLI flags) applied on top.

    Raises:
        ConfigurationError: If the file cannot be loaded or validation fails.
    """
    data = load_yaml(path) if path is not None else {}
    data = _merge(data, overrides or {})
    try:
        return ReqConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"invalid configuration: {e}") from e
