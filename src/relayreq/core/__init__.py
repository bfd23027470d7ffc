"""Cross-cutting infrastructure: structured logging, error taxonomy, YAML loading.

Depends only on [relayreq.models][]; imported by the services layer and the
CLI entry point.

Attributes:
    Logger: Structured key=value / JSON logger.
    setup_logging: Installs the stderr handler on the root logger.
    RelayReqError: Root of the exception hierarchy.
    load_yaml: Safe YAML config loading.
"""

from .exceptions import (
    AuthError,
    AuthRefused,
    ConfigurationError,
    ConnectionDropped,
    ConnectivityError,
    FilterError,
    InvalidFilterJSON,
    InvalidTag,
    NoRelaysConnected,
    RelayReqError,
    SigningError,
)
from .logger import JsonFormatter, Logger, StructuredFormatter, format_kv_pairs, setup_logging
from .yaml import load_yaml


__all__ = [
    "AuthError",
    "AuthRefused",
    "ConfigurationError",
    "ConnectionDropped",
    "ConnectivityError",
    "FilterError",
    "InvalidFilterJSON",
    "InvalidTag",
    "JsonFormatter",
    "Logger",
    "NoRelaysConnected",
    "RelayReqError",
    "SigningError",
    "StructuredFormatter",
    "format_kv_pairs",
    "load_yaml",
    "setup_logging",
]
