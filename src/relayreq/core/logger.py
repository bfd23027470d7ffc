"""
Structured logging with key=value and JSON output on stderr.

stdout is reserved for events and filters, so every diagnostic goes through
the handler that [setup_logging()][relayreq.core.logger.setup_logging]
installs on the root logger, writing to stderr.

Values containing spaces, equals signs, or quotes are escaped and wrapped in
double quotes. Long values are truncated to a configurable maximum length.

Both formatters read structured data from the ``structured_kv`` extra field
attached by [Logger][relayreq.core.logger.Logger]; plain
``logging.getLogger()`` calls from the models and utils layers are emitted
with the same ``level name message`` prefix.

Examples:
    ```python
    from relayreq.core.logger import Logger, setup_logging

    setup_logging("INFO")
    logger = Logger("pool").bind(relay="wss://relay.example.com")
    logger.info("relay_connected", elapsed=0.42)
    # Output: info pool relay_connected relay=wss://relay.example.com elapsed=0.42
    ```
"""

from __future__ import annotations

import datetime
import json
import logging
import sys
from typing import IO, Any, ClassVar


def format_kv_pairs(
    kwargs: dict[str, Any],
    max_value_length: int | None = 1000,
    prefix: str = " ",
) -> str:
    """Format a dictionary as space-separated key=value pairs.

    Args:
        kwargs: Key-value pairs to format.
        max_value_length: Maximum characters per value before truncation.
            Pass None to disable truncation.
        prefix: String prepended to the output (default: single space).

    Returns:
        Formatted string, e.g. ' key1=value1 key2="value with spaces"'.
        Returns empty string if kwargs is empty.
    """
    if not kwargs:
        return ""

    parts = []
    for k, v in kwargs.items():
        s = _truncate(str(v), max_value_length)
        if not s or " " in s or "=" in s or '"' in s or "'" in s:
            escaped = s.replace("\\", "\\\\").replace('"', '\\"')
            parts.append(f'{k}="{escaped}"')
        else:
            parts.append(f"{k}={s}")

    return prefix + " ".join(parts)


def _truncate(value: str, max_length: int | None) -> str:
    if max_length and len(value) > max_length:
        return value[:max_length] + f"...<truncated {len(value) - max_length} chars>"
    return value


class StructuredFormatter(logging.Formatter):
    """Formats log records as ``level name message key=value...``."""

    def format(self, record: logging.LogRecord) -> str:
        base = f"{record.levelname.lower()} {record.name} {record.getMessage()}"
        extra: dict[str, Any] = getattr(record, "structured_kv", {})
        if extra:
            base += format_kv_pairs(extra)
        if record.exc_info:
            base += "\n" + self.formatException(record.exc_info)
        return base


class JsonFormatter(logging.Formatter):
    """Formats log records as one JSON object per line.

    Includes ``timestamp`` (ISO 8601), ``level``, ``logger`` and ``message``
    followed by the structured fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.datetime.fromtimestamp(record.created, datetime.UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
            **getattr(record, "structured_kv", {}),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(
    level: str = "INFO",
    *,
    json_output: bool = False,
    stream: IO[str] | None = None,
) -> None:
    """Install a structured handler on the root logger.

    Replaces any existing root handlers so repeated calls (tests, reloads)
    never duplicate output.

    Args:
        level: Log level name (``DEBUG``, ``INFO``, ``WARNING``, ``ERROR``).
        json_output: Emit JSON lines instead of key=value text.
        stream: Destination stream, ``sys.stderr`` when omitted.
    """
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(JsonFormatter() if json_output else StructuredFormatter())
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())


class Logger:
    """Structured logger that appends keyword arguments as extra fields.

    Wraps a standard ``logging.Logger``. All public methods mirror the
    standard logging API with an added ``**kwargs`` parameter; fields bound
    with [bind()][relayreq.core.logger.Logger.bind] are prepended to every
    record.

    Examples:
        ```python
        logger = Logger("auth")
        logger.info("auth_performing", pubkey="79be66...")
        # Output: info auth auth_performing pubkey=79be66...
        ```
    """

    _DEFAULT_MAX_VALUE_LENGTH: ClassVar[int] = 1000

    def __init__(
        self,
        name: str,
        *,
        max_value_length: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Initialize a structured logger.

        Args:
            name: Logger name, mapped to ``logging.getLogger(name)``.
            max_value_length: Maximum character length for individual values
                before truncation. Defaults to 1000.
            context: Fields included in every record.
        """
        if max_value_length is None:
            max_value_length = self._DEFAULT_MAX_VALUE_LENGTH
        self._logger = logging.getLogger(name)
        self._max_value_length = max_value_length
        self._context: dict[str, Any] = dict(context or {})

    @property
    def name(self) -> str:
        return self._logger.name

    def bind(self, **context: Any) -> Logger:
        """Return a child logger that always includes ``context``."""
        return Logger(
            self._logger.name,
            max_value_length=self._max_value_length,
            context={**self._context, **context},
        )

    def _make_extra(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        fields = {**self._context, **kwargs}
        if not fields:
            return {}
        truncated: dict[str, Any] = {}
        for k, v in fields.items():
            s = str(v)
            if self._max_value_length and len(s) > self._max_value_length:
                truncated[k] = _truncate(s, self._max_value_length)
            else:
                truncated[k] = v
        return {"structured_kv": truncated}

    def debug(self, msg: str, **kwargs: Any) -> None:
        """Log a DEBUG level message with optional key=value pairs."""
        self._logger.debug(msg, extra=self._make_extra(kwargs))

    def info(self, msg: str, **kwargs: Any) -> None:
        """Log an INFO level message with optional key=value pairs."""
        self._logger.info(msg, extra=self._make_extra(kwargs))

    def warning(self, msg: str, **kwargs: Any) -> None:
        """Log a WARNING level message with optional key=value pairs."""
        self._logger.warning(msg, extra=self._make_extra(kwargs))

    def error(self, msg: str, **kwargs: Any) -> None:
        """Log an ERROR level message with optional key=value pairs."""
        self._logger.error(msg, extra=self._make_extra(kwargs))

    def exception(self, msg: str, **kwargs: Any) -> None:
        """Log an ERROR level message with exception traceback and optional key=value pairs."""
        self._logger.exception(msg, extra=self._make_extra(kwargs))
