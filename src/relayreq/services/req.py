"""Per-invocation orchestration.

[Req][relayreq.services.req.Req] reads filter lines from stdin one at a time,
builds each filter, and either prints it (no relays given) or runs it against
the connected relays and prints every event as one JSON line.

Error scope:

* a bad input line is logged and skipped; the run ends with ``FAILURE``;
* one failing relay only loses that relay's contribution;
* no reachable relay ends the run with ``NO_RELAYS`` before any output.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import sys
from typing import IO, TYPE_CHECKING

from relayreq.core.exceptions import FilterError, NoRelaysConnected
from relayreq.core.logger import Logger
from relayreq.models.constants import ExitCode

from .auth import AuthHandler
from .pool import ConnectionPool, Opener
from .subscription import Subscription, SubscriptionEngine


if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from relayreq.models.filter import Filter

    from .configs import ReqConfig
    from .context import AuthContext
    from .filters import FilterBuilder


class Req:
    """Runs one ``relayreq`` invocation.

    Args:
        config: Validated invocation config.
        builder: Filter builder holding the command-line overrides.
        context: Signing material for authentication.
        stdin: Source of piped filter lines (``None`` or a TTY = no input).
        stdout: Destination of events and filters.
        opener: Connection factory passed to the pool.
    """

    def __init__(
        self,
        config: ReqConfig,
        builder: FilterBuilder,
        context: AuthContext,
        *,
        stdin: IO[str] | None = None,
        stdout: IO[str] | None = None,
        opener: Opener | None = None,
    ) -> None:
        self._config = config
        self._builder = builder
        self._context = context
        self._stdin = stdin
        self._stdout = stdout if stdout is not None else sys.stdout
        self._opener = opener
        self._logger = Logger("req")
        self.failed_lines = 0

    async def run(self) -> ExitCode:
        """Process every input line.

        Returns:
            ``OK``, ``FAILURE`` if any line failed, or ``NO_RELAYS``.

        Raises:
            SigningError: If the configured key material cannot be decoded.
        """
        if not self._config.relays:
            await self._print_filters()
        else:
            try:
                await self._query_relays()
            except NoRelaysConnected as e:
                self._logger.error("no_relays_connected", error=str(e))
                return ExitCode.NO_RELAYS
        return ExitCode.FAILURE if self.failed_lines else ExitCode.OK

    async def _lines(self) -> AsyncIterator[tuple[int, str]]:
        stream = self._stdin
        if stream is None or stream.isatty():
            yield 1, ""
            return
        count = 0
        while True:
            line = await asyncio.to_thread(stream.readline)
            if not line:
                break
            count += 1
            yield count, line.rstrip("\r\n")
        if count == 0:
            yield 1, ""

    async def _filters(self) -> AsyncIterator[Filter]:
        async with contextlib.aclosing(self._lines()) as lines:
            async for number, line in lines:
                try:
                    filter_ = self._builder.from_line(line)
                except FilterError as e:
                    self.failed_lines += 1
                    self._logger.error("line_failed", line=number, error=str(e))
                    continue
                yield filter_

    def _write(self, text: str) -> None:
        self._stdout.write(text + "\n")
        self._stdout.flush()

    async def _print_filters(self) -> None:
        output = self._config.output
        async with contextlib.aclosing(self._filters()) as filters:
            async for filter_ in filters:
                if output.bare:
                    self._write(filter_.to_json())
                else:
                    req = filter_.to_req(output.subscription_id)
                    self._write(json.dumps(req, separators=(",", ":"), ensure_ascii=False))

    async def _query_relays(self) -> None:
        config = self._config
        if config.auth.opted_in:
            self._context.prepare()
        auth = AuthHandler(config.auth, self._context, config.connection)
        async with ConnectionPool(
            config.connection,
            auth,
            pre_auth=config.auth.force_pre_auth,
            opener=self._opener,
        ) as pool:
            await pool.connect(config.relays)
            engine = SubscriptionEngine(
                pool,
                auth,
                subscription_id=config.output.subscription_id,
                challenge_timeout=config.connection.challenge_timeout,
            )
            async with contextlib.aclosing(self._filters()) as filters:
                async for filter_ in filters:
                    subscription = Subscription(
                        filter=filter_,
                        delivery=config.delivery(limit=filter_.limit),
                        relays=tuple(pool.urls),
                    )
                    async with contextlib.aclosing(engine.run(subscription)) as events:
                        async for event in events:
                            self._write(event.to_json())
