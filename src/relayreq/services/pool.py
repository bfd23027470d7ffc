"""Concurrent connections to the requested relays.

[ConnectionPool][relayreq.services.pool.ConnectionPool] normalizes the relay
addresses, opens them concurrently and independently, and keeps only those
that answered. An unreachable relay is logged and dropped; only when none is
reachable does the pool fail with
[NoRelaysConnected][relayreq.core.exceptions.NoRelaysConnected].

In pre-auth mode each relay gets a short window to send a NIP-42 challenge
right after connecting, which is answered before any request is sent. A
relay that refuses the answer is closed and dropped like an unreachable one.

Examples:
    ```python
    async with ConnectionPool(config, auth) as pool:
        urls = await pool.connect(["relay.damus.io", "wss://nos.lol"])
        conn = pool.get(urls[0])
    ```
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from relayreq.core.exceptions import NoRelaysConnected
from relayreq.core.logger import Logger
from relayreq.models.messages import AuthChallenge
from relayreq.models.relay import Relay
from relayreq.utils.transport import RelayConnection

from .auth import AuthState


if TYPE_CHECKING:
    from types import TracebackType

    from .auth import AuthHandler
    from .configs import ConnectionConfig


Opener = Callable[..., Awaitable[RelayConnection]]


class ConnectionPool:
    """Owns one [RelayConnection][relayreq.utils.transport.RelayConnection] per relay.

    Args:
        config: Connection timeouts and TLS policy.
        auth: Handler used for pre-auth challenges.
        pre_auth: Wait for and answer a challenge before any request.
        opener: Connection factory, ``RelayConnection.open`` by default.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        auth: AuthHandler,
        *,
        pre_auth: bool = False,
        opener: Opener | None = None,
    ) -> None:
        self._config = config
        self._auth = auth
        self._pre_auth = pre_auth
        self._opener: Opener = opener if opener is not None else RelayConnection.open
        self._connections: dict[str, RelayConnection] = {}
        self._logger = Logger("pool")

    async def __aenter__(self) -> ConnectionPool:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def urls(self) -> list[str]:
        """Connected relay URLs in request order."""
        return list(self._connections)

    def get(self, url: str) -> RelayConnection:
        """Return the live connection for ``url``.

        Raises:
            KeyError: If ``url`` is not connected.
        """
        return self._connections[url]

    @staticmethod
    def normalize(addresses: list[str]) -> tuple[list[str], list[str]]:
        """Normalize and deduplicate addresses, preserving order.

        Returns:
            ``(valid_urls, rejected_addresses)``.
        """
        urls: list[str] = []
        rejected: list[str] = []
        for address in addresses:
            try:
                url = Relay(address).url
            except (ValueError, TypeError):
                rejected.append(address)
                continue
            if url not in urls:
                urls.append(url)
        return urls, rejected

    async def connect(self, addresses: list[str]) -> list[str]:
        """Open every address concurrently and keep the reachable ones.

        Returns:
            Connected relay URLs, in the order they were given.

        Raises:
            NoRelaysConnected: If no relay could be reached.
        """
        urls, rejected = self.normalize(addresses)
        for address in rejected:
            self._logger.warning("relay_invalid_url", address=address)

        results: dict[str, RelayConnection] = {}
        try:
            async with asyncio.TaskGroup() as tg:
                for url in urls:
                    tg.create_task(self._open_one(url, results))
        finally:
            for url in urls:
                if url in results:
                    self._connections[url] = results[url]

        if not self._connections:
            raise NoRelaysConnected(addresses)
        return self.urls

    async def _open_one(self, url: str, results: dict[str, Any]) -> None:
        logger = self._logger.bind(relay=url)
        start = time.monotonic()
        try:
            connection = await self._opener(
                url,
                timeout=self._config.timeout,
                allow_insecure=self._config.allow_insecure,
            )
        except (OSError, TimeoutError, ValueError) as e:
            logger.warning("relay_connect_failed", error=str(e) or type(e).__name__)
            return
        logger.info("relay_connected", elapsed=round(time.monotonic() - start, 3))
        results[url] = connection

        if self._pre_auth and not await self._pre_authenticate(url, connection):
            del results[url]
            await connection.close()

    async def _pre_authenticate(self, url: str, connection: RelayConnection) -> bool:
        """Answer an early challenge; ``False`` means the relay refused us."""
        logger = self._logger.bind(relay=url)
        token = await connection.wait_for_challenge(self._config.pre_auth_timeout)
        if token is None:
            logger.info("pre_auth_no_challenge")
            return True
        attempt = self._auth.begin(url)
        state = await attempt.on_challenge(AuthChallenge(url, token), connection)
        if state != AuthState.AUTHED:
            logger.warning("pre_auth_failed", state=state)
            return False
        return True

    async def close(self) -> None:
        """Close every connection; safe to call more than once."""
        connections = list(self._connections.values())
        self._connections.clear()
        if connections:
            await asyncio.gather(*(c.close() for c in connections), return_exceptions=True)
