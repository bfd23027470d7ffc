"""Concurrent subscriptions across relays.

[SubscriptionEngine][relayreq.services.subscription.SubscriptionEngine]
turns one filter into one lazy, merged sequence of events according to the
delivery variant selected at startup:

* [Eose][relayreq.services.configs.Eose]: one subscription per relay; the
  sequence ends once every relay has sent EOSE or stopped;
* [Stream][relayreq.services.configs.Stream]: EOSE is ignored; the sequence
  ends only on cancellation or when every relay has stopped;
* [Paginate][relayreq.services.configs.Paginate]: repeated one-shot rounds
  driven by [PaginationController][relayreq.services.pagination.PaginationController].

One worker task per relay pushes into a shared queue; the consumer loop is
the only place where round statistics change. Events are emitted in arrival
order and deduplicated by id across relays.

A request refused with ``auth-required:`` is handed to a fresh
[AuthAttempt][relayreq.services.auth.AuthAttempt]; when it ends ``AUTHED``
the request is sent once more on the same connection.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, assert_never

from relayreq.core.exceptions import AuthRefused, ConnectionDropped
from relayreq.core.logger import Logger
from relayreq.models.constants import DEFAULT_SUBSCRIPTION_ID
from relayreq.models.messages import AuthChallenge, ClosedMessage, EoseMessage, EventMessage
from relayreq.utils.transport import DEFAULT_CHALLENGE_TIMEOUT

from .auth import AuthState
from .configs import Eose, Paginate, Stream


if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from relayreq.models.event import Event
    from relayreq.models.filter import Filter

    from .auth import AuthHandler
    from .configs import Delivery
    from .pool import ConnectionPool


@dataclass(frozen=True, slots=True)
class _RelayEvent:
    relay: str
    event: Event


@dataclass(frozen=True, slots=True)
class _RelayEose:
    relay: str


@dataclass(frozen=True, slots=True)
class _RelayDone:
    relay: str


_WorkerItem = _RelayEvent | _RelayEose | _RelayDone


@dataclass(slots=True)
class RoundStats:
    """Aggregated statistics of one subscription round.

    Attributes:
        received: Unique events emitted.
        eose_seen: Relays that signaled EOSE.
        finished: Relays whose worker has stopped.
        oldest_by_relay: Oldest ``created_at`` received from each relay.
    """

    received: int = 0
    eose_seen: set[str] = field(default_factory=set)
    finished: set[str] = field(default_factory=set)
    oldest_by_relay: dict[str, int] = field(default_factory=dict)

    def record(self, relay: str, created_at: int) -> None:
        oldest = self.oldest_by_relay.get(relay)
        if oldest is None or created_at < oldest:
            self.oldest_by_relay[relay] = created_at

    @property
    def min_created_at(self) -> int | None:
        """Oldest ``created_at`` seen from any relay, or ``None``."""
        return min(self.oldest_by_relay.values(), default=None)


@dataclass(frozen=True, slots=True)
class Subscription:
    """One filter bound to its delivery variant and relays, created per input line.

    Attributes:
        filter: The filter sent in every ``REQ``.
        delivery: How the subscription terminates.
        relays: Relay URLs to query.
    """

    filter: Filter
    delivery: Delivery
    relays: tuple[str, ...]


class SubscriptionEngine:
    """Runs subscriptions over the relays of a
    [ConnectionPool][relayreq.services.pool.ConnectionPool].

    Args:
        pool: Connected relays.
        auth: Handler creating one auth attempt per relay request.
        subscription_id: Id used for every ``REQ``.
        challenge_timeout: Wait for a challenge after an ``auth-required:`` refusal.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        auth: AuthHandler,
        *,
        subscription_id: str = DEFAULT_SUBSCRIPTION_ID,
        challenge_timeout: float = DEFAULT_CHALLENGE_TIMEOUT,
    ) -> None:
        self._pool = pool
        self._auth = auth
        self._subscription_id = subscription_id
        self._challenge_timeout = challenge_timeout
        self._logger = Logger("subscription")

    def run(self, subscription: Subscription) -> AsyncIterator[Event]:
        """Yield the events of ``subscription`` under its delivery variant."""
        return self.stream(subscription.delivery, subscription.filter, list(subscription.relays))

    async def stream(
        self,
        delivery: Delivery,
        filter_: Filter,
        relays: list[str] | None = None,
    ) -> AsyncIterator[Event]:
        """Yield the events matching ``filter_`` under ``delivery``.

        Args:
            delivery: The delivery variant.
            filter_: The filter to send.
            relays: Relay URLs to query; every pooled relay when omitted.
        """
        urls = relays if relays is not None else self._pool.urls
        if isinstance(delivery, Eose):
            source = self.run_round(urls, filter_, close_on_eose=True)
        elif isinstance(delivery, Stream):
            source = self.run_round(urls, filter_, close_on_eose=False)
        elif isinstance(delivery, Paginate):
            from .pagination import PaginationController  # noqa: PLC0415

            source = PaginationController(self, delivery).paginate(urls, filter_)
        else:
            assert_never(delivery)

        async with contextlib.aclosing(source) as events:
            async for event in events:
                yield event

    async def run_round(
        self,
        relays: list[str],
        filter_: Filter,
        *,
        close_on_eose: bool = True,
        stats: RoundStats | None = None,
    ) -> AsyncIterator[Event]:
        """Subscribe on every relay and merge the results.

        Worker tasks are cancelled and awaited when the consumer stops early.

        Args:
            relays: Relay URLs to query.
            filter_: The filter to send.
            close_on_eose: End each relay's subscription at its EOSE.
            stats: Statistics object updated as events arrive.
        """
        stats = stats if stats is not None else RoundStats()
        queue: asyncio.Queue[_WorkerItem] = asyncio.Queue()
        tasks = [
            asyncio.create_task(
                self._worker(url, filter_, queue, close_on_eose=close_on_eose),
                name=f"subscription:{url}",
            )
            for url in relays
        ]
        seen: set[str] = set()
        try:
            while len(stats.finished) < len(tasks):
                item = await queue.get()
                if isinstance(item, _RelayDone):
                    stats.finished.add(item.relay)
                elif isinstance(item, _RelayEose):
                    stats.eose_seen.add(item.relay)
                elif isinstance(item, _RelayEvent):
                    stats.record(item.relay, item.event.created_at)
                    if item.event.id in seen:
                        continue
                    seen.add(item.event.id)
                    stats.received += 1
                    yield item.event
                else:
                    assert_never(item)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _worker(
        self,
        url: str,
        filter_: Filter,
        queue: asyncio.Queue[_WorkerItem],
        *,
        close_on_eose: bool,
    ) -> None:
        logger = self._logger.bind(relay=url)
        try:
            await self._consume(url, filter_, queue, close_on_eose=close_on_eose)
        except ConnectionDropped as e:
            logger.warning("relay_connection_dropped", error=str(e))
        except AuthRefused as e:
            logger.warning("subscription_refused", reason=str(e))
        except Exception as e:  # Intentionally broad: per-relay error boundary
            logger.exception("relay_worker_failed", error=str(e) or type(e).__name__)
        finally:
            queue.put_nowait(_RelayDone(url))

    async def _consume(
        self,
        url: str,
        filter_: Filter,
        queue: asyncio.Queue[_WorkerItem],
        *,
        close_on_eose: bool,
    ) -> None:
        connection = self._pool.get(url)
        attempt = self._auth.begin(url)
        logger = self._logger.bind(relay=url)
        while True:
            challenge: AuthChallenge | None = None
            subscription = connection.subscribe(
                self._subscription_id, filter_, challenge_timeout=self._challenge_timeout
            )
            try:
                async with contextlib.aclosing(subscription) as messages:
                    async for message in messages:
                        if isinstance(message, EventMessage):
                            queue.put_nowait(_RelayEvent(url, message.event))
                        elif isinstance(message, EoseMessage):
                            queue.put_nowait(_RelayEose(url))
                            if close_on_eose:
                                return
                        elif isinstance(message, ClosedMessage):
                            if message.auth_required:
                                raise AuthRefused(message.reason)
                            logger.info("subscription_closed", reason=message.reason)
                        elif isinstance(message, AuthChallenge):
                            challenge = message
                        else:
                            assert_never(message)
            except ConnectionError as e:
                raise ConnectionDropped(str(e)) from e

            if challenge is None:
                return
            state = await attempt.on_challenge(challenge, connection)
            if state != AuthState.AUTHED:
                raise AuthRefused(f"authentication {state.value}")
