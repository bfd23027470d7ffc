"""Paginated retrieval by narrowing ``until``.

[PaginationController][relayreq.services.pagination.PaginationController]
repeats one-shot rounds over the same relays, each round asking for events
strictly older than the oldest event seen so far. Every other filter field is
kept fixed.

Stop conditions, checked after each event or round:

* the filter ``limit`` or the global limit is reached (mid-round);
* the next ``until`` falls below the filter's ``since``;
* a round brings no new event;
* the filter carries an explicit zero limit and single-round handling of it
  is enabled.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from relayreq.core.logger import Logger

from .subscription import RoundStats


if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from relayreq.models.event import Event
    from relayreq.models.filter import Filter

    from .configs import Paginate
    from .subscription import SubscriptionEngine


@dataclass(slots=True)
class PaginationState:
    """Progress of one paginated retrieval.

    Attributes:
        current_until: ``until`` of the round in progress (None = unbounded).
        total_received: Unique events emitted across all rounds.
        oldest_by_relay: Oldest ``created_at`` received from each relay.
        rounds: Completed rounds.
        untils: ``until`` used by each round, in order.
    """

    current_until: int | None = None
    total_received: int = 0
    oldest_by_relay: dict[str, int] = field(default_factory=dict)
    rounds: int = 0
    untils: list[int | None] = field(default_factory=list)


class PaginationController:
    """Drives paginated rounds through a
    [SubscriptionEngine][relayreq.services.subscription.SubscriptionEngine].
    """

    def __init__(
        self,
        engine: SubscriptionEngine,
        delivery: Paginate,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._engine = engine
        self._delivery = delivery
        self._sleep = sleep
        self._logger = Logger("pagination")
        self.state = PaginationState()

    def _cap(self, filter_: Filter) -> int | None:
        limits = [n for n in (filter_.limit, self._delivery.global_limit) if n is not None]
        return min(limits) if limits else None

    async def paginate(self, relays: list[str], filter_: Filter) -> AsyncIterator[Event]:
        """Yield events across rounds until a stop condition holds."""
        state = self.state = PaginationState(current_until=filter_.until)
        cap = self._cap(filter_)
        seen: set[str] = set()

        while True:
            if state.rounds and self._delivery.interval > 0:
                await self._sleep(self._delivery.interval)

            stats = RoundStats()
            new_events = 0
            state.untils.append(state.current_until)
            page = filter_.with_until(state.current_until)
            rounds = self._engine.run_round(relays, page, stats=stats)
            async with contextlib.aclosing(rounds) as events:
                async for event in events:
                    if event.id in seen:
                        continue
                    seen.add(event.id)
                    new_events += 1
                    state.total_received += 1
                    yield event
                    if cap is not None and state.total_received >= cap:
                        self._logger.info("pagination_limit_reached", total=state.total_received)
                        return

            state.rounds += 1
            for relay, oldest in stats.oldest_by_relay.items():
                previous = state.oldest_by_relay.get(relay)
                state.oldest_by_relay[relay] = oldest if previous is None else min(previous, oldest)
            self._logger.info(
                "page_completed",
                round=state.rounds,
                until=state.current_until,
                received=new_events,
                total=state.total_received,
            )

            if new_events == 0:
                return
            if filter_.limit_zero and self._delivery.zero_limit_single_round:
                return

            oldest_seen = stats.min_created_at
            if oldest_seen is None:
                return
            next_until = oldest_seen - 1
            if state.current_until is not None:
                next_until = min(next_until, state.current_until - 1)
            if next_until < 0 or (filter_.since is not None and next_until < filter_.since):
                return
            state.current_until = next_until
