"""WebSocket transport to a single Nostr relay.

[RelayConnection][relayreq.utils.transport.RelayConnection] owns one aiohttp
websocket and a reader task that parses every incoming frame and routes it:

* ``EVENT``, ``EOSE``, ``CLOSED`` and ``COUNT`` go to the queue of the
  subscription they name;
* ``AUTH`` records the latest NIP-42 challenge and wakes any waiter;
* ``OK`` resolves the pending ``AUTH``/``EVENT`` publish waiting on that id;
* ``NOTICE`` is logged.

A subscription refused with an ``auth-required:`` reason is surfaced to the
caller as an [AuthChallenge][relayreq.models.messages.AuthChallenge] carrying
the relay's latest challenge, so the auth state machine can act on it.

Failures are reported with builtin exceptions (``OSError``,
``ConnectionError``, ``TimeoutError``); the services layer maps them onto the
relayreq error taxonomy.

Note:
    TLS follows a two-phase approach: a fully verified connection is
    attempted first; only when that fails with a certificate error and
    ``allow_insecure=True`` is the connection retried with verification
    disabled.

See Also:
    [relayreq.services.pool.ConnectionPool][relayreq.services.pool.ConnectionPool]:
        Opens and owns one connection per relay.

Examples:
    ```python
    conn = await RelayConnection.open("wss://relay.damus.io", timeout=10.0)
    async with contextlib.aclosing(conn.subscribe("req", Filter(kinds=(1,), limit=5))) as msgs:
        async for message in msgs:
            ...
    await conn.close()
    ```
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import ssl
from typing import TYPE_CHECKING, Any, Final, TypeAlias

import aiohttp

from relayreq.models.messages import (
    AuthChallenge,
    AuthMessage,
    ClosedMessage,
    CountMessage,
    EoseMessage,
    EventMessage,
    NoticeMessage,
    OkMessage,
    parse_relay_message,
)


if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from relayreq.models.filter import Filter
    from relayreq.models.messages import SubscriptionMessage


DEFAULT_TIMEOUT: Final[float] = 10.0
DEFAULT_CHALLENGE_TIMEOUT: Final[float] = 3.0
DEFAULT_OK_TIMEOUT: Final[float] = 10.0

_WS_HEARTBEAT = 30.0
_WS_CLOSE_TIMEOUT = 5.0

logger = logging.getLogger("utils.transport")


class _ConnectionLost:
    """Queue sentinel pushed to every subscription when the socket ends."""


_LOST: Final = _ConnectionLost()

_QueueItem: TypeAlias = "SubscriptionMessage | CountMessage | _ConnectionLost"


def _insecure_ssl_context() -> ssl.SSLContext:
    ssl_context = ssl.create_default_context()
    ssl_context.check_hostname = False
    ssl_context.verify_mode = ssl.CERT_NONE
    return ssl_context


def _encode(payload: list[Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


class RelayConnection:
    """One live websocket connection to one relay.

    Instances are created with [open()][relayreq.utils.transport.RelayConnection.open]
    and must be released with [close()][relayreq.utils.transport.RelayConnection.close].
    """

    def __init__(
        self,
        url: str,
        session: aiohttp.ClientSession,
        ws: aiohttp.ClientWebSocketResponse,
    ) -> None:
        self._url = url
        self._session = session
        self._ws = ws
        self._queues: dict[str, asyncio.Queue[_QueueItem]] = {}
        self._pending_ok: dict[str, asyncio.Future[OkMessage]] = {}
        self._challenge: str | None = None
        self._challenge_event = asyncio.Event()
        self._lost = False
        self._reader: asyncio.Task[None] | None = None

    def __repr__(self) -> str:
        return f"RelayConnection({self._url!r})"

    @property
    def url(self) -> str:
        return self._url

    @property
    def is_connected(self) -> bool:
        return not self._lost and not self._ws.closed

    @property
    def challenge(self) -> str | None:
        """The latest NIP-42 challenge received on this connection."""
        return self._challenge

    # -- Lifecycle ------------------------------------------------------------

    @classmethod
    async def open(
        cls,
        url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,  # noqa: ASYNC109
        allow_insecure: bool = False,
    ) -> RelayConnection:
        """Connect to ``url`` and start the reader task.

        Args:
            url: Normalized ``ws://`` or ``wss://`` relay URL.
            timeout: Connection (TCP + TLS + upgrade) timeout in seconds.
            allow_insecure: Retry without certificate verification when the
                verified TLS handshake fails.

        Returns:
            A connected ``RelayConnection``.

        Raises:
            OSError: On connection failure (network, DNS, TLS, bad upgrade).
            TimeoutError: If the connection is not established in time.
        """
        try:
            return await cls._connect(url, timeout, ssl_context=None)
        except aiohttp.ClientSSLError:
            if not allow_insecure or not url.startswith("wss://"):
                raise
            logger.warning("relay_ssl_fallback url=%s", url)
            return await cls._connect(url, timeout, ssl_context=_insecure_ssl_context())

    @classmethod
    async def _connect(
        cls,
        url: str,
        timeout: float,  # noqa: ASYNC109
        ssl_context: ssl.SSLContext | None,
    ) -> RelayConnection:
        connector = aiohttp.TCPConnector(ssl=ssl_context if ssl_context is not None else True)
        session = aiohttp.ClientSession(connector=connector)
        try:
            async with asyncio.timeout(timeout):
                ws = await session.ws_connect(url, heartbeat=_WS_HEARTBEAT, autoping=True)
        except aiohttp.ClientSSLError:
            await session.close()
            logger.debug("ws_ssl_failed url=%s", url)
            raise
        except aiohttp.ClientError as e:
            await session.close()
            logger.debug("ws_connect_failed url=%s error=%s", url, str(e))
            raise OSError(f"Connection failed: {e}") from e
        except TimeoutError:
            await session.close()
            logger.debug("ws_timeout url=%s", url)
            raise TimeoutError(f"Connection timeout: {url}") from None
        except asyncio.CancelledError:
            await session.close()
            raise

        connection = cls(url, session, ws)
        connection._reader = asyncio.create_task(
            connection._read_loop(), name=f"relay-reader:{url}"
        )
        return connection

    async def close(self) -> None:
        """Stop the reader task and close the websocket and session."""
        if self._reader is not None:
            self._reader.cancel()
            await asyncio.gather(self._reader, return_exceptions=True)
            self._reader = None
        self._mark_lost()
        # close handshakes may fail on a dead socket; the session is released regardless
        with contextlib.suppress(aiohttp.ClientError, OSError, TimeoutError):
            await asyncio.wait_for(self._ws.close(), timeout=_WS_CLOSE_TIMEOUT)
        await self._session.close()

    # -- Reader ---------------------------------------------------------------

    async def _read_loop(self) -> None:
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.debug("ws_error url=%s error=%s", self._url, self._ws.exception())
                    break
        except aiohttp.ClientError as e:
            logger.debug("ws_read_failed url=%s error=%s", self._url, str(e))
        finally:
            self._mark_lost()

    def _mark_lost(self) -> None:
        if self._lost:
            return
        self._lost = True
        for queue in self._queues.values():
            queue.put_nowait(_LOST)
        for future in self._pending_ok.values():
            if not future.done():
                future.set_exception(ConnectionError(f"connection to {self._url} lost"))
        self._challenge_event.set()

    def _dispatch(self, raw: str) -> None:
        try:
            message = parse_relay_message(raw)
        except (ValueError, TypeError) as e:
            logger.debug("relay_message_invalid url=%s error=%s", self._url, str(e))
            return

        if isinstance(message, EventMessage | EoseMessage | ClosedMessage | CountMessage):
            queue = self._queues.get(message.subscription_id)
            if queue is not None:
                queue.put_nowait(message)
        elif isinstance(message, AuthMessage):
            logger.debug("relay_auth_challenge url=%s", self._url)
            self._challenge = message.challenge
            self._challenge_event.set()
        elif isinstance(message, OkMessage):
            future = self._pending_ok.get(message.event_id)
            if future is not None and not future.done():
                future.set_result(message)
        elif isinstance(message, NoticeMessage):
            logger.info("relay_notice url=%s message=%s", self._url, message.message)

    # -- Outgoing -------------------------------------------------------------

    async def _send(self, payload: list[Any]) -> None:
        if self._lost or self._ws.closed:
            raise ConnectionError(f"connection to {self._url} is closed")
        try:
            await self._ws.send_str(_encode(payload))
        except aiohttp.ClientError as e:
            raise ConnectionError(f"send to {self._url} failed: {e}") from e

    async def wait_for_challenge(self, timeout: float) -> str | None:  # noqa: ASYNC109
        """Return the latest challenge, waiting up to ``timeout`` seconds for one.

        Returns:
            The challenge token, or ``None`` if none arrived in time or the
            connection was lost.
        """
        if self._challenge is None and not self._lost:
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._challenge_event.wait(), timeout=timeout)
        return self._challenge

    async def subscribe(
        self,
        subscription_id: str,
        filter_: Filter,
        *,
        challenge_timeout: float = DEFAULT_CHALLENGE_TIMEOUT,
    ) -> AsyncIterator[SubscriptionMessage]:
        """Send ``REQ`` and yield the messages of this subscription.

        The generator yields ``EventMessage`` and ``EoseMessage`` values until
        the relay closes the subscription. A ``CLOSED`` with an
        ``auth-required:`` reason is yielded as an ``AuthChallenge`` when the
        relay provides a challenge within ``challenge_timeout``, otherwise as
        the ``ClosedMessage`` itself; either way the generator then ends.
        Closing the generator early sends ``CLOSE``.

        Raises:
            ValueError: If ``subscription_id`` is already active.
            ConnectionError: If the connection is lost.
        """
        if subscription_id in self._queues:
            raise ValueError(f"subscription {subscription_id!r} already active on {self._url}")
        queue: asyncio.Queue[_QueueItem] = asyncio.Queue()
        self._queues[subscription_id] = queue
        open_on_relay = False
        try:
            await self._send(["REQ", subscription_id, filter_.to_dict()])
            open_on_relay = True
            while True:
                item = await queue.get()
                if isinstance(item, _ConnectionLost):
                    open_on_relay = False
                    raise ConnectionError(f"connection to {self._url} lost")
                if isinstance(item, CountMessage):
                    continue
                if isinstance(item, ClosedMessage):
                    open_on_relay = False
                    if item.auth_required:
                        token = await self.wait_for_challenge(challenge_timeout)
                        if token is not None:
                            yield AuthChallenge(self._url, token)
                            return
                    yield item
                    return
                yield item
        finally:
            self._queues.pop(subscription_id, None)
            if open_on_relay and not self._lost:
                with contextlib.suppress(ConnectionError):
                    await self._send(["CLOSE", subscription_id])

    async def _send_and_wait_ok(  # noqa: ASYNC109
        self, label: str, event_json: str, timeout: float
    ) -> OkMessage:
        event = json.loads(event_json)
        event_id = event["id"]
        future: asyncio.Future[OkMessage] = asyncio.get_running_loop().create_future()
        self._pending_ok[event_id] = future
        try:
            await self._send([label, event])
            return await asyncio.wait_for(future, timeout=timeout)
        finally:
            self._pending_ok.pop(event_id, None)

    async def authenticate(  # noqa: ASYNC109
        self, event_json: str, *, timeout: float = DEFAULT_OK_TIMEOUT
    ) -> OkMessage:
        """Send a signed kind-22242 event as ``["AUTH", event]`` and wait for ``OK``.

        Raises:
            TimeoutError: If no ``OK`` arrives within ``timeout``.
            ConnectionError: If the connection is lost.
        """
        return await self._send_and_wait_ok("AUTH", event_json, timeout)

    async def publish(  # noqa: ASYNC109
        self, event_json: str, *, timeout: float = DEFAULT_OK_TIMEOUT
    ) -> OkMessage:
        """Send ``["EVENT", event]`` and wait for the relay's ``OK``."""
        return await self._send_and_wait_ok("EVENT", event_json, timeout)
