"""Live feed manager: one upstream per (venue, symbol), fanned out to listeners.

Construct exactly one `LiveFeedManager` per process (the API lifespan does
this) and hand it to whatever needs live prices. `close()` tears down every
upstream subscription and listener task.

Each listener runs as its own delivery task fed by a bounded queue. When a
slow listener's queue is full the oldest pending update is dropped, so a
listener always catches up to the freshest value and never stalls others.
"""

from __future__ import annotations

import asyncio
import collections
import contextlib
import functools
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Optional

from core.errors import MarketDataError, NotFound
from core.market_data.aggregator import PriceAggregator, blend_tickers
from core.market_data.symbols import normalize_symbol
from core.market_data.venues.base import SubscriptionHandle, VenueClient
from core.types import AggregatedTicker, Subscription, Ticker

logger = logging.getLogger(__name__)

ListenerCallback = Callable[[AggregatedTicker], Awaitable[None]]


@dataclass(eq=False)
class Listener:
    subscription: Subscription
    callback: ListenerCallback
    queue: asyncio.Queue
    task: Optional[asyncio.Task] = None
    delivered: int = 0
    failures: int = 0
    dropped: int = 0

    def offer(self, update: AggregatedTicker) -> None:
        if self.queue.full():
            with contextlib.suppress(asyncio.QueueEmpty):
                self.queue.get_nowait()
                self.dropped += 1
        self.queue.put_nowait(update)


@dataclass
class SymbolFeed:
    listeners: dict[Any, Listener] = field(default_factory=dict)
    upstreams: list[SubscriptionHandle] = field(default_factory=list)


class LiveFeedManager:
    """Own upstream push subscriptions and the per-symbol listener registry."""

    def __init__(
        self,
        venues: Mapping[str, VenueClient],
        aggregator: PriceAggregator,
        *,
        queue_size: int = 100,
    ) -> None:
        self._venues = dict(venues)
        self._aggregator = aggregator
        self._queue_size = queue_size
        self._feeds: dict[str, SymbolFeed] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: collections.Counter = collections.Counter()
        self._ids = itertools.count(1)
        self._closed = False

    @contextlib.asynccontextmanager
    async def _symbol_lock(self, symbol: str) -> AsyncIterator[None]:
        """Serialize feed changes for one symbol.

        The lock is dropped once no coroutine holds or waits on it and the
        symbol has no feed left.
        """
        lock = self._locks.get(symbol)
        if lock is None:
            lock = self._locks[symbol] = asyncio.Lock()
        self._lock_users[symbol] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[symbol] -= 1
            if self._lock_users[symbol] <= 0:
                del self._lock_users[symbol]
                if symbol not in self._feeds:
                    self._locks.pop(symbol, None)

    async def subscribe_aggregated(self, symbol: str, callback: ListenerCallback) -> Subscription:
        """Register `callback` for a symbol, opening upstreams if this is the first listener.

        Subscribing the same callback twice for a symbol is a no-op.
        """
        if self._closed:
            raise RuntimeError("live feed manager is closed")
        canonical = normalize_symbol(symbol)

        async with self._symbol_lock(canonical):
            feed = self._feeds.get(canonical)
            if feed is None:
                feed = SymbolFeed()
                self._feeds[canonical] = feed

            existing = feed.listeners.get(callback)
            if existing is not None:
                return existing.subscription

            subscription = Subscription(symbol=canonical, listener_id=next(self._ids))
            listener = Listener(
                subscription=subscription,
                callback=callback,
                queue=asyncio.Queue(maxsize=self._queue_size),
            )
            listener.task = asyncio.create_task(
                self._deliver(listener), name=f"listener:{canonical}:{subscription.listener_id}"
            )
            feed.listeners[callback] = listener

            if not feed.upstreams:
                await self._open_upstreams(canonical, feed)

        logger.info("Listener %d subscribed to %s", subscription.listener_id, canonical)
        return subscription

    async def unsubscribe_aggregated(self, symbol: str, callback: ListenerCallback) -> None:
        """Remove `callback`; the last listener leaving tears down the upstreams."""
        canonical = normalize_symbol(symbol)

        async with self._symbol_lock(canonical):
            feed = self._feeds.get(canonical)
            if feed is None:
                return
            listener = feed.listeners.pop(callback, None)
            if listener is not None:
                await self._stop_listener(listener)
                logger.info("Listener %d unsubscribed from %s", listener.subscription.listener_id, canonical)

            if not feed.listeners:
                del self._feeds[canonical]
                await self._close_upstreams(canonical, feed)

    def upstream_count(self, symbol: str) -> int:
        feed = self._feeds.get(normalize_symbol(symbol))
        return len(feed.upstreams) if feed else 0

    def listener_count(self, symbol: str) -> int:
        feed = self._feeds.get(normalize_symbol(symbol))
        return len(feed.listeners) if feed else 0

    def status(self) -> dict[str, Any]:
        return {
            "symbols": {
                symbol: {
                    "listeners": len(feed.listeners),
                    "upstreams": [
                        {"venue": h.venue, "status": h.status, "messages": h.messages, "reconnects": h.reconnects}
                        for h in feed.upstreams
                    ],
                    "dropped": sum(l.dropped for l in feed.listeners.values()),
                    "failures": sum(l.failures for l in feed.listeners.values()),
                }
                for symbol, feed in self._feeds.items()
            },
        }

    async def close(self) -> None:
        self._closed = True
        for symbol in list(self._feeds):
            async with self._symbol_lock(symbol):
                feed = self._feeds.pop(symbol, None)
                if feed is None:
                    continue
                for listener in list(feed.listeners.values()):
                    await self._stop_listener(listener)
                feed.listeners.clear()
                await self._close_upstreams(symbol, feed)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _open_upstreams(self, symbol: str, feed: SymbolFeed) -> None:
        for name, client in self._venues.items():
            try:
                handle = await client.subscribe_ticker(symbol, functools.partial(self._on_update, symbol))
            except (MarketDataError, ValueError) as e:
                logger.warning("Could not subscribe %s on %s: %s", symbol, name, e)
                continue
            feed.upstreams.append(handle)

    async def _close_upstreams(self, symbol: str, feed: SymbolFeed) -> None:
        handles, feed.upstreams = feed.upstreams, []
        for handle in handles:
            client = self._venues.get(handle.venue)
            if client is None:
                continue
            try:
                await client.unsubscribe(handle)
            except Exception:
                logger.warning("Failed to close %s upstream for %s", handle.venue, symbol, exc_info=True)

    async def _stop_listener(self, listener: Listener) -> None:
        task = listener.task
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _on_update(self, symbol: str, ticker: Ticker) -> None:
        if not self._aggregator.apply(ticker):
            return
        feed = self._feeds.get(symbol)
        if feed is None or not feed.listeners:
            return
        try:
            update = blend_tickers(symbol, list(self._aggregator.snapshots(symbol).values()))
        except NotFound:
            return
        for listener in list(feed.listeners.values()):
            listener.offer(update)

    async def _deliver(self, listener: Listener) -> None:
        while True:
            update = await listener.queue.get()
            try:
                await listener.callback(update)
                listener.delivered += 1
            except asyncio.CancelledError:
                raise
            except Exception:
                listener.failures += 1
                logger.warning(
                    "Listener %d for %s failed",
                    listener.subscription.listener_id,
                    listener.subscription.symbol,
                    exc_info=True,
                )
