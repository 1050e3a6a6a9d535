"""Tests for the live feed manager: upstream sharing, fanout and teardown."""

from __future__ import annotations

import asyncio

import pytest

from conftest import make_ticker
from core.market_data import LiveFeedManager, PriceAggregator


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def manager(venues):
    aggregator = PriceAggregator(venues)
    return LiveFeedManager(venues, aggregator, queue_size=3)


# ========== Subscription lifecycle ==========


@pytest.mark.asyncio
async def test_one_upstream_per_venue_for_many_listeners(manager, fake_binance, fake_bybit) -> None:
    """Two listeners on one symbol share a single upstream per venue."""

    async def first(update):
        pass

    async def second(update):
        pass

    await manager.subscribe_aggregated("BTCUSDT", first)
    await manager.subscribe_aggregated("btc", second)

    assert manager.listener_count("BTCUSDT") == 2
    assert manager.upstream_count("BTCUSDT") == 2
    assert len(fake_binance.handles) == 1
    assert len(fake_bybit.handles) == 1
    await manager.close()


@pytest.mark.asyncio
async def test_subscribe_same_callback_is_idempotent(manager, fake_binance) -> None:
    """Subscribing the same callback twice keeps one listener."""

    async def callback(update):
        pass

    first = await manager.subscribe_aggregated("BTCUSDT", callback)
    second = await manager.subscribe_aggregated("BTCUSDT", callback)
    assert first == second
    assert manager.listener_count("BTCUSDT") == 1
    await manager.close()


@pytest.mark.asyncio
async def test_last_listener_leaving_tears_down_upstreams(manager, fake_binance, fake_bybit) -> None:
    """Upstreams stay while any listener remains and close with the last one."""

    async def first(update):
        pass

    async def second(update):
        pass

    await manager.subscribe_aggregated("BTCUSDT", first)
    await manager.subscribe_aggregated("BTCUSDT", second)

    await manager.unsubscribe_aggregated("BTCUSDT", first)
    assert manager.upstream_count("BTCUSDT") == 2
    assert fake_binance.active_handles

    await manager.unsubscribe_aggregated("BTCUSDT", second)
    assert manager.upstream_count("BTCUSDT") == 0
    assert manager.listener_count("BTCUSDT") == 0
    assert not fake_binance.active_handles
    assert not fake_bybit.active_handles


@pytest.mark.asyncio
async def test_resubscribe_after_teardown_opens_new_upstream(manager, fake_binance) -> None:
    """A new first listener after teardown opens a fresh upstream."""

    async def callback(update):
        pass

    await manager.subscribe_aggregated("ETHUSDT", callback)
    await manager.unsubscribe_aggregated("ETHUSDT", callback)
    await manager.subscribe_aggregated("ETHUSDT", callback)
    assert len(fake_binance.handles) == 2
    assert len(fake_binance.active_handles) == 1
    await manager.close()


@pytest.mark.asyncio
async def test_unsubscribe_unknown_symbol_is_noop(manager) -> None:
    async def callback(update):
        pass

    await manager.unsubscribe_aggregated("NOPEUSDT", callback)
    assert manager._locks == {}


@pytest.mark.asyncio
async def test_symbol_locks_released_after_teardown(manager) -> None:
    """Per-symbol locks do not outlive the symbol's feed."""

    async def callback(update):
        pass

    for symbol in ("BTCUSDT", "ETHUSDT", "SOLUSDT"):
        await manager.subscribe_aggregated(symbol, callback)
    assert set(manager._locks) == {"BTCUSDT", "ETHUSDT", "SOLUSDT"}

    await manager.unsubscribe_aggregated("ETHUSDT", callback)
    assert set(manager._locks) == {"BTCUSDT", "SOLUSDT"}

    await manager.close()
    assert manager._locks == {}
    assert not manager._lock_users


# ========== Fanout ==========


@pytest.mark.asyncio
async def test_updates_reach_every_listener(manager, fake_binance) -> None:
    """A venue push is blended and delivered to each listener."""
    received_a: list = []
    received_b: list = []

    async def listener_a(update):
        received_a.append(update)

    async def listener_b(update):
        received_b.append(update)

    await manager.subscribe_aggregated("BTCUSDT", listener_a)
    await manager.subscribe_aggregated("BTCUSDT", listener_b)

    await fake_binance.push(make_ticker(price=101.0, timestamp=10))
    await _settle()

    assert [u.price for u in received_a] == [101.0]
    assert [u.price for u in received_b] == [101.0]
    await manager.close()


@pytest.mark.asyncio
async def test_updates_are_written_to_aggregator(venues, fake_binance) -> None:
    """Push updates land in the aggregator, and out-of-order ones are dropped."""
    aggregator = PriceAggregator(venues)
    manager = LiveFeedManager(venues, aggregator)
    received: list = []

    async def callback(update):
        received.append(update.price)

    await manager.subscribe_aggregated("BTCUSDT", callback)
    await fake_binance.push(make_ticker(price=105.0, timestamp=20))
    await fake_binance.push(make_ticker(price=99.0, timestamp=10))
    await _settle()

    assert aggregator.latest("BTCUSDT").price == 105.0
    assert received == [105.0]
    await manager.close()


@pytest.mark.asyncio
async def test_failing_listener_does_not_affect_others(manager, fake_binance) -> None:
    """A callback raising is counted for that listener only."""
    received: list = []

    async def broken(update):
        raise RuntimeError("boom")

    async def healthy(update):
        received.append(update.price)

    await manager.subscribe_aggregated("BTCUSDT", broken)
    await manager.subscribe_aggregated("BTCUSDT", healthy)
    await fake_binance.push(make_ticker(price=1.0, timestamp=1))
    await fake_binance.push(make_ticker(price=2.0, timestamp=2))
    await _settle()

    assert received == [1.0, 2.0]
    assert manager.status()["symbols"]["BTCUSDT"]["failures"] == 2
    await manager.close()


@pytest.mark.asyncio
async def test_slow_listener_keeps_freshest_updates(manager, fake_binance) -> None:
    """A stalled listener's queue drops the oldest updates."""
    gate = asyncio.Event()
    received: list = []

    async def slow(update):
        await gate.wait()
        received.append(update.price)

    await manager.subscribe_aggregated("BTCUSDT", slow)
    for i in range(1, 8):
        await fake_binance.push(make_ticker(price=float(i), timestamp=i))
        await asyncio.sleep(0)

    gate.set()
    await _settle()

    # The first update was taken before the stall; the queue kept the newest three
    assert received[0] == 1.0
    assert received[-3:] == [5.0, 6.0, 7.0]
    assert manager.status()["symbols"]["BTCUSDT"]["dropped"] > 0
    await manager.close()


@pytest.mark.asyncio
async def test_close_tears_down_everything(manager, fake_binance) -> None:
    async def callback(update):
        pass

    await manager.subscribe_aggregated("BTCUSDT", callback)
    await manager.subscribe_aggregated("ETHUSDT", callback)
    await manager.close()

    assert not fake_binance.active_handles
    assert manager.status() == {"symbols": {}}
    with pytest.raises(RuntimeError):
        await manager.subscribe_aggregated("BTCUSDT", callback)
