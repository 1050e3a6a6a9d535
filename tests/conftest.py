"""Shared test fixtures for pytest.

Provides candle/ticker builders and an in-memory fake venue client used
across the aggregator, live feed, scanner and API tests.
"""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.errors import NotFound
from core.market_data.symbols import normalize_symbol
from core.market_data.venues.base import SubscriptionHandle
from core.types import Candle, DerivativesSnapshot, Ticker

BASE_TIME = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)


def make_candle(
    close: float,
    idx: int = 0,
    *,
    high: Optional[float] = None,
    low: Optional[float] = None,
    volume: float = 1000.0,
    symbol: str = "BTCUSDT",
    venue: str = "binance",
    timeframe: str = "1h",
) -> Candle:
    """Helper to create a candle with minimal required fields."""
    return Candle(
        symbol=symbol,
        venue=venue,
        timeframe=timeframe,
        open_time=BASE_TIME + timedelta(hours=idx),
        open=close,
        high=high if high is not None else close,
        low=low if low is not None else close,
        close=close,
        volume=volume,
    )


def make_candles(closes: list[float], **kwargs) -> list[Candle]:
    return [make_candle(c, i, **kwargs) for i, c in enumerate(closes)]


def make_ticker(
    symbol: str = "BTCUSDT",
    price: float = 100.0,
    *,
    venue: str = "binance",
    timestamp: int = 1_700_000_000_000,
    quote_volume: float = 5_000_000.0,
    change_percent: float = 1.5,
) -> Ticker:
    return Ticker(
        symbol=symbol,
        price=price,
        change_percent_24h=change_percent,
        volume_24h=quote_volume / price if price else 0.0,
        timestamp=timestamp,
        venue=venue,
        high_24h=price * 1.05,
        low_24h=price * 0.95,
        volume_quote_24h=quote_volume,
    )


class FakeVenue:
    """In-memory venue client. Push updates are injected with `push`."""

    def __init__(self, name: str = "binance") -> None:
        self.name = name
        self.tickers: dict[str, Ticker] = {}
        self.candles: dict[str, list[Candle]] = {}
        self.all_tickers: list[Ticker] = []
        self.derivatives: dict[str, DerivativesSnapshot] = {}
        self.errors: dict[str, Exception] = {}
        self.delay = 0.0
        self.ticker_calls = 0
        self.candle_calls = 0
        self.handles: list[SubscriptionHandle] = []
        self._callbacks: dict[SubscriptionHandle, object] = {}
        self.closed = False

    async def fetch_ticker(self, symbol: str) -> Ticker:
        self.ticker_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        canonical = normalize_symbol(symbol)
        if canonical in self.errors:
            raise self.errors[canonical]
        try:
            return self.tickers[canonical]
        except KeyError:
            raise NotFound(f"symbol {canonical} not found", venue=self.name, symbol=canonical) from None

    async def fetch_candles(self, symbol: str, interval: str = "1h", limit: int = 100) -> list[Candle]:
        self.candle_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        canonical = normalize_symbol(symbol)
        if canonical in self.errors:
            raise self.errors[canonical]
        if canonical not in self.candles:
            raise NotFound(f"no candles for {canonical}", venue=self.name, symbol=canonical)
        return self.candles[canonical][-limit:]

    async def fetch_all_tickers(self) -> list[Ticker]:
        return list(self.all_tickers)

    async def fetch_derivatives(self, symbol: str) -> DerivativesSnapshot:
        canonical = normalize_symbol(symbol)
        try:
            return self.derivatives[canonical]
        except KeyError:
            raise NotFound(f"no derivatives for {canonical}", venue=self.name, symbol=canonical) from None

    async def subscribe_ticker(self, symbol: str, on_update) -> SubscriptionHandle:
        handle = SubscriptionHandle(venue=self.name, symbol=normalize_symbol(symbol), status="connected")
        self.handles.append(handle)
        self._callbacks[handle] = on_update
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        handle.stop_event.set()
        handle.status = "closed"
        self._callbacks.pop(handle, None)

    @property
    def active_handles(self) -> list[SubscriptionHandle]:
        return [h for h in self.handles if h.status != "closed"]

    async def push(self, ticker: Ticker) -> None:
        for handle, callback in list(self._callbacks.items()):
            if handle.symbol == normalize_symbol(ticker.symbol):
                handle.messages += 1
                await callback(ticker)

    async def close(self) -> None:
        self.closed = True
        for handle in list(self._callbacks):
            await self.unsubscribe(handle)


@pytest.fixture
def fake_binance() -> FakeVenue:
    return FakeVenue("binance")


@pytest.fixture
def fake_bybit() -> FakeVenue:
    return FakeVenue("bybit")


@pytest.fixture
def venues(fake_binance: FakeVenue, fake_bybit: FakeVenue) -> dict[str, FakeVenue]:
    return {"binance": fake_binance, "bybit": fake_bybit}


@pytest.fixture
def sample_candles() -> list[Candle]:
    """60 hourly candles with a gentle uptrend and some noise."""
    closes = [100 + i * 0.5 + (1.5 if i % 3 == 0 else -1.0) for i in range(60)]
    return [make_candle(c, i, high=c + 1.0, low=c - 1.0) for i, c in enumerate(closes)]
