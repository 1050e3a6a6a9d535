"""Saved screeners and the candle-based screener runner."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional, Protocol, Sequence

from core.errors import InsufficientData, NotFound
from core.indicators.atr import atr_percent
from core.indicators.rsi import compute_rsi
from core.market_data.symbols import normalize_symbol
from core.scanner.engine import ScanEngine, collect_rows
from core.scanner.rules import evaluate_rule
from core.types import Candle, RuleKind, ScanRule

logger = logging.getLogger(__name__)

SCREENER_INTERVAL = "1h"
SCREENER_CANDLES = 240
MIN_CANDLES = 50
DEFAULT_LIMIT = 20
BREAKOUT_WINDOW = 20

DEFAULT_SCREENER_SYMBOLS: tuple[str, ...] = (
    "BTC", "ETH", "BNB", "SOL", "XRP", "ADA", "DOGE", "DOT", "MATIC", "AVAX",
    "LINK", "UNI", "ATOM", "LTC", "ETC", "FIL", "APT", "ARB", "OP", "INJ",
)


class ScreenerKind(str, Enum):
    ATR_BREAKOUT = "ATR_BREAKOUT"
    VOLUME_SURGE = "VOLUME_SURGE"
    RSI_EXTREME = "RSI_EXTREME"
    PRICE_BREAKOUT = "PRICE_BREAKOUT"
    EMA_CROSS = "EMA_CROSS"


class ScreenerSchedule(str, Enum):
    NONE = "NONE"
    HOURLY = "HOURLY"
    DAILY = "DAILY"

    @property
    def interval(self) -> Optional[timedelta]:
        if self is ScreenerSchedule.HOURLY:
            return timedelta(minutes=60)
        if self is ScreenerSchedule.DAILY:
            return timedelta(minutes=60 * 24)
        return None


@dataclass
class SavedScreener:
    id: str
    name: str
    kind: ScreenerKind
    schedule: ScreenerSchedule = ScreenerSchedule.NONE
    limit: int = DEFAULT_LIMIT
    venue: Optional[str] = None
    min_volume: Optional[float] = None
    owner: Optional[str] = None
    last_run: Optional[datetime] = None

    def is_due(self, now: datetime) -> bool:
        """Scheduled screeners are due when never run or once their interval has elapsed."""
        interval = self.schedule.interval
        if interval is None:
            return False
        return self.last_run is None or now - self.last_run >= interval


class ScreenerStore(Protocol):
    async def list_scheduled(self) -> list[SavedScreener]: ...

    async def save(self, screener: SavedScreener) -> SavedScreener: ...


class InMemoryScreenerStore:
    def __init__(self) -> None:
        self.screeners: dict[str, SavedScreener] = {}
        self._ids = itertools.count(1)

    def new_id(self) -> str:
        return f"screener-{next(self._ids)}"

    async def add(self, screener: SavedScreener) -> SavedScreener:
        self.screeners[screener.id] = screener
        return screener

    async def list_scheduled(self) -> list[SavedScreener]:
        return [s for s in self.screeners.values() if s.schedule is not ScreenerSchedule.NONE]

    async def save(self, screener: SavedScreener) -> SavedScreener:
        if screener.id not in self.screeners:
            raise NotFound(f"Screener {screener.id} not found")
        self.screeners[screener.id] = screener
        return screener


def screen_candles(kind: ScreenerKind, candles: Sequence[Candle]) -> bool:
    """Whether a candle series (oldest first) passes the screener."""
    if kind is ScreenerKind.ATR_BREAKOUT:
        return evaluate_rule(ScanRule(RuleKind.ATR_BREAKOUT, params={"threshold": 3.0}), candles).matched
    if kind is ScreenerKind.RSI_EXTREME:
        return evaluate_rule(ScanRule(RuleKind.RSI_THRESHOLD, "BOTH"), candles).matched
    if kind is ScreenerKind.EMA_CROSS:
        return evaluate_rule(ScanRule(RuleKind.EMA_CROSS, "BOTH", {"fast": 20, "slow": 50}), candles).matched
    if kind is ScreenerKind.VOLUME_SURGE:
        baseline = [c.volume for c in candles[-BREAKOUT_WINDOW - 1 : -1]]
        avg = sum(baseline) / max(1, len(baseline))
        return avg > 0 and candles[-1].volume > avg * 2
    if kind is ScreenerKind.PRICE_BREAKOUT:
        prior = candles[-BREAKOUT_WINDOW - 1 : -1]
        if not prior:
            return False
        resistance = max(c.high for c in prior)
        support = min(c.low for c in prior)
        return candles[-1].close > resistance or candles[-1].close < support
    raise ValueError(f"Unknown screener kind: {kind}")


class ScreenerRunner:
    """Run a screener over a symbol list through the scan engine."""

    def __init__(self, aggregator, engine: Optional[ScanEngine] = None) -> None:
        self._aggregator = aggregator
        self._engine = engine or ScanEngine()

    async def run(
        self,
        kind: ScreenerKind,
        *,
        limit: int = DEFAULT_LIMIT,
        venue: Optional[str] = None,
        min_volume: Optional[float] = None,
        symbols: Optional[Sequence[str]] = None,
    ) -> list[dict[str, Any]]:
        """Matching symbols ordered by 24h volume, highest first."""
        universe = list(dict.fromkeys(normalize_symbol(s) for s in (symbols or DEFAULT_SCREENER_SYMBOLS)))
        label = venue or self._aggregator.default_venue

        async def evaluate(symbol: str) -> Optional[dict[str, Any]]:
            candles = await self._aggregator.get_candles(symbol, SCREENER_INTERVAL, SCREENER_CANDLES, venue=venue)
            if len(candles) < MIN_CANDLES:
                return None
            volume_24h = sum(c.volume for c in candles[-24:])
            if min_volume and volume_24h < min_volume:
                return None
            try:
                if not screen_candles(kind, candles):
                    return None
            except InsufficientData:
                return None
            return _result_row(symbol, label, candles, volume_24h)

        rows = await collect_rows(self._engine.sweep(universe, evaluate))
        rows.sort(key=lambda r: r["volume24h"], reverse=True)
        logger.info("Screener %s matched %d of %d symbols", kind.value, len(rows), len(universe))
        return rows[:limit]

    async def run_saved(
        self, screener: SavedScreener, store: ScreenerStore, now: Optional[datetime] = None
    ) -> tuple[list[dict[str, Any]], SavedScreener]:
        """Run a saved screener and stamp its last run."""
        rows = await self.run(screener.kind, limit=screener.limit, venue=screener.venue, min_volume=screener.min_volume)
        updated = replace(screener, last_run=now or datetime.now(timezone.utc))
        return rows, await store.save(updated)


def _result_row(symbol: str, venue: str, candles: Sequence[Candle], volume_24h: float) -> dict[str, Any]:
    latest = candles[-1]
    reference = candles[max(0, len(candles) - 25)]
    change = (latest.close - reference.close) / reference.close * 100 if reference.close else 0.0
    rsi = compute_rsi([c.close for c in candles], 14)
    try:
        atr = atr_percent(candles, 14)
    except InsufficientData:
        atr = None
    return {
        "symbol": symbol,
        "exchange": venue,
        "price": latest.close,
        "priceChange24h": change,
        "volume24h": volume_24h,
        "rsi": rsi,
        "atr": atr,
    }
