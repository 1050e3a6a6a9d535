"""RSI overbought/oversold scanner."""

from __future__ import annotations

import logging
from typing import Any, Optional

from core.indicators.rsi import compute_rsi
from core.scanner.engine import Evaluator
from core.types import Ticker

logger = logging.getLogger(__name__)

RSI_PERIOD = 14
CANDLE_LIMIT = 200
OVERBOUGHT = 70.0
OVERSOLD = 30.0
REVERSAL_HIGH = 75.0
REVERSAL_LOW = 25.0

SCAN_MODES = ("OVERBOUGHT", "OVERSOLD", "BOTH")


def classify_rsi(rsi: float, mode: str = "BOTH") -> Optional[tuple[str, bool]]:
    """Return (condition, potential_reversal) when `rsi` matches `mode`, else None.

    >>> classify_rsi(80.0)
    ('OVERBOUGHT', True)
    >>> classify_rsi(50.0) is None
    True
    """
    if mode not in SCAN_MODES:
        raise ValueError(f"Unknown scan mode: {mode}. Supported: {', '.join(SCAN_MODES)}")
    if mode in ("OVERBOUGHT", "BOTH") and rsi >= OVERBOUGHT:
        return "OVERBOUGHT", rsi > REVERSAL_HIGH
    if mode in ("OVERSOLD", "BOTH") and rsi <= OVERSOLD:
        return "OVERSOLD", rsi < REVERSAL_LOW
    return None


def build_rsi_row(symbol: str, timeframe: str, rsi: float, mode: str, ticker: Ticker) -> Optional[dict[str, Any]]:
    """Row payload for a matching symbol, or None when RSI is outside the requested band."""
    match = classify_rsi(rsi, mode)
    if match is None:
        return None
    condition, reversal = match
    return {
        "symbol": symbol,
        "timeframe": timeframe,
        "rsi": round(rsi, 2),
        "condition": condition,
        "currentPrice": ticker.price,
        "changePercent24h": ticker.change_percent_24h,
        "volume24h": ticker.volume_quote_24h,
        "potentialReversal": reversal,
    }


class RsiScanner:
    """Build per-symbol RSI evaluators backed by the price aggregator."""

    def __init__(self, aggregator, *, period: int = RSI_PERIOD, candle_limit: int = CANDLE_LIMIT) -> None:
        self._aggregator = aggregator
        self.period = period
        self.candle_limit = candle_limit

    def evaluator(self, timeframe: str = "1h", mode: str = "BOTH", venue: Optional[str] = None) -> Evaluator:
        if mode not in SCAN_MODES:
            raise ValueError(f"Unknown scan mode: {mode}. Supported: {', '.join(SCAN_MODES)}")

        async def evaluate(symbol: str) -> Optional[dict[str, Any]]:
            candles = await self._aggregator.get_candles(symbol, timeframe, self.candle_limit, venue=venue)
            rsi = compute_rsi([c.close for c in candles], self.period)
            if rsi is None:
                logger.debug("Not enough candles for RSI on %s %s (%d)", symbol, timeframe, len(candles))
                return None
            if classify_rsi(rsi, mode) is None:
                return None
            ticker = await self._aggregator.get_ticker(symbol)
            return build_rsi_row(symbol, timeframe, rsi, mode, ticker)

        return evaluate
