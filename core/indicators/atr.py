"""
ATR (Average True Range) indicator module.

Usage:
    from core.indicators.atr import compute_atr, atr_percent

    atr_value = compute_atr(candles, period=14)
    pct = atr_percent(candles, period=14)  # ATR relative to the last close
"""

from __future__ import annotations

from typing import Sequence

from core.errors import InsufficientData
from core.indicators.ema import ema
from core.types import Candle


def true_ranges(candles: Sequence[Candle]) -> list[float]:
    """True range for every candle after the first.

    True Range = max(High - Low, |High - Previous Close|, |Low - Previous Close|)
    """
    ranges = []
    for i in range(1, len(candles)):
        high = float(candles[i].high)
        low = float(candles[i].low)
        prev_close = float(candles[i - 1].close)
        ranges.append(max(high - low, abs(high - prev_close), abs(low - prev_close)))
    return ranges


def atr_series(candles: Sequence[Candle], period: int = 14) -> list[float]:
    """ATR after every bar past the warm-up window, oldest first."""
    if period < 1:
        raise ValueError(f"period must be >= 1, got {period}")

    if len(candles) < period + 1:
        symbol = candles[0].symbol if candles else None
        raise InsufficientData(
            f"need at least {period + 1} candles for ATR({period}), got {len(candles)}",
            symbol=symbol,
        )

    return list(ema(true_ranges(candles), period))


def compute_atr(candles: Sequence[Candle], period: int = 14) -> float:
    """
    Calculate ATR (Average True Range) from candle data.

    ATR is a volatility indicator: the exponential moving average of the
    true range, seeded with the simple average of the first `period` true
    ranges (the same warm-up as EMA).

    Args:
        candles: Sequence of OHLCV candles (must have at least period+1 candles)
        period: Lookback period for ATR calculation (default: 14)

    Returns:
        ATR value

    Raises:
        ValueError: If period is invalid
        InsufficientData: If fewer than period+1 candles are given
    """
    return atr_series(candles, period)[-1]


def atr_percent(candles: Sequence[Candle], period: int = 14) -> float:
    """ATR as a percentage of the last close."""
    atr = compute_atr(candles, period)
    last_close = float(candles[-1].close)
    if last_close <= 0:
        return 0.0
    return atr / last_close * 100.0
