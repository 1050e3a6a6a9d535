"""
EMA (Exponential Moving Average) indicator module.

`ema` is a generator: it yields one value per close starting at index
period-1, and like any generator it can only be consumed once. Use
`ema_series` when values must line up with candle indices.
"""

from __future__ import annotations

from typing import Iterator, Optional, Sequence


def ema(closes: Sequence[float], period: int) -> Iterator[float]:
    """
    Yield EMA values for a close series.

    The seed is the simple average of the first `period` closes, then
    EMA = (close - prev) * k + prev with k = 2 / (period + 1).

    Args:
        closes: Close prices, oldest first
        period: Smoothing period

    Yields:
        EMA for closes[period-1], closes[period], ... in order

    Raises:
        ValueError: If period is invalid
    """
    if period < 1:
        raise ValueError(f"period must be >= 1, got {period}")

    return _ema(closes, period)


def _ema(closes: Sequence[float], period: int) -> Iterator[float]:
    if len(closes) < period:
        return

    multiplier = 2.0 / (period + 1)
    value = sum(float(c) for c in closes[:period]) / period
    yield value

    for i in range(period, len(closes)):
        value = (float(closes[i]) - value) * multiplier + value
        yield value


def ema_series(closes: Sequence[float], period: int) -> list[Optional[float]]:
    """EMA aligned to the input index, None inside the warm-up window."""
    out: list[Optional[float]] = [None] * len(closes)
    for offset, value in enumerate(ema(closes, period)):
        out[period - 1 + offset] = value
    return out


def compute_ema(closes: Sequence[float], period: int) -> Optional[float]:
    """Latest EMA value, or None when fewer than `period` closes exist."""
    last = None
    for value in ema(closes, period):
        last = value
    return last
