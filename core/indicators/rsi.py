"""
RSI (Relative Strength Index) indicator module.

Usage:
    from core.indicators.rsi import compute_rsi, rsi_series

    # Latest RSI value (None inside the warm-up window)
    rsi_value = compute_rsi(closes, period=14)

    # RSI aligned to each close, for filters that look at the prior bar
    values = rsi_series(closes, period=14)
"""

from __future__ import annotations

from typing import Optional, Sequence


def _changes(closes: Sequence[float]) -> tuple[list[float], list[float]]:
    gains = []
    losses = []
    for i in range(1, len(closes)):
        change = float(closes[i]) - float(closes[i - 1])
        if change > 0:
            gains.append(change)
            losses.append(0.0)
        else:
            gains.append(0.0)
            losses.append(-change)
    return gains, losses


def _to_rsi(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def compute_rsi(closes: Sequence[float], period: int = 14) -> Optional[float]:
    """
    Calculate RSI (Relative Strength Index) from a close series.

    RSI is a momentum oscillator that measures the speed and magnitude of
    price changes. It ranges from 0 to 100.

    Formula:
        RSI = 100 - (100 / (1 + RS))
        where RS = Average Gain / Average Loss over period

    The first averages are simple means over the first `period` deltas, later
    ones use Wilder's smoothing: avg = (avg * (period - 1) + value) / period.

    Args:
        closes: Close prices, oldest first
        period: Lookback period for RSI calculation (default: 14)

    Returns:
        RSI value (0-100), 100.0 when there are no losses at all,
        or None when fewer than period+1 closes are available

    Raises:
        ValueError: If period is invalid
    """
    if period < 1:
        raise ValueError(f"period must be >= 1, got {period}")

    if len(closes) < period + 1:
        return None

    gains, losses = _changes(closes)

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period

    for i in range(period, len(gains)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period

    return _to_rsi(avg_gain, avg_loss)


def rsi_series(closes: Sequence[float], period: int = 14) -> list[Optional[float]]:
    """
    RSI aligned to the input index.

    Entry i holds the RSI computed over closes[0..i]; entries before index
    `period` are None.
    """
    if period < 1:
        raise ValueError(f"period must be >= 1, got {period}")

    out: list[Optional[float]] = [None] * len(closes)
    if len(closes) < period + 1:
        return out

    gains, losses = _changes(closes)
    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    out[period] = _to_rsi(avg_gain, avg_loss)

    for i in range(period, len(gains)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        # gains[i] is the delta ending at close i+1
        out[i + 1] = _to_rsi(avg_gain, avg_loss)

    return out
