"""Performance metrics calculations for backtesting."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence


@dataclass(frozen=True)
class Trade:
    """A closed long trade; profit is expressed in percent of the entry price."""

    entry_index: int
    exit_index: int
    entry_price: float
    exit_price: float

    @property
    def profit_pct(self) -> float:
        if self.entry_price == 0:
            return 0.0
        return (self.exit_price - self.entry_price) / self.entry_price * 100

    def to_dict(self) -> dict[str, float]:
        return {
            "entryIndex": self.entry_index,
            "exitIndex": self.exit_index,
            "entryPrice": self.entry_price,
            "exitPrice": self.exit_price,
            "profitPct": self.profit_pct,
        }


def calculate_sharpe_ratio(returns: Sequence[float], risk_free_rate: float = 0.0, periods_per_year: int = 365) -> float:
    """Calculate Sharpe ratio from returns.

    Sharpe Ratio = (Mean Return - Risk Free Rate) / Std Dev of Returns

    Args:
        returns: Sequence of per-bar returns
        risk_free_rate: Risk-free rate per bar (default 0.0)
        periods_per_year: Bars per year for annualization (default 365, daily bars)

    Returns:
        Annualized Sharpe ratio, 0.0 when undefined
    """
    if not returns or len(returns) < 2:
        return 0.0

    mean_return = sum(returns) / len(returns)
    variance = sum((r - mean_return) ** 2 for r in returns) / (len(returns) - 1)
    std_dev = math.sqrt(variance) if variance > 0 else 0.0

    if std_dev == 0:
        return 0.0

    return ((mean_return - risk_free_rate) / std_dev) * math.sqrt(periods_per_year)


def calculate_max_drawdown(equity_curve: Sequence[float], starting_peak: Optional[float] = None) -> float:
    """Calculate maximum drawdown from equity curve.

    Max Drawdown = max((peak - trough) / peak)

    Args:
        equity_curve: Sequence of equity values over time
        starting_peak: Peak to measure from before the first sample
            (defaults to the first sample)

    Returns:
        Maximum drawdown as a fraction (0.0 to 1.0)
    """
    if not equity_curve:
        return 0.0

    max_dd = 0.0
    peak = equity_curve[0] if starting_peak is None else starting_peak

    for value in equity_curve:
        if value > peak:
            peak = value
        dd = (peak - value) / peak if peak > 0 else 0.0
        if dd > max_dd:
            max_dd = dd

    return max_dd


def calculate_win_rate(trades: Sequence[Trade]) -> float:
    """Fraction of trades with a strictly positive profit (0.0 to 1.0)."""
    if not trades:
        return 0.0

    winning_trades = sum(1 for t in trades if t.profit_pct > 0)
    return winning_trades / len(trades)


def calculate_profit_factor(trades: Sequence[Trade]) -> float:
    """Calculate profit factor from trades.

    Profit Factor = gross winning percentage points / gross losing percentage points

    Trades with zero profit count as losing. When there are no losing
    percentage points the result is the number of winning trades.
    """
    winners = [t.profit_pct for t in trades if t.profit_pct > 0]
    gross_profit = sum(winners)
    gross_loss = sum(abs(t.profit_pct) for t in trades if t.profit_pct <= 0)

    if gross_loss == 0:
        return float(len(winners))

    return gross_profit / gross_loss


def bar_returns(equity_curve: Sequence[float]) -> list[float]:
    returns = []
    for i in range(1, len(equity_curve)):
        if equity_curve[i - 1] > 0:
            returns.append((equity_curve[i] - equity_curve[i - 1]) / equity_curve[i - 1])
    return returns
