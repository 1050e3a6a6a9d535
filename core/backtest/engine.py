"""EMA-crossover backtest with an optional RSI band filter."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from core.backtest.metrics import (
    Trade,
    bar_returns,
    calculate_max_drawdown,
    calculate_profit_factor,
    calculate_sharpe_ratio,
    calculate_win_rate,
)
from core.errors import InsufficientData
from core.indicators.ema import ema_series
from core.indicators.rsi import rsi_series
from core.types import Candle

logger = logging.getLogger(__name__)

STARTING_EQUITY = 100.0
RSI_PERIOD = 14
# Bars required beyond the slow EMA warm-up
MIN_EXTRA_BARS = 5


@dataclass(frozen=True)
class BacktestParams:
    symbol: str
    fast_period: int = 12
    slow_period: int = 26
    interval: str = "1h"
    limit: int = 500
    venue: Optional[str] = None
    min_rsi: Optional[float] = None
    max_rsi: Optional[float] = None

    def __post_init__(self) -> None:
        if self.fast_period < 1 or self.slow_period < 1:
            raise ValueError("EMA periods must be >= 1")

    @property
    def rsi_filter_enabled(self) -> bool:
        return self.min_rsi is not None or self.max_rsi is not None


@dataclass
class BacktestReport:
    """Results from a backtest run. Returns are in percentage points of the starting equity."""

    win_rate: float
    max_drawdown: float
    profit_factor: float
    total_return: float
    sharpe_ratio: float
    trades: list[Trade] = field(default_factory=list)
    equity_curve: list[float] = field(default_factory=list)
    signals: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "winRate": self.win_rate,
            "maxDrawdown": self.max_drawdown,
            "profitFactor": self.profit_factor,
            "totalReturn": self.total_return,
            "sharpeRatio": self.sharpe_ratio,
            "trades": [t.to_dict() for t in self.trades],
            "equityCurve": self.equity_curve,
            "signals": self.signals,
        }


def run_ema_backtest(candles: Sequence[Candle], params: BacktestParams) -> BacktestReport:
    """Walk the series once, going long on an upward EMA cross and flat on a downward one.

    Entry: the fast EMA was at or below the slow EMA on the prior bar and is
    above it now. With an RSI filter configured, entry also needs RSI(14)
    within [min_rsi, max_rsi] and not lower than on the prior bar.
    Exit: the fast EMA was at or above the slow EMA on the prior bar and is
    below it now. Equity starts at 100 and compounds per closed trade; an
    open position at the end of the series is not counted.

    Raises:
        InsufficientData: If there are fewer than slow_period + 5 candles
    """
    closes = [float(c.close) for c in candles]
    required = params.slow_period + MIN_EXTRA_BARS
    if len(closes) < required:
        raise InsufficientData(
            f"need at least {required} candles for EMA({params.fast_period}/{params.slow_period}) backtest, "
            f"got {len(closes)}",
            symbol=params.symbol,
        )

    fast = ema_series(closes, params.fast_period)
    slow = ema_series(closes, params.slow_period)
    rsi = rsi_series(closes, RSI_PERIOD)

    rsi_min = params.min_rsi if params.min_rsi is not None else 0.0
    rsi_max = params.max_rsi if params.max_rsi is not None else 100.0

    trades: list[Trade] = []
    equity_curve: list[float] = []
    equity = STARTING_EQUITY
    entry: Optional[tuple[int, float]] = None

    for i in range(1, len(closes)):
        cur_fast, cur_slow = fast[i], slow[i]
        prev_fast, prev_slow = fast[i - 1], slow[i - 1]

        if cur_fast is None or cur_slow is None or prev_fast is None or prev_slow is None:
            equity_curve.append(equity)
            continue

        if entry is None and prev_fast <= prev_slow and cur_fast > cur_slow:
            if not params.rsi_filter_enabled or _rsi_allows(rsi[i], rsi[i - 1], rsi_min, rsi_max):
                entry = (i, closes[i])

        if entry is not None and prev_fast >= prev_slow and cur_fast < cur_slow:
            trade = Trade(entry_index=entry[0], exit_index=i, entry_price=entry[1], exit_price=closes[i])
            trades.append(trade)
            equity *= 1 + trade.profit_pct / 100
            entry = None

        equity_curve.append(equity)

    return BacktestReport(
        win_rate=calculate_win_rate(trades),
        max_drawdown=calculate_max_drawdown(equity_curve, starting_peak=STARTING_EQUITY),
        profit_factor=calculate_profit_factor(trades),
        total_return=equity - STARTING_EQUITY,
        sharpe_ratio=calculate_sharpe_ratio(bar_returns(equity_curve)),
        trades=trades,
        equity_curve=equity_curve,
        signals=[t.entry_index for t in trades],
    )


def _rsi_allows(rsi: Optional[float], prev_rsi: Optional[float], rsi_min: float, rsi_max: float) -> bool:
    if rsi is None or not rsi_min <= rsi <= rsi_max:
        return False
    return prev_rsi is None or rsi >= prev_rsi


class BacktestService:
    """Run backtests on candles pulled through the price aggregator."""

    def __init__(self, aggregator) -> None:
        self._aggregator = aggregator

    async def run(self, params: BacktestParams) -> BacktestReport:
        candles = await self._aggregator.get_candles(
            params.symbol, params.interval, params.limit, venue=params.venue
        )
        report = run_ema_backtest(candles, params)
        logger.info(
            "Backtest %s EMA(%d/%d) %s: %d trades, return %.2f%%",
            params.symbol,
            params.fast_period,
            params.slow_period,
            params.interval,
            len(report.trades),
            report.total_return,
        )
        return report
