"""Backtesting: EMA crossover simulation and performance metrics."""

from core.backtest.engine import BacktestParams, BacktestReport, BacktestService, run_ema_backtest
from core.backtest.metrics import Trade

__all__ = ["BacktestParams", "BacktestReport", "BacktestService", "Trade", "run_ema_backtest"]
