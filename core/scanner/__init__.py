"""Scanning: rule evaluation, the bounded-concurrency scan engine and screeners."""

from core.scanner.engine import ScanEngine, ScanEvent, SweepStats, collect_rows
from core.scanner.rsi import RsiScanner, build_rsi_row, classify_rsi
from core.scanner.rules import evaluate_rule, metric_value
from core.scanner.screener import (
    InMemoryScreenerStore,
    SavedScreener,
    ScreenerKind,
    ScreenerRunner,
    ScreenerSchedule,
    screen_candles,
)
from core.scanner.universe import DEFAULT_UNIVERSE, resolve_universe

__all__ = [
    "DEFAULT_UNIVERSE",
    "InMemoryScreenerStore",
    "RsiScanner",
    "SavedScreener",
    "ScanEngine",
    "ScanEvent",
    "ScreenerKind",
    "ScreenerRunner",
    "ScreenerSchedule",
    "SweepStats",
    "build_rsi_row",
    "classify_rsi",
    "collect_rows",
    "evaluate_rule",
    "metric_value",
    "resolve_universe",
    "screen_candles",
]
