from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Mapping, Optional

Timeframe = Literal["1m", "5m", "15m", "1h", "4h", "1d"]
VenueName = Literal["binance", "bybit", "okx"]
ScanMode = Literal["OVERBOUGHT", "OVERSOLD", "BOTH"]
RsiCondition = Literal["OVERBOUGHT", "OVERSOLD"]
Direction = Literal["ABOVE", "BELOW", "BOTH"]

TIMEFRAMES: tuple[str, ...] = ("1m", "5m", "15m", "1h", "4h", "1d")


@dataclass(frozen=True)
class Ticker:
    """Latest price/volume snapshot for one symbol on one venue.

    `timestamp` is epoch milliseconds as reported by the venue.
    """

    symbol: str
    price: float
    change_percent_24h: float
    volume_24h: float
    timestamp: int
    venue: str
    change_24h: float = 0.0
    high_24h: float = 0.0
    low_24h: float = 0.0
    volume_quote_24h: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "change24h": self.change_24h,
            "changePercent24h": self.change_percent_24h,
            "high24h": self.high_24h,
            "low24h": self.low_24h,
            "volume24h": self.volume_24h,
            "volumeQuote24h": self.volume_quote_24h,
            "timestamp": self.timestamp,
            "venue": self.venue,
        }


@dataclass(frozen=True)
class AggregatedTicker:
    """Quote-volume weighted blend of per-venue tickers."""

    symbol: str
    price: float
    change_percent_24h: float
    volume_24h: float
    volume_quote_24h: float
    high_24h: float
    low_24h: float
    timestamp: int
    sources: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "changePercent24h": self.change_percent_24h,
            "volume24h": self.volume_24h,
            "volumeQuote24h": self.volume_quote_24h,
            "high24h": self.high_24h,
            "low24h": self.low_24h,
            "timestamp": self.timestamp,
            "sources": self.sources,
        }


@dataclass(frozen=True)
class Candle:
    symbol: str
    venue: str
    timeframe: str
    open_time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class DerivativesSnapshot:
    symbol: str
    venue: str
    open_interest: float
    funding_rate: float
    long_short_ratio: float
    liquidation_imbalance: float
    timestamp: int
    cumulative_volume_delta: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "venue": self.venue,
            "openInterest": self.open_interest,
            "fundingRate": self.funding_rate,
            "longShortRatio": self.long_short_ratio,
            "liquidationImbalance": self.liquidation_imbalance,
            "cumulativeVolumeDelta": self.cumulative_volume_delta,
            "timestamp": self.timestamp,
        }


class RuleKind(str, Enum):
    RSI_THRESHOLD = "RSI_THRESHOLD"
    ATR_BREAKOUT = "ATR_BREAKOUT"
    EMA_CROSS = "EMA_CROSS"
    CUSTOM_ALERT_CONDITION = "CUSTOM_ALERT_CONDITION"


@dataclass(frozen=True)
class ScanRule:
    """A screener/alert rule applied to one symbol's candle series.

    `params` carries the variant-specific thresholds, e.g. ``period``,
    ``overbought``/``oversold`` for RSI, ``threshold`` for ATR breakouts,
    ``fast``/``slow`` for EMA crosses and ``metric``/``value`` for custom
    conditions.
    """

    kind: RuleKind
    direction: Direction = "BOTH"
    params: Mapping[str, float | str] = field(default_factory=dict)

    def param(self, name: str, default: float) -> float:
        value = self.params.get(name, default)
        return float(value)

    @property
    def lookback(self) -> int:
        """Minimum number of candles needed to evaluate this rule."""
        if self.kind is RuleKind.EMA_CROSS:
            return int(self.param("slow", 50)) + 1
        return int(self.param("period", 14)) + 1


@dataclass(frozen=True)
class ScanResult:
    symbol: str
    rule_outputs: Mapping[str, Any]
    matched: bool
    evidence: str = ""


@dataclass(frozen=True)
class Subscription:
    symbol: str
    listener_id: int


@dataclass
class Job:
    """Scheduled job state owned by the scheduler.

    Mutable on purpose: updated in place after each run.
    """

    kind: str
    interval_seconds: float
    last_run: Optional[datetime] = None
    next_due_at: Optional[datetime] = None
    running: bool = False
    runs: int = 0
    failures: int = 0
    skipped: int = 0
    last_error: Optional[str] = None
    last_result: Optional[Mapping[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "interval_seconds": self.interval_seconds,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "next_due_at": self.next_due_at.isoformat() if self.next_due_at else None,
            "running": self.running,
            "runs": self.runs,
            "failures": self.failures,
            "skipped": self.skipped,
            "last_error": self.last_error,
            "last_result": dict(self.last_result) if self.last_result else None,
        }
