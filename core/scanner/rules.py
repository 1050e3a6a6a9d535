"""Evaluate a ScanRule against one symbol's candle series."""

from __future__ import annotations

from typing import Any, Optional, Sequence

from core.errors import InsufficientData
from core.indicators.atr import atr_percent
from core.indicators.ema import ema_series
from core.indicators.rsi import compute_rsi
from core.types import Candle, RuleKind, ScanResult, ScanRule

DEFAULT_RSI_PERIOD = 14
DEFAULT_OVERBOUGHT = 70.0
DEFAULT_OVERSOLD = 30.0
DEFAULT_ATR_THRESHOLD = 3.0
# Bars averaged for the volume_ratio baseline
VOLUME_BASELINE_BARS = 20

CUSTOM_METRICS = ("price", "rsi", "atr_percent", "volume_ratio")


def evaluate_rule(rule: ScanRule, candles: Sequence[Candle], symbol: Optional[str] = None) -> ScanResult:
    """Apply `rule` to `candles` (oldest first).

    Raises:
        InsufficientData: If the series is shorter than the rule's lookback
        ValueError: For an unknown custom metric or a direction the rule cannot use
    """
    symbol = symbol or (candles[-1].symbol if candles else "")
    if len(candles) < rule.lookback:
        raise InsufficientData(
            f"{rule.kind.value} needs {rule.lookback} candles, got {len(candles)}",
            symbol=symbol,
        )

    if rule.kind is RuleKind.RSI_THRESHOLD:
        return _rsi_threshold(rule, candles, symbol)
    if rule.kind is RuleKind.ATR_BREAKOUT:
        return _atr_breakout(rule, candles, symbol)
    if rule.kind is RuleKind.EMA_CROSS:
        return _ema_cross(rule, candles, symbol)
    if rule.kind is RuleKind.CUSTOM_ALERT_CONDITION:
        return _custom_condition(rule, candles, symbol)
    raise ValueError(f"Unknown rule kind: {rule.kind}")


def _rsi_threshold(rule: ScanRule, candles: Sequence[Candle], symbol: str) -> ScanResult:
    period = int(rule.param("period", DEFAULT_RSI_PERIOD))
    overbought = rule.param("overbought", DEFAULT_OVERBOUGHT)
    oversold = rule.param("oversold", DEFAULT_OVERSOLD)

    rsi = compute_rsi([c.close for c in candles], period)
    if rsi is None:
        raise InsufficientData(f"RSI({period}) needs {period + 1} closes", symbol=symbol)

    condition = None
    if rule.direction in ("ABOVE", "BOTH") and rsi >= overbought:
        condition = "OVERBOUGHT"
    elif rule.direction in ("BELOW", "BOTH") and rsi <= oversold:
        condition = "OVERSOLD"

    outputs: dict[str, Any] = {"rsi": round(rsi, 2), "condition": condition}
    evidence = f"RSI {rsi:.2f} {condition.lower()}" if condition else f"RSI {rsi:.2f}"
    return ScanResult(symbol=symbol, rule_outputs=outputs, matched=condition is not None, evidence=evidence)


def _atr_breakout(rule: ScanRule, candles: Sequence[Candle], symbol: str) -> ScanResult:
    period = int(rule.param("period", DEFAULT_RSI_PERIOD))
    threshold = rule.param("threshold", DEFAULT_ATR_THRESHOLD)
    value = atr_percent(candles, period)
    matched = value > threshold
    return ScanResult(
        symbol=symbol,
        rule_outputs={"atrPercent": round(value, 2), "threshold": threshold},
        matched=matched,
        evidence=f"ATR {value:.2f}% of price" + (f" above {threshold:g}%" if matched else ""),
    )


def _ema_cross(rule: ScanRule, candles: Sequence[Candle], symbol: str) -> ScanResult:
    fast_period = int(rule.param("fast", 20))
    slow_period = int(rule.param("slow", 50))
    closes = [c.close for c in candles]
    fast = ema_series(closes, fast_period)
    slow = ema_series(closes, slow_period)
    if None in (fast[-1], fast[-2], slow[-1], slow[-2]):
        raise InsufficientData(f"EMA({fast_period}/{slow_period}) needs more candles", symbol=symbol)

    crossed_up = fast[-2] <= slow[-2] and fast[-1] > slow[-1]
    crossed_down = fast[-2] >= slow[-2] and fast[-1] < slow[-1]
    cross = None
    if crossed_up and rule.direction in ("ABOVE", "BOTH"):
        cross = "GOLDEN"
    elif crossed_down and rule.direction in ("BELOW", "BOTH"):
        cross = "DEATH"

    outputs = {"fastEma": fast[-1], "slowEma": slow[-1], "cross": cross}
    if cross == "GOLDEN":
        evidence = f"EMA{fast_period} crossed above EMA{slow_period}"
    elif cross == "DEATH":
        evidence = f"EMA{fast_period} crossed below EMA{slow_period}"
    else:
        evidence = f"EMA{fast_period} {fast[-1]:.4f} / EMA{slow_period} {slow[-1]:.4f}"
    return ScanResult(symbol=symbol, rule_outputs=outputs, matched=cross is not None, evidence=evidence)


def _custom_condition(rule: ScanRule, candles: Sequence[Candle], symbol: str) -> ScanResult:
    metric = str(rule.params.get("metric", "price"))
    if rule.direction not in ("ABOVE", "BELOW"):
        raise ValueError(f"custom condition needs ABOVE or BELOW, got {rule.direction}")
    target = rule.param("value", 0.0)
    current = metric_value(metric, candles, int(rule.param("period", DEFAULT_RSI_PERIOD)), symbol)

    matched = current >= target if rule.direction == "ABOVE" else current <= target
    relation = ">=" if rule.direction == "ABOVE" else "<="
    return ScanResult(
        symbol=symbol,
        rule_outputs={"metric": metric, "value": current, "target": target},
        matched=matched,
        evidence=f"{metric} {current:.4f} {relation if matched else 'vs'} {target:g}",
    )


def metric_value(metric: str, candles: Sequence[Candle], period: int, symbol: str) -> float:
    """Current value of a named metric over the candle series."""
    if metric == "price":
        return candles[-1].close
    if metric == "rsi":
        rsi = compute_rsi([c.close for c in candles], period)
        if rsi is None:
            raise InsufficientData(f"RSI({period}) needs {period + 1} closes", symbol=symbol)
        return rsi
    if metric == "atr_percent":
        return atr_percent(candles, period)
    if metric == "volume_ratio":
        if len(candles) < VOLUME_BASELINE_BARS + 1:
            raise InsufficientData(
                f"volume_ratio needs {VOLUME_BASELINE_BARS + 1} candles, got {len(candles)}", symbol=symbol
            )
        baseline = [c.volume for c in candles[-VOLUME_BASELINE_BARS - 1 : -1]]
        avg = sum(baseline) / len(baseline)
        return candles[-1].volume / avg if avg else 0.0
    raise ValueError(f"Unknown metric: {metric}. Supported: {', '.join(CUSTOM_METRICS)}")
