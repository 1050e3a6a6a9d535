"""Alert evaluation against live prices and recent candles."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from core.alerts.models import Alert, AlertCondition, AlertKind, AlertState, CompoundMode, CompoundRule, parse_compound
from core.alerts.notifier import LoggingNotifier, Notifier
from core.alerts.store import AlertStore
from core.errors import InsufficientData, MarketDataError
from core.indicators.atr import atr_series
from core.indicators.ema import ema_series
from core.indicators.rsi import compute_rsi
from core.market_data.symbols import normalize_symbol
from core.scanner.rules import evaluate_rule
from core.types import Candle, RuleKind, ScanRule

logger = logging.getLogger(__name__)

ALERT_INTERVAL = "1h"
DEFAULT_ATR_SPIKE = 1.5
DEFAULT_VOLUME_SURGE = 2.0


@dataclass(frozen=True)
class AlertCheckResult:
    alert_id: str
    symbol: str
    kind: str
    triggered: bool
    current_value: float
    target_value: float
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "alertId": self.alert_id,
            "symbol": self.symbol,
            "kind": self.kind,
            "triggered": self.triggered,
            "currentValue": self.current_value,
            "targetValue": self.target_value,
            "message": self.message,
        }


class AlertChecker:
    """Evaluate alerts, trigger the ones whose condition holds and notify their owners."""

    def __init__(self, aggregator, store: AlertStore, notifier: Optional[Notifier] = None) -> None:
        self._aggregator = aggregator
        self._store = store
        self._notifier = notifier or LoggingNotifier()

    async def check_all(self) -> list[AlertCheckResult]:
        """Check every ARMED alert. One failing alert does not stop the others."""
        results: list[AlertCheckResult] = []
        for alert in await self._store.list(AlertState.ARMED):
            try:
                result = await self.check_alert(alert)
            except MarketDataError as e:
                logger.warning("Error checking alert %s (%s): %s", alert.id, alert.symbol, e)
                continue
            except Exception:
                logger.warning("Error checking alert %s (%s)", alert.id, alert.symbol, exc_info=True)
                continue

            if result.triggered:
                await self._trigger(alert, result)
            results.append(result)
        return results

    async def check_alert(self, alert: Alert) -> AlertCheckResult:
        """Evaluate one alert without changing its state."""
        if alert.kind is AlertKind.PRICE_CROSS:
            return await self._check_price(alert)
        if alert.kind is AlertKind.RSI_LEVEL:
            return await self._check_rsi(alert)
        if alert.kind is AlertKind.EMA_CROSS:
            return await self._check_ema_cross(alert)
        if alert.kind is AlertKind.ATR_SPIKE:
            return await self._check_atr_spike(alert)
        if alert.kind is AlertKind.VOLUME_SURGE:
            return await self._check_volume_surge(alert)
        if alert.kind is AlertKind.COMPOUND:
            return await self._check_compound(alert)
        raise ValueError(f"Unknown alert kind: {alert.kind}")

    async def _trigger(self, alert: Alert, result: AlertCheckResult) -> None:
        alert.trigger()
        await self._store.save(alert)
        try:
            await self._notifier.send(f"{alert.symbol} alert", result.message, recipient=alert.owner)
        except Exception:
            logger.warning("Failed to deliver notification for alert %s", alert.id, exc_info=True)
        logger.info("Alert triggered: %s", result.message)

    def _result(self, alert: Alert, triggered: bool, current: float, target: float, message: str) -> AlertCheckResult:
        return AlertCheckResult(
            alert_id=alert.id,
            symbol=alert.symbol,
            kind=alert.kind.value,
            triggered=triggered,
            current_value=current,
            target_value=target,
            message=message,
        )

    @staticmethod
    def _crossed(condition: AlertCondition, current: float, target: float) -> bool:
        if condition is AlertCondition.ABOVE:
            return current >= target
        if condition is AlertCondition.BELOW:
            return current <= target
        return False

    async def _check_price(self, alert: Alert) -> AlertCheckResult:
        ticker = await self._aggregator.get_ticker(alert.symbol)
        price = ticker.price
        triggered = self._crossed(alert.condition, price, alert.target)
        if triggered:
            verb = "broke above" if alert.condition is AlertCondition.ABOVE else "fell below"
            message = f"{alert.symbol} {verb} ${alert.target:,.2f}"
        else:
            message = f"{alert.symbol} at ${price:,.2f}, target ${alert.target:,.2f}"
        return self._result(alert, triggered, price, alert.target, message)

    async def _check_rsi(self, alert: Alert) -> AlertCheckResult:
        candles = await self._aggregator.get_candles(alert.symbol, ALERT_INTERVAL, 50)
        rsi = compute_rsi([c.close for c in candles], 14)
        if rsi is None:
            raise InsufficientData("Insufficient data for RSI calculation", symbol=alert.symbol)

        triggered = self._crossed(alert.condition, rsi, alert.target)
        if triggered:
            verb = "rose above" if alert.condition is AlertCondition.ABOVE else "dropped below"
            message = f"{alert.symbol} RSI {verb} {alert.target:g}"
        else:
            message = f"{alert.symbol} RSI at {rsi:.2f}, target {alert.target:g}"
        return self._result(alert, triggered, rsi, alert.target, message)

    async def _check_ema_cross(self, alert: Alert) -> AlertCheckResult:
        fast_period = int(alert.metadata.get("fastPeriod") or 50)
        slow_period = int(alert.metadata.get("slowPeriod") or 200)
        candles = await self._aggregator.get_candles(alert.symbol, ALERT_INTERVAL, max(250, slow_period + 2))
        closes = [c.close for c in candles]

        fast = ema_series(closes, fast_period)
        slow = ema_series(closes, slow_period)
        if len(closes) < 2 or None in (fast[-1], fast[-2], slow[-1], slow[-2]):
            raise InsufficientData("Insufficient data for EMA calculation", symbol=alert.symbol)

        cur_fast, prev_fast, cur_slow, prev_slow = fast[-1], fast[-2], slow[-1], slow[-2]
        triggered = False
        cross = ""
        if alert.condition is AlertCondition.CROSS_ABOVE and prev_fast <= prev_slow and cur_fast > cur_slow:
            triggered, cross = True, "Golden Cross"
        elif alert.condition is AlertCondition.CROSS_BELOW and prev_fast >= prev_slow and cur_fast < cur_slow:
            triggered, cross = True, "Death Cross"

        if triggered:
            direction = "above" if alert.condition is AlertCondition.CROSS_ABOVE else "below"
            message = f"{alert.symbol} {cross}: EMA{fast_period} crossed {direction} EMA{slow_period}"
        else:
            message = f"{alert.symbol} EMA{fast_period}: {cur_fast:.2f}, EMA{slow_period}: {cur_slow:.2f}"
        return self._result(alert, triggered, cur_fast, cur_slow, message)

    async def _check_atr_spike(self, alert: Alert) -> AlertCheckResult:
        candles = await self._aggregator.get_candles(alert.symbol, ALERT_INTERVAL, 50)
        values = atr_series(candles, 14)
        if len(values) < 2:
            raise InsufficientData("Insufficient data for ATR calculation", symbol=alert.symbol)

        current = values[-1]
        recent = values[-14:]
        avg = sum(recent) / len(recent)
        multiplier = alert.target or DEFAULT_ATR_SPIKE
        triggered = current >= avg * multiplier

        last_close = candles[-1].close
        atr_pct = current / last_close * 100 if last_close else 0.0
        ratio = current / avg if avg else 0.0
        label = "volatility spike: ATR" if triggered else "ATR:"
        message = f"{alert.symbol} {label} {atr_pct:.2f}% ({ratio:.2f}x avg)"
        return self._result(alert, triggered, current, avg * multiplier, message)

    @staticmethod
    def _volume_ratio(candles: list[Candle], symbol: str) -> float:
        """Average volume of the last 5 bars over the 20 bars before them."""
        if len(candles) < 20:
            raise InsufficientData("Insufficient data for volume analysis", symbol=symbol)
        recent = [c.volume for c in candles[-5:]]
        baseline = [c.volume for c in candles[-25:-5]]
        recent_avg = sum(recent) / len(recent)
        baseline_avg = sum(baseline) / len(baseline)
        return recent_avg / baseline_avg if baseline_avg else 0.0

    async def _check_volume_surge(self, alert: Alert) -> AlertCheckResult:
        candles = await self._aggregator.get_candles(alert.symbol, ALERT_INTERVAL, 30)
        ratio = self._volume_ratio(candles, alert.symbol)

        threshold = alert.target or DEFAULT_VOLUME_SURGE
        triggered = ratio >= threshold
        label = "volume surge:" if triggered else "volume:"
        message = f"{alert.symbol} {label} {ratio:.2f}x average"
        return self._result(alert, triggered, ratio, threshold, message)

    async def _check_compound(self, alert: Alert) -> AlertCheckResult:
        """AND needs every rule to pass, OR needs one."""
        mode, rules = parse_compound(alert.metadata)
        outcomes = [await self._evaluate_compound_rule(alert.symbol, rule) for rule in rules]

        passed = sum(1 for ok, _ in outcomes if ok)
        needed = len(rules) if mode is CompoundMode.AND else 1
        triggered = passed >= needed

        legs = ", ".join(
            f"{rule.type} {value:.4g} {'ok' if ok else 'pending'}" for rule, (ok, value) in zip(rules, outcomes)
        )
        status = "triggered" if triggered else "waiting"
        message = f"{alert.symbol} {mode.value} alert {status}: {passed}/{len(rules)} rules passed ({legs})"
        return self._result(alert, triggered, float(passed), float(needed), message)

    async def _evaluate_compound_rule(self, primary: str, rule: CompoundRule) -> tuple[bool, float]:
        """Return (passed, current value) for one compound rule."""
        symbol = normalize_symbol(rule.symbol) if rule.symbol else primary

        if rule.type == "PRICE":
            ticker = await self._aggregator.get_ticker(symbol)
            return self._crossed(rule.condition, ticker.price, rule.value), ticker.price

        if rule.type in ("RSI", "ATR"):
            candles = await self._aggregator.get_candles(symbol, ALERT_INTERVAL, 50)
            scan_rule = ScanRule(
                kind=RuleKind.CUSTOM_ALERT_CONDITION,
                direction=rule.condition.value,
                params={"metric": "rsi" if rule.type == "RSI" else "atr_percent", "value": rule.value},
            )
            result = evaluate_rule(scan_rule, candles, symbol)
            return result.matched, float(result.rule_outputs["value"])

        if rule.type == "EMA_CROSS":
            candles = await self._aggregator.get_candles(symbol, ALERT_INTERVAL, 250)
            scan_rule = ScanRule(
                kind=RuleKind.EMA_CROSS,
                direction="ABOVE" if rule.condition is AlertCondition.CROSS_ABOVE else "BELOW",
                params={"fast": 50, "slow": 200},
            )
            result = evaluate_rule(scan_rule, candles, symbol)
            return result.matched, float(result.rule_outputs["fastEma"] - result.rule_outputs["slowEma"])

        if rule.type == "VOLUME":
            candles = await self._aggregator.get_candles(symbol, ALERT_INTERVAL, 30)
            ratio = self._volume_ratio(candles, symbol)
            return self._crossed(rule.condition, ratio, rule.value), ratio

        snapshot = await self._aggregator.get_derivatives(symbol)
        if rule.type == "FUNDING":
            current = snapshot.funding_rate * 100
        elif rule.type == "OI":
            current = snapshot.open_interest
        else:
            current = snapshot.long_short_ratio
        return self._crossed(rule.condition, current, rule.value), current
