"""Tests for alert state machine, store and checker."""

from __future__ import annotations

import pytest

from conftest import make_candle, make_candles, make_ticker
from core.alerts import (
    Alert,
    AlertChecker,
    AlertCondition,
    AlertKind,
    AlertState,
    CompoundMode,
    CompoundRule,
    InMemoryAlertStore,
    LoggingNotifier,
    parse_compound,
)
from core.alerts.models import InvalidTransition
from core.errors import NetworkError, NotFound
from core.market_data.aggregator import PriceAggregator
from core.types import DerivativesSnapshot


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.messages: list[tuple[str, str, str | None]] = []

    async def send(self, title: str, message: str, *, recipient: str | None = None) -> bool:
        if self.fail:
            raise RuntimeError("smtp down")
        self.messages.append((title, message, recipient))
        return True


@pytest.fixture
def store() -> InMemoryAlertStore:
    return InMemoryAlertStore()


@pytest.fixture
def aggregator(fake_binance) -> PriceAggregator:
    return PriceAggregator({"binance": fake_binance})


# ========== State machine ==========


def test_trigger_moves_armed_to_triggered() -> None:
    alert = Alert(id="a1", symbol="BTCUSDT")
    alert.trigger()
    assert alert.state is AlertState.TRIGGERED
    assert alert.triggered_at is not None


def test_triggered_alert_cannot_trigger_again() -> None:
    """Only an explicit reset re-arms a triggered alert."""
    alert = Alert(id="a1", symbol="BTCUSDT")
    alert.trigger()
    with pytest.raises(InvalidTransition):
        alert.trigger()

    alert.reset()
    assert alert.state is AlertState.ARMED
    assert alert.triggered_at is None


def test_suppress_and_resume() -> None:
    alert = Alert(id="a1", symbol="BTCUSDT")
    alert.suppress()
    assert alert.state is AlertState.SUPPRESSED

    with pytest.raises(InvalidTransition):
        alert.trigger()
    with pytest.raises(InvalidTransition):
        alert.suppress()

    alert.resume()
    assert alert.state is AlertState.ARMED


def test_resume_requires_suppressed() -> None:
    with pytest.raises(InvalidTransition):
        Alert(id="a1", symbol="BTCUSDT").resume()


def test_alert_to_dict() -> None:
    data = Alert(id="a1", symbol="ETHUSDT", target=3000.0, owner="ops").to_dict()
    assert data["kind"] == "PRICE_CROSS"
    assert data["condition"] == "ABOVE"
    assert data["state"] == "ARMED"
    assert data["triggered_at"] is None


# ========== Store ==========


@pytest.mark.asyncio
async def test_store_list_filters_by_state(store) -> None:
    await store.add(Alert(id="a1", symbol="BTCUSDT"))
    suppressed = Alert(id="a2", symbol="ETHUSDT", state=AlertState.SUPPRESSED)
    await store.add(suppressed)

    assert [a.id for a in await store.list(AlertState.ARMED)] == ["a1"]
    assert len(await store.list()) == 2


@pytest.mark.asyncio
async def test_store_missing_ids_raise_not_found(store) -> None:
    with pytest.raises(NotFound):
        await store.get("missing")
    with pytest.raises(NotFound):
        await store.delete("missing")
    with pytest.raises(NotFound):
        await store.save(Alert(id="missing", symbol="BTCUSDT"))


# ========== Checker ==========


@pytest.mark.asyncio
async def test_price_alert_triggers_and_notifies_owner(fake_binance, aggregator, store) -> None:
    """A price above the target triggers the alert and notifies its owner."""
    fake_binance.tickers["BTCUSDT"] = make_ticker(price=105.0)
    await store.add(Alert(id="a1", symbol="BTCUSDT", target=100.0, owner="alice"))
    notifier = RecordingNotifier()
    checker = AlertChecker(aggregator, store, notifier)

    results = await checker.check_all()

    assert len(results) == 1
    assert results[0].triggered is True
    assert results[0].message == "BTCUSDT broke above $100.00"
    assert (await store.get("a1")).state is AlertState.TRIGGERED
    assert notifier.messages == [("BTCUSDT alert", "BTCUSDT broke above $100.00", "alice")]


@pytest.mark.asyncio
async def test_triggered_alert_is_not_checked_again(fake_binance, aggregator, store) -> None:
    fake_binance.tickers["BTCUSDT"] = make_ticker(price=105.0)
    await store.add(Alert(id="a1", symbol="BTCUSDT", target=100.0))
    notifier = RecordingNotifier()
    checker = AlertChecker(aggregator, store, notifier)

    await checker.check_all()
    assert await checker.check_all() == []
    assert len(notifier.messages) == 1


@pytest.mark.asyncio
async def test_price_alert_below_not_met(fake_binance, aggregator, store) -> None:
    fake_binance.tickers["BTCUSDT"] = make_ticker(price=105.0)
    alert = Alert(id="a1", symbol="BTCUSDT", condition=AlertCondition.BELOW, target=100.0)
    checker = AlertChecker(aggregator, store)

    result = await checker.check_alert(alert)

    assert result.triggered is False
    assert result.current_value == 105.0
    assert alert.state is AlertState.ARMED


@pytest.mark.asyncio
async def test_rsi_alert(fake_binance, aggregator, store) -> None:
    """Steadily rising closes push RSI to 100."""
    fake_binance.candles["BTCUSDT"] = make_candles([100.0 + i for i in range(50)])
    alert = Alert(id="a1", symbol="BTCUSDT", kind=AlertKind.RSI_LEVEL, target=70.0)

    result = await AlertChecker(aggregator, store).check_alert(alert)

    assert result.triggered is True
    assert result.current_value == 100.0
    assert result.message == "BTCUSDT RSI rose above 70"


@pytest.mark.asyncio
async def test_ema_cross_alert_uses_metadata_periods(fake_binance, aggregator, store) -> None:
    """The fast EMA crossing above the slow one on the last bar is a golden cross."""
    closes = [100 - 0.5 * i for i in range(15)] + [95, 98]
    fake_binance.candles["BTCUSDT"] = make_candles(closes)
    alert = Alert(
        id="a1",
        symbol="BTCUSDT",
        kind=AlertKind.EMA_CROSS,
        condition=AlertCondition.CROSS_ABOVE,
        metadata={"fastPeriod": 3, "slowPeriod": 5},
    )

    result = await AlertChecker(aggregator, store).check_alert(alert)

    assert result.triggered is True
    assert "Golden Cross" in result.message


@pytest.mark.asyncio
async def test_atr_spike_alert(fake_binance, aggregator, store) -> None:
    """A single wide bar lifts ATR well above its recent average."""
    candles = [make_candle(100.0, i, high=101.0, low=99.0) for i in range(49)]
    candles.append(make_candle(100.0, 49, high=120.0, low=80.0))
    fake_binance.candles["BTCUSDT"] = candles
    alert = Alert(id="a1", symbol="BTCUSDT", kind=AlertKind.ATR_SPIKE, target=1.5)

    result = await AlertChecker(aggregator, store).check_alert(alert)

    assert result.triggered is True
    assert "volatility spike" in result.message


@pytest.mark.asyncio
async def test_volume_surge_alert(fake_binance, aggregator, store) -> None:
    """Recent volume five times the baseline clears a 2x threshold."""
    candles = [make_candle(100.0, i, volume=1000.0) for i in range(25)]
    candles += [make_candle(100.0, 25 + i, volume=5000.0) for i in range(5)]
    fake_binance.candles["BTCUSDT"] = candles
    alert = Alert(id="a1", symbol="BTCUSDT", kind=AlertKind.VOLUME_SURGE, target=2.0)

    result = await AlertChecker(aggregator, store).check_alert(alert)

    assert result.triggered is True
    assert result.current_value == pytest.approx(5.0)


@pytest.mark.asyncio
async def test_check_all_isolates_failing_alert(fake_binance, aggregator, store) -> None:
    """One alert's upstream failure does not stop the others."""
    fake_binance.tickers["BTCUSDT"] = make_ticker(price=105.0)
    fake_binance.errors["ETHUSDT"] = NetworkError("boom", venue="binance")
    await store.add(Alert(id="bad", symbol="ETHUSDT", target=1.0))
    await store.add(Alert(id="good", symbol="BTCUSDT", target=100.0))

    results = await AlertChecker(aggregator, store, RecordingNotifier()).check_all()

    assert [r.alert_id for r in results] == ["good"]
    assert (await store.get("bad")).state is AlertState.ARMED


@pytest.mark.asyncio
async def test_notifier_failure_still_triggers(fake_binance, aggregator, store) -> None:
    fake_binance.tickers["BTCUSDT"] = make_ticker(price=105.0)
    await store.add(Alert(id="a1", symbol="BTCUSDT", target=100.0))

    await AlertChecker(aggregator, store, RecordingNotifier(fail=True)).check_all()

    assert (await store.get("a1")).state is AlertState.TRIGGERED


@pytest.mark.asyncio
async def test_logging_notifier_counts() -> None:
    notifier = LoggingNotifier()
    assert await notifier.send("title", "body") is True
    assert notifier.sent == 1


# ========== Compound alerts ==========


def compound(alert_id: str, mode: str, rules: list[dict], symbol: str = "BTCUSDT") -> Alert:
    return Alert(id=alert_id, symbol=symbol, kind=AlertKind.COMPOUND, metadata={"mode": mode, "rules": rules})


def test_parse_compound_rejects_bad_rules() -> None:
    with pytest.raises(ValueError):
        parse_compound({"mode": "AND", "rules": []})
    with pytest.raises(ValueError):
        parse_compound({"mode": "XOR", "rules": [{"type": "PRICE", "value": 1}]})
    with pytest.raises(ValueError):
        parse_compound({"rules": [{"type": "MOON", "value": 1}]})
    with pytest.raises(ValueError):
        parse_compound({"rules": [{"type": "EMA_CROSS", "condition": "ABOVE"}]})
    with pytest.raises(ValueError):
        parse_compound({"rules": [{"type": "RSI", "condition": "CROSS_ABOVE", "value": 70}]})

    mode, rules = parse_compound({"rules": [{"type": "rsi", "condition": "below", "value": 30}]})
    assert mode is CompoundMode.AND
    assert rules == [CompoundRule(type="RSI", condition=AlertCondition.BELOW, value=30.0)]


@pytest.mark.asyncio
async def test_compound_and_needs_every_rule(fake_binance, aggregator, store) -> None:
    """Price above target with RSI still under the bar does not trigger an AND alert."""
    fake_binance.tickers["BTCUSDT"] = make_ticker(price=105.0)
    fake_binance.candles["BTCUSDT"] = make_candles([100.0 + (i % 2) for i in range(50)])
    rules = [
        {"type": "PRICE", "condition": "ABOVE", "value": 100.0},
        {"type": "RSI", "condition": "ABOVE", "value": 70.0},
    ]
    alert = compound("c1", "AND", rules)

    result = await AlertChecker(aggregator, store).check_alert(alert)

    assert result.triggered is False
    assert (result.current_value, result.target_value) == (1.0, 2.0)
    assert "1/2 rules passed" in result.message


@pytest.mark.asyncio
async def test_compound_and_triggers_when_all_pass(fake_binance, aggregator, store) -> None:
    fake_binance.tickers["BTCUSDT"] = make_ticker(price=105.0)
    fake_binance.candles["BTCUSDT"] = make_candles([100.0 + i for i in range(50)])
    fake_binance.derivatives["BTCUSDT"] = DerivativesSnapshot(
        symbol="BTCUSDT",
        venue="binance",
        open_interest=1_000_000.0,
        funding_rate=0.0005,
        long_short_ratio=1.8,
        liquidation_imbalance=0.0,
        timestamp=1,
    )
    rules = [
        {"type": "PRICE", "condition": "ABOVE", "value": 100.0},
        {"type": "RSI", "condition": "ABOVE", "value": 70.0},
        {"type": "FUNDING", "condition": "ABOVE", "value": 0.04},
        {"type": "LONG_SHORT_RATIO", "condition": "ABOVE", "value": 1.5},
    ]
    await store.add(compound("c1", "AND", rules))
    notifier = RecordingNotifier()

    results = await AlertChecker(aggregator, store, notifier).check_all()

    assert results[0].triggered is True
    assert "4/4 rules passed" in results[0].message
    assert (await store.get("c1")).state is AlertState.TRIGGERED
    assert len(notifier.messages) == 1
    assert await AlertChecker(aggregator, store, notifier).check_all() == []


@pytest.mark.asyncio
async def test_compound_or_needs_one_rule(fake_binance, aggregator, store) -> None:
    """One passing leg is enough for OR; a rule can watch another symbol."""
    fake_binance.tickers["BTCUSDT"] = make_ticker(price=95.0)
    fake_binance.tickers["ETHUSDT"] = make_ticker("ETHUSDT", 2100.0)
    candles = [make_candle(100.0, i, volume=1000.0) for i in range(25)]
    candles += [make_candle(100.0, 25 + i, volume=1200.0) for i in range(5)]
    fake_binance.candles["BTCUSDT"] = candles
    rules = [
        {"type": "PRICE", "condition": "ABOVE", "value": 100.0},
        {"type": "VOLUME", "condition": "ABOVE", "value": 2.0},
        {"type": "PRICE", "condition": "ABOVE", "value": 2000.0, "symbol": "eth"},
    ]

    result = await AlertChecker(aggregator, store).check_alert(compound("c1", "OR", rules))
    assert result.triggered is True
    assert (result.current_value, result.target_value) == (1.0, 1.0)

    rules[2]["value"] = 2500.0
    result = await AlertChecker(aggregator, store).check_alert(compound("c2", "OR", rules))
    assert result.triggered is False
