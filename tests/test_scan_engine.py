"""Tests for the bounded-concurrency scan engine and the RSI scanner."""

from __future__ import annotations

import asyncio

import pytest

from conftest import make_candles, make_ticker
from core.errors import NetworkError
from core.market_data import PriceAggregator
from core.scanner import DEFAULT_UNIVERSE, RsiScanner, ScanEngine, build_rsi_row, classify_rsi, resolve_universe


async def _collect(engine: ScanEngine, universe, evaluate, **kwargs) -> list[dict]:
    return [event.to_dict() async for event in engine.sweep(universe, evaluate, **kwargs)]


def _of_type(events: list[dict], kind: str) -> list[dict]:
    return [e for e in events if e["type"] == kind]


# ========== Sweep events ==========


@pytest.mark.asyncio
async def test_sweep_emits_rows_errors_and_done() -> None:
    """Matches become rows, failures become error events and done comes last."""

    async def evaluate(symbol: str):
        if symbol == "BAD":
            raise NetworkError("venue down")
        if symbol == "HIT":
            return {"symbol": symbol}
        return None

    engine = ScanEngine(concurrency_limit=2, per_symbol_timeout=1.0)
    events = await _collect(engine, ["HIT", "MISS", "BAD"], evaluate)

    assert events[-1] == {"type": "done", "total": 3}
    assert _of_type(events, "row") == [{"type": "row", "payload": {"symbol": "HIT"}}]
    assert _of_type(events, "error") == [{"type": "error", "symbol": "BAD", "message": "venue down"}]
    progress = _of_type(events, "progress")
    assert progress[-1] == {"type": "progress", "done": 3, "total": 3}
    assert not _of_type(events, "fatal")


@pytest.mark.asyncio
async def test_sweep_reports_timeouts_and_continues() -> None:
    """A slow symbol times out without blocking the others."""

    async def evaluate(symbol: str):
        if symbol == "SLOW":
            await asyncio.sleep(5)
        return {"symbol": symbol}

    engine = ScanEngine(concurrency_limit=2, per_symbol_timeout=0.05)
    events = await _collect(engine, ["SLOW", "FAST1", "FAST2"], evaluate)

    errors = _of_type(events, "error")
    assert len(errors) == 1
    assert errors[0]["symbol"] == "SLOW"
    assert "timeout" in errors[0]["message"]
    assert {r["payload"]["symbol"] for r in _of_type(events, "row")} == {"FAST1", "FAST2"}
    assert events[-1]["type"] == "done"


@pytest.mark.asyncio
async def test_sweep_never_exceeds_concurrency_limit() -> None:
    """At most `concurrency_limit` evaluations run at once."""
    in_flight = 0
    peak = 0

    async def evaluate(symbol: str):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return None

    engine = ScanEngine(concurrency_limit=3, per_symbol_timeout=1.0)
    events = await _collect(engine, [f"S{i}" for i in range(12)], evaluate)

    assert peak == 3
    assert engine.last_stats.max_in_flight == 3
    assert events[-1] == {"type": "done", "total": 12}


@pytest.mark.asyncio
async def test_sweep_starts_symbols_in_submission_order() -> None:
    """With one worker, symbols are evaluated in the order given."""
    started: list[str] = []

    async def evaluate(symbol: str):
        started.append(symbol)
        return None

    engine = ScanEngine(concurrency_limit=1)
    await _collect(engine, ["A", "B", "C", "D"], evaluate)
    assert started == ["A", "B", "C", "D"]


@pytest.mark.asyncio
async def test_sweep_concurrency_override_per_call() -> None:
    """concurrency_limit passed to sweep overrides the engine default."""
    peak = 0
    in_flight = 0

    async def evaluate(symbol: str):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1

    engine = ScanEngine(concurrency_limit=8)
    await _collect(engine, [f"S{i}" for i in range(6)], evaluate, concurrency_limit=1)
    assert peak == 1


@pytest.mark.asyncio
async def test_empty_universe_emits_done() -> None:
    """An empty universe still completes with done."""

    async def evaluate(symbol: str):
        return None

    events = await _collect(ScanEngine(), [], evaluate)
    assert events == [{"type": "done", "total": 0}]


@pytest.mark.asyncio
async def test_sweep_fatal_when_it_cannot_start() -> None:
    """An invalid per-call concurrency limit is fatal and no done follows."""

    async def evaluate(symbol: str):
        return None

    events = await _collect(ScanEngine(), ["A"], evaluate, concurrency_limit=-1)
    assert [e["type"] for e in events] == ["fatal"]


@pytest.mark.asyncio
async def test_sweep_emits_periodic_progress() -> None:
    """Progress is emitted on the interval even while no symbol completes."""

    async def evaluate(symbol: str):
        await asyncio.sleep(0.2)
        return None

    engine = ScanEngine(concurrency_limit=1, per_symbol_timeout=1.0, progress_interval=0.05)
    events = await _collect(engine, ["A"], evaluate)
    progress = _of_type(events, "progress")
    assert len(progress) >= 3
    assert progress[0] == {"type": "progress", "done": 0, "total": 1}


@pytest.mark.asyncio
async def test_closing_consumer_cancels_workers() -> None:
    """Stopping iteration early cancels the in-flight evaluations."""
    cancelled = 0

    async def evaluate(symbol: str):
        nonlocal cancelled
        if symbol == "FIRST":
            return {"symbol": symbol}
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled += 1
            raise

    engine = ScanEngine(concurrency_limit=4, per_symbol_timeout=30.0, progress_interval=10.0)
    sweep = engine.sweep(["FIRST", "S1", "S2", "S3"], evaluate)
    async for event in sweep:
        if event.type == "row":
            break
    await sweep.aclose()
    await asyncio.sleep(0)

    assert cancelled == 3


# ========== RSI scanner ==========


def test_classify_rsi_thresholds() -> None:
    """70/30 decide the condition, 75/25 the potential reversal."""
    assert classify_rsi(70.0) == ("OVERBOUGHT", False)
    assert classify_rsi(75.0) == ("OVERBOUGHT", False)
    assert classify_rsi(75.1) == ("OVERBOUGHT", True)
    assert classify_rsi(30.0) == ("OVERSOLD", False)
    assert classify_rsi(24.9) == ("OVERSOLD", True)
    assert classify_rsi(50.0) is None
    assert classify_rsi(80.0, "OVERSOLD") is None


@pytest.mark.asyncio
async def test_rsi_scenario_one_overbought_row() -> None:
    """Two symbols, RSI 80 and 50: exactly one row, then done with total 2."""
    rsi_by_symbol = {"AAAUSDT": 80.0, "BBBUSDT": 50.0}
    ticker = make_ticker("AAAUSDT", 12.5, quote_volume=3_000_000.0, change_percent=4.2)

    async def evaluate(symbol: str):
        return build_rsi_row(symbol, "1h", rsi_by_symbol[symbol], "BOTH", ticker)

    events = await _collect(ScanEngine(concurrency_limit=2), list(rsi_by_symbol), evaluate)

    rows = _of_type(events, "row")
    assert len(rows) == 1
    assert rows[0]["payload"] == {
        "symbol": "AAAUSDT",
        "timeframe": "1h",
        "rsi": 80.0,
        "condition": "OVERBOUGHT",
        "currentPrice": 12.5,
        "changePercent24h": 4.2,
        "volume24h": 3_000_000.0,
        "potentialReversal": True,
    }
    assert events[-1] == {"type": "done", "total": 2}


@pytest.mark.asyncio
async def test_rsi_scanner_evaluator_uses_aggregator(fake_binance) -> None:
    """The evaluator pulls candles and the ticker through the aggregator."""
    fake_binance.candles["UPUSDT"] = make_candles([100.0 + i for i in range(200)], symbol="UPUSDT")
    fake_binance.candles["FLATUSDT"] = make_candles([100.0 + (i % 2) for i in range(200)], symbol="FLATUSDT")
    fake_binance.tickers["UPUSDT"] = make_ticker("UPUSDT", 299.0)
    aggregator = PriceAggregator({"binance": fake_binance})

    evaluate = RsiScanner(aggregator).evaluator("1h", "BOTH")
    row = await evaluate("UPUSDT")
    assert row["condition"] == "OVERBOUGHT"
    assert row["currentPrice"] == 299.0
    assert await evaluate("FLATUSDT") is None


# ========== Universe ==========


def test_default_universe_has_fifty_symbols() -> None:
    """The default universe holds 50 distinct USDT pairs."""
    assert len(DEFAULT_UNIVERSE) == 50
    assert len(set(DEFAULT_UNIVERSE)) == 50
    assert all(s.endswith("USDT") for s in DEFAULT_UNIVERSE)


def test_resolve_universe_caps_and_normalizes() -> None:
    """Requested symbols are normalized, deduped and capped."""
    assert resolve_universe(None, 5) == list(DEFAULT_UNIVERSE[:5])
    assert resolve_universe(["btc", "BTC/USDT", "eth-usdt"], 10) == ["BTCUSDT", "ETHUSDT"]
    assert resolve_universe(["btc", "eth", "sol"], 2) == ["BTCUSDT", "ETHUSDT"]
