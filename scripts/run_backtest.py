#!/usr/bin/env python3
"""CLI runner for EMA crossover backtests against live venue candles.

Usage:
    python scripts/run_backtest.py [--symbol BTCUSDT] [--venue binance] [--fast 12 --slow 26] [--compare]

Examples:
    python scripts/run_backtest.py --symbol ETHUSDT --interval 4h
    python scripts/run_backtest.py --min-rsi 40 --max-rsi 65 --output results.json
    python scripts/run_backtest.py --compare
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Ensure imports work when invoked as a script
_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from core.backtest import BacktestParams, BacktestReport, run_ema_backtest  # noqa: E402
from core.config import EngineConfig  # noqa: E402
from core.errors import MarketDataError  # noqa: E402
from core.market_data import get_venue_client  # noqa: E402

COMPARE_PAIRS = ((9, 21), (12, 26), (20, 50))


def export_results_json(reports: dict[str, BacktestReport], filename: str) -> None:
    output = {name: report.to_dict() for name, report in reports.items()}
    with open(filename, "w") as f:
        json.dump(output, f, indent=2)
    print(f"Results exported to {filename}")


def _print_report(report: BacktestReport) -> None:
    print(f"Trades: {len(report.trades)}")
    print(f"Sharpe Ratio: {report.sharpe_ratio:.2f}")
    print(f"Max Drawdown: {report.max_drawdown * 100:.2f}%")
    print(f"Win Rate: {report.win_rate * 100:.2f}%")
    print(f"Profit Factor: {report.profit_factor:.2f}")
    print(f"Total Return: {report.total_return:.2f}%")


async def run(args: argparse.Namespace, config: EngineConfig) -> int:
    client = get_venue_client(args.venue, timeout=config.request_timeout)
    try:
        candles = await client.fetch_candles(args.symbol, args.interval, args.limit)
    except MarketDataError as e:
        print(f"ERROR: could not load candles: {e}", file=sys.stderr)
        return 1
    finally:
        await client.close()

    print(f"Loaded {len(candles)} {args.interval} candles for {args.symbol} from {args.venue}")

    pairs = COMPARE_PAIRS if args.compare else ((args.fast, args.slow),)
    reports: dict[str, BacktestReport] = {}
    for fast, slow in pairs:
        params = BacktestParams(
            symbol=args.symbol,
            fast_period=fast,
            slow_period=slow,
            interval=args.interval,
            limit=args.limit,
            venue=args.venue,
            min_rsi=args.min_rsi,
            max_rsi=args.max_rsi,
        )
        try:
            reports[f"ema_{fast}_{slow}"] = run_ema_backtest(candles, params)
        except MarketDataError as e:
            print(f"Skipping EMA({fast}/{slow}): {e}")

    if not reports:
        return 1

    if args.compare:
        print(f"\n{'=' * 70}")
        print("STRATEGY COMPARISON")
        print(f"{'=' * 70}")
        header = f"{'Strategy':<14}{'Trades':>8}{'Sharpe':>10}{'MaxDD%':>10}{'Win%':>10}{'PF':>8}{'Return%':>10}"
        print(header)
        print("-" * len(header))
        for name, report in reports.items():
            print(
                f"{name:<14}"
                f"{len(report.trades):>8}"
                f"{report.sharpe_ratio:>10.2f}"
                f"{report.max_drawdown * 100:>10.2f}"
                f"{report.win_rate * 100:>10.2f}"
                f"{report.profit_factor:>8.2f}"
                f"{report.total_return:>10.2f}"
            )
    else:
        print(f"\n{'=' * 50}")
        print("BACKTEST RESULTS")
        print(f"{'=' * 50}")
        _print_report(next(iter(reports.values())))

    if args.output:
        export_results_json(reports, args.output)
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Run an EMA crossover backtest on venue candles")
    parser.add_argument("--symbol", default="BTCUSDT", help="Trading pair (default: BTCUSDT)")
    parser.add_argument("--venue", default="binance", help="Venue to load candles from (default: binance)")
    parser.add_argument("--interval", default="1h", help="Candle interval (default: 1h)")
    parser.add_argument("--limit", type=int, default=500, help="Number of candles (default: 500)")
    parser.add_argument("--fast", type=int, default=12, help="Fast EMA period (default: 12)")
    parser.add_argument("--slow", type=int, default=26, help="Slow EMA period (default: 26)")
    parser.add_argument("--min-rsi", type=float, default=None, help="Lower bound of the RSI entry filter")
    parser.add_argument("--max-rsi", type=float, default=None, help="Upper bound of the RSI entry filter")
    parser.add_argument("--compare", action="store_true", help="Run several EMA pairs side-by-side")
    parser.add_argument("--output", default=None, help="Write the report(s) to this JSON file")
    args = parser.parse_args()

    if args.fast >= args.slow:
        parser.error("--fast must be smaller than --slow")

    config = EngineConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    return asyncio.run(run(args, config))


if __name__ == "__main__":
    sys.exit(main())
