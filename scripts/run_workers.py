#!/usr/bin/env python3
"""Run the scheduled market jobs without the HTTP API.

Usage:
    python scripts/run_workers.py [--once JOB]

Examples:
    python scripts/run_workers.py
    python scripts/run_workers.py --once universe_refresh
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path

# Ensure imports work when invoked as a script
_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from core.alerts import AlertChecker, InMemoryAlertStore, LoggingNotifier  # noqa: E402
from core.cache import create_cache_store  # noqa: E402
from core.config import EngineConfig  # noqa: E402
from core.market_data import PriceAggregator, get_venue_client  # noqa: E402
from core.ratelimit import RateLimitTracker  # noqa: E402
from core.scanner import InMemoryScreenerStore, ScanEngine, ScreenerRunner  # noqa: E402
from core.scheduler import MarketJobs, Scheduler  # noqa: E402

logger = logging.getLogger("run_workers")


async def run(config: EngineConfig, once: str | None) -> int:
    tracker = RateLimitTracker()
    clients = {name: get_venue_client(name, tracker=tracker, timeout=config.request_timeout) for name in config.venues}
    cache = create_cache_store(config.redis_url)
    aggregator = PriceAggregator(
        clients,
        default_venue=config.default_venue,
        ticker_ttl=config.ticker_cache_ttl,
        candle_ttl=config.candle_cache_ttl,
    )
    notifier = LoggingNotifier()
    scheduler = Scheduler()
    MarketJobs(
        aggregator,
        cache,
        alert_checker=AlertChecker(aggregator, InMemoryAlertStore(), notifier),
        screener_runner=ScreenerRunner(
            aggregator,
            ScanEngine(concurrency_limit=config.scan_concurrency, per_symbol_timeout=config.scan_symbol_timeout),
        ),
        screener_store=InMemoryScreenerStore(),
        config=config,
        notifier=notifier,
    ).register_all(scheduler)

    try:
        if once:
            job = await scheduler.run_now(once)
            print(json.dumps(job.to_dict(), indent=2))
            return 1 if job.last_error else 0

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        await scheduler.start()
        logger.info("Workers running. Press Ctrl+C to stop.")
        await stop.wait()
        return 0
    finally:
        await scheduler.stop()
        for client in clients.values():
            await client.close()
        await cache.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="Run scheduled market jobs.")
    parser.add_argument("--once", metavar="JOB", help="Run a single job once and exit")
    args = parser.parse_args()

    config = EngineConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        return asyncio.run(run(config, args.once))
    except KeyError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
