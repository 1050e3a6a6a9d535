"""FastAPI application for live prices, scans, backtests and alerts.

Endpoints:
- GET /realtime/{symbol} - Server-Sent Events stream of the aggregated ticker
- POST /scan/rsi - Streaming (NDJSON) RSI scan over a symbol universe
- GET /market/ticker/{symbol}, /market/tickers, /market/movers - Pull-path tickers
- POST /backtest/ema - EMA crossover backtest
- /alerts - Alert management
- GET /system/health, /system/jobs, /ratelimit/* - Operational status

Every component is built in the application lifespan and kept on
`app.state`; nothing is a module-level singleton.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Mapping, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from api.routes import alerts, backtest, health, jobs, market, ratelimit, realtime, scan
from core.alerts import AlertChecker, InMemoryAlertStore, LoggingNotifier
from core.backtest import BacktestService
from core.cache import CacheStore, create_cache_store
from core.config import EngineConfig
from core.errors import InsufficientData, MarketDataError, NotFound
from core.market_data import LiveFeedManager, PriceAggregator, VenueClient, get_venue_client
from core.ratelimit import RateLimitTracker
from core.scanner import InMemoryScreenerStore, RsiScanner, ScanEngine, ScreenerRunner
from core.scheduler import MarketJobs, Scheduler

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[EngineConfig] = None,
    *,
    venues: Optional[Mapping[str, VenueClient]] = None,
    cache: Optional[CacheStore] = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """Build the API. `venues` and `cache` replace the configured ones when given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = config or EngineConfig.from_env()
        tracker = RateLimitTracker()
        clients = dict(venues) if venues is not None else {
            name: get_venue_client(name, tracker=tracker, timeout=cfg.request_timeout) for name in cfg.venues
        }
        store = cache or create_cache_store(cfg.redis_url)

        aggregator = PriceAggregator(
            clients,
            default_venue=cfg.default_venue if cfg.default_venue in clients else None,
            ticker_ttl=cfg.ticker_cache_ttl,
            candle_ttl=cfg.candle_cache_ttl,
        )
        live_feed = LiveFeedManager(clients, aggregator, queue_size=cfg.listener_queue_size)
        scan_engine = ScanEngine(
            concurrency_limit=cfg.scan_concurrency,
            per_symbol_timeout=cfg.scan_symbol_timeout,
            progress_interval=cfg.scan_progress_interval,
        )
        notifier = LoggingNotifier()
        alert_store = InMemoryAlertStore()
        alert_checker = AlertChecker(aggregator, alert_store, notifier)
        screener_store = InMemoryScreenerStore()
        scheduler = Scheduler()
        MarketJobs(
            aggregator,
            store,
            alert_checker=alert_checker,
            screener_runner=ScreenerRunner(aggregator, scan_engine),
            screener_store=screener_store,
            config=cfg,
            notifier=notifier,
        ).register_all(scheduler)

        app.state.config = cfg
        app.state.started_at = time.time()
        app.state.tracker = tracker
        app.state.venues = clients
        app.state.cache = store
        app.state.aggregator = aggregator
        app.state.live_feed = live_feed
        app.state.scan_engine = scan_engine
        app.state.rsi_scanner = RsiScanner(aggregator)
        app.state.backtest = BacktestService(aggregator)
        app.state.alert_store = alert_store
        app.state.alert_checker = alert_checker
        app.state.screener_store = screener_store
        app.state.scheduler = scheduler

        if start_scheduler:
            await scheduler.start()
        logger.info("API started with venues: %s", ", ".join(clients))
        try:
            yield
        finally:
            await scheduler.stop()
            await live_feed.close()
            for client in clients.values():
                await client.close()
            await store.close()
            logger.info("API stopped")

    app = FastAPI(
        title="Market Signal API",
        description="Aggregated market data, live streams, scans, backtests and alerts",
        version="1.0.0",
        lifespan=lifespan,
    )

    for module in (realtime, scan, market, backtest, alerts, health, ratelimit, jobs):
        app.include_router(module.router)

    @app.exception_handler(NotFound)
    async def not_found_handler(_request, exc: NotFound):
        return JSONResponse(status_code=404, content={"error": "not_found", "message": str(exc)})

    @app.exception_handler(InsufficientData)
    async def insufficient_data_handler(_request, exc: InsufficientData):
        return JSONResponse(status_code=422, content={"error": "insufficient_data", "message": str(exc)})

    @app.exception_handler(MarketDataError)
    async def market_data_error_handler(_request, exc: MarketDataError):
        logger.warning("Upstream market data error: %s", exc)
        return JSONResponse(
            status_code=502,
            content={"error": "upstream_error", "message": str(exc), "venue": exc.venue},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(_request, exc):
        """Global exception handler to ensure consistent error responses."""
        logger.error("Unhandled error: %s", exc, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            },
        )

    return app


app = create_app()
