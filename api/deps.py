"""Request dependencies resolving components from the application state."""

from __future__ import annotations

from fastapi import Request

from core.alerts import AlertChecker, InMemoryAlertStore
from core.backtest import BacktestService
from core.cache import CacheStore
from core.config import EngineConfig
from core.market_data import LiveFeedManager, PriceAggregator
from core.ratelimit import RateLimitTracker
from core.scanner import RsiScanner, ScanEngine
from core.scheduler import Scheduler


def get_config(request: Request) -> EngineConfig:
    return request.app.state.config


def get_aggregator(request: Request) -> PriceAggregator:
    return request.app.state.aggregator


def get_live_feed(request: Request) -> LiveFeedManager:
    return request.app.state.live_feed


def get_scan_engine(request: Request) -> ScanEngine:
    return request.app.state.scan_engine


def get_rsi_scanner(request: Request) -> RsiScanner:
    return request.app.state.rsi_scanner


def get_backtest_service(request: Request) -> BacktestService:
    return request.app.state.backtest


def get_alert_store(request: Request) -> InMemoryAlertStore:
    return request.app.state.alert_store


def get_alert_checker(request: Request) -> AlertChecker:
    return request.app.state.alert_checker


def get_tracker(request: Request) -> RateLimitTracker:
    return request.app.state.tracker


def get_cache(request: Request) -> CacheStore:
    return request.app.state.cache


def get_scheduler(request: Request) -> Scheduler:
    return request.app.state.scheduler
