"""Engine configuration.

All tunables consumed by the engine live here. Values come from the
environment (see `EngineConfig.from_env`); engine modules receive an
`EngineConfig` instance and never read the environment themselves.

`redis_url` may contain credentials. Do not log it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

DEFAULT_VENUES: tuple[str, ...] = ("binance", "bybit", "okx")


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True)
class EngineConfig:
    """Runtime configuration. Intervals and timeouts are in seconds."""

    venues: tuple[str, ...] = DEFAULT_VENUES
    default_venue: str = "binance"

    # Scan engine
    scan_concurrency: int = 8
    scan_symbol_timeout: float = 7.0
    scan_progress_interval: float = 1.0
    universe_size_cap: int = 50

    # Price aggregator
    ticker_cache_ttl: float = 30.0
    candle_cache_ttl: float = 300.0
    request_timeout: float = 5.0

    # Streaming
    heartbeat_interval: float = 30.0
    listener_queue_size: int = 100

    # Scheduler
    alert_check_interval: float = 60.0
    market_pulse_interval: float = 180.0
    universe_refresh_interval: float = 1800.0
    screener_digest_interval: float = 900.0
    derivatives_refresh_interval: float = 300.0
    weekly_digest_interval: float = 7 * 24 * 3600.0
    derivatives_rate_per_second: float = 5.0
    derivatives_max_jitter: float = 0.2

    # Cache store
    redis_url: Optional[str] = field(default=None, repr=False)

    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.scan_concurrency < 1:
            raise ValueError(f"scan_concurrency must be >= 1, got {self.scan_concurrency}")
        if self.scan_symbol_timeout <= 0:
            raise ValueError(f"scan_symbol_timeout must be > 0, got {self.scan_symbol_timeout}")
        if not 0 < self.ticker_cache_ttl < 300:
            raise ValueError(f"ticker_cache_ttl must be between 0 and 300 seconds, got {self.ticker_cache_ttl}")
        if not self.venues:
            raise ValueError("at least one venue is required")
        if self.default_venue not in self.venues:
            raise ValueError(f"default_venue {self.default_venue!r} is not in venues {self.venues}")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """Build a config from environment variables, falling back to defaults."""
        env = os.environ if env is None else env
        defaults = cls()

        venues_raw = env.get("VENUES")
        venues = (
            tuple(v.strip().lower() for v in venues_raw.split(",") if v.strip())
            if venues_raw
            else defaults.venues
        )
        default_venue = env.get("DEFAULT_VENUE", venues[0]).strip().lower()

        return cls(
            venues=venues,
            default_venue=default_venue,
            scan_concurrency=_env_int(env, "SCAN_CONCURRENCY", defaults.scan_concurrency),
            scan_symbol_timeout=_env_float(env, "SCAN_SYMBOL_TIMEOUT", defaults.scan_symbol_timeout),
            scan_progress_interval=_env_float(env, "SCAN_PROGRESS_INTERVAL", defaults.scan_progress_interval),
            universe_size_cap=_env_int(env, "UNIVERSE_LIMIT", defaults.universe_size_cap),
            ticker_cache_ttl=_env_float(env, "TICKER_CACHE_TTL", defaults.ticker_cache_ttl),
            candle_cache_ttl=_env_float(env, "CANDLE_CACHE_TTL", defaults.candle_cache_ttl),
            request_timeout=_env_float(env, "REQUEST_TIMEOUT", defaults.request_timeout),
            heartbeat_interval=_env_float(env, "HEARTBEAT_INTERVAL", defaults.heartbeat_interval),
            listener_queue_size=_env_int(env, "LISTENER_QUEUE_SIZE", defaults.listener_queue_size),
            alert_check_interval=_env_float(env, "ALERT_CHECK_INTERVAL", defaults.alert_check_interval),
            market_pulse_interval=_env_float(env, "MARKET_PULSE_INTERVAL", defaults.market_pulse_interval),
            universe_refresh_interval=_env_float(env, "UNIVERSE_REFRESH_INTERVAL", defaults.universe_refresh_interval),
            screener_digest_interval=_env_float(env, "SCREENER_DIGEST_INTERVAL", defaults.screener_digest_interval),
            derivatives_refresh_interval=_env_float(
                env, "DERIVATIVES_REFRESH_INTERVAL", defaults.derivatives_refresh_interval
            ),
            weekly_digest_interval=_env_float(env, "WEEKLY_DIGEST_INTERVAL", defaults.weekly_digest_interval),
            redis_url=env.get("REDIS_URL") or None,
            log_level=env.get("LOG_LEVEL", defaults.log_level).upper(),
        )
