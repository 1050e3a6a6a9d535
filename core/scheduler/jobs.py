"""Periodic market jobs run by the scheduler."""

from __future__ import annotations

import asyncio
import json
import logging
import random
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from core.alerts.checker import AlertChecker
from core.alerts.notifier import LoggingNotifier, Notifier
from core.cache.store import CacheStore
from core.config import EngineConfig
from core.errors import MarketDataError
from core.market_data.aggregator import PriceAggregator
from core.ratelimit.limiter import TokenBucket
from core.scanner.screener import ScreenerKind, ScreenerRunner, ScreenerStore
from core.scheduler.scheduler import Scheduler

logger = logging.getLogger(__name__)

PULSE_SYMBOLS = ("BTC", "ETH", "SOL", "BNB", "XRP", "ADA", "DOGE", "MATIC")
PULSE_TTL = 300
UNIVERSE_KEY = "universe:top100"
UNIVERSE_TTL = 3600
UNIVERSE_MIN_QUOTE_VOLUME = 1_000_000.0
SCREENER_DIGEST_TTL = 86400
DERIVATIVES_VENUE = "binance"
DERIVATIVES_TTL = 300
DERIVATIVES_HISTORY_LEN = 20
DERIVATIVES_HISTORY_TTL = 3600
DERIVATIVES_FALLBACK = ("BTCUSDT", "ETHUSDT", "SOLUSDT")


class MarketJobs:
    """Job bodies for alert checks, cache warmers and digests.

    Every method returns a small summary dict which the scheduler records
    as the job's last result.
    """

    def __init__(
        self,
        aggregator: PriceAggregator,
        cache: CacheStore,
        *,
        alert_checker: AlertChecker,
        screener_runner: ScreenerRunner,
        screener_store: ScreenerStore,
        config: EngineConfig,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._aggregator = aggregator
        self._cache = cache
        self._alert_checker = alert_checker
        self._screener_runner = screener_runner
        self._screener_store = screener_store
        self._config = config
        self._notifier = notifier or LoggingNotifier()
        self._clock = clock
        self._derivatives_bucket = TokenBucket(config.derivatives_rate_per_second, name="derivatives")

    def register_all(self, scheduler: Scheduler) -> None:
        cfg = self._config
        scheduler.register("alert_check", cfg.alert_check_interval, self.check_alerts)
        scheduler.register("market_pulse", cfg.market_pulse_interval, self.market_pulse)
        scheduler.register("universe_refresh", cfg.universe_refresh_interval, self.refresh_universe)
        scheduler.register("screener_digest", cfg.screener_digest_interval, self.screener_digest)
        scheduler.register("derivatives_refresh", cfg.derivatives_refresh_interval, self.refresh_derivatives)
        scheduler.register("weekly_digest", cfg.weekly_digest_interval, self.weekly_digest)

    async def check_alerts(self) -> dict[str, Any]:
        results = await self._alert_checker.check_all()
        triggered = sum(1 for r in results if r.triggered)
        if triggered:
            logger.info("Triggered %d alert(s)", triggered)
        return {"checked": len(results), "triggered": triggered}

    async def market_pulse(self) -> dict[str, Any]:
        tickers = await self._aggregator.get_multiple_tickers(list(PULSE_SYMBOLS))
        for symbol, ticker in tickers.items():
            await self._cache.set(f"pulse:{symbol}", json.dumps(ticker.to_dict()), PULSE_TTL)
        return {"updated": len(tickers)}

    async def refresh_universe(self) -> dict[str, Any]:
        """Cache the most liquid symbols, ranked by 24h quote volume."""
        tickers = await self._aggregator.get_all_tickers()
        liquid = sorted(
            (t for t in tickers if t.volume_quote_24h > UNIVERSE_MIN_QUOTE_VOLUME),
            key=lambda t: t.volume_quote_24h,
            reverse=True,
        )
        symbols = [t.symbol for t in liquid[: self._config.universe_size_cap]]
        await self._cache.set(UNIVERSE_KEY, json.dumps(symbols), UNIVERSE_TTL)
        return {"count": len(symbols)}

    async def screener_digest(self) -> dict[str, Any]:
        """Run every scheduled screener whose HOURLY/DAILY interval has elapsed."""
        now = self._clock()
        processed = 0
        failed = 0
        for screener in await self._screener_store.list_scheduled():
            if not screener.is_due(now):
                continue
            try:
                rows, _ = await self._screener_runner.run_saved(screener, self._screener_store, now=now)
            except MarketDataError as e:
                failed += 1
                logger.warning("Screener %s failed: %s", screener.id, e)
                continue
            payload = {"screenerId": screener.id, "ranAt": now.isoformat(), "results": rows}
            await self._cache.set(f"screener:digest:{screener.id}", json.dumps(payload), SCREENER_DIGEST_TTL)
            processed += 1
            logger.info("Screener digest ready: %s (%d matches)", screener.id, len(rows))
        return {"processed": processed, "failed": failed}

    async def refresh_derivatives(self) -> dict[str, Any]:
        symbols = await self._cached_universe() or list(DERIVATIVES_FALLBACK)
        updated = 0
        errors: list[str] = []
        for symbol in symbols:
            await self._derivatives_bucket.acquire()
            await asyncio.sleep(random.uniform(0, self._config.derivatives_max_jitter))
            try:
                snapshot = await self._aggregator.get_derivatives(symbol, DERIVATIVES_VENUE)
            except MarketDataError as e:
                errors.append(f"{symbol}: {e}")
                continue

            await self._cache.set(
                f"derivatives:{DERIVATIVES_VENUE}:{symbol}", json.dumps(snapshot.to_dict()), DERIVATIVES_TTL
            )
            point = {
                "oi": snapshot.open_interest,
                "funding": snapshot.funding_rate,
                "cvd": snapshot.cumulative_volume_delta,
                "lsr": snapshot.long_short_ratio,
                "timestamp": snapshot.timestamp,
            }
            await self._cache.push_bounded(
                f"derivatives:history:{symbol}", json.dumps(point), DERIVATIVES_HISTORY_LEN, DERIVATIVES_HISTORY_TTL
            )
            updated += 1

        if errors:
            logger.warning("Some derivatives updates failed: %s", errors[:5])
        return {"updated": updated, "failed": len(errors)}

    async def weekly_digest(self) -> dict[str, Any]:
        movers = await self._aggregator.get_top_movers(limit=3)
        gainers = movers["gainers"][:3]
        losers = movers["losers"][:2]
        breakouts = await self._screener_runner.run(ScreenerKind.ATR_BREAKOUT, limit=5)

        lines = ["Top gainers:"]
        lines += [f"  {t.symbol} {t.change_percent_24h:+.2f}%" for t in gainers]
        lines.append("Top losers:")
        lines += [f"  {t.symbol} {t.change_percent_24h:+.2f}%" for t in losers]
        lines.append("ATR breakouts:")
        lines += [f"  {row['symbol']} ATR {row['atr']:.2f}%" for row in breakouts if row.get("atr") is not None]

        delivered = await self._notifier.send("Weekly market digest", "\n".join(lines))
        return {"delivered": delivered, "gainers": len(gainers), "losers": len(losers), "breakouts": len(breakouts)}

    async def _cached_universe(self) -> list[str]:
        raw = await self._cache.get(UNIVERSE_KEY)
        if not raw:
            return []
        try:
            symbols = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring malformed %s cache entry", UNIVERSE_KEY)
            return []
        return [str(s) for s in symbols]
