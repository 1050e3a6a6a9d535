"""Price aggregator: the authoritative current-ticker map.

The aggregator owns one snapshot per (symbol, venue). Writers are the pull
path (`refresh` / cold-miss fetches) and the push path (`apply`, called by
the live feed manager). Conflicting writes resolve by timestamp: a ticker
older than the one already held for the same venue is discarded.

Reads serve from memory while the symbol was filled within `ticker_ttl`
seconds. A cold or stale symbol triggers one pull from every venue; callers
arriving while that pull is in flight wait on the same pull.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Mapping, Optional

from core.errors import MarketDataError, NetworkError, NotFound, RateLimited
from core.market_data.symbols import normalize_symbol
from core.market_data.venues.base import VenueClient
from core.types import AggregatedTicker, Candle, DerivativesSnapshot, Ticker

logger = logging.getLogger(__name__)

MIN_MOVER_QUOTE_VOLUME = 1_000_000.0


def blend_tickers(symbol: str, tickers: list[Ticker]) -> AggregatedTicker:
    """Quote-volume weighted average of per-venue tickers.

    Falls back to equal weights when no venue reports quote volume.
    """
    if not tickers:
        raise NotFound(f"No data available for {symbol}", symbol=symbol)

    total_quote = sum(t.volume_quote_24h for t in tickers)
    if total_quote > 0:
        weights = [t.volume_quote_24h / total_quote for t in tickers]
    else:
        weights = [1.0 / len(tickers)] * len(tickers)

    lows = [t.low_24h for t in tickers if t.low_24h > 0]
    return AggregatedTicker(
        symbol=symbol,
        price=sum(t.price * w for t, w in zip(tickers, weights)),
        change_percent_24h=sum(t.change_percent_24h * w for t, w in zip(tickers, weights)),
        volume_24h=sum(t.volume_24h for t in tickers),
        volume_quote_24h=total_quote,
        high_24h=max(t.high_24h for t in tickers),
        low_24h=min(lows) if lows else 0.0,
        timestamp=max(t.timestamp for t in tickers),
        sources=len(tickers),
    )


class PriceAggregator:
    """Merge per-venue tickers into one view per symbol, with short-TTL caching."""

    def __init__(
        self,
        venues: Mapping[str, VenueClient],
        *,
        default_venue: str | None = None,
        ticker_ttl: float = 30.0,
        candle_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not venues:
            raise ValueError("at least one venue client is required")
        if not 0 < ticker_ttl < 300:
            raise ValueError(f"ticker_ttl must be between 0 and 300 seconds, got {ticker_ttl}")
        self._venues = dict(venues)
        self._default_venue = default_venue or next(iter(self._venues))
        if self._default_venue not in self._venues:
            raise ValueError(f"default venue {self._default_venue!r} has no client")
        self._ticker_ttl = ticker_ttl
        self._candle_ttl = candle_ttl
        self._clock = clock

        self._tickers: dict[str, dict[str, Ticker]] = {}
        self._filled_at: dict[str, float] = {}
        self._pulls: dict[str, asyncio.Task] = {}

        self._candles: dict[tuple[str, str, str, int], tuple[list[Candle], float]] = {}
        self._candle_pulls: dict[tuple[str, str, str, int], asyncio.Task] = {}

    @property
    def venue_names(self) -> list[str]:
        return list(self._venues)

    @property
    def default_venue(self) -> str:
        return self._default_venue

    def venue(self, name: str) -> VenueClient:
        try:
            return self._venues[name]
        except KeyError:
            raise ValueError(f"Unsupported venue: {name}. Supported: {', '.join(self._venues)}") from None

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def apply(self, ticker: Ticker) -> bool:
        """Store a ticker unless a newer one is already held for its venue.

        Returns:
            True if the ticker was stored, False if it was older than the held value
        """
        symbol = normalize_symbol(ticker.symbol)
        per_venue = self._tickers.setdefault(symbol, {})
        current = per_venue.get(ticker.venue)
        if current is not None and ticker.timestamp < current.timestamp:
            logger.debug(
                "Discarding out-of-order %s ticker for %s (%d < %d)",
                ticker.venue,
                symbol,
                ticker.timestamp,
                current.timestamp,
            )
            return False
        per_venue[ticker.venue] = ticker
        self._filled_at[symbol] = self._clock()
        return True

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def latest(self, symbol: str) -> Optional[Ticker]:
        """Newest held snapshot across venues, without any I/O."""
        per_venue = self._tickers.get(normalize_symbol(symbol))
        if not per_venue:
            return None
        return max(per_venue.values(), key=lambda t: t.timestamp)

    def snapshots(self, symbol: str) -> dict[str, Ticker]:
        return dict(self._tickers.get(normalize_symbol(symbol), {}))

    def is_fresh(self, symbol: str) -> bool:
        filled_at = self._filled_at.get(normalize_symbol(symbol))
        return filled_at is not None and self._clock() - filled_at < self._ticker_ttl

    async def get_ticker(self, symbol: str) -> Ticker:
        """Authoritative ticker for a symbol.

        Raises:
            NotFound: If no venue has ever produced a ticker for the symbol
        """
        canonical = normalize_symbol(symbol)
        if not self.is_fresh(canonical):
            await self._pull_once(canonical)

        ticker = self.latest(canonical)
        if ticker is None:
            raise NotFound(f"No data available for {canonical}", symbol=canonical)
        return ticker

    async def get_multiple_tickers(self, symbols: list[str]) -> dict[str, Ticker]:
        """Tickers for many symbols; symbols with no data are left out."""
        canonical = list(dict.fromkeys(normalize_symbol(s) for s in symbols))
        results = await asyncio.gather(*(self.get_ticker(s) for s in canonical), return_exceptions=True)
        out: dict[str, Ticker] = {}
        for symbol, result in zip(canonical, results):
            if isinstance(result, Ticker):
                out[symbol] = result
            elif isinstance(result, MarketDataError):
                logger.debug("No ticker for %s: %s", symbol, result)
            elif isinstance(result, BaseException):
                raise result
        return out

    async def get_aggregated_ticker(self, symbol: str) -> AggregatedTicker:
        """Quote-volume weighted blend of every venue's snapshot."""
        canonical = normalize_symbol(symbol)
        await self.get_ticker(canonical)
        return blend_tickers(canonical, list(self.snapshots(canonical).values()))

    async def refresh(self, symbols: list[str]) -> int:
        """Pull every venue for the given symbols. Returns how many symbols have data."""
        canonical = list(dict.fromkeys(normalize_symbol(s) for s in symbols))
        await asyncio.gather(*(self._pull_once(s) for s in canonical))
        return sum(1 for s in canonical if self.latest(s) is not None)

    async def _pull_once(self, symbol: str) -> None:
        task = self._pulls.get(symbol)
        if task is None:
            task = asyncio.ensure_future(self._pull(symbol))
            self._pulls[symbol] = task
            task.add_done_callback(lambda _t, s=symbol: self._pulls.pop(s, None))
        # Shielded so one cancelled caller does not cancel the pull for the rest
        await asyncio.shield(task)

    async def _pull(self, symbol: str) -> None:
        names = list(self._venues)
        results = await asyncio.gather(
            *(self._venues[name].fetch_ticker(symbol) for name in names),
            return_exceptions=True,
        )
        for name, result in zip(names, results):
            if isinstance(result, Ticker):
                self.apply(result)
            elif isinstance(result, MarketDataError):
                logger.info("Ticker pull for %s from %s failed: %s", symbol, name, result)
            elif isinstance(result, Exception):
                logger.warning("Ticker pull for %s from %s failed", symbol, name, exc_info=result)

        if self.latest(symbol) is not None and not self.is_fresh(symbol):
            logger.warning("Serving stale ticker for %s: every venue failed", symbol)

    # ------------------------------------------------------------------
    # Candles
    # ------------------------------------------------------------------

    async def get_candles(
        self,
        symbol: str,
        interval: str = "1h",
        limit: int = 100,
        venue: str | None = None,
    ) -> list[Candle]:
        """Candles, oldest first, cached for `candle_ttl` seconds per request shape.

        Without an explicit venue the default venue is asked first and the
        others are tried when it is unreachable or throttling.
        """
        canonical = normalize_symbol(symbol)
        order = [venue] if venue else [self._default_venue] + [n for n in self._venues if n != self._default_venue]

        last_error: MarketDataError | None = None
        for name in order:
            client = self.venue(name)
            key = (name, canonical, interval, limit)
            cached = self._candles.get(key)
            if cached is not None and self._clock() - cached[1] < self._candle_ttl:
                return list(cached[0])
            try:
                return list(await self._candles_once(key, client))
            except (NetworkError, RateLimited) as e:
                logger.info("Candle fetch for %s from %s failed: %s", canonical, name, e)
                last_error = e
        if last_error is not None:
            raise last_error
        raise NotFound(f"no venue could serve candles for {canonical}", symbol=canonical)

    async def _candles_once(self, key: tuple[str, str, str, int], client: VenueClient) -> list[Candle]:
        task = self._candle_pulls.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_candles(key, client))
            self._candle_pulls[key] = task
            task.add_done_callback(lambda _t, k=key: self._candle_pulls.pop(k, None))
        return await asyncio.shield(task)

    async def _fetch_candles(self, key: tuple[str, str, str, int], client: VenueClient) -> list[Candle]:
        _, symbol, interval, limit = key
        candles = await client.fetch_candles(symbol, interval, limit)
        self._candles[key] = (candles, self._clock())
        return candles

    # ------------------------------------------------------------------
    # Market-wide views
    # ------------------------------------------------------------------

    async def get_all_tickers(self, venue: str | None = None) -> list[Ticker]:
        tickers = await self.venue(venue or self._default_venue).fetch_all_tickers()
        for ticker in tickers:
            self.apply(ticker)
        return tickers

    async def get_top_movers(self, limit: int = 10, venue: str | None = None) -> dict[str, list[Ticker]]:
        """Top gainers and losers among liquid USDT pairs.

        Tickers with quote volume at or below 1,000,000 are ignored. When
        several venues list the same symbol the one with the highest quote
        volume is kept.
        """
        names = [venue] if venue else list(self._venues)
        results = await asyncio.gather(*(self.venue(n).fetch_all_tickers() for n in names), return_exceptions=True)

        best: dict[str, Ticker] = {}
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                if not isinstance(result, MarketDataError):
                    raise result
                logger.info("Ticker list from %s failed: %s", name, result)
                continue
            for ticker in result:
                if ticker.volume_quote_24h <= MIN_MOVER_QUOTE_VOLUME:
                    continue
                symbol = normalize_symbol(ticker.symbol)
                existing = best.get(symbol)
                if existing is None or ticker.volume_quote_24h > existing.volume_quote_24h:
                    best[symbol] = ticker

        if not best and all(isinstance(r, BaseException) for r in results):
            raise NetworkError("no venue returned a ticker list")

        ranked = sorted(best.values(), key=lambda t: t.change_percent_24h, reverse=True)
        return {
            "gainers": ranked[:limit],
            "losers": list(reversed(ranked))[:limit],
        }

    async def get_derivatives(self, symbol: str, venue: str | None = None) -> DerivativesSnapshot:
        return await self.venue(venue or self._default_venue).fetch_derivatives(normalize_symbol(symbol))

    def symbols(self) -> list[str]:
        return sorted(self._tickers)
