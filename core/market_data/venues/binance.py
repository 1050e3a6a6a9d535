from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any

import httpx

from core.errors import MarketDataError, NotFound, ParseError
from core.market_data.symbols import normalize_symbol
from core.market_data.venues.base import VenueClient, parse_float
from core.types import Candle, DerivativesSnapshot, Ticker

logger = logging.getLogger(__name__)

# Binance error code for an unknown trading pair
INVALID_SYMBOL_CODE = -1121


class BinanceClient(VenueClient):
    """Binance spot REST + combined-stream ticker push."""

    name = "binance"
    rest_url = "https://api.binance.com/api/v3"
    futures_url = "https://fapi.binance.com"
    ws_base_url = "wss://stream.binance.com:9443/stream"

    _INTERVALS = {"1m": "1m", "5m": "5m", "15m": "15m", "1h": "1h", "4h": "4h", "1d": "1d"}

    def _error_for_response(self, response: httpx.Response, *, symbol: str | None) -> MarketDataError:
        if response.status_code == 400:
            try:
                code = response.json().get("code")
            except ValueError:
                code = None
            if code == INVALID_SYMBOL_CODE:
                return NotFound(f"symbol {symbol} not found on binance", venue=self.name, symbol=symbol, status_code=400)
        return super()._error_for_response(response, symbol=symbol)

    def _ticker_from_rest(self, data: dict[str, Any]) -> Ticker:
        symbol = str(data.get("symbol", ""))
        return Ticker(
            symbol=symbol,
            price=parse_float(data, "lastPrice", venue=self.name, symbol=symbol),
            change_24h=parse_float(data, "priceChange", venue=self.name, symbol=symbol, default=0.0),
            change_percent_24h=parse_float(data, "priceChangePercent", venue=self.name, symbol=symbol),
            high_24h=parse_float(data, "highPrice", venue=self.name, symbol=symbol, default=0.0),
            low_24h=parse_float(data, "lowPrice", venue=self.name, symbol=symbol, default=0.0),
            volume_24h=parse_float(data, "volume", venue=self.name, symbol=symbol),
            volume_quote_24h=parse_float(data, "quoteVolume", venue=self.name, symbol=symbol, default=0.0),
            timestamp=int(data.get("closeTime") or time.time() * 1000),
            venue=self.name,
        )

    async def fetch_ticker(self, symbol: str) -> Ticker:
        canonical = normalize_symbol(symbol)
        data = await self._get_json("/ticker/24hr", {"symbol": canonical}, symbol=canonical)
        if not isinstance(data, dict):
            raise ParseError("binance ticker payload is not an object", venue=self.name, symbol=canonical)
        return self._ticker_from_rest(data)

    async def fetch_all_tickers(self) -> list[Ticker]:
        data = await self._get_json("/ticker/24hr")
        if not isinstance(data, list):
            raise ParseError("binance ticker list payload is not a list", venue=self.name)
        tickers = []
        for row in data:
            if not str(row.get("symbol", "")).endswith("USDT"):
                continue
            try:
                tickers.append(self._ticker_from_rest(row))
            except ParseError as exc:
                logger.debug("Skipping malformed binance ticker: %s", exc)
        return tickers

    async def fetch_candles(self, symbol: str, interval: str = "1h", limit: int = 100) -> list[Candle]:
        """Fetch klines.

        Response format: [[open_time, open, high, low, close, volume, close_time, ...], ...]
        """
        canonical = normalize_symbol(symbol)
        if interval not in self._INTERVALS:
            raise ValueError(f"Unsupported timeframe for Binance: {interval}")

        rows = await self._get_json(
            "/klines",
            {"symbol": canonical, "interval": self._INTERVALS[interval], "limit": limit},
            symbol=canonical,
        )
        if not isinstance(rows, list):
            raise ParseError("binance klines payload is not a list", venue=self.name, symbol=canonical)
        if not rows:
            raise NotFound(f"no candles for {canonical} on binance", venue=self.name, symbol=canonical)

        candles = []
        for row in rows:
            candles.append(
                Candle(
                    symbol=canonical,
                    venue=self.name,
                    timeframe=interval,
                    open_time=datetime.fromtimestamp(int(row[0]) / 1000, tz=timezone.utc),
                    open=parse_float(row, 1, venue=self.name, symbol=canonical),
                    high=parse_float(row, 2, venue=self.name, symbol=canonical),
                    low=parse_float(row, 3, venue=self.name, symbol=canonical),
                    close=parse_float(row, 4, venue=self.name, symbol=canonical),
                    volume=parse_float(row, 5, venue=self.name, symbol=canonical),
                )
            )
        return candles

    async def fetch_derivatives(self, symbol: str) -> DerivativesSnapshot:
        canonical = normalize_symbol(symbol)
        oi = await self._get_json(
            "/fapi/v1/openInterest", {"symbol": canonical}, symbol=canonical, base_url=self.futures_url
        )
        funding = await self._get_json(
            "/fapi/v1/fundingRate", {"symbol": canonical, "limit": 1}, symbol=canonical, base_url=self.futures_url
        )
        ratio = await self._get_json(
            "/futures/data/globalLongShortAccountRatio",
            {"symbol": canonical, "period": "4h", "limit": 1},
            symbol=canonical,
            base_url=self.futures_url,
        )

        open_interest = parse_float(oi, "openInterest", venue=self.name, symbol=canonical, default=0.0)
        funding_rate = parse_float(funding[0] if funding else {}, "fundingRate", venue=self.name, symbol=canonical, default=0.0)
        long_short = parse_float(ratio[0] if ratio else {}, "longShortRatio", venue=self.name, symbol=canonical, default=1.0)

        return DerivativesSnapshot(
            symbol=canonical,
            venue=self.name,
            open_interest=open_interest,
            funding_rate=funding_rate,
            long_short_ratio=long_short,
            liquidation_imbalance=long_short - 1,
            timestamp=int(time.time() * 1000),
        )

    def _ws_url(self, symbol: str) -> str:
        return f"{self.ws_base_url}?streams={symbol.lower()}@ticker"

    def _parse_push(self, message: Any, symbol: str) -> Ticker | None:
        data = message.get("data") if isinstance(message, dict) else None
        if not isinstance(data, dict) or data.get("s") is None:
            return None
        return Ticker(
            symbol=normalize_symbol(str(data["s"])),
            price=parse_float(data, "c", venue=self.name, symbol=symbol),
            change_24h=parse_float(data, "p", venue=self.name, symbol=symbol, default=0.0),
            change_percent_24h=parse_float(data, "P", venue=self.name, symbol=symbol, default=0.0),
            high_24h=parse_float(data, "h", venue=self.name, symbol=symbol, default=0.0),
            low_24h=parse_float(data, "l", venue=self.name, symbol=symbol, default=0.0),
            volume_24h=parse_float(data, "v", venue=self.name, symbol=symbol, default=0.0),
            volume_quote_24h=parse_float(data, "q", venue=self.name, symbol=symbol, default=0.0),
            timestamp=int(data.get("E") or time.time() * 1000),
            venue=self.name,
        )
