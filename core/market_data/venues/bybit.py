from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any

from core.errors import NotFound, ParseError
from core.market_data.symbols import normalize_symbol
from core.market_data.venues.base import VenueClient, parse_float
from core.types import Candle, DerivativesSnapshot, Ticker

logger = logging.getLogger(__name__)


class BybitClient(VenueClient):
    """Bybit v5 spot REST + public spot ticker push."""

    name = "bybit"
    rest_url = "https://api.bybit.com"
    ws_base_url = "wss://stream.bybit.com/v5/public/spot"

    _INTERVALS = {"1m": "1", "5m": "5", "15m": "15", "1h": "60", "4h": "240", "1d": "D"}

    def _result(self, payload: Any, *, symbol: str | None = None) -> Any:
        """Unwrap the v5 envelope; a non-zero retCode is an unknown symbol or a bad request."""
        if not isinstance(payload, dict) or "result" not in payload:
            raise ParseError("bybit payload missing result", venue=self.name, symbol=symbol)
        ret_code = payload.get("retCode", 0)
        if ret_code not in (0, "0"):
            raise NotFound(
                f"bybit retCode {ret_code}: {payload.get('retMsg', '')}", venue=self.name, symbol=symbol
            )
        return payload["result"]

    def _ticker_from_row(self, row: dict[str, Any], timestamp: int) -> Ticker:
        symbol = str(row.get("symbol", ""))
        price = parse_float(row, "lastPrice", venue=self.name, symbol=symbol)
        # price24hPcnt is a fraction: 0.0123 means +1.23%
        change_pct = parse_float(row, "price24hPcnt", venue=self.name, symbol=symbol) * 100
        prev_price = parse_float(row, "prevPrice24h", venue=self.name, symbol=symbol, default=price)
        return Ticker(
            symbol=symbol,
            price=price,
            change_24h=price - prev_price,
            change_percent_24h=change_pct,
            high_24h=parse_float(row, "highPrice24h", venue=self.name, symbol=symbol, default=0.0),
            low_24h=parse_float(row, "lowPrice24h", venue=self.name, symbol=symbol, default=0.0),
            volume_24h=parse_float(row, "volume24h", venue=self.name, symbol=symbol),
            volume_quote_24h=parse_float(row, "turnover24h", venue=self.name, symbol=symbol, default=0.0),
            timestamp=timestamp,
            venue=self.name,
        )

    async def fetch_ticker(self, symbol: str) -> Ticker:
        canonical = normalize_symbol(symbol)
        payload = await self._get_json(
            "/v5/market/tickers", {"category": "spot", "symbol": canonical}, symbol=canonical
        )
        rows = self._result(payload, symbol=canonical).get("list") or []
        if not rows:
            raise NotFound(f"symbol {canonical} not found on bybit", venue=self.name, symbol=canonical)
        timestamp = int(payload.get("time") or time.time() * 1000)
        return self._ticker_from_row(rows[0], timestamp)

    async def fetch_all_tickers(self) -> list[Ticker]:
        payload = await self._get_json("/v5/market/tickers", {"category": "spot"})
        timestamp = int(payload.get("time") or time.time() * 1000) if isinstance(payload, dict) else 0
        tickers = []
        for row in self._result(payload).get("list") or []:
            if not str(row.get("symbol", "")).endswith("USDT"):
                continue
            try:
                tickers.append(self._ticker_from_row(row, timestamp))
            except ParseError as exc:
                logger.debug("Skipping malformed bybit ticker: %s", exc)
        return tickers

    async def fetch_candles(self, symbol: str, interval: str = "1h", limit: int = 100) -> list[Candle]:
        canonical = normalize_symbol(symbol)
        if interval not in self._INTERVALS:
            raise ValueError(f"Unsupported timeframe for Bybit: {interval}")

        payload = await self._get_json(
            "/v5/market/kline",
            {"category": "spot", "symbol": canonical, "interval": self._INTERVALS[interval], "limit": limit},
            symbol=canonical,
        )
        rows = self._result(payload, symbol=canonical).get("list") or []
        if not rows:
            raise NotFound(f"no candles for {canonical} on bybit", venue=self.name, symbol=canonical)

        candles = [
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
            for row in rows
        ]
        # Bybit returns newest first
        candles.reverse()
        return candles

    async def fetch_derivatives(self, symbol: str) -> DerivativesSnapshot:
        canonical = normalize_symbol(symbol)
        oi = await self._get_json(
            "/v5/market/open-interest",
            {"category": "linear", "symbol": canonical, "intervalTime": "5min", "limit": 1},
            symbol=canonical,
        )
        funding = await self._get_json(
            "/v5/market/funding/history", {"category": "linear", "symbol": canonical, "limit": 1}, symbol=canonical
        )
        ratio = await self._get_json(
            "/v5/market/account-ratio",
            {"category": "linear", "symbol": canonical, "period": "4h", "limit": 1},
            symbol=canonical,
        )

        oi_rows = self._result(oi, symbol=canonical).get("list") or [{}]
        funding_rows = self._result(funding, symbol=canonical).get("list") or [{}]
        ratio_rows = self._result(ratio, symbol=canonical).get("list") or [{}]

        buy = parse_float(ratio_rows[0], "buyRatio", venue=self.name, symbol=canonical, default=0.5)
        sell = parse_float(ratio_rows[0], "sellRatio", venue=self.name, symbol=canonical, default=0.5)
        long_short = buy / sell if sell else 1.0

        return DerivativesSnapshot(
            symbol=canonical,
            venue=self.name,
            open_interest=parse_float(oi_rows[0], "openInterest", venue=self.name, symbol=canonical, default=0.0),
            funding_rate=parse_float(funding_rows[0], "fundingRate", venue=self.name, symbol=canonical, default=0.0),
            long_short_ratio=long_short,
            liquidation_imbalance=long_short - 1,
            timestamp=int(time.time() * 1000),
        )

    def _ws_url(self, symbol: str) -> str:
        return self.ws_base_url

    def _subscribe_message(self, symbol: str) -> dict[str, Any]:
        return {"op": "subscribe", "args": [f"tickers.{symbol}"]}

    def _parse_push(self, message: Any, symbol: str) -> Ticker | None:
        if not isinstance(message, dict) or not str(message.get("topic", "")).startswith("tickers."):
            return None
        data = message.get("data")
        if not isinstance(data, dict):
            return None
        timestamp = int(message.get("ts") or time.time() * 1000)
        return self._ticker_from_row({"symbol": data.get("symbol", symbol), **data}, timestamp)
