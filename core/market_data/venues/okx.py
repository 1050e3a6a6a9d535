from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any

from core.errors import NotFound, ParseError
from core.market_data.symbols import from_okx_inst_id, normalize_symbol, to_okx_inst_id, to_okx_swap_id
from core.market_data.venues.base import VenueClient, parse_float
from core.types import Candle, DerivativesSnapshot, Ticker

logger = logging.getLogger(__name__)


class OkxClient(VenueClient):
    """OKX v5 spot REST + public ticker channel.

    OKX spells instruments ``BTC-USDT``; translation happens in this class only.
    """

    name = "okx"
    rest_url = "https://www.okx.com"
    ws_base_url = "wss://ws.okx.com:8443/ws/v5/public"

    _INTERVALS = {"1m": "1m", "5m": "5m", "15m": "15m", "1h": "1H", "4h": "4H", "1d": "1D"}

    def _data(self, payload: Any, *, symbol: str | None = None) -> list[Any]:
        if not isinstance(payload, dict) or "data" not in payload:
            raise ParseError("okx payload missing data", venue=self.name, symbol=symbol)
        code = payload.get("code", "0")
        if str(code) != "0":
            raise NotFound(f"okx code {code}: {payload.get('msg', '')}", venue=self.name, symbol=symbol)
        return payload["data"] or []

    def _ticker_from_row(self, row: dict[str, Any]) -> Ticker:
        symbol = from_okx_inst_id(str(row.get("instId", "")))
        price = parse_float(row, "last", venue=self.name, symbol=symbol)
        open_24h = parse_float(row, "open24h", venue=self.name, symbol=symbol)
        change = price - open_24h
        change_pct = change / open_24h * 100 if open_24h else 0.0
        return Ticker(
            symbol=symbol,
            price=price,
            change_24h=change,
            change_percent_24h=change_pct,
            high_24h=parse_float(row, "high24h", venue=self.name, symbol=symbol, default=0.0),
            low_24h=parse_float(row, "low24h", venue=self.name, symbol=symbol, default=0.0),
            volume_24h=parse_float(row, "vol24h", venue=self.name, symbol=symbol, default=0.0),
            volume_quote_24h=parse_float(row, "volCcy24h", venue=self.name, symbol=symbol, default=0.0),
            timestamp=int(row.get("ts") or time.time() * 1000),
            venue=self.name,
        )

    async def fetch_ticker(self, symbol: str) -> Ticker:
        canonical = normalize_symbol(symbol)
        payload = await self._get_json(
            "/api/v5/market/ticker", {"instId": to_okx_inst_id(canonical)}, symbol=canonical
        )
        rows = self._data(payload, symbol=canonical)
        if not rows:
            raise NotFound(f"symbol {canonical} not found on okx", venue=self.name, symbol=canonical)
        return self._ticker_from_row(rows[0])

    async def fetch_all_tickers(self) -> list[Ticker]:
        payload = await self._get_json("/api/v5/market/tickers", {"instType": "SPOT"})
        tickers = []
        for row in self._data(payload):
            if not str(row.get("instId", "")).endswith("-USDT"):
                continue
            try:
                tickers.append(self._ticker_from_row(row))
            except ParseError as exc:
                logger.debug("Skipping malformed okx ticker: %s", exc)
        return tickers

    async def fetch_candles(self, symbol: str, interval: str = "1h", limit: int = 100) -> list[Candle]:
        canonical = normalize_symbol(symbol)
        if interval not in self._INTERVALS:
            raise ValueError(f"Unsupported timeframe for OKX: {interval}")

        payload = await self._get_json(
            "/api/v5/market/candles",
            {"instId": to_okx_inst_id(canonical), "bar": self._INTERVALS[interval], "limit": limit},
            symbol=canonical,
        )
        rows = self._data(payload, symbol=canonical)
        if not rows:
            raise NotFound(f"no candles for {canonical} on okx", venue=self.name, symbol=canonical)

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
        # OKX returns newest first
        candles.reverse()
        return candles

    async def fetch_derivatives(self, symbol: str) -> DerivativesSnapshot:
        canonical = normalize_symbol(symbol)
        swap_id = to_okx_swap_id(canonical)
        oi = await self._get_json(
            "/api/v5/public/open-interest", {"instType": "SWAP", "instId": swap_id}, symbol=canonical
        )
        funding = await self._get_json("/api/v5/public/funding-rate", {"instId": swap_id}, symbol=canonical)

        oi_rows = self._data(oi, symbol=canonical) or [{}]
        funding_rows = self._data(funding, symbol=canonical) or [{}]

        # OKX exposes no long/short ratio on these endpoints
        return DerivativesSnapshot(
            symbol=canonical,
            venue=self.name,
            open_interest=parse_float(oi_rows[0], "oi", venue=self.name, symbol=canonical, default=0.0),
            funding_rate=parse_float(funding_rows[0], "fundingRate", venue=self.name, symbol=canonical, default=0.0),
            long_short_ratio=1.0,
            liquidation_imbalance=0.0,
            timestamp=int(time.time() * 1000),
        )

    def _ws_url(self, symbol: str) -> str:
        return self.ws_base_url

    def _subscribe_message(self, symbol: str) -> dict[str, Any]:
        return {"op": "subscribe", "args": [{"channel": "tickers", "instId": to_okx_inst_id(symbol)}]}

    def _parse_push(self, message: Any, symbol: str) -> Ticker | None:
        if not isinstance(message, dict) or "data" not in message:
            return None
        rows = message.get("data") or []
        if not rows:
            return None
        return self._ticker_from_row(rows[0])
