"""Ticker and market-wide endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from api.deps import get_aggregator
from core.market_data import PriceAggregator

router = APIRouter(prefix="/market", tags=["market"])


def _check_venue(aggregator: PriceAggregator, venue: Optional[str]) -> None:
    if venue is not None and venue not in aggregator.venue_names:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported venue: {venue}. Supported: {', '.join(aggregator.venue_names)}",
        )


@router.get("/ticker/{symbol}")
async def get_ticker(
    symbol: str,
    aggregated: bool = Query(False, description="Blend all venues by quote volume"),
    aggregator: PriceAggregator = Depends(get_aggregator),
):
    if aggregated:
        return (await aggregator.get_aggregated_ticker(symbol)).to_dict()
    return (await aggregator.get_ticker(symbol)).to_dict()


@router.get("/tickers")
async def get_tickers(
    symbols: str = Query(..., min_length=1, description="Comma-separated symbols"),
    aggregator: PriceAggregator = Depends(get_aggregator),
):
    """Tickers for several symbols. Symbols without data are left out."""
    requested = [s for s in (p.strip() for p in symbols.split(",")) if s]
    if not requested:
        raise HTTPException(status_code=400, detail="symbols must not be empty")
    tickers = await aggregator.get_multiple_tickers(requested)
    return {"tickers": {symbol: t.to_dict() for symbol, t in tickers.items()}, "count": len(tickers)}


@router.get("/movers")
async def get_movers(
    limit: int = Query(10, ge=1, le=50),
    venue: Optional[str] = Query(None, description="Restrict to one venue"),
    aggregator: PriceAggregator = Depends(get_aggregator),
):
    _check_venue(aggregator, venue)
    movers = await aggregator.get_top_movers(limit=limit, venue=venue)
    return {
        "gainers": [t.to_dict() for t in movers["gainers"]],
        "losers": [t.to_dict() for t in movers["losers"]],
    }


@router.get("/candles/{symbol}")
async def get_candles(
    symbol: str,
    interval: str = Query("1h", pattern="^(1m|5m|15m|1h|4h|1d)$"),
    limit: int = Query(100, ge=1, le=1000),
    venue: Optional[str] = Query(None),
    aggregator: PriceAggregator = Depends(get_aggregator),
):
    _check_venue(aggregator, venue)
    candles = await aggregator.get_candles(symbol, interval, limit, venue=venue)
    return {
        "symbol": symbol.upper(),
        "interval": interval,
        "count": len(candles),
        "candles": [
            {
                "venue": c.venue,
                "open_time": c.open_time.isoformat(),
                "open": c.open,
                "high": c.high,
                "low": c.low,
                "close": c.close,
                "volume": c.volume,
            }
            for c in candles
        ],
    }


@router.get("/derivatives/{symbol}")
async def get_derivatives(
    symbol: str,
    venue: Optional[str] = Query(None),
    aggregator: PriceAggregator = Depends(get_aggregator),
):
    _check_venue(aggregator, venue)
    return (await aggregator.get_derivatives(symbol, venue)).to_dict()
