"""Streaming RSI scan over a symbol universe (NDJSON)."""

from __future__ import annotations

from typing import List, Literal, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from api.deps import get_config, get_rsi_scanner, get_scan_engine
from api.streaming import NDJSON_HEADERS, NDJSON_MEDIA_TYPE, ndjson_events
from core.config import EngineConfig
from core.scanner import RsiScanner, ScanEngine, resolve_universe

router = APIRouter(prefix="/scan", tags=["scan"])


class RsiScanRequest(BaseModel):
    timeframe: Literal["1m", "5m", "15m", "1h", "4h", "1d"] = "1h"
    type: Literal["OVERBOUGHT", "OVERSOLD", "BOTH"] = "BOTH"
    universe: Optional[List[str]] = Field(None, description="Symbols to scan; defaults to the top 50 USDT pairs")
    venue: Optional[str] = None


@router.post("/rsi")
async def scan_rsi(
    request: RsiScanRequest,
    engine: ScanEngine = Depends(get_scan_engine),
    scanner: RsiScanner = Depends(get_rsi_scanner),
    config: EngineConfig = Depends(get_config),
):
    """Scan the universe for RSI extremes, streaming one JSON object per line.

    Lines are `progress`, `row`, `error`, then a final `done` (or `fatal`
    if the sweep itself broke).
    """
    universe = resolve_universe(request.universe, config.universe_size_cap)
    evaluate = scanner.evaluator(request.timeframe, request.type, venue=request.venue)
    events = engine.sweep(universe, evaluate)
    return StreamingResponse(ndjson_events(events), media_type=NDJSON_MEDIA_TYPE, headers=NDJSON_HEADERS)
