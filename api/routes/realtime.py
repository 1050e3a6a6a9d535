"""Live aggregated ticker stream (Server-Sent Events)."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path
from fastapi.responses import StreamingResponse

from api.deps import get_config, get_live_feed
from api.streaming import SSE_HEADERS, realtime_events
from core.config import EngineConfig
from core.market_data import LiveFeedManager

router = APIRouter(prefix="/realtime", tags=["realtime"])


@router.get("/{symbol}")
async def stream_realtime(
    symbol: str = Path(..., min_length=1, description="Trading pair, e.g. BTCUSDT or BTC"),
    live_feed: LiveFeedManager = Depends(get_live_feed),
    config: EngineConfig = Depends(get_config),
):
    """Stream aggregated ticker updates for one symbol.

    Emits a `connected` event first, then one `ticker` event per update and
    a `: heartbeat` comment every heartbeat interval.
    """
    body = realtime_events(
        symbol,
        live_feed,
        heartbeat_interval=config.heartbeat_interval,
        queue_size=config.listener_queue_size,
    )
    return StreamingResponse(body, media_type="text/event-stream", headers=SSE_HEADERS)
