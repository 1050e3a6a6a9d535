"""Server-Sent Events and NDJSON framing for streaming endpoints.

One `SseChannel` exists per connected client. The live feed writes into it
from the listener's delivery task; the response body reads from it. On
disconnect the listener is unregistered before the channel is closed, and
anything written to a closed channel is dropped.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, AsyncIterator, Mapping, Optional

from core.market_data import LiveFeedManager
from core.market_data.symbols import normalize_symbol
from core.scanner import ScanEvent
from core.types import AggregatedTicker

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
NDJSON_MEDIA_TYPE = "application/x-ndjson; charset=utf-8"
NDJSON_HEADERS = {"Cache-Control": "no-store"}

_CLOSED = object()


def format_sse(payload: Mapping[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def format_ndjson(event: ScanEvent) -> str:
    return json.dumps(event.to_dict()) + "\n"


class SseChannel:
    """Bounded per-client outbox. Keeps the freshest messages when the client lags."""

    def __init__(self, maxsize: int = 100) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False
        self.dropped = 0

    def send(self, payload: Mapping[str, Any]) -> bool:
        if self.closed:
            return False
        self._put(payload)
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._put(_CLOSED)

    def _put(self, item: Any) -> None:
        if self._queue.full():
            with contextlib.suppress(asyncio.QueueEmpty):
                self._queue.get_nowait()
                self.dropped += 1
        self._queue.put_nowait(item)

    async def frames(self, heartbeat_interval: float) -> AsyncIterator[str]:
        """Yield SSE frames until closed, with a comment line every `heartbeat_interval` seconds.

        Heartbeats keep their cadence regardless of ticker traffic.
        """
        loop = asyncio.get_running_loop()
        next_heartbeat = loop.time() + heartbeat_interval
        while True:
            remaining = next_heartbeat - loop.time()
            if remaining <= 0:
                if self.closed and self._queue.empty():
                    return
                yield ": heartbeat\n\n"
                next_heartbeat += heartbeat_interval
                if next_heartbeat <= loop.time():
                    # Missed beats after a stalled consumer are not replayed
                    next_heartbeat = loop.time() + heartbeat_interval
                continue
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=remaining)
            except asyncio.TimeoutError:
                continue
            if item is _CLOSED:
                return
            yield format_sse(item)


async def realtime_events(
    symbol: str,
    live_feed: LiveFeedManager,
    *,
    heartbeat_interval: float = 30.0,
    queue_size: int = 100,
    channel: Optional[SseChannel] = None,
) -> AsyncIterator[str]:
    """SSE body for one client following the aggregated ticker of `symbol`."""
    canonical = normalize_symbol(symbol)
    channel = channel or SseChannel(maxsize=queue_size)

    async def on_update(update: AggregatedTicker) -> None:
        channel.send({"type": "ticker", "data": update.to_dict()})

    yield format_sse({"type": "connected", "symbol": canonical})
    try:
        await live_feed.subscribe_aggregated(canonical, on_update)
        logger.info("SSE client connected to %s", canonical)
        async for frame in channel.frames(heartbeat_interval):
            yield frame
    finally:
        try:
            # Runs to completion even when the response task is being cancelled
            await asyncio.shield(live_feed.unsubscribe_aggregated(canonical, on_update))
        finally:
            channel.close()
            logger.info("SSE client disconnected from %s", canonical)


async def ndjson_events(events: AsyncIterator[ScanEvent]) -> AsyncIterator[str]:
    """NDJSON body for a scan sweep. Closing the body closes the sweep."""
    try:
        async for event in events:
            yield format_ndjson(event)
    finally:
        aclose = getattr(events, "aclose", None)
        if aclose is not None:
            await aclose()
