"""Bounded-concurrency scan engine.

A sweep evaluates every symbol of a universe with at most
`concurrency_limit` evaluations in flight. Symbols start in submission
order as slots free up. Each evaluation has a hard timeout; a timeout or
error is reported for that symbol and the sweep carries on.

Events are yielded as they happen:

    progress {done, total}   every `progress_interval` seconds and after each symbol
    row      {payload}       as soon as a symbol matches
    error    {symbol, message}
    done     {total}         always last, unless the sweep itself broke
    fatal    {message}       only when the sweep machinery fails; no `done` follows

Closing or cancelling the consumer cancels every worker.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Literal, Mapping, Optional

from core.errors import MarketDataError, ScanTimeout

logger = logging.getLogger(__name__)

EventType = Literal["progress", "row", "error", "done", "fatal"]
Evaluator = Callable[[str], Awaitable[Optional[Mapping[str, Any]]]]

_FINISHED = object()


@dataclass(frozen=True)
class ScanEvent:
    type: EventType
    data: Mapping[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.data}


@dataclass
class SweepStats:
    total: int = 0
    done: int = 0
    rows: int = 0
    errors: int = 0
    in_flight: int = 0
    max_in_flight: int = 0


class ScanEngine:
    """Run sweeps of an async evaluator over a universe of symbols."""

    def __init__(
        self,
        *,
        concurrency_limit: int = 8,
        per_symbol_timeout: float = 7.0,
        progress_interval: float = 1.0,
    ) -> None:
        if concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be >= 1, got {concurrency_limit}")
        self.concurrency_limit = concurrency_limit
        self.per_symbol_timeout = per_symbol_timeout
        self.progress_interval = progress_interval
        self.last_stats: Optional[SweepStats] = None

    async def sweep(
        self,
        universe: Iterable[str],
        evaluate: Evaluator,
        *,
        concurrency_limit: Optional[int] = None,
        per_symbol_timeout: Optional[float] = None,
    ) -> AsyncIterator[ScanEvent]:
        """Evaluate every symbol and yield events as results arrive.

        `evaluate` returns a row payload for a match or None for no match;
        raising marks the symbol as failed.
        """
        limit = concurrency_limit or self.concurrency_limit
        timeout = per_symbol_timeout or self.per_symbol_timeout

        try:
            symbols = list(universe)
            if limit < 1:
                raise ValueError(f"concurrency_limit must be >= 1, got {limit}")
        except Exception as e:
            logger.error("Scan sweep could not start: %s", e)
            yield ScanEvent("fatal", {"message": str(e)})
            return

        stats = SweepStats(total=len(symbols))
        self.last_stats = stats
        events: asyncio.Queue = asyncio.Queue()
        work: asyncio.Queue = asyncio.Queue()
        for symbol in symbols:
            work.put_nowait(symbol)

        workers = [
            asyncio.create_task(self._worker(work, events, evaluate, timeout, stats), name=f"scan-worker-{i}")
            for i in range(min(limit, len(symbols)))
        ]
        runner = asyncio.create_task(self._supervise(workers, events))
        ticker = asyncio.create_task(self._progress_ticker(events, stats))

        try:
            while True:
                event = await events.get()
                if event is _FINISHED:
                    break
                yield event

            error = runner.exception()
            if error is not None:
                logger.error("Scan sweep failed after %d/%d symbols", stats.done, stats.total, exc_info=error)
                yield ScanEvent("fatal", {"message": str(error) or type(error).__name__})
                return

            logger.info(
                "Scan sweep finished: %d symbols, %d rows, %d errors", stats.total, stats.rows, stats.errors
            )
            yield ScanEvent("done", {"total": stats.total})
        finally:
            pending = [*workers, runner, ticker]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def _supervise(self, workers: list[asyncio.Task], events: asyncio.Queue) -> None:
        try:
            await asyncio.gather(*workers)
        finally:
            events.put_nowait(_FINISHED)

    async def _progress_ticker(self, events: asyncio.Queue, stats: SweepStats) -> None:
        while True:
            await asyncio.sleep(self.progress_interval)
            events.put_nowait(ScanEvent("progress", {"done": stats.done, "total": stats.total}))

    async def _worker(
        self,
        work: asyncio.Queue,
        events: asyncio.Queue,
        evaluate: Evaluator,
        timeout: float,
        stats: SweepStats,
    ) -> None:
        while True:
            try:
                symbol = work.get_nowait()
            except asyncio.QueueEmpty:
                return

            stats.in_flight += 1
            stats.max_in_flight = max(stats.max_in_flight, stats.in_flight)
            payload: Optional[Mapping[str, Any]] = None
            message: Optional[str] = None
            try:
                payload = await asyncio.wait_for(evaluate(symbol), timeout=timeout)
            except asyncio.TimeoutError:
                message = str(ScanTimeout(f"timeout after {timeout:g}s", symbol=symbol))
            except MarketDataError as e:
                message = str(e)
            except Exception as e:
                logger.warning("Scan evaluation for %s failed", symbol, exc_info=True)
                message = str(e) or type(e).__name__
            finally:
                stats.in_flight -= 1

            stats.done += 1
            events.put_nowait(ScanEvent("progress", {"done": stats.done, "total": stats.total}))
            if message is not None:
                stats.errors += 1
                events.put_nowait(ScanEvent("error", {"symbol": symbol, "message": message}))
            elif payload is not None:
                stats.rows += 1
                events.put_nowait(ScanEvent("row", {"payload": dict(payload)}))


async def collect_rows(events: AsyncIterator[ScanEvent]) -> list[dict[str, Any]]:
    """Drain a sweep and return the row payloads."""
    rows = []
    async for event in events:
        if event.type == "row":
            rows.append(dict(event.data["payload"]))
    return rows
