"""Base venue client interface, retry policy and push subscription handles."""

from __future__ import annotations

import asyncio
import contextlib
import functools
import json
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import httpx
import websockets

from core.errors import (
    MarketDataError,
    NetworkError,
    NotFound,
    ParseError,
    RateLimited,
    classify_http_error,
)
from core.market_data.symbols import normalize_symbol
from core.ratelimit.tracker import RateLimitTracker
from core.types import Candle, DerivativesSnapshot, Ticker

logger = logging.getLogger(__name__)

TickerCallback = Callable[[Ticker], Awaitable[None]]

DEFAULT_TIMEOUT = 5.0


# ---------------------------------------------------------------------------
# Retry Logic
# ---------------------------------------------------------------------------


def with_retry(
    max_retries: int = 2,
    base_delay: float = 0.5,
    max_delay: float = 5.0,
    jitter: bool = True,
) -> Callable:
    """Decorator for exponential backoff with jitter on transient venue errors.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        jitter: Whether to add random jitter to delays

    Returns:
        Decorated async function with retry logic
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except MarketDataError as e:
                    if not e.is_transient or attempt >= max_retries:
                        raise

                    delay = min(base_delay * (2**attempt), max_delay)
                    if jitter:
                        delay *= 0.5 + random.random()
                    if isinstance(e, RateLimited) and e.retry_after:
                        delay = max(delay, min(e.retry_after, max_delay))

                    logger.warning(
                        "Transient error in %s (attempt %d/%d): %s. Retrying in %.2fs",
                        func.__name__,
                        attempt + 1,
                        max_retries + 1,
                        e,
                        delay,
                    )
                    await asyncio.sleep(delay)

            raise AssertionError("unreachable")

        return wrapper

    return decorator


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def parse_float(payload: Any, key: Any, *, venue: str, symbol: str | None = None, default: float | None = None) -> float:
    """Read a numeric field, raising ParseError if it is missing or malformed."""
    try:
        raw = payload[key]
    except (KeyError, IndexError, TypeError):
        if default is not None:
            return default
        raise ParseError(f"{venue} payload missing field {key!r}", venue=venue, symbol=symbol)

    if raw in (None, "") and default is not None:
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ParseError(f"{venue} field {key!r} is not numeric: {raw!r}", venue=venue, symbol=symbol)


# ---------------------------------------------------------------------------
# Push subscriptions
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class SubscriptionHandle:
    """Owned handle for one push subscription (one venue, one symbol).

    The subscription runs as its own task with its own connection and stop
    event; it ends only through `VenueClient.unsubscribe`.
    """

    venue: str
    symbol: str
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None
    status: str = "pending"
    messages: int = 0
    reconnects: int = 0

    @property
    def active(self) -> bool:
        return self.task is not None and not self.task.done() and not self.stop_event.is_set()


class VenueClient(ABC):
    """Abstract base class for venue adapters.

    Each venue (Binance, Bybit, OKX) implements the REST parsing and the
    push message format; transport, retries, rate limit bookkeeping and
    reconnects live here.
    """

    name: str = ""
    rest_url: str = ""

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        tracker: RateLimitTracker | None = None,
        reconnect_initial: float = 1.0,
        reconnect_max: float = 30.0,
    ) -> None:
        self._client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout
        self._tracker = tracker or RateLimitTracker()
        self._reconnect_initial = reconnect_initial
        self._reconnect_max = reconnect_max
        self._subscriptions: set[SubscriptionHandle] = set()

    @property
    def tracker(self) -> RateLimitTracker:
        return self._tracker

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    # ------------------------------------------------------------------
    # REST transport
    # ------------------------------------------------------------------

    def _error_for_response(self, response: httpx.Response, *, symbol: str | None) -> MarketDataError:
        """Translate a non-2xx reply; venues override for their own error codes."""
        error = classify_http_error(
            response.status_code,
            f"{self.name} {response.request.url.path} returned {response.status_code}: {response.text[:200]}",
            venue=self.name,
            symbol=symbol,
        )
        if isinstance(error, RateLimited):
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                with contextlib.suppress(ValueError):
                    error.retry_after = float(retry_after)
        return error

    @with_retry()
    async def _get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        symbol: str | None = None,
        base_url: str | None = None,
    ) -> Any:
        """GET a venue endpoint and return the decoded JSON body.

        Raises:
            RateLimited: On 429/418, or before sending when the endpoint's
                recorded quota is at least 90% spent
            NetworkError: On transport failure or other non-2xx
            NotFound: When the venue reports an unknown symbol
            ParseError: When the body is not JSON
        """
        if self._tracker.should_throttle(self.name, path):
            info = self._tracker.get(self.name, path)
            raise RateLimited(
                f"{self.name} {path} quota nearly spent, holding requests until reset",
                venue=self.name,
                symbol=symbol,
                retry_after=float(info.reset_in_seconds) if info else None,
            )

        url = f"{base_url or self.rest_url}{path}"
        try:
            response = await self._get_client().get(url, params=params, timeout=self._timeout)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{self.name} GET {path} timed out: {e}", venue=self.name, symbol=symbol)
        except httpx.HTTPError as e:
            raise NetworkError(f"{self.name} GET {path} network error: {e}", venue=self.name, symbol=symbol)

        self._tracker.record_headers(self.name, path, response.headers)

        if response.status_code >= 400:
            error = self._error_for_response(response, symbol=symbol)
            if isinstance(error, RateLimited):
                self._tracker.record_throttled(self.name)
            raise error

        try:
            return response.json()
        except (json.JSONDecodeError, ValueError):
            raise ParseError(f"{self.name} GET {path} returned invalid JSON", venue=self.name, symbol=symbol)

    # ------------------------------------------------------------------
    # Abstract interface
    # ------------------------------------------------------------------

    @abstractmethod
    async def fetch_ticker(self, symbol: str) -> Ticker:
        """Fetch the 24h ticker for a canonical symbol."""

    @abstractmethod
    async def fetch_candles(self, symbol: str, interval: str = "1h", limit: int = 100) -> list[Candle]:
        """Fetch candles, oldest first."""

    @abstractmethod
    async def fetch_all_tickers(self) -> list[Ticker]:
        """Fetch every USDT-quoted spot ticker."""

    async def fetch_derivatives(self, symbol: str) -> DerivativesSnapshot:
        raise NotFound(f"derivatives data not supported on {self.name}", venue=self.name, symbol=symbol)

    @abstractmethod
    def _ws_url(self, symbol: str) -> str:
        """Push endpoint for one symbol."""

    def _subscribe_message(self, symbol: str) -> dict[str, Any] | None:
        """Message sent after connecting, None when the URL itself subscribes."""
        return None

    @abstractmethod
    def _parse_push(self, message: Any, symbol: str) -> Ticker | None:
        """Turn one decoded push message into a Ticker, None for acks/pongs."""

    # ------------------------------------------------------------------
    # Push subscriptions
    # ------------------------------------------------------------------

    async def subscribe_ticker(self, symbol: str, on_update: TickerCallback) -> SubscriptionHandle:
        """Start a push subscription for one symbol.

        `on_update` is awaited for every ticker, in venue order. The caller
        owns the returned handle and must pass it to `unsubscribe`.
        """
        canonical = normalize_symbol(symbol)
        handle = SubscriptionHandle(venue=self.name, symbol=canonical)
        handle.task = asyncio.create_task(
            self._run_stream(handle, on_update),
            name=f"{self.name}:{canonical}:ticker",
        )
        self._subscriptions.add(handle)
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        self._subscriptions.discard(handle)
        handle.stop_event.set()
        task = handle.task
        if task is None or task.done():
            handle.status = "closed"
            return
        try:
            await asyncio.wait_for(task, timeout=1.0)
        except asyncio.TimeoutError:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
        handle.status = "closed"

    async def close(self) -> None:
        for handle in list(self._subscriptions):
            await self.unsubscribe(handle)
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _run_stream(self, handle: SubscriptionHandle, on_update: TickerCallback) -> None:
        symbol = handle.symbol
        backoff = self._reconnect_initial
        while not handle.stop_event.is_set():
            try:
                handle.status = "connecting"
                async with websockets.connect(self._ws_url(symbol), ping_interval=20, ping_timeout=20) as ws:
                    subscribe = self._subscribe_message(symbol)
                    if subscribe is not None:
                        await ws.send(json.dumps(subscribe))
                    handle.status = "connected"
                    backoff = self._reconnect_initial
                    async for message in ws:
                        if handle.stop_event.is_set():
                            break
                        await self._dispatch(handle, message, on_update)
                handle.status = "disconnected"
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("%s WebSocket error for %s: %s", self.name, symbol, exc)
                handle.status = "disconnected"

            if handle.stop_event.is_set():
                break
            handle.reconnects += 1
            try:
                await asyncio.wait_for(handle.stop_event.wait(), timeout=backoff)
            except asyncio.TimeoutError:
                logger.debug("%s WebSocket backoff expired for %s; retrying", self.name, symbol)
            backoff = min(backoff * 2, self._reconnect_max)

        handle.status = "closed"

    async def _dispatch(self, handle: SubscriptionHandle, message: Any, on_update: TickerCallback) -> None:
        try:
            payload = json.loads(message)
            ticker = self._parse_push(payload, handle.symbol)
        except (json.JSONDecodeError, ParseError) as exc:
            logger.warning("%s dropped malformed push message for %s: %s", self.name, handle.symbol, exc)
            return
        if ticker is None:
            return
        handle.messages += 1
        try:
            await on_update(ticker)
        except Exception:
            logger.warning("%s ticker callback failed for %s", self.name, handle.symbol, exc_info=True)
