"""Market data error taxonomy.

Every failure that crosses a component boundary is one of these. Venue
clients translate transport, HTTP status and payload problems into them, so
upward components only ever see this common taxonomy.
"""

from __future__ import annotations


class MarketDataError(Exception):
    """Base exception for market data and signal evaluation errors."""

    def __init__(
        self,
        message: str,
        *,
        venue: str | None = None,
        symbol: str | None = None,
        status_code: int | None = None,
        is_transient: bool = False,
    ):
        super().__init__(message)
        self.venue = venue
        self.symbol = symbol
        self.status_code = status_code
        self.is_transient = is_transient


class NetworkError(MarketDataError):
    """Venue unreachable or returned a non-2xx status (retry-able)."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("is_transient", True)
        super().__init__(message, **kwargs)


class RateLimited(MarketDataError):
    """Venue throttled the request (retry-able after backoff)."""

    def __init__(self, message: str, *, retry_after: float | None = None, **kwargs):
        kwargs.setdefault("is_transient", True)
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class ParseError(MarketDataError):
    """Upstream payload was malformed or missing required fields."""


class ScanTimeout(MarketDataError):
    """A per-symbol evaluation exceeded its time budget."""


class InsufficientData(MarketDataError):
    """Series too short for the requested indicator or backtest."""


class NotFound(MarketDataError):
    """No data available for the symbol."""


def classify_http_error(status_code: int, message: str, *, venue: str | None = None, symbol: str | None = None) -> MarketDataError:
    """Map an HTTP status code from a venue onto the error taxonomy.

    Args:
        status_code: HTTP status code
        message: Error message
        venue: Venue the request went to
        symbol: Symbol the request was for

    Returns:
        Appropriate MarketDataError subclass
    """
    # 418 is Binance's "IP banned after repeated 429s"
    if status_code in {418, 429}:
        return RateLimited(message, venue=venue, symbol=symbol, status_code=status_code)

    if status_code == 404:
        return NotFound(message, venue=venue, symbol=symbol, status_code=status_code)

    if status_code in {400, 401, 403}:
        return NetworkError(message, venue=venue, symbol=symbol, status_code=status_code, is_transient=False)

    if 500 <= status_code < 600:
        return NetworkError(message, venue=venue, symbol=symbol, status_code=status_code)

    return NetworkError(message, venue=venue, symbol=symbol, status_code=status_code, is_transient=False)
