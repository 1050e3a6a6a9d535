"""Venue clients: one adapter per external trading venue."""

from __future__ import annotations

from core.market_data.venues.base import SubscriptionHandle, TickerCallback, VenueClient, with_retry
from core.market_data.venues.binance import BinanceClient
from core.market_data.venues.bybit import BybitClient
from core.market_data.venues.okx import OkxClient
from core.ratelimit.tracker import RateLimitTracker

__all__ = [
    "BinanceClient",
    "BybitClient",
    "OkxClient",
    "SubscriptionHandle",
    "TickerCallback",
    "VenueClient",
    "get_venue_client",
    "with_retry",
]

_VENUES: dict[str, type[VenueClient]] = {
    "binance": BinanceClient,
    "bybit": BybitClient,
    "okx": OkxClient,
}


def get_venue_client(
    venue: str,
    *,
    tracker: RateLimitTracker | None = None,
    timeout: float = 5.0,
) -> VenueClient:
    """Factory function to get the appropriate venue client."""
    venue_lower = venue.lower().strip()
    if venue_lower not in _VENUES:
        raise ValueError(f"Unsupported venue: {venue}. Supported: {', '.join(_VENUES.keys())}")

    return _VENUES[venue_lower](tracker=tracker, timeout=timeout)
