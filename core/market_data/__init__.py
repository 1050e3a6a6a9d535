"""Market data: venue clients, price aggregation and live feeds."""

from core.market_data.aggregator import PriceAggregator, blend_tickers
from core.market_data.live_feed import LiveFeedManager
from core.market_data.symbols import normalize_symbol
from core.market_data.venues import (
    BinanceClient,
    BybitClient,
    OkxClient,
    SubscriptionHandle,
    VenueClient,
    get_venue_client,
)

__all__ = [
    "BinanceClient",
    "BybitClient",
    "LiveFeedManager",
    "OkxClient",
    "PriceAggregator",
    "SubscriptionHandle",
    "VenueClient",
    "blend_tickers",
    "get_venue_client",
    "normalize_symbol",
]
