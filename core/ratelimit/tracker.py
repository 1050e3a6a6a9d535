"""Rate limit tracking for venue API calls.

Tracks request quotas and reset times per venue and endpoint, as reported in
the response headers venues attach to REST replies.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from threading import Lock
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

# Binance request weight budget per minute (spot REST)
BINANCE_WEIGHT_LIMIT = 6000


@dataclass
class RateLimitInfo:
    """Rate limit information for a specific endpoint."""

    venue: str
    endpoint: str
    limit: int  # Total requests (or weight) allowed
    remaining: int
    reset_at: float  # Unix timestamp when limit resets
    window_seconds: int = 60

    @property
    def used(self) -> int:
        return self.limit - self.remaining

    @property
    def usage_percent(self) -> float:
        """Usage percentage (0-100)."""
        if self.limit == 0:
            return 0.0
        return (self.used / self.limit) * 100

    @property
    def reset_in_seconds(self) -> int:
        remaining = int(self.reset_at - time.time())
        return max(0, remaining)

    @property
    def status(self) -> str:
        """Status indicator: ok, warning, critical."""
        usage = self.usage_percent
        if usage >= 90:
            return "critical"
        elif usage >= 70:
            return "warning"
        return "ok"


@dataclass
class RateLimitTracker:
    """Thread-safe rate limit tracker.

    One instance is shared by every venue client of the process.
    """

    _limits: dict[str, RateLimitInfo] = field(default_factory=dict)
    _throttled: dict[str, int] = field(default_factory=dict)
    _lock: Lock = field(default_factory=Lock)

    def _make_key(self, venue: str, endpoint: str) -> str:
        return f"{venue}:{endpoint}"

    def update(
        self,
        venue: str,
        endpoint: str,
        limit: int,
        remaining: int,
        reset_at: float,
        window_seconds: int = 60,
    ) -> None:
        """Update rate limit information."""
        key = self._make_key(venue, endpoint)
        with self._lock:
            self._limits[key] = RateLimitInfo(
                venue=venue,
                endpoint=endpoint,
                limit=limit,
                remaining=remaining,
                reset_at=reset_at,
                window_seconds=window_seconds,
            )

    def record_headers(self, venue: str, endpoint: str, headers: Mapping[str, str]) -> Optional[RateLimitInfo]:
        """Parse a venue's rate limit headers and record them.

        Returns the recorded info, or None when the response carried no
        recognisable headers.
        """
        parsed = _parse_headers(venue, headers)
        if parsed is None:
            return None

        limit, remaining, reset_at = parsed
        self.update(venue=venue, endpoint=endpoint, limit=limit, remaining=remaining, reset_at=reset_at)
        return self.get(venue, endpoint)

    def record_throttled(self, venue: str) -> None:
        """Count a 429/418 reply from a venue."""
        with self._lock:
            self._throttled[venue] = self._throttled.get(venue, 0) + 1
        logger.warning("Venue %s throttled a request", venue)

    def throttled_count(self, venue: str) -> int:
        with self._lock:
            return self._throttled.get(venue, 0)

    def get(self, venue: str, endpoint: str) -> Optional[RateLimitInfo]:
        key = self._make_key(venue, endpoint)
        with self._lock:
            return self._limits.get(key)

    def get_all(self, venue: Optional[str] = None) -> list[RateLimitInfo]:
        """Get all rate limit info, optionally filtered by venue."""
        with self._lock:
            limits = list(self._limits.values())

        if venue:
            limits = [l for l in limits if l.venue == venue]

        return sorted(limits, key=lambda x: (x.venue, x.endpoint))

    def should_throttle(self, venue: str, endpoint: str, threshold: float = 0.9) -> bool:
        """Check if requests should be held back based on usage threshold.

        A window whose reset time has passed never throttles.
        """
        info = self.get(venue, endpoint)
        if not info or info.reset_at <= time.time():
            return False
        return info.usage_percent >= (threshold * 100)

    def clear_expired(self) -> None:
        """Remove expired rate limit entries."""
        now = time.time()
        with self._lock:
            expired_keys = [key for key, info in self._limits.items() if info.reset_at < now]
            for key in expired_keys:
                del self._limits[key]


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    # httpx.Headers is case-insensitive, plain dicts are not
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    return value


def _parse_headers(venue: str, headers: Mapping[str, str]) -> Optional[tuple[int, int, float]]:
    try:
        if venue == "binance":
            used = _header(headers, "X-MBX-USED-WEIGHT-1M")
            if used is None:
                return None
            now = time.time()
            reset_at = now - (now % 60) + 60
            return BINANCE_WEIGHT_LIMIT, BINANCE_WEIGHT_LIMIT - int(used), reset_at

        if venue == "bybit":
            limit = _header(headers, "X-Bapi-Limit")
            remaining = _header(headers, "X-Bapi-Limit-Status")
            reset_ms = _header(headers, "X-Bapi-Limit-Reset-Timestamp")
            if limit is None or remaining is None:
                return None
            reset_at = int(reset_ms) / 1000.0 if reset_ms else time.time() + 1
            return int(limit), int(remaining), reset_at

        limit = _header(headers, "X-RateLimit-Limit")
        remaining = _header(headers, "X-RateLimit-Remaining")
        reset = _header(headers, "X-RateLimit-Reset")
        if limit is None or remaining is None:
            return None
        return int(limit), int(remaining), float(reset) if reset else time.time() + 60
    except ValueError:
        logger.debug("Unparseable rate limit headers from %s", venue)
        return None
