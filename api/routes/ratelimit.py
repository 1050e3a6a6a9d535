"""API routes for venue rate limit status."""

from __future__ import annotations

from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from api.deps import get_tracker
from core.ratelimit import RateLimitTracker

router = APIRouter(prefix="/ratelimit", tags=["ratelimit"])


class RateLimitStatus(BaseModel):
    """Rate limit status for a single venue/endpoint."""

    venue: str
    endpoint: str
    limit: int
    used: int
    remaining: int
    usage_percent: float
    reset_at: float
    reset_in_seconds: int
    status: Literal["ok", "warning", "critical"]
    window_seconds: int
    throttled: int


class RateLimitStatusResponse(BaseModel):
    limits: List[RateLimitStatus]
    count: int


class VenuesResponse(BaseModel):
    venues: List[str]
    count: int


@router.get("/status", response_model=RateLimitStatusResponse)
async def get_rate_limit_status(
    venue: Optional[str] = Query(None, description="Filter by venue"),
    tracker: RateLimitTracker = Depends(get_tracker),
):
    """Current usage, remaining quota and reset time per venue endpoint."""
    tracker.clear_expired()

    result = [
        {
            "venue": info.venue,
            "endpoint": info.endpoint,
            "limit": info.limit,
            "used": info.used,
            "remaining": info.remaining,
            "usage_percent": round(info.usage_percent, 2),
            "reset_at": info.reset_at,
            "reset_in_seconds": info.reset_in_seconds,
            "status": info.status,
            "window_seconds": info.window_seconds,
            "throttled": tracker.throttled_count(info.venue),
        }
        for info in tracker.get_all(venue=venue)
    ]
    return {"limits": result, "count": len(result)}


@router.get("/venues", response_model=VenuesResponse)
async def get_venues(tracker: RateLimitTracker = Depends(get_tracker)):
    """Venues with rate limit data recorded."""
    venues = sorted({info.venue for info in tracker.get_all()})
    return {"venues": venues, "count": len(venues)}
