"""Health check API endpoint."""

from __future__ import annotations

import time
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from api.deps import get_cache, get_live_feed, get_scheduler, get_tracker
from core.cache import CacheStore
from core.market_data import LiveFeedManager
from core.ratelimit import RateLimitTracker
from core.scheduler import Scheduler

router = APIRouter(prefix="/system/health", tags=["health"])


class ComponentHealth(BaseModel):
    """Health status for a single component."""

    status: Literal["ok", "degraded", "error"]
    message: str
    latency_ms: Optional[float] = None
    details: Optional[Dict[str, Any]] = None


async def _cache_health(cache: CacheStore) -> ComponentHealth:
    started = time.perf_counter()
    ok = await cache.ping()
    latency = round((time.perf_counter() - started) * 1000, 2)
    if not ok:
        return ComponentHealth(status="error", message="Cache unreachable", latency_ms=latency)
    return ComponentHealth(status="ok", message="Cache reachable", latency_ms=latency)


def _venue_health(tracker: RateLimitTracker, venues: list[str]) -> ComponentHealth:
    details: Dict[str, Any] = {}
    worst = "ok"
    for venue in venues:
        limits = tracker.get_all(venue=venue)
        status = "ok"
        if any(info.status == "critical" for info in limits):
            status = "degraded"
        details[venue] = {"status": status, "throttled": tracker.throttled_count(venue)}
        if status != "ok":
            worst = status
    message = "All venues within rate limits" if worst == "ok" else "Venue rate limits near exhaustion"
    return ComponentHealth(status=worst, message=message, details=details)


def _scheduler_health(scheduler: Scheduler) -> ComponentHealth:
    jobs = scheduler.jobs()
    failing = [j.kind for j in jobs if j.last_error]
    details = {"running": scheduler.running, "jobs": len(jobs), "failing": failing}
    if failing:
        return ComponentHealth(status="degraded", message=f"{len(failing)} job(s) failing", details=details)
    return ComponentHealth(status="ok", message="Scheduler running" if scheduler.running else "Scheduler idle", details=details)


@router.get("")
async def health_check(
    request: Request,
    cache: CacheStore = Depends(get_cache),
    tracker: RateLimitTracker = Depends(get_tracker),
    live_feed: LiveFeedManager = Depends(get_live_feed),
    scheduler: Scheduler = Depends(get_scheduler),
):
    """Get system health status.

    Returns health status for:
    - Cache store connectivity and latency
    - Venue rate limit headroom
    - Live feed subscriptions
    - Scheduled jobs
    - API uptime
    """
    uptime_seconds = int(time.time() - request.app.state.started_at)
    feeds = live_feed.status()["symbols"]

    checks = {
        "cache": await _cache_health(cache),
        "venues": _venue_health(tracker, list(request.app.state.venues)),
        "live_feed": ComponentHealth(
            status="ok",
            message=f"{len(feeds)} symbol(s) streaming",
            details={"symbols": sorted(feeds)},
        ),
        "scheduler": _scheduler_health(scheduler),
    }

    result: Dict[str, Any] = {
        "api": {
            "status": "ok",
            "uptime_seconds": uptime_seconds,
            "message": "API running",
        }
    }
    for component, status in checks.items():
        result[component] = status.model_dump(exclude_none=True)

    # Overall status is worst of all components
    all_statuses = [result["api"]["status"]] + [c.status for c in checks.values()]
    if "error" in all_statuses:
        overall_status = "error"
    elif "degraded" in all_statuses:
        overall_status = "degraded"
    else:
        overall_status = "ok"

    result["overall"] = {"status": overall_status}
    return result
