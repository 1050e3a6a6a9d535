"""Scheduled job status."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from api.deps import get_scheduler
from core.scheduler import Scheduler

router = APIRouter(prefix="/system/jobs", tags=["jobs"])


@router.get("")
async def list_jobs(scheduler: Scheduler = Depends(get_scheduler)):
    jobs = scheduler.jobs()
    return {"running": scheduler.running, "jobs": [j.to_dict() for j in jobs], "count": len(jobs)}


@router.post("/{kind}/run")
async def run_job(kind: str, scheduler: Scheduler = Depends(get_scheduler)):
    """Run a job immediately. A job that is already running is skipped."""
    try:
        job = await scheduler.run_now(kind)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=f"Unknown job: {kind}") from e
    return job.to_dict()
