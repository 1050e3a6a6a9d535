"""Periodic job scheduling."""

from core.scheduler.jobs import MarketJobs
from core.scheduler.scheduler import JobFunc, Scheduler

__all__ = ["JobFunc", "MarketJobs", "Scheduler"]
