"""Scheduling of recurring target checks and housekeeping jobs."""

from .check_scheduler import CheckScheduler, ReconcileSummary, check_job_id

__all__ = ["CheckScheduler", "ReconcileSummary", "check_job_id"]
