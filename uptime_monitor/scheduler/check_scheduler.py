"""Per-target recurring checks on APScheduler."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
import structlog
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from uptime_monitor.models import Target


logger = structlog.get_logger(__name__)

CHECK_JOB_PREFIX = "check:"


def check_job_id(target_id: str) -> str:
    return f"{CHECK_JOB_PREFIX}{target_id}"


def validate_target(target: Target) -> None:
    """Raise ValueError for targets that cannot be probed."""
    if int(target.check_interval_seconds) <= 0:
        raise ValueError(f"check_interval_seconds must be positive, got {target.check_interval_seconds}")
    try:
        url = httpx.URL(target.url)
    except (httpx.InvalidURL, TypeError) as exc:
        raise ValueError(f"malformed url {target.url!r}: {exc}") from exc
    if url.scheme not in ("http", "https"):
        raise ValueError(f"unsupported url scheme {url.scheme!r}")
    if not url.host:
        raise ValueError(f"url has no host: {target.url!r}")


@dataclass
class ReconcileSummary:
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    rescheduled: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class CheckScheduler:
    """
    Owns one interval job per active target.

    `reconcile()` is the only way the job map changes: callers hand over a full
    target snapshot and the scheduler adds, removes or re-times jobs to match it.
    Jobs run with max_instances=1, so checks of one target never overlap.
    Removing a job does not interrupt a check already in flight.
    """

    def __init__(
        self,
        run_check: Callable[[Target], Awaitable[Any]],
        *,
        scheduler: Optional[AsyncIOScheduler] = None,
        on_removed: Optional[Callable[[str], None]] = None,
    ):
        self.run_check = run_check
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self.on_removed = on_removed
        self.running = False
        self._targets: Dict[str, Target] = {}
        self._stale_job_ids: set[str] = set()
        self._maintenance_jobs: Dict[str, Dict[str, Any]] = {}

    async def start(self):
        """Start the underlying scheduler."""
        if self.running:
            logger.warning("Scheduler already running")
            return
        self.scheduler.start()
        self.running = True
        logger.info("Check scheduler started")

    async def stop(self):
        """Stop the scheduler; in-flight checks are left to finish."""
        if not self.running:
            return
        self.scheduler.shutdown(wait=False)
        self.running = False
        logger.info("Check scheduler stopped")

    def scheduled_ids(self) -> List[str]:
        return sorted(self._targets.keys())

    def target(self, target_id: str) -> Optional[Target]:
        return self._targets.get(target_id)

    async def _fire(self, target_id: str) -> None:
        target = self._targets.get(target_id)
        if target is None:
            return
        try:
            await self.run_check(target)
        except Exception:
            logger.exception("Check crashed", target_id=target_id)

    def _add_check_job(self, target: Target, *, immediate: bool) -> None:
        kwargs: Dict[str, Any] = {}
        if immediate:
            kwargs["next_run_time"] = datetime.now(timezone.utc)
        self.scheduler.add_job(
            self._fire,
            trigger=IntervalTrigger(seconds=int(target.check_interval_seconds), timezone=timezone.utc),
            args=(target.id,),
            id=check_job_id(target.id),
            name=f"check {target.display_name}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None,
            **kwargs,
        )

    def _remove_check_job(self, target_id: str) -> None:
        job_id = check_job_id(target_id)
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            logger.debug("Check job already gone", target_id=target_id)

    def _retry_stale_removals(self) -> None:
        for job_id in list(self._stale_job_ids):
            target_id = job_id[len(CHECK_JOB_PREFIX):]
            if target_id in self._targets:
                self._stale_job_ids.discard(job_id)
                continue
            try:
                self._remove_check_job(target_id)
                self._stale_job_ids.discard(job_id)
            except Exception as exc:
                logger.error("Failed to remove stale check job", job_id=job_id, error=str(exc))

    def reconcile(self, targets: List[Target]) -> ReconcileSummary:
        """Make the job map match the active targets in `targets`."""
        summary = ReconcileSummary()
        self._retry_stale_removals()

        desired: Dict[str, Target] = {}
        for target in targets:
            if not target.active:
                continue
            if target.id in desired:
                logger.warning("Duplicate target id in snapshot; keeping first", target_id=target.id)
                continue
            try:
                validate_target(target)
            except Exception as exc:
                logger.warning("Rejecting target", target_id=target.id, url=target.url, error=str(exc))
                summary.rejected.append(target.id)
                continue
            desired[target.id] = target

        for target_id in list(self._targets.keys()):
            if target_id in desired:
                continue
            # Drop from the snapshot first so a job that fails to cancel fires as a no-op.
            del self._targets[target_id]
            try:
                self._remove_check_job(target_id)
                summary.removed.append(target_id)
                logger.info("Unscheduled target", target_id=target_id)
            except Exception as exc:
                self._stale_job_ids.add(check_job_id(target_id))
                summary.failed.append(target_id)
                logger.error("Failed to cancel check job", target_id=target_id, error=str(exc))
            if self.on_removed is not None:
                try:
                    self.on_removed(target_id)
                except Exception as exc:
                    logger.warning("on_removed callback failed", target_id=target_id, error=str(exc))

        for target_id, target in desired.items():
            current = self._targets.get(target_id)
            try:
                if current is None:
                    self._targets[target_id] = target
                    self._add_check_job(target, immediate=True)
                    summary.added.append(target_id)
                    logger.info(
                        "Scheduled target",
                        target_id=target_id,
                        interval_seconds=target.check_interval_seconds,
                    )
                elif current.check_interval_seconds != target.check_interval_seconds:
                    self._targets[target_id] = target
                    self._add_check_job(target, immediate=False)
                    summary.rescheduled.append(target_id)
                    logger.info(
                        "Rescheduled target",
                        target_id=target_id,
                        old_interval_seconds=current.check_interval_seconds,
                        interval_seconds=target.check_interval_seconds,
                    )
                else:
                    self._targets[target_id] = target
            except Exception as exc:
                summary.failed.append(target_id)
                logger.error("Failed to schedule target", target_id=target_id, error=str(exc))
                if current is None:
                    self._targets.pop(target_id, None)
                else:
                    self._targets[target_id] = current

        logger.info(
            "Reconciled targets",
            scheduled=len(self._targets),
            added=len(summary.added),
            removed=len(summary.removed),
            rescheduled=len(summary.rescheduled),
            rejected=len(summary.rejected),
            failed=len(summary.failed),
        )
        return summary

    def add_interval_job(
        self,
        job_id: str,
        func: Callable,
        seconds: int,
        description: Optional[str] = None,
        run_immediately: bool = False,
    ):
        """Add a non-check interval job (target refresh and similar housekeeping)."""
        if job_id.startswith(CHECK_JOB_PREFIX):
            raise ValueError(f"Job id prefix {CHECK_JOB_PREFIX!r} is reserved for target checks")
        kwargs: Dict[str, Any] = {}
        if run_immediately:
            kwargs["next_run_time"] = datetime.now(timezone.utc)
        self.scheduler.add_job(
            func,
            trigger=IntervalTrigger(seconds=seconds, timezone=timezone.utc),
            id=job_id,
            name=description or job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **kwargs,
        )
        self._maintenance_jobs[job_id] = {"type": "interval", "seconds": seconds, "description": description}
        logger.info("Added interval job", job_id=job_id, interval_seconds=seconds, description=description)

    def add_cron_job(self, job_id: str, func: Callable, cron_expression: str, description: Optional[str] = None):
        """Add a cron-scheduled job ("minute hour day month day_of_week")."""
        if job_id.startswith(CHECK_JOB_PREFIX):
            raise ValueError(f"Job id prefix {CHECK_JOB_PREFIX!r} is reserved for target checks")
        cron_parts = cron_expression.split()
        if len(cron_parts) != 5:
            raise ValueError(f"Invalid cron expression: {cron_expression}")
        trigger = CronTrigger(
            minute=cron_parts[0],
            hour=cron_parts[1],
            day=cron_parts[2],
            month=cron_parts[3],
            day_of_week=cron_parts[4],
            timezone=timezone.utc,
        )
        self.scheduler.add_job(
            func,
            trigger=trigger,
            id=job_id,
            name=description or job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._maintenance_jobs[job_id] = {"type": "cron", "expression": cron_expression, "description": description}
        logger.info("Added cron job", job_id=job_id, cron=cron_expression, description=description)

    def job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        job = self.scheduler.get_job(job_id)
        if job is None:
            return None
        next_run = getattr(job, "next_run_time", None)
        return {
            "job_id": job.id,
            "name": job.name,
            "next_run": next_run.isoformat() if next_run else None,
            "trigger": str(job.trigger),
        }

    def list_jobs(self) -> List[Dict[str, Any]]:
        statuses = []
        for job in self.scheduler.get_jobs():
            status = self.job_status(job.id)
            if status:
                statuses.append(status)
        return statuses
