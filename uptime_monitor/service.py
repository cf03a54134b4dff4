"""Process-level wiring: stores, HTTP client, scheduler and the check pipeline."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Optional

import httpx
import structlog

from uptime_monitor.alerts.base import ChannelContext
from uptime_monitor.alerts.dispatcher import AlertDispatcher
from uptime_monitor.checks.executor import CheckExecutor
from uptime_monitor.config import MonitorConfig
from uptime_monitor.incidents.manager import IncidentManager
from uptime_monitor.models import CheckResult, Target, utc_now
from uptime_monitor.pipeline import CheckPipeline
from uptime_monitor.scheduler.check_scheduler import CheckScheduler, ReconcileSummary, validate_target
from uptime_monitor.storage.base import (
    AlertLogStore,
    CheckLogStore,
    IncidentStore,
    TargetSource,
    TenantSettingsStore,
)
from uptime_monitor.storage.memory import MemoryAlertLog, MemoryCheckLog, MemoryIncidentStore
from uptime_monitor.storage.sqlite import SqliteAlertLog, SqliteCheckLog, SqliteDatabase, SqliteIncidentStore
from uptime_monitor.storage.yaml_source import YamlTargetSource


logger = structlog.get_logger(__name__)

REFRESH_JOB_ID = "refresh_targets"
RETENTION_JOB_ID = "retention"


class MonitoringService:
    """
    Owns every long-lived object of a monitor process.

    Collaborators can be injected (tests do); anything not given is built from
    the config: YAML targets and tenants, sqlite stores when `database_path` is
    set and in-memory stores otherwise.
    """

    def __init__(
        self,
        config: MonitorConfig,
        *,
        target_source: Optional[TargetSource] = None,
        settings_store: Optional[TenantSettingsStore] = None,
        check_log: Optional[CheckLogStore] = None,
        incident_store: Optional[IncidentStore] = None,
        alert_log: Optional[AlertLogStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.clock = clock

        yaml_source = None
        if target_source is None or settings_store is None:
            yaml_source = YamlTargetSource(config.targets_file)
        self.target_source: TargetSource = target_source or yaml_source
        self.settings_store: TenantSettingsStore = settings_store or yaml_source

        self.database: Optional[SqliteDatabase] = None
        if config.database_path and (check_log is None or incident_store is None or alert_log is None):
            self.database = SqliteDatabase(config.database_path)
        if self.database is not None:
            self.check_log: CheckLogStore = check_log or SqliteCheckLog(self.database)
            self.incident_store: IncidentStore = incident_store or SqliteIncidentStore(self.database)
            self.alert_log: AlertLogStore = alert_log or SqliteAlertLog(self.database)
        else:
            self.check_log = check_log or MemoryCheckLog()
            self.incident_store = incident_store or MemoryIncidentStore()
            self.alert_log = alert_log or MemoryAlertLog()

        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            headers={"User-Agent": config.user_agent},
            follow_redirects=True,
            timeout=config.check_timeout_seconds,
        )

        self.check_limiter = asyncio.Semaphore(config.max_concurrent_checks)
        self.delivery_limiter = asyncio.Semaphore(config.max_concurrent_deliveries)

        self.executor = CheckExecutor(
            self.http_client,
            self.check_log,
            worker_id=config.worker_id,
            limiter=self.check_limiter,
            policy=config.classification,
            timeout_seconds=config.check_timeout_seconds,
            clock=clock,
        )
        self.incident_manager = IncidentManager(self.check_log, self.incident_store)
        self.dispatcher = AlertDispatcher(
            self.settings_store,
            self.alert_log,
            ChannelContext(http_client=self.http_client, timeouts=config.channel_timeouts, smtp=config.smtp),
            limiter=self.delivery_limiter,
            check_log=self.check_log,
            clock=clock,
        )
        self.pipeline = CheckPipeline(self.executor, self.incident_manager, self.dispatcher, self.check_log)
        self.scheduler = CheckScheduler(self.pipeline.run_check, on_removed=self.incident_manager.forget)

        self.targets: list[Target] = []

    def target(self, target_id: str) -> Optional[Target]:
        for target in self.targets:
            if target.id == target_id:
                return target
        return None

    def tenant_targets(self, tenant_id: str) -> list[Target]:
        return [t for t in self.targets if t.active and t.tenant_id == tenant_id]

    def refresh_targets(self) -> Optional[ReconcileSummary]:
        """Re-read the target source and reconcile the scheduler against it."""
        try:
            targets = self.target_source.list_targets()
        except Exception as exc:
            # Reconciling against an empty list would unschedule every target.
            logger.error("Failed to load targets; keeping previous schedule", error=str(exc))
            return None
        self.targets = list(targets)
        return self.scheduler.reconcile(self.targets)

    async def _refresh_job(self) -> None:
        self.refresh_targets()

    def run_retention(self) -> dict[str, int]:
        """Drop check results and alert-log entries past their retention window."""
        now = self.clock()
        retention = self.config.retention
        pruned = {"check_results": 0, "alert_log": 0}
        try:
            pruned["check_results"] = self.check_log.prune_before(now - timedelta(days=retention.check_log_days))
        except Exception as exc:
            logger.error("Check log retention failed", error=str(exc))
        try:
            pruned["alert_log"] = self.alert_log.prune_before(now - timedelta(days=retention.alert_log_days))
        except Exception as exc:
            logger.error("Alert log retention failed", error=str(exc))
        logger.info("Retention pass complete", **pruned)
        return pruned

    async def _retention_job(self) -> None:
        self.run_retention()

    async def start(self) -> None:
        await self.scheduler.start()
        self.refresh_targets()
        self.scheduler.add_interval_job(
            REFRESH_JOB_ID,
            self._refresh_job,
            self.config.reconcile_interval_seconds,
            description="Reload targets and reconcile check jobs",
        )
        self.scheduler.add_cron_job(
            RETENTION_JOB_ID,
            self._retention_job,
            self.config.retention.cron,
            description="Prune old check results and alert log entries",
        )
        logger.info("Monitoring service started", targets=len(self.scheduler.scheduled_ids()))

    async def stop(self) -> None:
        await self.scheduler.stop()
        if self._owns_client:
            await self.http_client.aclose()
        if self.database is not None:
            self.database.close()
        logger.info("Monitoring service stopped")

    async def run_once(self) -> list[CheckResult]:
        """Check every valid active target once without starting the scheduler."""
        try:
            targets = self.target_source.list_targets()
        except Exception as exc:
            logger.error("Failed to load targets", error=str(exc))
            return []
        self.targets = list(targets)

        runnable = []
        for target in self.targets:
            if not target.active:
                continue
            try:
                validate_target(target)
            except ValueError as exc:
                logger.warning("Skipping invalid target", target_id=target.id, error=str(exc))
                continue
            runnable.append(target)

        results = await asyncio.gather(*(self.pipeline.run_check(t) for t in runnable))
        down = sum(1 for r in results if not r.is_up)
        logger.info("Single pass complete", checked=len(results), down=down)
        return list(results)
