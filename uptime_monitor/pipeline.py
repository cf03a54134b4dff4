"""Check -> transition -> alert glue shared by local checks and worker reports."""

from __future__ import annotations

import structlog

from uptime_monitor.alerts.dispatcher import AlertDispatcher
from uptime_monitor.checks.executor import CheckExecutor
from uptime_monitor.incidents.manager import IncidentManager
from uptime_monitor.models import CheckResult, IncidentEvent, Target
from uptime_monitor.storage.base import CheckLogStore


logger = structlog.get_logger(__name__)


class CheckPipeline:
    def __init__(
        self,
        executor: CheckExecutor,
        incident_manager: IncidentManager,
        dispatcher: AlertDispatcher,
        check_log: CheckLogStore,
    ):
        self.executor = executor
        self.incident_manager = incident_manager
        self.dispatcher = dispatcher
        self.check_log = check_log

    async def run_check(self, target: Target) -> CheckResult:
        """Probe one target, then evaluate and alert on the result."""
        result = await self.executor.execute(target)
        await self._handle(target, result)
        return result

    async def ingest(self, target: Target, result: CheckResult) -> IncidentEvent | None:
        """Record a result reported by a remote worker and evaluate it like a local one."""
        try:
            self.check_log.append(result)
        except Exception as exc:
            logger.warning("Failed to persist reported result", target_id=target.id, error=str(exc))
        return await self._handle(target, result)

    async def _handle(self, target: Target, result: CheckResult) -> IncidentEvent | None:
        try:
            event = await self.incident_manager.evaluate(result)
        except Exception:
            logger.exception("Transition evaluation failed", target_id=target.id)
            return None
        if event is None:
            return None

        try:
            await self.dispatcher.dispatch(target.tenant_id, target, event)
        except Exception:
            logger.exception("Alert dispatch failed", target_id=target.id, event_kind=event.kind)
        return event
