"""Narrow interfaces to the collaborators that own persistent data."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from uptime_monitor.models import AlertLogEntry, CheckResult, Incident, Target, TenantAlertSettings


class TargetSource(Protocol):
    def list_targets(self) -> list[Target]: ...


class TenantSettingsStore(Protocol):
    def get_alert_settings(self, tenant_id: str) -> TenantAlertSettings | None: ...


class CheckLogStore(Protocol):
    """Append-only log of check results."""

    def append(self, result: CheckResult) -> None: ...

    def previous_result(self, result: CheckResult) -> CheckResult | None:
        """
        The entry logged just before `result`, ordered by checked_at then insertion.

        When `result` itself was never logged, this is the latest entry at or before its checked_at.
        """
        ...

    def latest(self, target_id: str) -> CheckResult | None: ...

    def results_for(self, target_id: str) -> list[CheckResult]: ...

    def prune_before(self, cutoff: datetime) -> int: ...


class IncidentStore(Protocol):
    def create(self, incident: Incident) -> None: ...

    def update(self, incident: Incident) -> None: ...

    def open_for(self, target_id: str) -> Incident | None: ...

    def incidents_for(self, target_id: str) -> list[Incident]: ...


class AlertLogStore(Protocol):
    def append(self, entry: AlertLogEntry) -> None: ...

    def entries_for(self, tenant_id: str) -> list[AlertLogEntry]: ...

    def prune_before(self, cutoff: datetime) -> int: ...
