from __future__ import annotations

from datetime import datetime

from uptime_monitor.errors import StoreError
from uptime_monitor.models import AlertLogEntry, CheckResult, Incident, Target, TenantAlertSettings


class MemoryCheckLog:
    def __init__(self) -> None:
        self._by_target: dict[str, list[CheckResult]] = {}

    def append(self, result: CheckResult) -> None:
        self._by_target.setdefault(result.target_id, []).append(result)

    def previous_result(self, result: CheckResult) -> CheckResult | None:
        items = self._by_target.get(result.target_id, [])
        position = len(items)
        for index in range(len(items) - 1, -1, -1):
            if items[index] == result:
                position = index
                break

        best: CheckResult | None = None
        for index, item in enumerate(items):
            if item.checked_at > result.checked_at or (item.checked_at == result.checked_at and index >= position):
                continue
            # Insertion order breaks ties, so >= keeps the later row.
            if best is None or item.checked_at >= best.checked_at:
                best = item
        return best

    def latest(self, target_id: str) -> CheckResult | None:
        best: CheckResult | None = None
        for item in self._by_target.get(target_id, []):
            if best is None or item.checked_at >= best.checked_at:
                best = item
        return best

    def results_for(self, target_id: str) -> list[CheckResult]:
        return list(self._by_target.get(target_id, []))

    def prune_before(self, cutoff: datetime) -> int:
        removed = 0
        for target_id in list(self._by_target.keys()):
            items = self._by_target[target_id]
            kept = [r for r in items if r.checked_at >= cutoff]
            removed += len(items) - len(kept)
            if kept:
                self._by_target[target_id] = kept
            else:
                del self._by_target[target_id]
        return removed


class MemoryIncidentStore:
    def __init__(self) -> None:
        self._incidents: dict[str, Incident] = {}

    def create(self, incident: Incident) -> None:
        if incident.id in self._incidents:
            raise StoreError(f"Duplicate incident id: {incident.id}")
        self._incidents[incident.id] = incident

    def update(self, incident: Incident) -> None:
        if incident.id not in self._incidents:
            raise StoreError(f"Unknown incident id: {incident.id}")
        self._incidents[incident.id] = incident

    def open_for(self, target_id: str) -> Incident | None:
        for incident in reversed(list(self._incidents.values())):
            if incident.target_id == target_id and incident.is_open:
                return incident
        return None

    def incidents_for(self, target_id: str) -> list[Incident]:
        return [i for i in self._incidents.values() if i.target_id == target_id]


class MemoryAlertLog:
    def __init__(self) -> None:
        self.entries: list[AlertLogEntry] = []

    def append(self, entry: AlertLogEntry) -> None:
        self.entries.append(entry)

    def entries_for(self, tenant_id: str) -> list[AlertLogEntry]:
        return [e for e in self.entries if e.tenant_id == tenant_id]

    def prune_before(self, cutoff: datetime) -> int:
        before = len(self.entries)
        self.entries = [e for e in self.entries if e.sent_at >= cutoff]
        return before - len(self.entries)


class MemoryTargetSource:
    def __init__(self, targets: list[Target] | None = None) -> None:
        self.targets: list[Target] = list(targets or [])

    def list_targets(self) -> list[Target]:
        return list(self.targets)


class MemoryTenantSettings:
    def __init__(self, settings: list[TenantAlertSettings] | None = None) -> None:
        self._settings = {s.tenant_id: s for s in (settings or [])}

    def put(self, settings: TenantAlertSettings) -> None:
        self._settings[settings.tenant_id] = settings

    def get_alert_settings(self, tenant_id: str) -> TenantAlertSettings | None:
        return self._settings.get(tenant_id)
