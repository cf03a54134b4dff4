"""Up/down transition detection and incident lifecycle per target."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime

import structlog

from uptime_monitor.models import (
    EVENT_OPENED,
    EVENT_RESOLVED,
    STATUS_DOWN,
    STATUS_UP,
    CheckResult,
    Incident,
    IncidentEvent,
)
from uptime_monitor.storage.base import CheckLogStore, IncidentStore


logger = structlog.get_logger(__name__)

DEFAULT_DESCRIPTION = "target unreachable"


class IncidentManager:
    """
    Tracks the last known status of every target and opens/closes incidents on edges.

    Only up->down and down->up edges touch incidents or emit events, so a sustained
    outage produces one "opened" and one "resolved" event. A target never seen
    before starts from its last logged result, or from "up" when it has none.
    Results older than the last one evaluated for a target are logged by the
    caller but never count as a transition.
    """

    def __init__(self, check_log: CheckLogStore, incident_store: IncidentStore):
        self.check_log = check_log
        self.incident_store = incident_store
        self._last_status: dict[str, str] = {}
        self._last_checked_at: dict[str, datetime] = {}
        self._open: dict[str, Incident | None] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._in_flight: dict[str, int] = {}
        self._forgotten: set[str] = set()

    def _lock_for(self, target_id: str) -> asyncio.Lock:
        lock = self._locks.get(target_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[target_id] = lock
        return lock

    def _load_state(self, result: CheckResult) -> None:
        target_id = result.target_id
        previous_status = STATUS_UP
        try:
            latest = self.check_log.latest(target_id)
            if latest is not None and latest.checked_at > result.checked_at:
                # The log already holds something newer; that entry is the current state.
                previous_status = latest.status
                self._last_checked_at[target_id] = latest.checked_at
            else:
                previous = self.check_log.previous_result(result)
                if previous is not None:
                    previous_status = previous.status
        except Exception as exc:
            logger.warning("Failed to read previous check result", target_id=target_id, error=str(exc))

        open_incident = None
        try:
            open_incident = self.incident_store.open_for(target_id)
        except Exception as exc:
            logger.warning("Failed to read open incident", target_id=target_id, error=str(exc))

        self._last_status[target_id] = previous_status
        self._open[target_id] = open_incident

    def last_status(self, target_id: str) -> str | None:
        return self._last_status.get(target_id)

    def open_incident(self, target_id: str) -> Incident | None:
        return self._open.get(target_id)

    def forget(self, target_id: str) -> None:
        """Drop in-memory state for a target that is no longer monitored."""
        if self._in_flight.get(target_id):
            # evaluate() drops it once the last pending evaluation finishes.
            self._forgotten.add(target_id)
            return
        self._drop(target_id)

    def _drop(self, target_id: str) -> None:
        self._forgotten.discard(target_id)
        self._last_status.pop(target_id, None)
        self._last_checked_at.pop(target_id, None)
        self._open.pop(target_id, None)
        self._locks.pop(target_id, None)

    async def evaluate(self, result: CheckResult) -> IncidentEvent | None:
        target_id = result.target_id
        self._in_flight[target_id] = self._in_flight.get(target_id, 0) + 1
        try:
            async with self._lock_for(target_id):
                return self._evaluate(result)
        finally:
            remaining = self._in_flight[target_id] - 1
            if remaining:
                self._in_flight[target_id] = remaining
            else:
                del self._in_flight[target_id]
                if target_id in self._forgotten:
                    self._drop(target_id)

    def _evaluate(self, result: CheckResult) -> IncidentEvent | None:
        target_id = result.target_id
        if target_id not in self._last_status:
            self._load_state(result)

        last_checked_at = self._last_checked_at.get(target_id)
        if last_checked_at is not None and result.checked_at < last_checked_at:
            logger.warning(
                "Ignoring result older than the last evaluated one",
                target_id=target_id,
                checked_at=result.checked_at.isoformat(),
                last_checked_at=last_checked_at.isoformat(),
            )
            return None
        self._last_checked_at[target_id] = result.checked_at

        previous = self._last_status[target_id]
        current = result.status
        self._last_status[target_id] = current

        if previous == STATUS_UP and current == STATUS_DOWN:
            return self._open_incident(result)
        if previous == STATUS_DOWN and current == STATUS_UP:
            return self._resolve_incident(result)
        return None

    def _open_incident(self, result: CheckResult) -> IncidentEvent | None:
        target_id = result.target_id
        existing = self._open.get(target_id)
        if existing is not None:
            logger.warning(
                "Open incident already exists; not opening another",
                target_id=target_id,
                incident_id=existing.id,
            )
            return None

        incident = Incident(
            id=str(uuid.uuid4()),
            target_id=target_id,
            started_at=result.checked_at,
            description=result.error_message or DEFAULT_DESCRIPTION,
        )
        self._open[target_id] = incident
        try:
            self.incident_store.create(incident)
        except Exception as exc:
            logger.error("Failed to persist new incident", target_id=target_id, incident_id=incident.id, error=str(exc))

        logger.warning("Incident opened", target_id=target_id, incident_id=incident.id, description=incident.description)
        return IncidentEvent(kind=EVENT_OPENED, incident=incident, target_id=target_id, occurred_at=result.checked_at)

    def _resolve_incident(self, result: CheckResult) -> IncidentEvent | None:
        target_id = result.target_id
        incident = self._open.get(target_id)
        if incident is None:
            logger.warning("Target recovered without an open incident; nothing to resolve", target_id=target_id)
            return None

        resolved = incident.resolve(result.checked_at)
        self._open[target_id] = None
        try:
            self.incident_store.update(resolved)
        except Exception as exc:
            logger.error("Failed to persist resolved incident", target_id=target_id, incident_id=incident.id, error=str(exc))

        logger.info(
            "Incident resolved",
            target_id=target_id,
            incident_id=resolved.id,
            duration_minutes=resolved.duration_minutes,
        )
        return IncidentEvent(kind=EVENT_RESOLVED, incident=resolved, target_id=target_id, occurred_at=result.checked_at)
