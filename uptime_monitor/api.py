from __future__ import annotations

import hmac
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Literal, Optional

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from uptime_monitor import __version__
from uptime_monitor.alerts.base import DeliveryOutcome
from uptime_monitor.models import ChannelKind, CheckResult
from uptime_monitor.service import MonitoringService


logger = structlog.get_logger(__name__)

WORKER_TOKEN_HEADER = "x-worker-token"


class WorkerReport(BaseModel):
    """A check result produced by a remote worker node."""

    target_id: str = Field(min_length=1)
    status: Literal["up", "down"]
    response_time_ms: int = Field(default=0, ge=0)
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    checked_at: Optional[datetime] = None
    worker_id: str = Field(default="remote")


def _outcome_dict(outcome: DeliveryOutcome) -> dict[str, Any]:
    out = asdict(outcome)
    out["kind"] = outcome.kind.value
    return out


def get_service(req: Request) -> MonitoringService:
    service: Any = getattr(req.app.state, "service", None)
    if not isinstance(service, MonitoringService):
        raise RuntimeError("Monitoring service not configured")
    return service


def require_worker(req: Request, service: MonitoringService = Depends(get_service)) -> None:
    token = (req.headers.get(WORKER_TOKEN_HEADER) or "").strip()
    if not token:
        raise HTTPException(status_code=401, detail="missing_worker_token")
    expected = (service.config.worker_token or "").strip()
    if not expected:
        raise HTTPException(status_code=503, detail="worker_token_not_configured")
    if not hmac.compare_digest(token, expected):
        raise HTTPException(status_code=403, detail="invalid_worker_token")


def create_app(service: MonitoringService, *, manage_service: bool = True) -> FastAPI:
    app = FastAPI(title="Uptime Monitor", version=__version__)
    app.state.service = service

    if manage_service:

        @app.on_event("startup")
        async def _startup() -> None:
            await service.start()

        @app.on_event("shutdown")
        async def _shutdown() -> None:
            await service.stop()

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "scheduled_targets": len(service.scheduler.scheduled_ids())}

    @app.get("/jobs")
    async def jobs() -> dict[str, Any]:
        return {"jobs": service.scheduler.list_jobs()}

    @app.post("/webhooks/report", dependencies=[Depends(require_worker)])
    async def worker_report(report: WorkerReport) -> dict[str, Any]:
        target = service.target(report.target_id)
        if target is None:
            raise HTTPException(status_code=404, detail="unknown_target")

        checked_at = report.checked_at or service.clock()
        if checked_at.tzinfo is None:
            checked_at = checked_at.replace(tzinfo=timezone.utc)
        result = CheckResult(
            target_id=target.id,
            status=report.status,
            response_time_ms=report.response_time_ms,
            checked_at=checked_at,
            worker_id=report.worker_id,
            status_code=report.status_code,
            error_message=report.error_message,
        )
        event = await service.pipeline.ingest(target, result)
        logger.info("Worker report ingested", target_id=target.id, worker_id=report.worker_id, status=report.status)
        return {
            "ok": True,
            "event": event.kind if event is not None else None,
            "incident_id": event.incident.id if event is not None else None,
        }

    @app.post("/alerts/{tenant_id}/test/{kind}")
    async def test_alert(tenant_id: str, kind: str) -> dict[str, Any]:
        try:
            channel_kind = ChannelKind(kind.strip().lower())
        except ValueError:
            raise HTTPException(status_code=400, detail="unknown_channel_kind") from None
        outcome = await service.dispatcher.send_test_alert(tenant_id, channel_kind)
        if outcome is None:
            raise HTTPException(status_code=404, detail="channel_not_configured")
        return _outcome_dict(outcome)

    @app.post("/alerts/{tenant_id}/digest")
    async def digest(tenant_id: str) -> dict[str, Any]:
        outcomes = await service.dispatcher.dispatch_digest(tenant_id, service.tenant_targets(tenant_id))
        return {"tenant_id": tenant_id, "deliveries": [_outcome_dict(o) for o in outcomes]}

    return app
