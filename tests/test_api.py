from __future__ import annotations

import httpx
import pytest

from uptime_monitor.api import create_app


def _client(service) -> httpx.AsyncClient:
    app = create_app(service, manage_service=False)
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://monitor.test")


@pytest.mark.asyncio
async def test_health_and_jobs(service) -> None:
    service.refresh_targets()
    async with _client(service) as client:
        health = await client.get("/health")
        jobs = await client.get("/jobs")
    assert health.status_code == 200
    assert health.json() == {"status": "ok", "scheduled_targets": 2}
    assert {j["job_id"] for j in jobs.json()["jobs"]} == {"check:home", "check:shop"}


@pytest.mark.asyncio
async def test_worker_report_requires_token(service) -> None:
    service.refresh_targets()
    report = {"target_id": "home", "status": "down", "worker_id": "eu-1"}
    async with _client(service) as client:
        missing = await client.post("/webhooks/report", json=report)
        wrong = await client.post("/webhooks/report", json=report, headers={"X-Worker-Token": "nope"})
    assert missing.status_code == 401
    assert wrong.status_code == 403
    assert service.check_log.latest("home") is None


@pytest.mark.asyncio
async def test_worker_report_opens_incident_and_alerts(service, farm) -> None:
    service.refresh_targets()
    headers = {"X-Worker-Token": "s3cret"}
    async with _client(service) as client:
        resp = await client.post(
            "/webhooks/report",
            json={"target_id": "home", "status": "down", "error_message": "timed_out", "worker_id": "eu-1"},
            headers=headers,
        )
        unknown = await client.post(
            "/webhooks/report", json={"target_id": "nope", "status": "up"}, headers=headers
        )
        invalid = await client.post(
            "/webhooks/report", json={"target_id": "home", "status": "sideways"}, headers=headers
        )

    assert resp.status_code == 200
    body = resp.json()
    assert body["event"] == "opened"
    assert body["incident_id"]
    assert service.check_log.latest("home").worker_id == "eu-1"
    assert len(farm.posts) == 1
    assert unknown.status_code == 404
    assert invalid.status_code == 422


@pytest.mark.asyncio
async def test_stale_worker_report_keeps_incident_open(service, farm) -> None:
    service.refresh_targets()
    headers = {"X-Worker-Token": "s3cret"}
    async with _client(service) as client:
        down = await client.post(
            "/webhooks/report",
            json={"target_id": "home", "status": "down", "checked_at": "2026-01-01T00:10:00Z"},
            headers=headers,
        )
        stale = await client.post(
            "/webhooks/report",
            json={"target_id": "home", "status": "up", "checked_at": "2026-01-01T00:05:00Z"},
            headers=headers,
        )

    assert down.json()["event"] == "opened"
    assert stale.status_code == 200
    assert stale.json() == {"ok": True, "event": None, "incident_id": None}
    assert service.incident_store.open_for("home").id == down.json()["incident_id"]
    assert len(service.check_log.results_for("home")) == 2
    assert len(farm.posts) == 1


@pytest.mark.asyncio
async def test_worker_report_disabled_without_configured_token(service) -> None:
    service.config.worker_token = ""
    service.refresh_targets()
    async with _client(service) as client:
        resp = await client.post(
            "/webhooks/report", json={"target_id": "home", "status": "up"}, headers={"X-Worker-Token": "x"}
        )
    assert resp.status_code == 503


@pytest.mark.asyncio
async def test_test_alert_endpoint(service, farm) -> None:
    async with _client(service) as client:
        ok = await client.post("/alerts/acme/test/slack")
        unconfigured = await client.post("/alerts/acme/test/discord")
        unknown_kind = await client.post("/alerts/acme/test/pigeon")
    assert ok.status_code == 200
    assert ok.json()["success"] is True
    assert ok.json()["kind"] == "slack"
    assert len(farm.posts) == 1
    assert unconfigured.status_code == 404
    assert unknown_kind.status_code == 400


@pytest.mark.asyncio
async def test_digest_endpoint(service, farm) -> None:
    await service.run_once()
    async with _client(service) as client:
        resp = await client.post("/alerts/acme/digest")
    assert resp.status_code == 200
    deliveries = resp.json()["deliveries"]
    assert [d["kind"] for d in deliveries] == ["slack"]
    assert "2 up, 0 down" in farm.posts[-1].content.decode("utf-8")
