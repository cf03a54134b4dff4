from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from uptime_monitor.config import MonitorConfig
from uptime_monitor.models import ChannelKind, SlackChannelConfig, Target, TenantAlertSettings
from uptime_monitor.service import MonitoringService
from uptime_monitor.storage.memory import MemoryTargetSource, MemoryTenantSettings


SLACK_URL = "https://hooks.slack.test/services/T1/B1/x"


class SiteFarm:
    """Mock transport serving configurable status codes per host and recording webhook posts."""

    def __init__(self) -> None:
        self.status: dict[str, int] = {}
        self.posts: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            self.posts.append(request)
            return httpx.Response(200, text="ok")
        return httpx.Response(self.status.get(request.url.host, 200))


@pytest.fixture
def farm() -> SiteFarm:
    return SiteFarm()


@pytest.fixture
def service(farm: SiteFarm, tmp_path: Path) -> MonitoringService:
    targets = MemoryTargetSource(
        [
            Target(id="home", url="https://acme.test", check_interval_seconds=300, tenant_id="acme", name="Acme Home"),
            Target(id="shop", url="https://shop.acme.test", check_interval_seconds=300, tenant_id="acme"),
        ]
    )
    settings = MemoryTenantSettings(
        [
            TenantAlertSettings(
                tenant_id="acme",
                tenant_name="Acme Agency",
                enabled={ChannelKind.SLACK: True, ChannelKind.EMAIL: False},
                channels={ChannelKind.SLACK: SlackChannelConfig(webhook_url=SLACK_URL)},
            )
        ]
    )
    config = MonitorConfig(worker_id="test-worker", worker_token="s3cret", targets_file=str(tmp_path / "unused.yaml"))
    return MonitoringService(
        config,
        target_source=targets,
        settings_store=settings,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(farm)),
    )
