from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from uptime_monitor.alerts.base import ChannelContext, safe_url
from uptime_monitor.alerts.channels import (
    CHANNEL_TYPES,
    CrmChannel,
    DiscordChannel,
    SlackChannel,
    TeamsChannel,
    TelegramChannel,
    WebhookChannel,
)
from uptime_monitor.alerts.email import EmailChannel, render_alert_html
from uptime_monitor.alerts.payloads import AlertPayload, DigestEntry, DigestPayload
from uptime_monitor.alerts.telegram import TELEGRAM_MAX_MESSAGE_LEN, escape_markdown, split_telegram_message
from uptime_monitor.models import (
    ChannelKind,
    CrmChannelConfig,
    DiscordChannelConfig,
    EmailChannelConfig,
    SlackChannelConfig,
    TeamsChannelConfig,
    TelegramChannelConfig,
    WebhookChannelConfig,
)


NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

DOWN = AlertPayload(
    target_name="Acme",
    target_url="https://acme.test",
    status="down",
    occurred_at=NOW,
    tenant_name="Acme Agency",
    description="timed_out",
    target_id="site-1",
    incident_id="inc-1",
)
UP = AlertPayload(
    target_name="Acme",
    target_url="https://acme.test",
    status="up",
    occurred_at=NOW,
    tenant_name="Acme Agency",
    target_id="site-1",
    incident_id="inc-1",
)


class _Recorder:
    def __init__(self, response: httpx.Response | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self.response = response

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response or httpx.Response(200, json={"ok": True, "result": {"message_id": 7}})

    def body(self, idx: int = 0) -> dict:
        return json.loads(self.requests[idx].content)


def _context(recorder: _Recorder) -> ChannelContext:
    return ChannelContext(http_client=httpx.AsyncClient(transport=httpx.MockTransport(recorder)))


def test_registry_covers_every_kind() -> None:
    assert set(CHANNEL_TYPES) == set(ChannelKind)


@pytest.mark.asyncio
async def test_slack_payload_colors_and_channel_override() -> None:
    rec = _Recorder()
    channel = SlackChannel(SlackChannelConfig(webhook_url="https://hooks.slack.test/x", channel="#ops"), _context(rec))
    down = await channel.deliver(DOWN)
    await channel.deliver(UP)

    assert down.success and down.response_code == 200
    first, second = rec.body(0), rec.body(1)
    assert first["channel"] == "#ops"
    assert first["attachments"][0]["color"] == "danger"
    assert second["attachments"][0]["color"] == "good"
    assert first["attachments"][0]["title_link"] == "https://acme.test"


@pytest.mark.asyncio
async def test_discord_embed_colors() -> None:
    rec = _Recorder()
    channel = DiscordChannel(DiscordChannelConfig(webhook_url="https://discord.test/api/webhooks/1/t"), _context(rec))
    await channel.deliver(DOWN)
    await channel.deliver(UP)
    assert rec.body(0)["embeds"][0]["color"] == 15158332
    assert rec.body(1)["embeds"][0]["color"] == 3066993


@pytest.mark.asyncio
async def test_teams_message_card() -> None:
    rec = _Recorder()
    channel = TeamsChannel(TeamsChannelConfig(webhook_url="https://teams.test/webhook"), _context(rec))
    await channel.deliver(DOWN)
    body = rec.body()
    assert body["@type"] == "MessageCard"
    assert body["themeColor"] == "FF0000"
    assert body["potentialAction"][0]["targets"][0]["uri"] == "https://acme.test"


@pytest.mark.asyncio
async def test_generic_webhook_sends_custom_headers() -> None:
    rec = _Recorder()
    config = WebhookChannelConfig(url="https://hooks.acme.test/uptime?key=abc", headers={"X-Api-Key": "k1"})
    channel = WebhookChannel(config, _context(rec))
    outcome = await channel.deliver(DOWN)

    request = rec.requests[0]
    assert request.headers["X-Api-Key"] == "k1"
    body = rec.body()
    assert body["event"] == "site_status_change"
    assert body["site"]["id"] == "site-1"
    assert body["incident"]["id"] == "inc-1"
    assert body["alert"]["severity"] == "critical"
    assert outcome.destination == "https://hooks.acme.test/uptime"


@pytest.mark.asyncio
async def test_crm_payload_includes_location() -> None:
    rec = _Recorder()
    channel = CrmChannel(CrmChannelConfig(webhook_url="https://crm.test/hook", location_id="loc-9"), _context(rec))
    await channel.deliver(UP)
    body = rec.body()
    assert body["type"] == "uptime_alert"
    assert body["location_id"] == "loc-9"
    assert body["message"].startswith("✅ RESOLVED")


@pytest.mark.asyncio
async def test_missing_webhook_url_fails_without_request() -> None:
    rec = _Recorder()
    outcome = await SlackChannel(SlackChannelConfig(webhook_url=""), _context(rec)).deliver(DOWN)
    assert outcome.success is False
    assert outcome.error == "missing webhook url"
    assert rec.requests == []


@pytest.mark.asyncio
async def test_telegram_sends_markdown_to_chat() -> None:
    rec = _Recorder()
    channel = TelegramChannel(TelegramChannelConfig(bot_token="123:SECRET", chat_id="-100"), _context(rec))
    outcome = await channel.deliver(DOWN)

    assert outcome.success
    assert outcome.destination == "telegram:-100"
    body = rec.body()
    assert body["chat_id"] == "-100"
    assert body["parse_mode"] == "Markdown"
    assert "*Acme*" in body["text"]


@pytest.mark.asyncio
async def test_telegram_failure_redacts_token() -> None:
    rec = _Recorder(httpx.Response(401, json={"ok": False, "description": "Unauthorized for 123:SECRET"}))
    channel = TelegramChannel(TelegramChannelConfig(bot_token="123:SECRET", chat_id="-100"), _context(rec))
    outcome = await channel.deliver(DOWN)
    assert outcome.success is False
    assert outcome.response_code == 401
    assert "123:SECRET" not in (outcome.error or "")
    assert "<redacted>" in (outcome.error or "")


@pytest.mark.asyncio
async def test_email_uses_smtp(monkeypatch: pytest.MonkeyPatch) -> None:
    sent = []

    async def fake_send(message, **kwargs):
        sent.append((message, kwargs))
        return ({}, "OK")

    monkeypatch.setattr("uptime_monitor.alerts.email.aiosmtplib.send", fake_send)
    channel = EmailChannel(EmailChannelConfig(address="ops@acme.test"), _context(_Recorder()))
    outcome = await channel.deliver(DOWN)

    assert outcome.success and outcome.destination == "ops@acme.test"
    message, kwargs = sent[0]
    assert message["To"] == "ops@acme.test"
    assert message["Subject"] == "🚨 Acme is DOWN"
    assert kwargs["hostname"] == "smtp.gmail.com"
    assert kwargs["port"] == 587


@pytest.mark.asyncio
async def test_email_smtp_error_is_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_send(message, **kwargs):
        raise OSError("connection reset")

    monkeypatch.setattr("uptime_monitor.alerts.email.aiosmtplib.send", fake_send)
    channel = EmailChannel(EmailChannelConfig(address="ops@acme.test"), _context(_Recorder()))
    outcome = await channel.deliver(UP)
    assert outcome.success is False
    assert "connection reset" in (outcome.error or "")


def test_email_html_is_escaped() -> None:
    payload = AlertPayload(
        target_name="<script>x</script>",
        target_url="https://acme.test",
        status="down",
        occurred_at=NOW,
        tenant_name="Acme",
    )
    html = render_alert_html(payload)
    assert "<script>x</script>" not in html
    assert "&lt;script&gt;" in html


@pytest.mark.asyncio
async def test_digest_bodies() -> None:
    digest = DigestPayload(
        tenant_name="Acme Agency",
        generated_at=NOW,
        entries=[
            DigestEntry(target_name="Acme", target_url="https://acme.test", status="up", response_time_ms=120),
            DigestEntry(target_name="Shop", target_url="https://shop.acme.test", status="down", error_message="timed_out"),
        ],
    )
    rec = _Recorder()
    await SlackChannel(SlackChannelConfig(webhook_url="https://hooks.slack.test/x"), _context(rec)).deliver_digest(digest)
    attachment = rec.body()["attachments"][0]
    assert attachment["color"] == "danger"
    assert "Shop | DOWN | timed_out" in attachment["text"]
    assert digest.title.endswith("1 up, 1 down")


def test_safe_url_drops_query_and_fragment() -> None:
    assert safe_url("https://hooks.test/path?token=abc#frag") == "https://hooks.test/path"
    assert safe_url("") == ""


def test_telegram_helpers() -> None:
    assert escape_markdown("a_b*c") == "a\\_b\\*c"
    parts = split_telegram_message("x" * (TELEGRAM_MAX_MESSAGE_LEN + 10))
    assert len(parts) == 2
    assert all(len(p) <= TELEGRAM_MAX_MESSAGE_LEN for p in parts)
