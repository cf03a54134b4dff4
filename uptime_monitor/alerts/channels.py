"""Concrete notification channels and the registry the dispatcher iterates."""

from __future__ import annotations

from typing import Any

from uptime_monitor.alerts.base import BOT_USERNAME, Channel, ChannelContext, HttpJsonChannel
from uptime_monitor.alerts.email import EmailChannel
from uptime_monitor.alerts.payloads import (
    AlertPayload,
    DigestPayload,
    format_digest_line,
    format_time,
)
from uptime_monitor.alerts.telegram import escape_markdown, send_telegram_message_chunked
from uptime_monitor.models import (
    AlertChannelConfig,
    ChannelKind,
    CrmChannelConfig,
    DiscordChannelConfig,
    SlackChannelConfig,
    TeamsChannelConfig,
    TelegramChannelConfig,
    WebhookChannelConfig,
)


AVATAR_URL = "https://cdn-icons-png.flaticon.com/512/1828/1828490.png"
FOOTER = "Agency Uptime Monitor"

DISCORD_RED = 15158332
DISCORD_GREEN = 3066993
DISCORD_DESCRIPTION_MAX = 4000


class SlackChannel(HttpJsonChannel):
    kind = ChannelKind.SLACK
    config: SlackChannelConfig

    @property
    def url(self) -> str:
        return self.config.webhook_url

    def _base(self) -> dict[str, Any]:
        body: dict[str, Any] = {"username": BOT_USERNAME, "icon_emoji": ":warning:"}
        if self.config.channel:
            body["channel"] = self.config.channel
        return body

    def alert_body(self, payload: AlertPayload) -> dict[str, Any]:
        fields = [
            {"title": "Site", "value": f"<{payload.target_url}|{payload.target_name}>", "short": True},
            {"title": "Status", "value": payload.status_text, "short": True},
            {"title": "Time", "value": format_time(payload.occurred_at), "short": True},
            {"title": "Agency", "value": payload.tenant_name, "short": True},
        ]
        if payload.description:
            fields.append({"title": "Description", "value": payload.description, "short": False})
        body = self._base()
        body["attachments"] = [
            {
                "color": "danger" if payload.is_down else "good",
                "title": payload.title,
                "title_link": payload.target_url,
                "fields": fields,
                "footer": FOOTER,
                "ts": int(payload.occurred_at.timestamp()),
            }
        ]
        return body

    def digest_body(self, digest: DigestPayload) -> dict[str, Any]:
        lines = [format_digest_line(e) for e in digest.entries] or ["No monitored sites."]
        body = self._base()
        body["attachments"] = [
            {
                "color": "danger" if digest.any_down else "good",
                "title": digest.title,
                "text": "\n".join(lines),
                "footer": FOOTER,
                "ts": int(digest.generated_at.timestamp()),
            }
        ]
        return body


class DiscordChannel(HttpJsonChannel):
    kind = ChannelKind.DISCORD
    config: DiscordChannelConfig

    @property
    def url(self) -> str:
        return self.config.webhook_url

    def alert_body(self, payload: AlertPayload) -> dict[str, Any]:
        fields = [
            {"name": "Site", "value": f"[{payload.target_name}]({payload.target_url})", "inline": True},
            {"name": "Status", "value": payload.status_text, "inline": True},
            {"name": "Time", "value": format_time(payload.occurred_at), "inline": True},
        ]
        if payload.description:
            fields.append({"name": "Description", "value": payload.description, "inline": False})
        embed = {
            "title": payload.title,
            "url": payload.target_url,
            "color": DISCORD_RED if payload.is_down else DISCORD_GREEN,
            "fields": fields,
            "footer": {"text": f"{FOOTER} | {payload.tenant_name}"},
            "timestamp": payload.occurred_at.isoformat(),
        }
        return {"username": BOT_USERNAME, "avatar_url": AVATAR_URL, "embeds": [embed]}

    def digest_body(self, digest: DigestPayload) -> dict[str, Any]:
        description = "\n".join(format_digest_line(e) for e in digest.entries) or "No monitored sites."
        embed = {
            "title": digest.title,
            "description": description[:DISCORD_DESCRIPTION_MAX],
            "color": DISCORD_RED if digest.any_down else DISCORD_GREEN,
            "footer": {"text": f"{FOOTER} | {digest.tenant_name}"},
            "timestamp": digest.generated_at.isoformat(),
        }
        return {"username": BOT_USERNAME, "avatar_url": AVATAR_URL, "embeds": [embed]}


class TeamsChannel(HttpJsonChannel):
    kind = ChannelKind.TEAMS
    config: TeamsChannelConfig

    @property
    def url(self) -> str:
        return self.config.webhook_url

    def alert_body(self, payload: AlertPayload) -> dict[str, Any]:
        facts = [
            {"name": "Site", "value": payload.target_name},
            {"name": "URL", "value": payload.target_url},
            {"name": "Status", "value": payload.status_text},
            {"name": "Time", "value": format_time(payload.occurred_at)},
            {"name": "Agency", "value": payload.tenant_name},
        ]
        if payload.description:
            facts.append({"name": "Description", "value": payload.description})
        return {
            "@type": "MessageCard",
            "@context": "https://schema.org/extensions",
            "themeColor": "FF0000" if payload.is_down else "00FF00",
            "summary": f"{payload.target_name} is {payload.status_text}",
            "sections": [
                {
                    "activityTitle": f"{payload.emoji} Site Status Alert",
                    "activitySubtitle": f"{payload.target_name} is {payload.status_text}",
                    "activityImage": AVATAR_URL,
                    "facts": facts,
                    "markdown": True,
                }
            ],
            "potentialAction": [
                {
                    "@type": "OpenUri",
                    "name": "Visit Site",
                    "targets": [{"os": "default", "uri": payload.target_url}],
                }
            ],
        }

    def digest_body(self, digest: DigestPayload) -> dict[str, Any]:
        facts = [{"name": e.target_name, "value": format_digest_line(e)} for e in digest.entries]
        return {
            "@type": "MessageCard",
            "@context": "https://schema.org/extensions",
            "themeColor": "FF0000" if digest.any_down else "00FF00",
            "summary": digest.title,
            "sections": [
                {
                    "activityTitle": digest.title,
                    "activitySubtitle": f"Generated {format_time(digest.generated_at)}",
                    "facts": facts,
                    "markdown": True,
                }
            ],
        }


class WebhookChannel(HttpJsonChannel):
    kind = ChannelKind.WEBHOOK
    config: WebhookChannelConfig

    @property
    def url(self) -> str:
        return self.config.url

    def headers(self) -> dict[str, str]:
        headers = super().headers()
        headers.update(self.config.headers or {})
        return headers

    def alert_body(self, payload: AlertPayload) -> dict[str, Any]:
        return {
            "event": "site_status_change",
            "timestamp": payload.occurred_at.isoformat(),
            "site": {
                "id": payload.target_id,
                "name": payload.target_name,
                "url": payload.target_url,
                "status": payload.status,
            },
            "incident": {
                "id": payload.incident_id,
                "status": payload.status,
                "description": payload.description,
            },
            "agency": {"name": payload.tenant_name},
            "alert": {
                "message": f"{payload.emoji} {payload.target_name} is {'DOWN' if payload.is_down else 'back UP'}",
                "severity": payload.severity,
                "type": "uptime_alert",
            },
        }

    def digest_body(self, digest: DigestPayload) -> dict[str, Any]:
        return {
            "event": "status_report",
            "timestamp": digest.generated_at.isoformat(),
            "agency": {"name": digest.tenant_name},
            "summary": {"up": digest.up_count, "down": digest.down_count, "unknown": digest.unknown_count},
            "sites": [
                {
                    "name": e.target_name,
                    "url": e.target_url,
                    "status": e.status,
                    "response_time_ms": e.response_time_ms,
                    "checked_at": e.checked_at.isoformat() if e.checked_at else None,
                    "error_message": e.error_message,
                }
                for e in digest.entries
            ],
        }


class CrmChannel(HttpJsonChannel):
    kind = ChannelKind.CRM
    config: CrmChannelConfig

    @property
    def url(self) -> str:
        return self.config.webhook_url

    def alert_body(self, payload: AlertPayload) -> dict[str, Any]:
        if payload.is_down:
            message = f"🚨 ALERT: {payload.target_name} is DOWN. Please check immediately."
        else:
            message = f"✅ RESOLVED: {payload.target_name} is back online."
        body: dict[str, Any] = {
            "type": "uptime_alert",
            "site_name": payload.target_name,
            "site_url": payload.target_url,
            "status": payload.status,
            "message": message,
            "timestamp": payload.occurred_at.isoformat(),
        }
        if self.config.location_id:
            body["location_id"] = self.config.location_id
        return body

    def digest_body(self, digest: DigestPayload) -> dict[str, Any]:
        body: dict[str, Any] = {
            "type": "uptime_report",
            "message": digest.title,
            "sites": [{"site_name": e.target_name, "site_url": e.target_url, "status": e.status} for e in digest.entries],
            "timestamp": digest.generated_at.isoformat(),
        }
        if self.config.location_id:
            body["location_id"] = self.config.location_id
        return body


class TelegramChannel(Channel):
    kind = ChannelKind.TELEGRAM
    config: TelegramChannelConfig

    @property
    def destination(self) -> str:
        return f"telegram:{self.config.chat_id}"

    def alert_text(self, payload: AlertPayload) -> str:
        name = escape_markdown(payload.target_name)
        lines = [
            f"{payload.emoji} *{name}* is {payload.status_text}",
            "",
            f"🔗 *Site:* [{name}]({payload.target_url})",
            f"📊 *Status:* {payload.status_text}",
            f"⏰ *Time:* {escape_markdown(format_time(payload.occurred_at))}",
            f"🏢 *Agency:* {escape_markdown(payload.tenant_name)}",
        ]
        if payload.description:
            lines.append("")
            lines.append(f"📝 *Description:* {escape_markdown(payload.description)}")
        lines.append("")
        lines.append(f"_Powered by {FOOTER}_")
        return "\n".join(lines)

    def digest_text(self, digest: DigestPayload) -> str:
        lines = [f"*{escape_markdown(digest.title)}*", ""]
        lines.extend(escape_markdown(format_digest_line(e)) for e in digest.entries)
        if not digest.entries:
            lines.append("No monitored sites.")
        return "\n".join(lines)

    async def _send(self, text: str) -> int | None:
        await send_telegram_message_chunked(
            self.context.http_client,
            bot_token=self.config.bot_token,
            chat_id=self.config.chat_id,
            text=text,
            timeout=self.context.timeouts.telegram,
        )
        return 200

    async def _send_alert(self, payload: AlertPayload) -> int | None:
        return await self._send(self.alert_text(payload))

    async def _send_digest(self, digest: DigestPayload) -> int | None:
        return await self._send(self.digest_text(digest))


CHANNEL_TYPES: dict[ChannelKind, type[Channel]] = {
    ChannelKind.EMAIL: EmailChannel,
    ChannelKind.SLACK: SlackChannel,
    ChannelKind.DISCORD: DiscordChannel,
    ChannelKind.TEAMS: TeamsChannel,
    ChannelKind.WEBHOOK: WebhookChannel,
    ChannelKind.TELEGRAM: TelegramChannel,
    ChannelKind.CRM: CrmChannel,
}


def build_channel(kind: ChannelKind, config: AlertChannelConfig, context: ChannelContext) -> Channel:
    return CHANNEL_TYPES[kind](config, context)
