"""SMTP email channel."""

from __future__ import annotations

from email.message import EmailMessage
from html import escape

import aiosmtplib

from uptime_monitor.alerts.base import Channel
from uptime_monitor.alerts.payloads import (
    AlertPayload,
    DigestPayload,
    format_alert_text,
    format_digest_line,
    format_digest_text,
    format_time,
)
from uptime_monitor.errors import ChannelDeliveryError
from uptime_monitor.models import ChannelKind, EmailChannelConfig


DEFAULT_BRAND_COLOR = "#3B82F6"
DOWN_COLOR = "#ef4444"
UP_COLOR = "#10b981"


def render_alert_html(payload: AlertPayload) -> str:
    brand = escape(payload.brand_color or DEFAULT_BRAND_COLOR)
    status_color = DOWN_COLOR if payload.is_down else UP_COLOR
    status_text = "DOWN" if payload.is_down else "UP"
    details = ""
    if payload.description:
        details = f'<p style="margin-bottom: 20px;"><strong>Details:</strong> {escape(payload.description)}</p>'
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Site Alert</title></head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: {brand}; color: white; padding: 20px; text-align: center; border-radius: 8px 8px 0 0;">
    <h1 style="margin: 0;">{escape(payload.tenant_name)}</h1>
  </div>
  <div style="background: #f8f9fa; padding: 30px; border-radius: 0 0 8px 8px; border: 1px solid #e9ecef;">
    <div style="background: {status_color}; color: white; padding: 15px; border-radius: 6px; text-align: center; margin-bottom: 20px;">
      <h2 style="margin: 0; font-size: 24px;">Site is {status_text}</h2>
    </div>
    <h3 style="color: #495057; margin-bottom: 15px;">{escape(payload.target_name)}</h3>
    <p><strong>URL:</strong> <a href="{escape(payload.target_url)}" style="color: {brand};">{escape(payload.target_url)}</a></p>
    <p><strong>Status:</strong> {status_text}</p>
    <p><strong>Time:</strong> {escape(format_time(payload.occurred_at))}</p>
    {details}
  </div>
</body>
</html>
"""


def render_digest_html(digest: DigestPayload) -> str:
    brand = escape(digest.brand_color or DEFAULT_BRAND_COLOR)
    rows = "\n".join(f"<li>{escape(format_digest_line(entry))}</li>" for entry in digest.entries)
    if not rows:
        rows = "<li>No monitored sites.</li>"
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Status Report</title></head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: {brand}; color: white; padding: 20px; text-align: center; border-radius: 8px 8px 0 0;">
    <h1 style="margin: 0;">{escape(digest.tenant_name)}</h1>
  </div>
  <div style="background: #f8f9fa; padding: 30px; border-radius: 0 0 8px 8px; border: 1px solid #e9ecef;">
    <h2>{digest.up_count} up, {digest.down_count} down</h2>
    <p>Generated: {escape(format_time(digest.generated_at))}</p>
    <ul>
{rows}
    </ul>
  </div>
</body>
</html>
"""


class EmailChannel(Channel):
    kind = ChannelKind.EMAIL
    config: EmailChannelConfig

    @property
    def destination(self) -> str:
        return self.config.address

    def _message(self, subject: str, text: str, html: str) -> EmailMessage:
        smtp = self.context.smtp
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = smtp.from_email
        message["To"] = self.config.address
        message.set_content(text)
        message.add_alternative(html, subtype="html")
        return message

    async def _send(self, message: EmailMessage) -> int:
        if not self.config.address:
            raise ChannelDeliveryError("missing email address")
        smtp = self.context.smtp
        try:
            await aiosmtplib.send(
                message,
                hostname=smtp.host,
                port=smtp.port,
                username=smtp.username,
                password=smtp.password,
                start_tls=smtp.use_tls,
                timeout=smtp.timeout_seconds,
            )
        except (aiosmtplib.SMTPException, OSError) as exc:
            raise ChannelDeliveryError(f"smtp_error: {type(exc).__name__}: {exc}") from exc
        return 250

    async def _send_alert(self, payload: AlertPayload) -> int | None:
        if payload.is_down:
            subject = f"🚨 {payload.target_name} is DOWN"
        else:
            subject = f"✅ {payload.target_name} is back UP"
        return await self._send(self._message(subject, format_alert_text(payload), render_alert_html(payload)))

    async def _send_digest(self, digest: DigestPayload) -> int | None:
        return await self._send(self._message(digest.title, format_digest_text(digest), render_digest_html(digest)))
