from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from uptime_monitor.models import (
    STATUS_DOWN,
    STATUS_UP,
    CheckResult,
    IncidentEvent,
    Target,
    TenantAlertSettings,
)


DOWN_EMOJI = "🚨"
UP_EMOJI = "✅"
UNKNOWN_STATUS = "unknown"


@dataclass(frozen=True)
class AlertPayload:
    """Channel-neutral content of one transition notification."""

    target_name: str
    target_url: str
    status: str  # "down" | "up"
    occurred_at: datetime
    tenant_name: str
    description: str | None = None
    target_id: str | None = None
    incident_id: str | None = None
    brand_color: str | None = None

    @property
    def is_down(self) -> bool:
        return self.status == STATUS_DOWN

    @property
    def status_text(self) -> str:
        return "DOWN" if self.is_down else "BACK UP"

    @property
    def emoji(self) -> str:
        return DOWN_EMOJI if self.is_down else UP_EMOJI

    @property
    def severity(self) -> str:
        return "critical" if self.is_down else "resolved"

    @property
    def title(self) -> str:
        return f"{self.emoji} {self.target_name} is {self.status_text}"


@dataclass(frozen=True)
class DigestEntry:
    target_name: str
    target_url: str
    status: str  # "up" | "down" | "unknown"
    response_time_ms: int | None = None
    checked_at: datetime | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class DigestPayload:
    """Consolidated status of every target of one tenant."""

    tenant_name: str
    generated_at: datetime
    entries: list[DigestEntry] = field(default_factory=list)
    brand_color: str | None = None

    @property
    def up_count(self) -> int:
        return sum(1 for e in self.entries if e.status == STATUS_UP)

    @property
    def down_count(self) -> int:
        return sum(1 for e in self.entries if e.status == STATUS_DOWN)

    @property
    def unknown_count(self) -> int:
        return sum(1 for e in self.entries if e.status not in (STATUS_UP, STATUS_DOWN))

    @property
    def any_down(self) -> bool:
        return self.down_count > 0

    @property
    def title(self) -> str:
        emoji = DOWN_EMOJI if self.any_down else UP_EMOJI
        return f"{emoji} Status report for {self.tenant_name}: {self.up_count} up, {self.down_count} down"


def build_alert_payload(settings: TenantAlertSettings, target: Target, event: IncidentEvent) -> AlertPayload:
    return AlertPayload(
        target_name=target.display_name,
        target_url=target.url,
        status=STATUS_DOWN if event.is_down else STATUS_UP,
        occurred_at=event.occurred_at,
        tenant_name=settings.tenant_name,
        description=event.incident.description if event.is_down else None,
        target_id=target.id,
        incident_id=event.incident.id,
        brand_color=settings.brand_color,
    )


def build_digest(
    settings: TenantAlertSettings,
    targets: list[Target],
    latest: dict[str, CheckResult | None],
    *,
    generated_at: datetime,
) -> DigestPayload:
    entries: list[DigestEntry] = []
    for target in targets:
        result = latest.get(target.id)
        if result is None:
            entries.append(DigestEntry(target_name=target.display_name, target_url=target.url, status=UNKNOWN_STATUS))
            continue
        entries.append(
            DigestEntry(
                target_name=target.display_name,
                target_url=target.url,
                status=result.status,
                response_time_ms=result.response_time_ms,
                checked_at=result.checked_at,
                error_message=result.error_message,
            )
        )
    return DigestPayload(
        tenant_name=settings.tenant_name,
        generated_at=generated_at,
        entries=entries,
        brand_color=settings.brand_color,
    )


def format_time(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M:%S %Z").strip()


def format_alert_text(payload: AlertPayload) -> str:
    lines = [payload.title, f"Site: {payload.target_name} ({payload.target_url})", f"Status: {payload.status_text}"]
    if payload.is_down:
        lines.append(f"Incident started: {format_time(payload.occurred_at)}")
        lines.append(f"Description: {payload.description or 'Site is not responding'}")
    else:
        lines.append(f"Incident resolved: {format_time(payload.occurred_at)}")
    lines.append(f"Agency: {payload.tenant_name}")
    return "\n".join(lines).strip()


def format_digest_line(entry: DigestEntry) -> str:
    if entry.status == STATUS_UP:
        marker = UP_EMOJI
    elif entry.status == STATUS_DOWN:
        marker = DOWN_EMOJI
    else:
        marker = "❔"
    parts = [f"{marker} {entry.target_name}", entry.status.upper()]
    if entry.response_time_ms is not None:
        parts.append(f"{entry.response_time_ms}ms")
    if entry.error_message:
        parts.append(entry.error_message)
    return " | ".join(parts)


def format_digest_text(digest: DigestPayload) -> str:
    lines = [digest.title, f"Generated: {format_time(digest.generated_at)}", ""]
    if not digest.entries:
        lines.append("No monitored sites.")
    for entry in digest.entries:
        lines.append(format_digest_line(entry))
    return "\n".join(lines).strip()
