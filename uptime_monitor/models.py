from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Union


STATUS_UP = "up"
STATUS_DOWN = "down"
INCIDENT_RESOLVED = "resolved"

EVENT_OPENED = "opened"
EVENT_RESOLVED = "resolved"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Target:
    id: str
    url: str
    check_interval_seconds: int
    active: bool = True
    tenant_id: str = ""
    name: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.url


@dataclass(frozen=True)
class CheckResult:
    target_id: str
    status: str
    response_time_ms: int
    checked_at: datetime
    worker_id: str
    status_code: int | None = None
    error_message: str | None = None

    @property
    def is_up(self) -> bool:
        return self.status == STATUS_UP


@dataclass(frozen=True)
class Incident:
    id: str
    target_id: str
    started_at: datetime
    description: str
    status: str = STATUS_DOWN
    resolved_at: datetime | None = None
    duration_minutes: int | None = None

    @property
    def is_open(self) -> bool:
        return self.resolved_at is None

    def resolve(self, resolved_at: datetime) -> Incident:
        elapsed = (resolved_at - self.started_at).total_seconds()
        minutes = max(0, int(elapsed // 60))
        return replace(self, status=INCIDENT_RESOLVED, resolved_at=resolved_at, duration_minutes=minutes)


@dataclass(frozen=True)
class IncidentEvent:
    kind: str  # "opened" | "resolved"
    incident: Incident
    target_id: str
    occurred_at: datetime

    @property
    def is_down(self) -> bool:
        return self.kind == EVENT_OPENED


class ChannelKind(str, Enum):
    EMAIL = "email"
    SLACK = "slack"
    DISCORD = "discord"
    TEAMS = "teams"
    WEBHOOK = "webhook"
    TELEGRAM = "telegram"
    CRM = "crm"

    @property
    def toggle_name(self) -> str:
        return f"{self.value}_alerts"


@dataclass(frozen=True)
class EmailChannelConfig:
    address: str


@dataclass(frozen=True)
class SlackChannelConfig:
    webhook_url: str
    channel: str | None = None


@dataclass(frozen=True)
class DiscordChannelConfig:
    webhook_url: str


@dataclass(frozen=True)
class TeamsChannelConfig:
    webhook_url: str


@dataclass(frozen=True)
class WebhookChannelConfig:
    url: str
    name: str | None = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TelegramChannelConfig:
    bot_token: str
    chat_id: str


@dataclass(frozen=True)
class CrmChannelConfig:
    webhook_url: str
    location_id: str | None = None


AlertChannelConfig = Union[
    EmailChannelConfig,
    SlackChannelConfig,
    DiscordChannelConfig,
    TeamsChannelConfig,
    WebhookChannelConfig,
    TelegramChannelConfig,
    CrmChannelConfig,
]

CHANNEL_CONFIG_TYPES: dict[ChannelKind, type] = {
    ChannelKind.EMAIL: EmailChannelConfig,
    ChannelKind.SLACK: SlackChannelConfig,
    ChannelKind.DISCORD: DiscordChannelConfig,
    ChannelKind.TEAMS: TeamsChannelConfig,
    ChannelKind.WEBHOOK: WebhookChannelConfig,
    ChannelKind.TELEGRAM: TelegramChannelConfig,
    ChannelKind.CRM: CrmChannelConfig,
}


@dataclass(frozen=True)
class TenantAlertSettings:
    tenant_id: str
    tenant_name: str
    enabled: dict[ChannelKind, bool] = field(default_factory=dict)
    channels: dict[ChannelKind, AlertChannelConfig] = field(default_factory=dict)
    brand_color: str | None = None

    def active_channels(self) -> list[tuple[ChannelKind, AlertChannelConfig]]:
        """Channels that are both toggled on and configured, in declaration order."""
        out: list[tuple[ChannelKind, AlertChannelConfig]] = []
        for kind in ChannelKind:
            if not self.enabled.get(kind, False):
                continue
            config = self.channels.get(kind)
            if config is None:
                continue
            out.append((kind, config))
        return out


@dataclass(frozen=True)
class AlertLogEntry:
    tenant_id: str
    channel_kind: ChannelKind
    destination: str
    message: str
    sent_at: datetime
    success: bool
    target_id: str | None = None
    incident_id: str | None = None
    error: str | None = None
