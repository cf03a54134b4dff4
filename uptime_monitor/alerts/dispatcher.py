"""Fan-out of incident events and status digests to a tenant's channels."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Awaitable, Callable

import structlog

from uptime_monitor.alerts.base import Channel, ChannelContext, DeliveryOutcome
from uptime_monitor.alerts.channels import build_channel
from uptime_monitor.alerts.payloads import (
    AlertPayload,
    DigestPayload,
    build_alert_payload,
    build_digest,
    format_alert_text,
    format_digest_text,
)
from uptime_monitor.models import (
    STATUS_DOWN,
    AlertChannelConfig,
    AlertLogEntry,
    ChannelKind,
    CheckResult,
    IncidentEvent,
    Target,
    TenantAlertSettings,
    utc_now,
)
from uptime_monitor.storage.base import AlertLogStore, CheckLogStore, TenantSettingsStore


logger = structlog.get_logger(__name__)

ChannelFactory = Callable[[ChannelKind, AlertChannelConfig, ChannelContext], Channel]

TEST_ALERT_DESCRIPTION = "🧪 This is a test alert from Agency Uptime Monitor"


class AlertDispatcher:
    """
    Delivers notifications to every enabled and configured channel of a tenant.

    Each channel is attempted concurrently and independently: one channel failing
    or hanging never cancels, delays or hides another. Every attempt writes exactly
    one AlertLogEntry when it finishes. Failed deliveries are not retried.
    """

    def __init__(
        self,
        settings_store: TenantSettingsStore,
        alert_log: AlertLogStore,
        context: ChannelContext,
        *,
        limiter: asyncio.Semaphore,
        check_log: CheckLogStore | None = None,
        channel_factory: ChannelFactory = build_channel,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings_store = settings_store
        self.alert_log = alert_log
        self.context = context
        self.limiter = limiter
        self.check_log = check_log
        self.channel_factory = channel_factory
        self.clock = clock

    def _load_settings(self, tenant_id: str) -> TenantAlertSettings | None:
        try:
            settings = self.settings_store.get_alert_settings(tenant_id)
        except Exception as exc:
            logger.error("Failed to load tenant alert settings", tenant_id=tenant_id, error=str(exc))
            return None
        if settings is None:
            logger.warning("No alert settings for tenant", tenant_id=tenant_id)
        return settings

    def _record(
        self,
        outcome: DeliveryOutcome,
        *,
        tenant_id: str,
        target_id: str | None,
        incident_id: str | None,
    ) -> None:
        entry = AlertLogEntry(
            tenant_id=tenant_id,
            target_id=target_id,
            incident_id=incident_id,
            channel_kind=outcome.kind,
            destination=outcome.destination,
            message=outcome.message,
            sent_at=self.clock(),
            success=outcome.success,
            error=outcome.error,
        )
        try:
            self.alert_log.append(entry)
        except Exception as exc:
            logger.error("Failed to write alert log entry", tenant_id=tenant_id, channel=outcome.kind.value, error=str(exc))

    async def _attempt(
        self,
        kind: ChannelKind,
        config: AlertChannelConfig,
        send: Callable[[Channel], Awaitable[DeliveryOutcome]],
        *,
        fallback_message: str,
        tenant_id: str,
        target_id: str | None,
        incident_id: str | None,
    ) -> DeliveryOutcome:
        async with self.limiter:
            channel: Channel | None = None
            try:
                channel = self.channel_factory(kind, config, self.context)
                outcome = await send(channel)
            except Exception as exc:
                logger.exception("Channel delivery crashed", tenant_id=tenant_id, channel=kind.value)
                outcome = DeliveryOutcome(
                    kind=kind,
                    destination=channel.destination if channel is not None else kind.value,
                    success=False,
                    message=fallback_message,
                    error=f"{type(exc).__name__}: {exc}",
                )
        self._record(outcome, tenant_id=tenant_id, target_id=target_id, incident_id=incident_id)
        return outcome

    async def _fan_out(
        self,
        settings: TenantAlertSettings,
        send: Callable[[Channel], Awaitable[DeliveryOutcome]],
        *,
        fallback_message: str,
        target_id: str | None,
        incident_id: str | None,
    ) -> list[DeliveryOutcome]:
        channels = settings.active_channels()
        if not channels:
            logger.info("No enabled alert channels", tenant_id=settings.tenant_id)
            return []
        attempts = [
            self._attempt(
                kind,
                config,
                send,
                fallback_message=fallback_message,
                tenant_id=settings.tenant_id,
                target_id=target_id,
                incident_id=incident_id,
            )
            for kind, config in channels
        ]
        return list(await asyncio.gather(*attempts))

    async def dispatch(self, tenant_id: str, target: Target, event: IncidentEvent) -> list[DeliveryOutcome]:
        settings = self._load_settings(tenant_id)
        if settings is None:
            return []

        payload = build_alert_payload(settings, target, event)
        outcomes = await self._fan_out(
            settings,
            lambda channel: channel.deliver(payload),
            fallback_message=format_alert_text(payload),
            target_id=target.id,
            incident_id=event.incident.id,
        )
        logger.info(
            "Dispatched incident alert",
            tenant_id=tenant_id,
            target_id=target.id,
            event_kind=event.kind,
            attempted=len(outcomes),
            succeeded=sum(1 for o in outcomes if o.success),
        )
        return outcomes

    def _latest_results(self, targets: list[Target]) -> dict[str, CheckResult | None]:
        latest: dict[str, CheckResult | None] = {}
        for target in targets:
            result = None
            if self.check_log is not None:
                try:
                    result = self.check_log.latest(target.id)
                except Exception as exc:
                    logger.warning("Failed to read latest check result", target_id=target.id, error=str(exc))
            latest[target.id] = result
        return latest

    async def dispatch_digest(self, tenant_id: str, targets: list[Target]) -> list[DeliveryOutcome]:
        """Send one consolidated report of all the tenant's targets to each channel."""
        settings = self._load_settings(tenant_id)
        if settings is None:
            return []

        own_targets = [t for t in targets if not t.tenant_id or t.tenant_id == tenant_id]
        digest: DigestPayload = build_digest(
            settings, own_targets, self._latest_results(own_targets), generated_at=self.clock()
        )
        outcomes = await self._fan_out(
            settings,
            lambda channel: channel.deliver_digest(digest),
            fallback_message=format_digest_text(digest),
            target_id=None,
            incident_id=None,
        )
        logger.info(
            "Dispatched status digest",
            tenant_id=tenant_id,
            targets=len(own_targets),
            attempted=len(outcomes),
            succeeded=sum(1 for o in outcomes if o.success),
        )
        return outcomes

    async def send_test_alert(
        self,
        tenant_id: str,
        kind: ChannelKind,
        config: AlertChannelConfig | None = None,
    ) -> DeliveryOutcome | None:
        """Send a sample down alert through one channel, ignoring its enabled toggle."""
        settings = self._load_settings(tenant_id)
        tenant_name = settings.tenant_name if settings is not None else tenant_id
        if config is None and settings is not None:
            config = settings.channels.get(kind)
        if config is None:
            logger.warning("No channel configuration for test alert", tenant_id=tenant_id, channel=kind.value)
            return None

        payload = AlertPayload(
            target_name="Test Site",
            target_url="https://example.com",
            status=STATUS_DOWN,
            occurred_at=self.clock(),
            tenant_name=tenant_name,
            description=TEST_ALERT_DESCRIPTION,
            brand_color=settings.brand_color if settings is not None else None,
        )
        return await self._attempt(
            kind,
            config,
            lambda channel: channel.deliver(payload),
            fallback_message=format_alert_text(payload),
            tenant_id=tenant_id,
            target_id=None,
            incident_id=None,
        )
