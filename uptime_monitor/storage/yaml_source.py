"""
YAML-backed target list and tenant alert settings.

The file is re-read on every call so edits are picked up by the next
reconciliation pass without a restart. Shape:

    tenants:
      - id: acme
        name: Acme Agency
        alerts: {email_alerts: true, slack_alerts: true}
        channels:
          email: {address: ops@acme.test}
          slack: {webhook_url: https://hooks.slack.com/services/..., channel: "#ops"}
    targets:
      - id: acme-home
        tenant: acme
        name: Acme Home
        url: https://acme.test
        interval_seconds: 300
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml

from uptime_monitor.errors import ConfigError
from uptime_monitor.models import (
    CHANNEL_CONFIG_TYPES,
    AlertChannelConfig,
    ChannelKind,
    Target,
    TenantAlertSettings,
    WebhookChannelConfig,
)


logger = structlog.get_logger(__name__)

DEFAULT_INTERVAL_SECONDS = 300

# Email alerts are on unless a tenant turns them off; every other channel is opt-in.
DEFAULT_TOGGLES = {kind: kind is ChannelKind.EMAIL for kind in ChannelKind}


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a YAML mapping")
    return data


def _parse_target(idx: int, entry: Any) -> Target:
    if not isinstance(entry, dict):
        raise ValueError(f"targets[{idx}] must be a mapping, got {type(entry).__name__}")

    target_id = str(entry.get("id") or "").strip()
    if not target_id:
        raise ValueError(f"targets[{idx}].id is required")
    url = str(entry.get("url") or "").strip()
    if not url:
        raise ValueError(f"targets[{idx}].url is required")

    interval = entry.get("interval_seconds", entry.get("check_interval_seconds", DEFAULT_INTERVAL_SECONDS))
    try:
        interval = int(interval)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"targets[{idx}].interval_seconds must be an integer") from exc

    active = bool(entry.get("active", True)) and not bool(entry.get("disabled", False))
    return Target(
        id=target_id,
        url=url,
        check_interval_seconds=interval,
        active=active,
        tenant_id=str(entry.get("tenant") or entry.get("tenant_id") or "").strip(),
        name=str(entry.get("name") or "").strip(),
    )


def _parse_channel(kind: ChannelKind, raw: Any) -> AlertChannelConfig:
    if not isinstance(raw, dict):
        raise ValueError(f"channel {kind.value} must be a mapping")
    if kind is ChannelKind.WEBHOOK:
        headers = raw.get("headers") or {}
        if not isinstance(headers, dict):
            raise ValueError("channel webhook.headers must be a mapping")
        return WebhookChannelConfig(
            url=str(raw.get("url") or "").strip(),
            name=raw.get("name"),
            headers={str(k): str(v) for k, v in headers.items()},
        )
    config_type = CHANNEL_CONFIG_TYPES[kind]
    return config_type(**raw)


def _parse_tenant(idx: int, entry: Any) -> TenantAlertSettings:
    if not isinstance(entry, dict):
        raise ValueError(f"tenants[{idx}] must be a mapping")
    tenant_id = str(entry.get("id") or "").strip()
    if not tenant_id:
        raise ValueError(f"tenants[{idx}].id is required")

    toggles_raw = entry.get("alerts") or {}
    enabled = dict(DEFAULT_TOGGLES)
    for kind in ChannelKind:
        if kind.toggle_name in toggles_raw:
            enabled[kind] = bool(toggles_raw[kind.toggle_name])

    channels: dict[ChannelKind, AlertChannelConfig] = {}
    for name, raw in (entry.get("channels") or {}).items():
        try:
            kind = ChannelKind(str(name))
        except ValueError:
            logger.warning("Unknown channel kind in tenant config", tenant_id=tenant_id, channel=name)
            continue
        channels[kind] = _parse_channel(kind, raw)

    return TenantAlertSettings(
        tenant_id=tenant_id,
        tenant_name=str(entry.get("name") or tenant_id),
        enabled=enabled,
        channels=channels,
        brand_color=entry.get("brand_color"),
    )


class YamlTargetSource:
    """Target list and tenant settings read from one YAML file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def list_targets(self) -> list[Target]:
        data = _load_yaml(self.path)
        raw_targets = data.get("targets") or []
        if not isinstance(raw_targets, list):
            raise ConfigError("targets must be a list")

        targets: list[Target] = []
        seen: set[str] = set()
        for idx, entry in enumerate(raw_targets):
            try:
                target = _parse_target(idx, entry)
            except ValueError as exc:
                logger.warning("Skipping invalid target entry", index=idx, error=str(exc))
                continue
            if target.id in seen:
                logger.warning("Skipping duplicate target entry", target_id=target.id)
                continue
            seen.add(target.id)
            targets.append(target)
        return targets

    def get_alert_settings(self, tenant_id: str) -> TenantAlertSettings | None:
        data = _load_yaml(self.path)
        for idx, entry in enumerate(data.get("tenants") or []):
            if not isinstance(entry, dict) or str(entry.get("id") or "").strip() != tenant_id:
                continue
            try:
                return _parse_tenant(idx, entry)
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"Invalid tenant settings tenant_id={tenant_id}: {exc}") from exc
        return None
