"""Configuration management for the uptime monitor."""

import os
import socket
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError


class ClassificationPolicy(BaseModel):
    """How raw probe outcomes map onto up/down."""
    not_found: Literal["removed", "client_error", "up"] = Field(
        default="removed",
        description="404 handling: 'removed' is down with a distinct message, "
        "'client_error' is a generic 4xx, 'up' treats it as reachable",
    )


class SmtpConfig(BaseModel):
    """SMTP relay used by the email channel."""
    host: str = Field(default="smtp.gmail.com")
    port: int = Field(default=587)
    username: Optional[str] = Field(default=None)
    password: Optional[str] = Field(default=None)
    use_tls: bool = Field(default=True, description="Issue STARTTLS after connecting")
    from_email: str = Field(default="alerts@uptime-monitor.local")
    timeout_seconds: float = Field(default=30.0)


class ChannelTimeouts(BaseModel):
    """Per-channel HTTP timeouts in seconds."""
    webhook: float = 10.0
    telegram: float = 5.0
    discord: float = 10.0
    teams: float = 10.0
    slack: float = 10.0
    crm: float = 10.0


class RetentionConfig(BaseModel):
    check_log_days: int = Field(default=90, ge=1)
    alert_log_days: int = Field(default=365, ge=1)
    cron: str = Field(default="0 2 * * *", description="Cron expression for the cleanup job")


class ApiConfig(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)


class MonitorConfig(BaseModel):
    """Main configuration for the monitoring core."""

    log_level: str = Field(default="INFO", description="Logging level")
    worker_id: str = Field(default_factory=socket.gethostname, description="Recorded on every check result")

    # Probing
    check_timeout_seconds: float = Field(default=30.0, gt=0)
    max_concurrent_checks: int = Field(default=50, ge=1, description="Global ceiling on in-flight probes")
    max_concurrent_deliveries: int = Field(default=20, ge=1, description="Global ceiling on in-flight deliveries")
    user_agent: str = Field(default="Uptime-Monitor/1.0")
    classification: ClassificationPolicy = Field(default_factory=ClassificationPolicy)

    # Scheduling
    reconcile_interval_seconds: int = Field(default=30, ge=1)

    # Collaborators
    targets_file: str = Field(default="config/targets.yaml", description="YAML file listing targets and tenants")
    database_path: Optional[str] = Field(default=None, description="sqlite path; in-memory stores when unset")

    # Alerting
    smtp: SmtpConfig = Field(default_factory=SmtpConfig)
    channel_timeouts: ChannelTimeouts = Field(default_factory=ChannelTimeouts)

    # Remote workers posting results to /webhooks/report
    worker_token: str = Field(default="")

    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)


def _env_overrides() -> dict:
    overrides: dict = {}
    simple = {
        "log_level": os.getenv("LOG_LEVEL"),
        "worker_id": os.getenv("UPTIME_WORKER_ID"),
        "database_path": os.getenv("UPTIME_DB_PATH"),
        "worker_token": os.getenv("UPTIME_WORKER_TOKEN"),
        "targets_file": os.getenv("UPTIME_TARGETS_FILE"),
    }
    for key, value in simple.items():
        if value is not None:
            overrides[key] = value

    max_checks = os.getenv("UPTIME_MAX_CONCURRENT_CHECKS")
    if max_checks is not None:
        overrides["max_concurrent_checks"] = int(max_checks)

    smtp = {
        "host": os.getenv("SMTP_HOST"),
        "port": os.getenv("SMTP_PORT"),
        "username": os.getenv("SMTP_USER"),
        "password": os.getenv("SMTP_PASS"),
        "from_email": os.getenv("FROM_EMAIL"),
    }
    smtp = {k: v for k, v in smtp.items() if v is not None}
    if "port" in smtp:
        smtp["port"] = int(smtp["port"])
    if smtp:
        overrides["smtp"] = smtp
    return overrides


def load_config(config_path: Optional[str] = None) -> MonitorConfig:
    """Load configuration from a YAML file, then apply environment overrides."""
    if config_path is None:
        config_path = os.getenv("UPTIME_CONFIG", "config/monitor.yaml")

    config_data: dict = {}
    if os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}
        if not isinstance(config_data, dict):
            raise ConfigError(f"Config YAML must be a mapping: {config_path}")

    try:
        overrides = _env_overrides()
    except ValueError as exc:
        raise ConfigError(f"Invalid environment override: {exc}") from exc

    smtp_override = overrides.pop("smtp", None)
    config_data.update(overrides)
    if smtp_override:
        merged = dict(config_data.get("smtp") or {})
        merged.update(smtp_override)
        config_data["smtp"] = merged

    try:
        return MonitorConfig(**config_data)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc
