"""Shared contract for notification channels.

Every channel kind implements the same two capabilities, `deliver(payload)` for
a transition alert and `deliver_digest(digest)` for a consolidated report, and
reports the result as a DeliveryOutcome instead of raising.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar
from urllib.parse import urlsplit, urlunsplit

import httpx
import structlog

from uptime_monitor.alerts.payloads import AlertPayload, DigestPayload, format_alert_text, format_digest_text
from uptime_monitor.config import ChannelTimeouts, SmtpConfig
from uptime_monitor.errors import ChannelDeliveryError
from uptime_monitor.models import AlertChannelConfig, ChannelKind


logger = structlog.get_logger(__name__)

USER_AGENT = "Agency-Uptime-Monitor/1.0"
BOT_USERNAME = "Agency Uptime"


@dataclass(frozen=True)
class DeliveryOutcome:
    kind: ChannelKind
    destination: str
    success: bool
    message: str
    error: str | None = None
    response_code: int | None = None


@dataclass
class ChannelContext:
    """Runtime dependencies shared by every channel instance."""

    http_client: httpx.AsyncClient
    timeouts: ChannelTimeouts = field(default_factory=ChannelTimeouts)
    smtp: SmtpConfig = field(default_factory=SmtpConfig)


def safe_url(url: str) -> str:
    """Drop query strings and fragments so tokens in them never reach the audit log."""
    s = (url or "").strip()
    if not s:
        return s
    try:
        parts = urlsplit(s)
        return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
    except ValueError:
        return s[:500]


class Channel(ABC):
    kind: ClassVar[ChannelKind]

    def __init__(self, config: AlertChannelConfig, context: ChannelContext):
        self.config = config
        self.context = context

    @property
    @abstractmethod
    def destination(self) -> str:
        """Audit-safe description of where deliveries go."""

    @abstractmethod
    async def _send_alert(self, payload: AlertPayload) -> int | None:
        """Deliver one alert; return a response code or raise ChannelDeliveryError."""

    @abstractmethod
    async def _send_digest(self, digest: DigestPayload) -> int | None:
        """Deliver one consolidated report; return a response code or raise ChannelDeliveryError."""

    async def deliver(self, payload: AlertPayload) -> DeliveryOutcome:
        return await self._attempt(format_alert_text(payload), self._send_alert(payload))

    async def deliver_digest(self, digest: DigestPayload) -> DeliveryOutcome:
        return await self._attempt(format_digest_text(digest), self._send_digest(digest))

    async def _attempt(self, message: str, send) -> DeliveryOutcome:
        try:
            code = await send
        except ChannelDeliveryError as exc:
            logger.warning("Channel delivery failed", channel=self.kind.value, destination=self.destination, error=str(exc))
            return DeliveryOutcome(
                kind=self.kind,
                destination=self.destination,
                success=False,
                message=message,
                error=str(exc),
                response_code=exc.response_code,
            )
        logger.info("Channel delivery sent", channel=self.kind.value, destination=self.destination)
        return DeliveryOutcome(
            kind=self.kind, destination=self.destination, success=True, message=message, response_code=code
        )


class HttpJsonChannel(Channel):
    """Channels that POST a JSON document to a webhook URL."""

    @property
    @abstractmethod
    def url(self) -> str: ...

    @property
    def timeout(self) -> float:
        return float(getattr(self.context.timeouts, self.kind.value, 10.0))

    @property
    def destination(self) -> str:
        return safe_url(self.url)

    def headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "User-Agent": USER_AGENT}

    @abstractmethod
    def alert_body(self, payload: AlertPayload) -> dict[str, Any]: ...

    @abstractmethod
    def digest_body(self, digest: DigestPayload) -> dict[str, Any]: ...

    async def _post(self, body: dict[str, Any]) -> int:
        if not self.url:
            raise ChannelDeliveryError("missing webhook url")
        try:
            resp = await self.context.http_client.post(
                self.url, json=body, headers=self.headers(), timeout=self.timeout
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ChannelDeliveryError(
                f"http_status: {exc.response.status_code}", response_code=exc.response.status_code
            ) from exc
        except httpx.HTTPError as exc:
            raise ChannelDeliveryError(f"http_error: {type(exc).__name__}: {exc}") from exc
        return resp.status_code

    async def _send_alert(self, payload: AlertPayload) -> int | None:
        return await self._post(self.alert_body(payload))

    async def _send_digest(self, digest: DigestPayload) -> int | None:
        return await self._post(self.digest_body(digest))
