"""Single-probe execution against one target."""

from __future__ import annotations

import asyncio
import socket
import ssl
import time
from datetime import datetime
from typing import Callable, Iterator

import httpx
import structlog

from uptime_monitor.checks.classifier import (
    CONNECTION_FAILED,
    CONNECTION_REFUSED,
    DNS_NOT_FOUND,
    TIMED_OUT,
    TLS_ERROR,
    ProbeOutcome,
    classify,
)
from uptime_monitor.config import ClassificationPolicy
from uptime_monitor.models import CheckResult, Target, utc_now
from uptime_monitor.storage.base import CheckLogStore


logger = structlog.get_logger(__name__)

DEFAULT_CHECK_TIMEOUT_SECONDS = 30.0

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated with hostname",
    "name does not resolve",
)
_REFUSED_MARKERS = ("connection refused", "actively refused", "[errno 111]", "[errno 61]")
_TLS_MARKERS = ("certificate_verify_failed", "ssl:", "tlsv1", "wrong version number")


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    cur: BaseException | None = exc
    while cur is not None and id(cur) not in seen and len(seen) < 10:
        seen.add(id(cur))
        yield cur
        cur = cur.__cause__ or cur.__context__


def categorize_transport_error(exc: BaseException) -> str:
    """Reduce an httpx/transport exception to one of the classifier's categories."""
    if isinstance(exc, httpx.TimeoutException):
        return TIMED_OUT

    chain = list(_exception_chain(exc))
    for item in chain:
        if isinstance(item, (TimeoutError, asyncio.TimeoutError)):
            return TIMED_OUT
        if isinstance(item, socket.gaierror):
            return DNS_NOT_FOUND
        if isinstance(item, ConnectionRefusedError):
            return CONNECTION_REFUSED
        if isinstance(item, ssl.SSLError):
            return TLS_ERROR

    text = " ".join(str(item) for item in chain).lower()
    if any(marker in text for marker in _DNS_MARKERS):
        return DNS_NOT_FOUND
    if any(marker in text for marker in _REFUSED_MARKERS):
        return CONNECTION_REFUSED
    if any(marker in text for marker in _TLS_MARKERS):
        return TLS_ERROR
    return CONNECTION_FAILED


class CheckExecutor:
    """Issues one bounded-time GET per call and turns the outcome into a CheckResult."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        check_log: CheckLogStore,
        *,
        worker_id: str,
        limiter: asyncio.Semaphore,
        policy: ClassificationPolicy | None = None,
        timeout_seconds: float = DEFAULT_CHECK_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.http_client = http_client
        self.check_log = check_log
        self.worker_id = worker_id
        self.limiter = limiter
        self.policy = policy or ClassificationPolicy()
        self.timeout_seconds = float(timeout_seconds)
        self.clock = clock

    async def _probe(self, url: str) -> ProbeOutcome:
        # httpx timeouts apply per phase and per redirect hop; wait_for caps the whole request.
        try:
            resp = await asyncio.wait_for(
                self.http_client.get(url, follow_redirects=True, timeout=self.timeout_seconds),
                self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            return ProbeOutcome(transport_error=TIMED_OUT)
        except httpx.RequestError as exc:
            return ProbeOutcome(transport_error=categorize_transport_error(exc))
        except Exception as exc:
            # Malformed URLs and anything else the transport throws still yield a result.
            logger.warning("Probe raised unexpected error", url=url, error=f"{type(exc).__name__}: {exc}")
            return ProbeOutcome(transport_error=CONNECTION_FAILED)
        return ProbeOutcome(status_code=resp.status_code)

    async def execute(self, target: Target) -> CheckResult:
        async with self.limiter:
            started = time.perf_counter()
            outcome = await self._probe(target.url)
            elapsed_ms = int(round((time.perf_counter() - started) * 1000.0))

        classification = classify(outcome, self.policy)
        result = CheckResult(
            target_id=target.id,
            status=classification.status,
            response_time_ms=elapsed_ms,
            checked_at=self.clock(),
            worker_id=self.worker_id,
            status_code=outcome.status_code,
            error_message=classification.error_message,
        )

        try:
            self.check_log.append(result)
        except Exception as exc:
            logger.warning(
                "Failed to persist check result",
                target_id=target.id,
                error=f"{type(exc).__name__}: {exc}",
            )

        logger.debug(
            "Check completed",
            target_id=target.id,
            status=result.status,
            status_code=result.status_code,
            response_time_ms=elapsed_ms,
            error_message=result.error_message,
        )
        return result
