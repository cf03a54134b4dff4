from __future__ import annotations

from dataclasses import dataclass

from uptime_monitor.config import ClassificationPolicy
from uptime_monitor.models import STATUS_DOWN, STATUS_UP


DNS_NOT_FOUND = "dns_not_found"
CONNECTION_REFUSED = "connection_refused"
TIMED_OUT = "timed_out"
TLS_ERROR = "tls_error"
CONNECTION_FAILED = "connection_failed"

NOT_FOUND_MESSAGE = "not_found_possibly_removed"

TRANSPORT_ERRORS = frozenset({DNS_NOT_FOUND, CONNECTION_REFUSED, TIMED_OUT, TLS_ERROR, CONNECTION_FAILED})

_DEFAULT_POLICY = ClassificationPolicy()


@dataclass(frozen=True)
class ProbeOutcome:
    """What a single probe observed: either a status code or a transport error category."""

    status_code: int | None = None
    transport_error: str | None = None


@dataclass(frozen=True)
class Classification:
    status: str
    error_message: str | None = None


def classify(outcome: ProbeOutcome, policy: ClassificationPolicy | None = None) -> Classification:
    """
    Map a probe outcome onto (status, error_message).

    Transport failures win over any status code; then 2xx/3xx is up, 404 follows
    the policy, other 4xx is a client error and 5xx a server error.
    """
    policy = policy or _DEFAULT_POLICY

    if outcome.transport_error is not None or outcome.status_code is None:
        category = outcome.transport_error if outcome.transport_error in TRANSPORT_ERRORS else CONNECTION_FAILED
        return Classification(STATUS_DOWN, category)

    code = int(outcome.status_code)
    if 200 <= code < 400:
        return Classification(STATUS_UP)

    if code == 404:
        if policy.not_found == "up":
            return Classification(STATUS_UP)
        if policy.not_found == "removed":
            return Classification(STATUS_DOWN, NOT_FOUND_MESSAGE)

    if 400 <= code < 500:
        return Classification(STATUS_DOWN, f"client_error:{code}")
    if code >= 500:
        return Classification(STATUS_DOWN, f"server_error:{code}")
    return Classification(STATUS_DOWN, f"unexpected_status:{code}")
