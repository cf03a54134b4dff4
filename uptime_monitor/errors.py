from __future__ import annotations


class MonitorError(Exception):
    """Base class for errors raised inside the monitoring core."""


class ConfigError(MonitorError):
    pass


class StoreError(MonitorError):
    """A collaborator store failed to read or write."""


class ChannelDeliveryError(MonitorError):
    def __init__(self, message: str, *, response_code: int | None = None):
        super().__init__(message)
        self.response_code = response_code
