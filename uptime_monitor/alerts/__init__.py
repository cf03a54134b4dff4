"""Alert payloads, notification channels and the dispatcher."""

from .base import Channel, ChannelContext, DeliveryOutcome
from .channels import CHANNEL_TYPES, build_channel
from .dispatcher import AlertDispatcher
from .payloads import AlertPayload, DigestPayload

__all__ = [
    "AlertDispatcher",
    "AlertPayload",
    "CHANNEL_TYPES",
    "Channel",
    "ChannelContext",
    "DeliveryOutcome",
    "DigestPayload",
    "build_channel",
]
