"""Realtime channel, transport and typed feeds."""
from .feeds import BoundedHistory, NotificationsFeed, VaultUpdatesFeed
from .realtime import RealtimeChannel
from .transport import AiohttpTransport

__all__ = [
    "AiohttpTransport",
    "BoundedHistory",
    "NotificationsFeed",
    "RealtimeChannel",
    "VaultUpdatesFeed",
]
