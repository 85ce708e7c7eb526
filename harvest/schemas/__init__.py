"""
Schemas: canonical chat events and raw observed traffic
"""

from .events import PageInfo, RawEventKind, RawNetworkEvent
from .messages import ChatMessage, LivestreamUpdate, RelayEnvelope, Subscription

__all__ = [
    "ChatMessage",
    "LivestreamUpdate",
    "PageInfo",
    "RawEventKind",
    "RawNetworkEvent",
    "RelayEnvelope",
    "Subscription",
]
