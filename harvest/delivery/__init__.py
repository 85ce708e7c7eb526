"""
Delivery layer: pacing, viewer totals and the overlay-side relay feed
"""

from .feed import MessageStore, OverlayFeed, StoreResult
from .pacer import DeliveryPacer
from .viewers import ViewerAggregator, aggregate

__all__ = [
    "DeliveryPacer",
    "MessageStore",
    "OverlayFeed",
    "StoreResult",
    "ViewerAggregator",
    "aggregate",
]
