"""
Ingest layer: platform harvesters and the traffic taps they listen to
"""

from .base import Capability, IdentityDiscoveryError, PlatformAdapter
from .currency import parse_payment
from .registry import ADAPTERS, create_adapter, detect_platform
from .taps import ObservedWebSocket, TrafficTap

__all__ = [
    "ADAPTERS",
    "Capability",
    "IdentityDiscoveryError",
    "ObservedWebSocket",
    "PlatformAdapter",
    "TrafficTap",
    "create_adapter",
    "detect_platform",
    "parse_payment",
]
