"""
Relay layer: the WebSocket link between harvesters, overlays and the relay server
"""

from .connection import ConnectionState, QueuePolicy, RelayConnection

__all__ = ["ConnectionState", "QueuePolicy", "RelayConnection"]
