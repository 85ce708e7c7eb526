"""
Traffic taps

A TrafficTap is the "raw network event source" adapters listen to. Whatever
networking layer is available (a browser-side script posting to the tap
service, or a websocket we own) pushes RawNetworkEvents into it; adapters
subscribe to it. Observation only: listeners never alter the traffic.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Callable, List

from harvest.schemas.events import RawEventKind, RawNetworkEvent
from harvest.utils.logging import get_logger

logger = get_logger(__name__, category="tap")

Listener = Callable[[RawNetworkEvent], Any]


class TrafficTap:
    """Fan-out hub for observed traffic."""

    def __init__(self):
        self.listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        if listener not in self.listeners:
            self.listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self.listeners:
            self.listeners.remove(listener)

    def emit(self, event: RawNetworkEvent) -> None:
        """Deliver an event to every listener; a failing listener never affects the others."""
        for listener in list(self.listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Tap listener failed on {event.kind.value} from {event.url}: {e}")


class ObservedWebSocket:
    """
    Wrap an open websocket so its traffic is reported to a tap.

    Every attribute and call passes through to the wrapped socket unchanged;
    outbound frames are reported before they are sent, inbound frames after
    they are received.
    """

    def __init__(self, ws: Any, tap: TrafficTap, url: str = ""):
        self._ws = ws
        self._tap = tap
        self._url = url

    async def send(self, message, *args, **kwargs):
        self._tap.emit(
            RawNetworkEvent(kind=RawEventKind.WEBSOCKET_SEND, url=self._url, data=message)
        )
        return await self._ws.send(message, *args, **kwargs)

    async def recv(self, *args, **kwargs):
        message = await self._ws.recv(*args, **kwargs)
        self._tap.emit(
            RawNetworkEvent(kind=RawEventKind.WEBSOCKET_MESSAGE, url=self._url, data=message)
        )
        return message

    async def __aiter__(self) -> AsyncIterator[Any]:
        async for message in self._ws:
            self._tap.emit(
                RawNetworkEvent(kind=RawEventKind.WEBSOCKET_MESSAGE, url=self._url, data=message)
            )
            yield message

    def __getattr__(self, name: str) -> Any:
        return getattr(self._ws, name)
