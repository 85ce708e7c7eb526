"""
Overlay Feed

Consumer side of the relay: subscribes to a layout, keeps a bounded store
of recent messages, paces regular chat through a DeliveryPacer and hands
everything to renderer callbacks.
"""

from __future__ import annotations

from collections import OrderedDict
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from harvest.config import settings
from harvest.delivery.pacer import DeliveryPacer
from harvest.delivery.viewers import ViewerAggregator
from harvest.relay.connection import RelayConnection
from harvest.schemas.messages import (
    ChatMessage,
    FeatureMessageCommand,
    RelayEnvelope,
    RequestLayout,
    RequestMessages,
    SubscribeLayout,
    now_ms,
)
from harvest.utils.logging import get_logger

logger = get_logger(__name__, category="delivery")


# Premium messages stay pinned for 6 s per unit of amount, at most 10 minutes
STICKY_MS_PER_UNIT = 6_000
MAX_STICKY_MS = 600_000


class StoreResult(str, Enum):
    ADDED = "added"
    FINALIZED = "finalized"
    DUPLICATE = "duplicate"


def sticky_ms(message: ChatMessage) -> float:
    """How long a message is protected from eviction after it is stored."""
    if not message.is_premium:
        return 0
    return min(MAX_STICKY_MS, message.amount * STICKY_MS_PER_UNIT)


class MessageStore:
    """
    Recent messages by id, oldest first.

    Premium messages are not evicted while their sticky window lasts. A
    placeholder is replaced in place by the first non-placeholder message
    with the same id.
    """

    def __init__(self, capacity: Optional[int] = None, clock: Callable[[], float] = now_ms):
        self.capacity = capacity if capacity is not None else settings.message_store_capacity
        self.clock = clock
        self.messages: "OrderedDict[str, ChatMessage]" = OrderedDict()
        # id -> time (ms) until which the message may not be evicted
        self.sticky_until: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self.messages)

    def __contains__(self, message_id: str) -> bool:
        return message_id in self.messages

    def get(self, message_id: str) -> Optional[ChatMessage]:
        return self.messages.get(message_id)

    def add(self, message: ChatMessage) -> StoreResult:
        existing = self.messages.get(message.id)
        if existing is not None:
            if existing.is_placeholder and not message.is_placeholder:
                # Same key, so the position in the OrderedDict is kept
                self.messages[message.id] = message
                self._pin(message)
                return StoreResult.FINALIZED
            return StoreResult.DUPLICATE

        self.messages[message.id] = message
        self._pin(message)
        self._evict()
        return StoreResult.ADDED

    def is_sticky(self, message_id: str, now: Optional[float] = None) -> bool:
        now = self.clock() if now is None else now
        return self.sticky_until.get(message_id, 0) > now

    def _pin(self, message: ChatMessage) -> None:
        duration = sticky_ms(message)
        if duration > 0:
            self.sticky_until[message.id] = self.clock() + duration

    def _evict(self) -> None:
        excess = len(self.messages) - self.capacity
        if excess <= 0:
            return
        now = self.clock()
        for message_id in [
            mid for mid in self.messages if not self.is_sticky(mid, now)
        ][:excess]:
            del self.messages[message_id]
            self.sticky_until.pop(message_id, None)


class OverlayFeed:
    """Relay subscriber that turns relay frames into renderer callbacks."""

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        layout: Optional[str] = None,
        on_message: Optional[Callable[[ChatMessage], Any]] = None,
        on_feature: Optional[Callable[[Optional[ChatMessage]], Any]] = None,
        on_viewers: Optional[Callable[[int], Any]] = None,
        on_layout: Optional[Callable[[Any], Any]] = None,
        on_layout_list: Optional[Callable[[Any], Any]] = None,
        viewer_mode: str = "all",
        viewer_platforms: Iterable[str] = (),
        pacer: Optional[DeliveryPacer] = None,
        store: Optional[MessageStore] = None,
        connect: Optional[Callable[[str], Awaitable[Any]]] = None,
    ):
        """
        Args:
            url: Relay endpoint for overlays
            layout: Layout name to subscribe to; None asks the relay for the default
            on_message: Renderer for each released message
            on_feature: Called with the featured message, or None when cleared
            on_viewers: Called with the filtered viewer total
            on_layout: Called with a layout_update payload
            on_layout_list: Called with a layout_list payload
            viewer_mode: "all", "include" or "exclude"
            viewer_platforms: Platforms the viewer mode applies to
            pacer: Pacer to use instead of a default one
            store: Store to use instead of a default one
            connect: Transport factory passed to the RelayConnection
        """
        self.layout = layout
        self.on_message = on_message
        self.on_feature = on_feature
        self.on_viewers = on_viewers
        self.on_layout = on_layout
        self.on_layout_list = on_layout_list

        self.store = store if store is not None else MessageStore()
        self.pacer = pacer if pacer is not None else DeliveryPacer(self._display)
        self.pacer.deliver = self._display
        self.viewers = ViewerAggregator(viewer_mode, viewer_platforms)

        self.displayed: set = set()
        self.pending_feature: Optional[str] = None
        self.featured: Optional[str] = None

        self.connection = RelayConnection(
            url,
            reconnect_delay=settings.overlay_reconnect_delay,
            on_open=self.control_messages,
            on_message=self.handle_frame,
            connect=connect,
            name="overlay",
        )

        self.handlers: Dict[str, Callable[[Any], None]] = {
            "chat_message": self.handle_chat_message,
            "feature_message": self.handle_feature_message,
            "viewers": self.handle_viewers,
            "layout_update": self.handle_layout_update,
            "layout_list": self.handle_layout_list,
        }

    async def start(self) -> None:
        await self.connection.start()

    async def close(self) -> None:
        self.pacer.stop()
        await self.connection.close()

    def control_messages(self) -> List[Any]:
        """Frames sent on every (re)connect."""
        first = SubscribeLayout(subscribe_layout=self.layout) if self.layout else RequestLayout()
        return [first, RequestMessages()]

    def feature(self, message_id: Optional[str]) -> bool:
        """Ask the relay to feature a message on every overlay (None clears)."""
        return self.connection.send(FeatureMessageCommand(feature_message=message_id))

    def handle_frame(self, raw: str) -> None:
        try:
            envelope = RelayEnvelope.model_validate_json(raw)
            payload = envelope.payload()
        except (ValidationError, ValueError) as e:
            logger.warning(f"Malformed relay frame: {e}")
            return

        handler = self.handlers.get(envelope.tag)
        if handler is None:
            logger.warning(f"Unknown relay tag: {envelope.tag}")
            return
        handler(payload)

    def handle_chat_message(self, payload: Any) -> None:
        try:
            message = ChatMessage.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Invalid chat_message payload: {e}")
            return

        result = self.store.add(message)
        if result is StoreResult.DUPLICATE:
            return
        if message.is_placeholder:
            logger.debug(f"Holding placeholder {message.id} until its final content arrives")
            return
        self.pacer.handle(message)

    def handle_feature_message(self, payload: Any) -> None:
        message_id = payload if isinstance(payload, str) else None
        self.pending_feature = message_id
        if message_id is None:
            self.featured = None
            self._emit(self.on_feature, None)
            return
        self._apply_pending_feature()

    def handle_viewers(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            logger.warning(f"Invalid viewers payload: {payload!r}")
            return
        self._emit(self.on_viewers, self.viewers.update(payload))

    def handle_layout_update(self, payload: Any) -> None:
        self._emit(self.on_layout, payload)

    def handle_layout_list(self, payload: Any) -> None:
        self._emit(self.on_layout_list, payload)

    def _display(self, message: ChatMessage) -> None:
        self.displayed.add(message.id)
        self._emit(self.on_message, message)
        if self.pending_feature == message.id:
            self._apply_pending_feature()

    def _apply_pending_feature(self) -> None:
        # A featured message must be on screen before it can be highlighted
        message_id = self.pending_feature
        if message_id is None or message_id not in self.displayed:
            return
        message = self.store.get(message_id)
        if message is None:
            return
        self.pending_feature = None
        self.featured = message_id
        self._emit(self.on_feature, message)

    @staticmethod
    def _emit(callback: Optional[Callable[[Any], Any]], value: Any) -> None:
        if callback is None:
            return
        try:
            callback(value)
        except Exception as e:
            logger.error(f"Renderer callback failed: {e}")
