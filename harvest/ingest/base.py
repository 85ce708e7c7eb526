"""
Platform Adapter Base

Shared plumbing for every platform harvester:
- identity discovery (channel/video id, possibly via HTTP lookups)
- dispatch of observed traffic to per-kind handlers
- canonical id assignment, dedup and removal filtering
- building LivestreamUpdates and handing them to the relay connection

Subclasses implement the per-kind ``on_*`` handlers for their wire format.
Handlers return a HandlerResult describing what they did; anything they
raise is caught here so a malformed payload never reaches the tap or the
connection loop.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, FrozenSet, Iterable, List, NamedTuple, Optional, Tuple, Union

import httpx

from harvest.config import settings
from harvest.schemas.events import PageInfo, RawEventKind, RawNetworkEvent
from harvest.schemas.messages import ChatMessage, LivestreamUpdate, Subscription
from harvest.utils.ids import EmittedIdLedger, canonical_id
from harvest.utils.logging import PlatformLogger, get_logger
from harvest.utils.recorder import EventStatus, EventType, Recorder

logger = get_logger(__name__, category="platform")


class Capability(str, Enum):
    DISCOVER_IDENTITY = "discover-identity"
    PARSE_MESSAGE = "parse-message"
    PARSE_REMOVAL = "parse-removal"
    PARSE_VIEWER_COUNT = "parse-viewer-count"
    PARSE_MONETARY_EVENT = "parse-monetary-event"


ALL_CAPABILITIES = frozenset(Capability)


class IdentityDiscoveryError(Exception):
    """The channel or video identity could not be determined."""


class HandlerResult(NamedTuple):
    status: EventStatus
    event_name: Optional[str] = None
    parsed: Any = None
    note: Optional[str] = None


def handled(event_name: Optional[str] = None, parsed: Any = None) -> HandlerResult:
    return HandlerResult(EventStatus.HANDLED, event_name, parsed)


def ignored(event_name: Optional[str] = None, note: Optional[str] = None) -> HandlerResult:
    return HandlerResult(EventStatus.IGNORED, event_name, None, note)


def unhandled(event_name: Optional[str] = None, note: Optional[str] = None) -> HandlerResult:
    return HandlerResult(EventStatus.UNHANDLED, event_name, None, note)


_RECORDED_TYPES = {
    RawEventKind.WEBSOCKET_MESSAGE: EventType.WS_MESSAGE,
    RawEventKind.WEBSOCKET_SEND: EventType.WS_SEND,
    RawEventKind.FETCH_RESPONSE: EventType.FETCH_RESPONSE,
    RawEventKind.XHR_RESPONSE: EventType.XHR_RESPONSE,
    RawEventKind.EVENT_SOURCE_MESSAGE: EventType.EVENTSOURCE_MESSAGE,
    RawEventKind.DOM_MUTATION: EventType.DOM_MUTATION,
}


def url_segments(url: str) -> List[str]:
    """Split a URL on '/' dropping empty parts: 'https://a.com/b/' -> ['https:', 'a.com', 'b']."""
    return [part for part in url.split("/") if part]


class PlatformAdapter:
    """Base class for a single platform's harvester."""

    platform: ClassVar[str] = ""
    namespace: ClassVar[str] = ""
    hostnames: ClassVar[Tuple[str, ...]] = ()
    capabilities: ClassVar[FrozenSet[Capability]] = frozenset()
    # Native ids that are already UUIDs are used as canonical ids
    trust_native_ids: ClassVar[bool] = False

    def __init__(
        self,
        page: Union[PageInfo, str],
        connection=None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        recorder: Optional[Recorder] = None,
        ledger_size: Optional[int] = None,
        debug: Optional[bool] = None,
    ):
        """
        Initialize the adapter for one host page.

        Args:
            page: The page being observed (or just its URL)
            connection: RelayConnection that receives LivestreamUpdates
            http_client: Client for identity lookups (a short-lived one is used if None)
            recorder: Debug traffic recorder
            ledger_size: How many emitted ids to remember
            debug: Verbose per-event logging (defaults to settings.debug)
        """
        self.page = page if isinstance(page, PageInfo) else PageInfo(url=page)
        self.http_client = http_client
        self.recorder = recorder if recorder is not None else Recorder(self.platform, settings.recorder_max_events)
        self.emitted = EmittedIdLedger(ledger_size if ledger_size is not None else settings.emitted_id_ledger_size)
        self.log = PlatformLogger(logger, self.platform, settings.debug if debug is None else debug)

        self.viewers: Optional[int] = None
        self._channel: Optional[str] = None

        self.connection = connection
        if connection is not None:
            connection.set_readiness_check(lambda: self.is_ready)

        self.channel = self.channel_from_url(self.page.url)
        self.log.info(f"Initializing for {self.page.url} (channel={self.channel})")

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def channel(self) -> Optional[str]:
        return self._channel

    @channel.setter
    def channel(self, value) -> None:
        previous = self._channel
        self._channel = None if value is None else str(value)
        if previous is None and self._channel is not None:
            self.log.info(f"Channel identified: {self._channel}")
            if self.connection is not None:
                self.connection.map_pending(self._stamp_channel)
                self.connection.flush()

    @property
    def is_ready(self) -> bool:
        return self._channel is not None

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def channel_from_url(self, url: str) -> Optional[str]:
        """Channel identity derivable from the page URL alone, if any."""
        return None

    async def discover(self) -> bool:
        """
        Resolve the adapter's identity.

        Failures are logged and leave the adapter not ready (its updates keep
        queueing); calling discover() again retries.

        Returns:
            True once the channel is known
        """
        try:
            await self.discover_identity()
        except IdentityDiscoveryError as e:
            self.log.warning(f"Identity discovery failed: {e}")
        except httpx.HTTPError as e:
            self.log.warning(f"Identity lookup request failed: {e}")
        except Exception as e:
            self.log.error(f"Unexpected error during identity discovery: {e}")

        if not self.is_ready:
            self.log.warning("Adapter not ready, outbound updates will queue")
        return self.is_ready

    async def discover_identity(self) -> None:
        """Platform hook for asynchronous identity lookups."""

    async def fetch_json(self, url: str) -> Any:
        response = await self._get(url)
        return response.json()

    async def fetch_text(self, url: str) -> str:
        response = await self._get(url)
        return response.text

    async def _get(self, url: str) -> httpx.Response:
        if self.http_client is not None:
            response = await self.http_client.get(url)
            response.raise_for_status()
            return response

        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response

    # ------------------------------------------------------------------
    # Observed traffic
    # ------------------------------------------------------------------

    def attach(self, tap) -> None:
        tap.subscribe(self.handle_raw_event)

    def detach(self, tap) -> None:
        tap.unsubscribe(self.handle_raw_event)

    def handle_raw_event(self, event: RawNetworkEvent) -> EventStatus:
        """
        Route one observed event to its handler. Never raises.

        Returns:
            What the adapter did with the event
        """
        handlers: Dict[RawEventKind, Callable[[RawNetworkEvent], Optional[HandlerResult]]] = {
            RawEventKind.WEBSOCKET_MESSAGE: self.on_websocket_message,
            RawEventKind.WEBSOCKET_SEND: self.on_websocket_send,
            RawEventKind.FETCH_RESPONSE: self.on_fetch_response,
            RawEventKind.XHR_RESPONSE: self.on_xhr_response,
            RawEventKind.EVENT_SOURCE_MESSAGE: self.on_event_source_message,
            RawEventKind.DOM_MUTATION: self.on_dom_mutation,
        }

        try:
            result = handlers[event.kind](event) or unhandled()
        except Exception as e:
            self.log.error(f"Failed to process {event.kind.value} from {event.url}: {e!r}")
            result = HandlerResult(EventStatus.ERROR, note=str(e))

        self.log.debug(f"{event.kind.value} {event.url} -> {result.status.value}")
        self.recorder.record(
            _RECORDED_TYPES[event.kind],
            status=result.status,
            url=event.url,
            payload=event.data,
            parsed=result.parsed,
            event_name=result.event_name,
            note=result.note,
            method=event.method,
            status_code=event.status,
        )
        return result.status

    def on_websocket_message(self, event: RawNetworkEvent) -> Optional[HandlerResult]:
        return None

    def on_websocket_send(self, event: RawNetworkEvent) -> Optional[HandlerResult]:
        return None

    def on_fetch_response(self, event: RawNetworkEvent) -> Optional[HandlerResult]:
        return None

    def on_xhr_response(self, event: RawNetworkEvent) -> Optional[HandlerResult]:
        return None

    def on_event_source_message(self, event: RawNetworkEvent) -> Optional[HandlerResult]:
        return None

    def on_dom_mutation(self, event: RawNetworkEvent) -> Optional[HandlerResult]:
        return None

    def on_unload(self) -> None:
        """The host page is going away: report no viewers."""
        self.log.debug("Page unloading")
        self.send_viewer_count(0)

    # ------------------------------------------------------------------
    # Canonical events
    # ------------------------------------------------------------------

    def message_id(self, native_id) -> str:
        return canonical_id(self.namespace, native_id, trust_native=self.trust_native_ids)

    def make_message(self, native_id, **fields) -> ChatMessage:
        """Build a ChatMessage for this adapter with a canonical id."""
        return ChatMessage(
            id=self.message_id(native_id),
            platform=self.platform,
            channel=self.channel,
            **fields,
        )

    def send_chat_messages(self, messages: Iterable[Optional[ChatMessage]]) -> List[ChatMessage]:
        """
        Forward new messages, skipping ones already emitted.

        Returns:
            The messages actually forwarded
        """
        fresh = []
        for message in messages:
            if message is None:
                continue
            if not self.emitted.should_emit(message.id, message.is_placeholder):
                self.log.debug(f"Skipping duplicate message {message.id}")
                continue
            fresh.append(message)
            self.recorder.record(EventType.CHAT_MESSAGE, status=EventStatus.HANDLED, parsed=message)
            self.log.debug(message.to_console_msg())

        if fresh:
            self._queue_update(
                LivestreamUpdate(platform=self.platform, channel=self.channel, messages=fresh)
            )
        return fresh

    def send_removals(self, ids: Iterable[str]) -> List[str]:
        """
        Forward removals for canonical ids this adapter emitted; others are dropped.

        Returns:
            The ids actually forwarded
        """
        known = []
        for message_id in ids:
            if message_id in self.emitted:
                known.append(message_id)
            else:
                self.log.debug(f"Ignoring removal of unknown message {message_id}")

        if known:
            self.log.info(f"Removing messages: {known}")
            self.recorder.record(EventType.MESSAGE_REMOVAL, status=EventStatus.HANDLED, parsed=known)
            self._queue_update(
                LivestreamUpdate(platform=self.platform, channel=self.channel, removals=known)
            )
        return known

    def send_viewer_count(self, count) -> Optional[int]:
        """Forward a viewer count; unparseable values are ignored, negatives become 0."""
        try:
            viewers = max(0, int(count))
        except (TypeError, ValueError, OverflowError):
            self.log.warning(f"Ignoring invalid viewer count: {count!r}")
            return None

        self.log.debug(f"Updating viewer count: {viewers}")
        self.viewers = viewers
        self.recorder.record(EventType.VIEWER_COUNT, status=EventStatus.HANDLED, parsed={"viewers": viewers})
        self._queue_update(
            LivestreamUpdate(platform=self.platform, channel=self.channel, viewers=viewers)
        )
        return viewers

    def receive_subscription(self, sub: Subscription) -> List[ChatMessage]:
        """Turn a subscription or gift purchase into a monetary chat message."""
        if sub.gifted:
            if sub.count > 1:
                text = f"{sub.buyer} gifted {sub.count} subscriptions!"
            else:
                text = f"{sub.buyer} gifted a subscription!"
        else:
            if sub.count > 1:
                text = f"{sub.buyer} subscribed for {sub.count} months!"
            else:
                text = f"{sub.buyer} subscribed for 1 month!"

        message = ChatMessage(
            id=canonical_id(self.namespace, sub.id),
            platform=self.platform,
            channel=self.channel,
            username=sub.buyer,
            message=text,
            amount=sub.value * sub.count,
            currency="USD",
        )
        self.log.info(f"Sending subscription message: {text}")
        return self.send_chat_messages([message])

    def _queue_update(self, update: LivestreamUpdate) -> None:
        if self.connection is None:
            self.log.debug("No relay connection, dropping update")
            return
        self.connection.send(update)

    def _stamp_channel(self, payload: Any) -> Any:
        """Fill in the channel on updates queued before identity was known."""
        if not isinstance(payload, LivestreamUpdate):
            return payload
        if payload.platform != self.platform or payload.channel is not None:
            return payload

        messages = payload.messages
        if messages is not None:
            messages = [
                m.model_copy(update={"channel": self.channel}) if m.channel is None else m
                for m in messages
            ]
        return payload.model_copy(update={"channel": self.channel, "messages": messages})


def iso_to_ms(value: Optional[str]) -> Optional[int]:
    """Parse an ISO-8601 timestamp into epoch milliseconds (None if unparseable)."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)
