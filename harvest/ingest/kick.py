"""
Kick Harvester

Kick pushes chat over a Pusher WebSocket: each frame is
``{"event": <name>, "data": <JSON string>, "channel": ...}``. Viewer
counts also arrive on the polled ``current-viewers`` and channel endpoints.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional

from harvest.ingest.base import (
    ALL_CAPABILITIES,
    HandlerResult,
    IdentityDiscoveryError,
    PlatformAdapter,
    handled,
    ignored,
    iso_to_ms,
    unhandled,
    url_segments,
)
from harvest.schemas.events import RawNetworkEvent
from harvest.schemas.messages import ChatMessage, Subscription, now_ms
from harvest.utils.ids import synthesized_key

KICK_API = "https://kick.com/api"
EMOTE_PATTERN = re.compile(r"\[emote:(\d+):([^\]]+)\]")
EMOTE_URL = "https://files.kick.com/emotes/{id}/fullsize"
LIVESTREAM_URL_PATTERN = re.compile(r"https://kick\.com/api/v2/channels/.+/livestream")

SUB_VALUE = 5.0

# Recognized but intentionally not processed
IGNORED_EVENTS = frozenset(
    {
        "KicksLeaderboardUpdated",
        "App\\Events\\GiftsLeaderboardUpdated",
        "App\\Events\\LuckyUsersWhoGotGiftSubscriptionsEvent",
        "App\\Events\\ChannelSubscriptionEvent",
        "App\\Events\\UserBannedEvent",
        "App\\Events\\UserUnbannedEvent",
        "App\\Events\\PinnedMessageCreatedEvent",
        "App\\Events\\PinnedMessageDeletedEvent",
        "App\\Events\\FollowersUpdated",
        "GoalProgressUpdateEvent",
        "PointsUpdated",
        "RewardRedeemedEvent",
        "pusher_internal:subscription_succeeded",
        "pusher:connection_established",
        "pusher:pong",
    }
)

# Frames without an event name
HEARTBEAT_TYPES = frozenset({"ping", "pong"})
OUTBOUND_PROTOCOL_TYPES = frozenset({"user_event", "channel_handshake", "channel_disconnect", "ping", "pong"})
OUTBOUND_PROTOCOL_EVENTS = frozenset({"pusher:subscribe", "pusher:ping"})


def _event_data(frame: Dict[str, Any]) -> Any:
    # Pusher double-encodes the payload
    data = frame.get("data")
    if isinstance(data, str):
        return json.loads(data)
    return data


class Kick(PlatformAdapter):
    """Kick.com harvester."""

    platform = "Kick"
    namespace = "6efe7271-da75-4c2f-93fc-ddf37d02b8a9"
    hostnames = ("kick.com",)
    capabilities = ALL_CAPABILITIES
    trust_native_ids = True

    def __init__(self, *args, **kwargs):
        self.channel_id: Optional[int] = None
        self.livestream_id: Optional[int] = None
        super().__init__(*args, **kwargs)

    def channel_from_url(self, url: str) -> Optional[str]:
        segments = url_segments(url.split("?")[0])
        return segments[2].lower() if len(segments) > 2 else None

    async def discover_identity(self) -> None:
        """Resolve the numeric channel/livestream ids, then replay recent chat."""
        if self.channel is None:
            raise IdentityDiscoveryError(f"No channel slug in {self.page.url}")

        channel_info = await self.fetch_json(f"{KICK_API}/v2/channels/{self.channel}")
        self.channel_id = channel_info.get("id")
        self.livestream_id = (channel_info.get("livestream") or {}).get("id")
        if self.channel_id is None:
            raise IdentityDiscoveryError(f"Kick channel {self.channel} has no id")
        self.log.info(f"Channel id {self.channel_id}, livestream id {self.livestream_id}")

        await self.fetch_chat_history()

    async def fetch_chat_history(self) -> int:
        history = await self.fetch_json(f"{KICK_API}/v2/channels/{self.channel_id}/messages")
        items = list(reversed(history["data"]["messages"]))
        sent = 0
        for item in items:
            sent += len(self.send_chat_messages([self.prepare_chat_message(item)]))
        self.log.info(f"Replayed {sent} of {len(items)} history messages")
        return sent

    def prepare_chat_message(self, data: Dict[str, Any]) -> ChatMessage:
        sender = data.get("sender") or {}
        content = data.get("content") or ""
        fields: Dict[str, Any] = {
            "sent_at": iso_to_ms(data.get("created_at")) or now_ms(),
            "username": sender.get("username") or "Unknown",
            "message": content,
            "emojis": [
                (m.group(0), EMOTE_URL.format(id=m.group(1)), m.group(2))
                for m in EMOTE_PATTERN.finditer(content)
            ],
        }

        gift_amount = (data.get("gift") or {}).get("amount") or 0
        if gift_amount > 0:
            fields["amount"] = gift_amount / 100
            fields["currency"] = "USD"

        for badge in (sender.get("identity") or {}).get("badges") or []:
            badge_type = badge.get("type")
            if badge_type in ("vip", "og", "founder"):
                continue
            elif badge_type == "verified":
                fields["is_verified"] = True
            elif badge_type == "broadcaster":
                fields["is_owner"] = True
            elif badge_type == "moderator":
                fields["is_mod"] = True
            elif badge_type in ("subscriber", "sub_gifter"):
                fields["is_sub"] = True
            else:
                self.log.info(f"Unknown badge type: {badge_type}")

        return self.make_message(data["id"], **fields)

    def prepare_kicks_gifted_message(self, data: Dict[str, Any]) -> ChatMessage:
        """KicksGifted: platform currency gifts, with or without a transaction id."""
        sender = data.get("sender") or {}
        gift = data.get("gift")
        native_id = data.get("gift_transaction_id") or f"kicks_{sender.get('id', 'unknown')}_{now_ms()}"

        fields: Dict[str, Any] = {
            "sent_at": iso_to_ms(data.get("created_at")) or now_ms(),
            "username": sender.get("username") or "Unknown",
            "message": data.get("message") or f"Sent a {(gift or {}).get('name') or 'Kick'}!",
        }
        if sender.get("profile_picture"):
            fields["avatar"] = sender["profile_picture"]
        if gift:
            fields["amount"] = gift.get("amount") or 0
            fields["currency"] = "KICKS"

        return self.make_message(native_id, **fields)

    def on_websocket_message(self, event: RawNetworkEvent) -> Optional[HandlerResult]:
        frame = event.json_data()
        name = frame.get("event")

        if name is None:
            frame_type = frame.get("type")
            if frame_type in HEARTBEAT_TYPES:
                return ignored(frame_type, "Heartbeat")
            self.log.info(f"WebSocket frame with no event: {frame}")
            return unhandled(frame_type)

        if name == "App\\Events\\ChatMessageEvent":
            data = _event_data(frame)
            self.send_chat_messages([self.prepare_chat_message(data)])
            return handled(name, data)

        if name == "KicksGifted":
            data = _event_data(frame)
            self.send_chat_messages([self.prepare_kicks_gifted_message(data)])
            return handled(name, data)

        if name == "App\\Events\\GiftedSubscriptionsEvent":
            data = _event_data(frame)
            buyer = data.get("gifter_username") or "Unknown"
            self.receive_subscription(
                Subscription(
                    id=synthesized_key(buyer),
                    buyer=buyer,
                    count=max(1, len(data.get("gifted_usernames") or [])),
                    value=SUB_VALUE,
                    gifted=True,
                )
            )
            return handled(name, data)

        if name == "App\\Events\\SubscriptionEvent":
            data = _event_data(frame)
            buyer = data.get("username") or "Unknown"
            self.receive_subscription(
                Subscription(
                    id=synthesized_key(buyer),
                    buyer=buyer,
                    count=max(1, int(data.get("months") or 1)),
                    value=SUB_VALUE,
                )
            )
            return handled(name, data)

        if name == "App\\Events\\MessageDeletedEvent":
            data = _event_data(frame)
            native_id = data["message"]["id"]
            if data.get("aiModerated"):
                self.log.info(f"AI moderated message {native_id}, rules: {data.get('violatedRules')}")
                return ignored(name, "AI moderated - not user deletion")
            self.send_removals([self.message_id(native_id)])
            return handled(name, data)

        if name in ("App\\Events\\LivestreamUpdated", "App\\Events\\UpdatedLiveStreamEvent"):
            data = _event_data(frame) or {}
            viewers = self.send_viewer_count(data.get("viewers"))
            if viewers is None:
                return ignored(name, "No viewer count")
            return handled(name, {"viewers": viewers})

        if name in IGNORED_EVENTS:
            return ignored(name, "Known event - intentionally ignored")

        self.log.info(f"WebSocket frame with unknown event: {name}")
        return unhandled(name)

    def on_websocket_send(self, event: RawNetworkEvent) -> Optional[HandlerResult]:
        frame = event.json_data()
        name = frame.get("event")
        if name is None:
            if frame.get("type") in OUTBOUND_PROTOCOL_TYPES:
                return ignored(frame.get("type"), "Protocol message")
            return unhandled(frame.get("type"))
        if name in OUTBOUND_PROTOCOL_EVENTS:
            return ignored(name, "Pusher protocol")
        return unhandled(name)

    def on_fetch_response(self, event: RawNetworkEvent) -> Optional[HandlerResult]:
        if "/current-viewers" in event.url:
            return self._receive_current_viewers(event.json_data())
        return ignored(note="Not monitored endpoint")

    def on_xhr_response(self, event: RawNetworkEvent) -> Optional[HandlerResult]:
        url = event.url
        if url.startswith(f"{KICK_API}/v2/messages/send/"):
            body = event.json_data()
            status = body.get("status")
            data = body.get("data")
            if status is None or data is None:
                self.log.info(f"Sent message response with no status or data: {body}")
                return ignored("send", "No status or data")
            if status.get("code") == 200 and data.get("id") is not None:
                self.send_chat_messages([self.prepare_chat_message(data)])
                return handled("send", data)
            return ignored("send", "Message not accepted")

        if url.startswith(f"{KICK_API}/v1/channels/"):
            livestream = event.json_data().get("livestream") or {}
            viewers = self.send_viewer_count(livestream.get("viewers"))
            if viewers is None:
                return ignored("channel", "No livestream")
            return handled("channel", {"viewers": viewers})

        if url.startswith("https://kick.com/current-viewers"):
            return self._receive_current_viewers(event.json_data())

        if LIVESTREAM_URL_PATTERN.match(url):
            data = event.json_data().get("data") or {}
            if data.get("id") is not None:
                self.livestream_id = data["id"]
                return handled("livestream", {"livestream_id": self.livestream_id})
            return ignored("livestream", "Offline")

        return ignored(note="Not monitored endpoint")

    def _receive_current_viewers(self, entries) -> HandlerResult:
        """``current-viewers`` lists counts for several livestreams; pick ours."""
        for entry in entries:
            if self.livestream_id is None or entry.get("livestream_id") == self.livestream_id:
                viewers = self.send_viewer_count(entry.get("viewers"))
                return handled("current-viewers", {"viewers": viewers})
            self.log.debug(f"Viewers for another livestream: {entry}")
        return ignored("current-viewers", "Livestream not listed")
