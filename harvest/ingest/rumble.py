"""
Rumble Harvester

Rumble streams chat over Server-Sent Events. Each ``init``/``messages``
frame carries a batch of messages and, separately, the users who wrote
them, joined on ``user_id``. Emotes are ``:name:`` markers resolved against
a table loaded from the ``emote.list`` service call.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

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
from harvest.utils.html import find_attribute

EMOTE_PATTERN = re.compile(r":([a-zA-Z0-9_\.\+\-]+):")
SERVICE_URL = "https://wn0.rumble.com/service.php"

OWNER_BADGES = frozenset({"admin"})
MOD_BADGES = frozenset({"moderator"})
SUB_BADGES = frozenset(
    {"whale-gray", "whale-blue", "whale-yellow", "locals", "locals_supporter", "recurring_subscription"}
)
VERIFIED_BADGES = frozenset({"verified"})
IGNORED_BADGES = frozenset({"premium"})


def _positive_int(value) -> Optional[int]:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


class Rumble(PlatformAdapter):
    """Rumble.com harvester."""

    platform = "Rumble"
    namespace = "5ceefcfb-4aa5-443a-bea6-1f8590231471"
    hostnames = ("rumble.com",)
    capabilities = ALL_CAPABILITIES

    def __init__(self, *args, **kwargs):
        self.emotes: Dict[str, str] = {}
        super().__init__(*args, **kwargs)

    def channel_from_url(self, url: str) -> Optional[str]:
        # Pop-out chat carries the numeric channel id in the URL
        if "/chat/popup/" in url:
            segments = url_segments(url.split("?")[0])
            if len(segments) > 4:
                channel = _positive_int(segments[4])
                return None if channel is None else str(channel)
        return None

    async def discover_identity(self) -> None:
        """Fall back to the id on the page's upvote pill."""
        if self.channel is not None:
            return
        channel = _positive_int(find_attribute(self.page.html, "data-id", class_name="rumbles-vote-pill"))
        if channel is None:
            raise IdentityDiscoveryError("No rumbles-vote-pill id on the page")
        self.channel = channel

    def load_emotes(self, items: List[Dict[str, Any]]) -> int:
        loaded = 0
        for channel in items:
            for emote in channel.get("emotes") or []:
                self.emotes[emote["name"]] = emote["file"]
                loaded += 1
        return loaded

    def prepare_chat_messages(self, messages: List[Dict[str, Any]], users: List[Dict[str, Any]]) -> List[ChatMessage]:
        users_by_id = {user.get("id"): user for user in users}
        prepared = []

        for data in messages:
            text = data.get("text") or ""
            if not text.strip():
                continue

            user = users_by_id.get(data.get("user_id"))
            if user is None:
                self.log.info(f"User not found: {data.get('user_id')}")
                continue

            emojis = []
            for match in EMOTE_PATTERN.finditer(text):
                name = match.group(1)
                if name in self.emotes:
                    emojis.append((match.group(0), self.emotes[name], f":{name}:"))
                else:
                    self.log.debug(f"No emote for {name}")

            fields: Dict[str, Any] = {
                "sent_at": iso_to_ms(data.get("time")) or now_ms(),
                "message": text,
                "emojis": emojis,
                "username": user.get("username") or "Unknown",
            }
            if user.get("image.1"):
                fields["avatar"] = user["image.1"]

            for badge in user.get("badges") or []:
                if badge in OWNER_BADGES:
                    fields["is_owner"] = True
                elif badge in MOD_BADGES:
                    fields["is_mod"] = True
                elif badge in SUB_BADGES:
                    fields["is_sub"] = True
                elif badge in VERIFIED_BADGES:
                    fields["is_verified"] = True
                elif badge not in IGNORED_BADGES:
                    self.log.info(f"Unknown badge type: {badge}")

            rant = data.get("rant")
            if rant is not None:
                fields["amount"] = rant["price_cents"] / 100
                fields["currency"] = "USD"

            prepared.append(self.make_message(data["id"], **fields))

        return prepared

    def prepare_subscriptions(self, messages: List[Dict[str, Any]], users: List[Dict[str, Any]]) -> List[Subscription]:
        users_by_id = {user.get("id"): user for user in users}
        subs = []
        for data in messages:
            if "notification" not in data:
                continue
            user = users_by_id.get(data.get("user_id"))
            if user is None:
                self.log.info(f"User not found: {data.get('user_id')}")
                continue
            subs.append(Subscription(id=str(data["id"]), buyer=user.get("username") or "Unknown"))
        return subs

    def receive_chat_pairs(self, messages: List[Dict[str, Any]], users: List[Dict[str, Any]]) -> int:
        for sub in self.prepare_subscriptions(messages, users):
            self.receive_subscription(sub)
        return len(self.send_chat_messages(self.prepare_chat_messages(messages, users)))

    def on_event_source_message(self, event: RawNetworkEvent) -> Optional[HandlerResult]:
        frame = event.json_data()
        frame_type = frame.get("type")
        if frame_type in ("init", "messages"):
            data = frame["data"]
            sent = self.receive_chat_pairs(data.get("messages") or [], data.get("users") or [])
            return handled(frame_type, {"sent": sent})
        self.log.debug(f"EventSource frame with unknown type: {frame_type}")
        return unhandled(frame_type)

    def on_fetch_response(self, event: RawNetworkEvent) -> Optional[HandlerResult]:
        if event.query_param("name") == "emote.list":
            loaded = self.load_emotes(event.json_data()["data"]["items"])
            return handled("emote.list", {"emotes": loaded})
        return ignored(note="Not monitored endpoint")

    def on_xhr_response(self, event: RawNetworkEvent) -> Optional[HandlerResult]:
        if not event.url.startswith(SERVICE_URL):
            return ignored(note="Not monitored endpoint")

        data = event.json_data().get("data") or {}
        count = data.get("viewer_count")
        if count is None:
            count = data.get("num_watching_now")
        if count is None:
            return ignored("service", "No viewer count")
        viewers = self.send_viewer_count(count)
        return handled("service", {"viewers": viewers})
