"""
YouTube Harvester

Chat is polled through ``get_live_chat``; each response holds a list of
actions whose ``item`` is a union of renderer types told apart by which key
is present. The channel is not in the page URL: the video id is found
first and then resolved to its channel through oEmbed. Viewer counts come
from the watch page's ``#view-count`` element.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, quote, urlparse

from harvest.ingest.base import (
    ALL_CAPABILITIES,
    HandlerResult,
    IdentityDiscoveryError,
    PlatformAdapter,
    handled,
    ignored,
    unhandled,
)
from harvest.ingest.currency import parse_payment
from harvest.schemas.events import RawNetworkEvent
from harvest.schemas.messages import ChatMessage

OEMBED_URL = "https://www.youtube.com/oembed?url={url}&format=json"
CHANNEL_PATTERN = re.compile(r"(?:/channel/|@)([^/]+)")
VIEWS_PATTERN = re.compile(r"(\d+)\s+(?:views|watching)")

MEMBERSHIP_VALUE = 5.0

MESSAGE_RENDERERS = ("liveChatTextMessageRenderer", "liveChatPaidMessageRenderer")


def _last_thumbnail(image: Optional[Dict[str, Any]]) -> Optional[str]:
    thumbnails = (image or {}).get("thumbnails") or []
    return thumbnails[-1].get("url") if thumbnails else None


def _usec_to_ms(value) -> Optional[int]:
    try:
        return int(int(value) / 1000)
    except (TypeError, ValueError):
        return None


def has_badge(badges: Optional[List[Dict[str, Any]]], icon_type: str) -> bool:
    return any(
        ((badge.get("liveChatAuthorBadgeRenderer") or {}).get("icon") or {}).get("iconType") == icon_type
        for badge in badges or []
    )


def is_member(badges: Optional[List[Dict[str, Any]]]) -> bool:
    # Membership badges are the only ones with a custom thumbnail
    return any(
        "customThumbnail" in (badge.get("liveChatAuthorBadgeRenderer") or {})
        for badge in badges or []
    )


def video_id_from_initial_data(data: Optional[Dict[str, Any]]) -> Optional[str]:
    """Dig the video id out of a live_chat page's ytInitialData."""
    if not data:
        return None

    continuation = (data.get("continuationContents") or {}).get("liveChatContinuation")
    if continuation:
        header = (continuation.get("header") or {}).get("liveChatHeaderRenderer") or {}
        items = ((header.get("overflowMenu") or {}).get("menuRenderer") or {}).get("items") or []
        for item in items:
            endpoint = (
                ((item.get("menuServiceItemRenderer") or {}).get("serviceEndpoint") or {})
                .get("popoutLiveChatEndpoint") or {}
            )
            if endpoint.get("url"):
                video_id = parse_qs(urlparse(endpoint["url"]).query).get("v", [None])[0]
                if video_id:
                    return video_id
        return _video_id_from_topic(continuation.get("continuations"))

    renderer = (data.get("contents") or {}).get("liveChatRenderer")
    if renderer:
        return _video_id_from_topic(renderer.get("continuations"))
    return None


def _video_id_from_topic(continuations) -> Optional[str]:
    # Invalidation topics look like "chat~<video id>~..."
    if not continuations:
        return None
    topic = (
        ((continuations[0].get("invalidationContinuationData") or {}).get("invalidationId") or {})
        .get("topic")
    )
    if topic and "~" in topic:
        return topic.split("~")[1]
    return None


def parse_view_count(aria_label: Optional[str], text: Optional[str]) -> Optional[int]:
    """Viewer count from the #view-count element's aria-label, falling back to its text."""
    if aria_label:
        digits = re.sub(r"[^\d]", "", aria_label)
        if digits:
            return int(digits)
    if text:
        match = VIEWS_PATTERN.search(text.replace(",", ""))
        if match:
            return int(match.group(1))
    return None


class YouTube(PlatformAdapter):
    """YouTube live chat harvester."""

    platform = "YouTube"
    namespace = "fd60ac36-d6b5-49dc-aee6-b0d87d130582"
    hostnames = ("youtube.com", "www.youtube.com")
    capabilities = ALL_CAPABILITIES

    def __init__(self, *args, **kwargs):
        self.video_id: Optional[str] = None
        self.is_chat_only = False
        super().__init__(*args, **kwargs)

    def find_video_id(self) -> Tuple[Optional[str], bool]:
        """Returns (video id, whether this is a chat-only page)."""
        url = urlparse(self.page.url)
        query = parse_qs(url.query)

        if "/live_chat" in url.path:
            video_id = query.get("v", [None])[0] or video_id_from_initial_data(self.page.initial_data)
            return video_id, True
        if url.path.startswith("/watch"):
            return query.get("v", [None])[0], False
        if url.path.startswith("/live/"):
            return url.path.split("/live/", 1)[1].strip("/") or None, False
        return None, False

    async def discover_identity(self) -> None:
        self.video_id, self.is_chat_only = self.find_video_id()
        if not self.video_id:
            raise IdentityDiscoveryError(f"Cannot identify video id from {self.page.url}")
        self.log.info(f"Video id {self.video_id}, chat only: {self.is_chat_only}")

        watch_url = quote(f"http://youtube.com/watch?v={self.video_id}", safe="")
        oembed = await self.fetch_json(OEMBED_URL.format(url=watch_url))
        author_url = oembed.get("author_url") or ""

        match = CHANNEL_PATTERN.search(author_url)
        if not match:
            raise IdentityDiscoveryError(f"No channel in author url {author_url!r}")
        self.channel = match.group(1)

        # A chat page ships its first batch of messages inline
        initial_actions = (
            ((self.page.initial_data or {}).get("contents") or {}).get("liveChatRenderer") or {}
        ).get("actions")
        if initial_actions:
            self.receive_actions(initial_actions)

    def prepare_chat_message(self, item: Dict[str, Any]) -> Optional[ChatMessage]:
        """Map one action item (renderer union) to a ChatMessage, or None."""
        if any(key in item for key in MESSAGE_RENDERERS):
            renderer = item.get("liveChatTextMessageRenderer") or item.get("liveChatPaidMessageRenderer")
            badges = renderer.get("authorBadges")
            fields: Dict[str, Any] = {
                "username": (renderer.get("authorName") or {}).get("simpleText") or "Unknown",
                "is_verified": has_badge(badges, "VERIFIED"),
                "is_sub": is_member(badges),
                "is_mod": has_badge(badges, "MODERATOR"),
                "is_owner": has_badge(badges, "OWNER"),
            }
            avatar = _last_thumbnail(renderer.get("authorPhoto"))
            if avatar:
                fields["avatar"] = avatar
            sent_at = _usec_to_ms(renderer.get("timestampUsec"))
            if sent_at is not None:
                fields["sent_at"] = sent_at

            if "liveChatPaidMessageRenderer" in item:
                amount_text = (renderer.get("purchaseAmountText") or {}).get("simpleText")
                currency, amount = parse_payment(amount_text)
                if currency is None or amount is None:
                    self.log.warning(f"Could not parse Super Chat amount: {amount_text!r}")
                else:
                    fields["amount"] = amount
                    fields["currency"] = currency

            text = ""
            emojis = []
            for run in (renderer.get("message") or {}).get("runs") or []:
                if "text" in run:
                    text += run["text"]
                elif "emoji" in run:
                    emoji_id = run["emoji"]["emojiId"]
                    text += f":{emoji_id}: "
                    emojis.append((f":{emoji_id}:", _last_thumbnail(run["emoji"].get("image")) or "", emoji_id))
                else:
                    self.log.info(f"Unknown run: {run}")
            fields["message"] = text
            fields["emojis"] = emojis

            return self.make_message(renderer["id"], **fields)

        if "liveChatMembershipGiftingEventRenderer" in item:
            event = item["liveChatMembershipGiftingEventRenderer"]
            name = (event.get("authorName") or {}).get("simpleText") or "Unknown"
            return self.make_message(
                event["id"],
                username=name,
                message=f"{name} gifted {event.get('numGiftedMembers', 1)} memberships!",
                amount=MEMBERSHIP_VALUE,
                currency="USD",
                **self._author_fields(event),
            )

        if "liveChatGiftMembershipReceivedEventRenderer" in item:
            event = item["liveChatGiftMembershipReceivedEventRenderer"]
            name = (event.get("authorName") or {}).get("simpleText") or "Unknown"
            return self.make_message(
                event["id"],
                username=name,
                message=f"{name} received a gifted membership!",
                amount=int(event.get("numGiftedMembers") or 1) * MEMBERSHIP_VALUE,
                currency="USD",
                **self._author_fields(event),
            )

        if "liveChatPlaceholderItemRenderer" in item:
            placeholder = item["liveChatPlaceholderItemRenderer"]
            fields = {"is_placeholder": True}
            sent_at = _usec_to_ms(placeholder.get("timestampUsec"))
            if sent_at is not None:
                fields["sent_at"] = sent_at
            return self.make_message(placeholder["id"], **fields)

        return None

    @staticmethod
    def _author_fields(event: Dict[str, Any]) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        avatar = _last_thumbnail(event.get("authorPhoto"))
        if avatar:
            fields["avatar"] = avatar
        sent_at = _usec_to_ms(event.get("timestampUsec"))
        if sent_at is not None:
            fields["sent_at"] = sent_at
        return fields

    def receive_actions(self, actions: List[Dict[str, Any]]) -> Dict[str, int]:
        """Apply one batch of get_live_chat actions; returns counts of what was sent."""
        messages = []
        removals = []
        for action in actions:
            if "addChatItemAction" in action:
                messages.append(self.prepare_chat_message(action["addChatItemAction"]["item"]))
            elif "addLiveChatMembershipItemAction" in action:
                messages.append(self.prepare_chat_message(action["addLiveChatMembershipItemAction"]["item"]))
            elif "removeChatItemAction" in action:
                removals.append(self.message_id(action["removeChatItemAction"]["targetItemId"]))
            elif "addLiveChatTickerItemAction" in action or "updateLiveChatPollAction" in action:
                continue
            else:
                self.log.info(f"Unknown get_live_chat action: {list(action)}")

        sent = self.send_chat_messages(messages)
        removed = self.send_removals(removals) if removals else []
        return {"messages": len(sent), "removals": len(removed)}

    def on_fetch_response(self, event: RawNetworkEvent) -> Optional[HandlerResult]:
        if "/get_live_chat" not in event.url:
            return ignored(note="Not monitored endpoint")

        actions = (
            ((event.json_data() or {}).get("continuationContents") or {})
            .get("liveChatContinuation") or {}
        ).get("actions")
        if not actions:
            return ignored("get_live_chat", "No actions")
        return handled("get_live_chat", self.receive_actions(actions))

    def on_dom_mutation(self, event: RawNetworkEvent) -> Optional[HandlerResult]:
        if event.selector != "#view-count":
            return unhandled(event.selector)
        if self.is_chat_only:
            return ignored(event.selector, "Chat-only page")

        data = event.data
        if isinstance(data, dict):
            viewers = parse_view_count(data.get("aria-label"), data.get("text"))
        else:
            viewers = parse_view_count(None, event.text_data())
        if viewers is None:
            return ignored(event.selector, "No viewer count")
        self.send_viewer_count(viewers)
        return handled(event.selector, {"viewers": viewers})
