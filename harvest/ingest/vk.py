"""
VK Harvester

Only the viewer's own comment submissions are seen (``act=post_comment``).
Their responses are not parsed yet, so they are recorded as unhandled for
later analysis. ``prepare_chat_messages`` accepts already-decoded
sender/body pairs for callers that have them.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from harvest.ingest.base import (
    Capability,
    HandlerResult,
    PlatformAdapter,
    ignored,
    unhandled,
    url_segments,
)
from harvest.schemas.events import RawNetworkEvent
from harvest.schemas.messages import ChatMessage

DEFAULT_AVATAR = "https://abs.twimg.com/sticky/default_profile_images/default_profile_400x400.png"


class VK(PlatformAdapter):
    """vk.com harvester (send-only)."""

    platform = "VK"
    namespace = "a59f077b-d072-41c0-976e-22c7e4ebf6f8"
    hostnames = ("vk.com",)
    capabilities = frozenset({Capability.PARSE_MESSAGE})

    def channel_from_url(self, url: str) -> Optional[str]:
        segments = url_segments(url.split("?")[0])
        return segments[-1] if len(segments) > 2 else None

    def prepare_chat_messages(self, pairs: Iterable[Dict[str, Any]]) -> List[ChatMessage]:
        messages = []
        for pair in pairs:
            sender = pair["sender"]
            body = pair["body"]
            fields: Dict[str, Any] = {
                "username": sender.get("username") or "Unknown",
                "message": body.get("body") or "",
                "avatar": sender.get("profile_image_url") or DEFAULT_AVATAR,
                "is_verified": bool(sender.get("verified", False)),
            }
            if body.get("timestamp") is not None:
                fields["sent_at"] = int(body["timestamp"])
            messages.append(self.make_message(body["uuid"], **fields))
        return messages

    def on_xhr_response(self, event: RawNetworkEvent) -> Optional[HandlerResult]:
        if "act=post_comment" in event.url:
            return unhandled("post_comment", "VK comment parsing not implemented")
        return ignored(note="Not monitored endpoint")
