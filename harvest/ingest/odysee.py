"""
Odysee Harvester

Odysee's comment API is JSON-RPC style: the operation is named by the ``m``
query parameter rather than by the response itself, so responses are
routed on that. Live updates arrive as typed WebSocket frames.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from harvest.ingest.base import (
    ALL_CAPABILITIES,
    HandlerResult,
    PlatformAdapter,
    handled,
    ignored,
    unhandled,
    url_segments,
)
from harvest.schemas.events import RawNetworkEvent
from harvest.schemas.messages import ChatMessage

ODYSEE_AVATAR = (
    "https://thumbnails.odycdn.com/optimize/s:160:160/quality:85/plain/"
    "https://spee.ch/spaceman-png:2.png"
)

LIST_METHODS = ("comment.List", "comment.SuperChatList")
CREATE_METHOD = "comment.Create"


class Odysee(PlatformAdapter):
    """Odysee.com harvester."""

    platform = "Odysee"
    namespace = "d80f03bf-d30a-48e9-9e9f-81616366eefd"
    hostnames = ("odysee.com",)
    capabilities = ALL_CAPABILITIES

    def channel_from_url(self, url: str) -> Optional[str]:
        segments = url_segments(url.split("?")[0])
        return segments[-2] if len(segments) > 3 else None

    def prepare_chat_messages(self, items: Iterable[Dict[str, Any]]) -> List[ChatMessage]:
        messages = []
        for item in items:
            fields: Dict[str, Any] = {
                "avatar": ODYSEE_AVATAR,
                "username": item.get("channel_name") or "Unknown",
                "message": item.get("comment") or "",
                "is_owner": bool(item.get("is_creator", False)),
            }
            if item.get("timestamp") is not None:
                fields["sent_at"] = (int(item["timestamp"]) - 1) * 1000
            if item.get("is_fiat") is True:
                fields["amount"] = float(item.get("support_amount") or 0)
                fields["currency"] = "USD"
            messages.append(self.make_message(item["comment_id"], **fields))
        return messages

    def on_fetch_response(self, event: RawNetworkEvent) -> Optional[HandlerResult]:
        method = event.query_param("m")

        if method in LIST_METHODS:
            result = event.json_data().get("result") or {}
            items = result.get("items")
            if items is None:
                return ignored(method, "No items")
            self.send_chat_messages(self.prepare_chat_messages(items))
            return handled(method, {"method": method, "item_count": len(items)})

        if method == CREATE_METHOD:
            result = event.json_data().get("result") or {}
            if result.get("comment_id") is None:
                return ignored(method, "Comment not created")
            self.send_chat_messages(self.prepare_chat_messages([result]))
            return handled(method, {"method": method, "comment_id": result["comment_id"]})

        return ignored(method, "Unknown method")

    def on_websocket_message(self, event: RawNetworkEvent) -> Optional[HandlerResult]:
        frame = event.json_data()
        frame_type = frame.get("type")
        data = frame.get("data") or {}

        if frame_type == "delta":
            comment = data["comment"]
            self.send_chat_messages(self.prepare_chat_messages([comment]))
            return handled(frame_type, comment)

        if frame_type == "removed":
            comment_id = (data.get("comment") or {}).get("comment_id")
            if comment_id is None:
                return ignored(frame_type, "No comment id")
            removed = self.send_removals([self.message_id(comment_id)])
            return handled(frame_type, {"removed": removed})

        if frame_type == "viewers":
            viewers = self.send_viewer_count(data.get("connected"))
            return handled(frame_type, {"viewers": viewers})

        self.log.info(f"Unknown update type: {frame}")
        return unhandled(frame_type)
