"""
X (Twitter) Harvester

X broadcasts chat over a JSON WebSocket. Frames are keyed by ``kind``:

- 1: chat, ``payload`` is JSON holding ``sender`` and a JSON-encoded ``body``
- 2: control envelope; its ``payload`` is re-dispatched when it is kind 4
- 4: presence, ``body`` is JSON holding the ``occupancy`` viewer count

Message ids are native UUIDs and are kept as-is.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Optional

from harvest.ingest.base import (
    Capability,
    HandlerResult,
    PlatformAdapter,
    handled,
    ignored,
    unhandled,
    url_segments,
)
from harvest.schemas.events import RawNetworkEvent
from harvest.schemas.messages import ChatMessage, now_ms

DEFAULT_AVATAR = "https://abs.twimg.com/sticky/default_profile_images/default_profile_400x400.png"


def _decode(value: Any) -> Any:
    return json.loads(value) if isinstance(value, (str, bytes)) else value


class X(PlatformAdapter):
    """x.com harvester."""

    platform = "X"
    namespace = "0abb36b8-43ab-40b5-be61-4f2c32a75890"
    hostnames = ("x.com", "twitter.com")
    capabilities = frozenset({Capability.PARSE_MESSAGE, Capability.PARSE_VIEWER_COUNT})
    trust_native_ids = True

    def channel_from_url(self, url: str) -> Optional[str]:
        segments = url_segments(url.split("?")[0])
        return segments[-1] if len(segments) > 2 else None

    def prepare_chat_messages(self, pairs: Iterable[Dict[str, Any]]) -> List[ChatMessage]:
        messages = []
        now = now_ms()
        for pair in pairs:
            sender = pair["sender"]
            body = pair["body"]

            sent_at = body.get("timestamp")
            if sent_at is None:
                sent_at = now
            elif int(sent_at) > now:
                # X sometimes stamps messages in the future
                self.log.warning(f"Message with future timestamp {sent_at}, using local time")
                sent_at = now

            messages.append(
                self.make_message(
                    body["uuid"],
                    username=sender.get("username") or "Unknown",
                    message=body.get("body") or "",
                    sent_at=int(sent_at),
                    avatar=sender.get("profile_image_url") or DEFAULT_AVATAR,
                    is_verified=bool(sender.get("verified", False)),
                )
            )
        return messages

    def receive_frame(self, frame: Dict[str, Any]) -> HandlerResult:
        kind = frame.get("kind")

        if kind == 1:
            payload = _decode(frame["payload"])
            if "sender" in payload and "body" in payload:
                body = _decode(payload["body"])
                if "body" in body:
                    sent = self.send_chat_messages(
                        self.prepare_chat_messages([{"sender": payload["sender"], "body": body}])
                    )
                    return handled("kind1", {"sent": len(sent)})
            self.log.debug(f"Unknown chat payload: {frame}")
            return ignored("kind1", "Not a chat message")

        if kind == 2:
            inner = _decode(frame["payload"])
            if inner.get("kind") == 4:
                return self.receive_frame(inner)
            return ignored("kind2", "Control message")

        if kind == 4:
            body = _decode(frame["body"])
            if body.get("occupancy") is None:
                return ignored("kind4", "No occupancy")
            viewers = self.send_viewer_count(body["occupancy"])
            return handled("kind4", {"viewers": viewers})

        return unhandled(f"kind{kind}")

    def on_websocket_message(self, event: RawNetworkEvent) -> Optional[HandlerResult]:
        return self.receive_frame(event.json_data())

    def on_websocket_send(self, event: RawNetworkEvent) -> Optional[HandlerResult]:
        # The viewer's own messages go out in the same shape
        return self.receive_frame(event.json_data())
