"""
Debug traffic recorder

Captures what each adapter saw and what it did with it, so new or changed
platform events can be found by looking at what was left unhandled.
Recording is off until start() is called.
"""

from __future__ import annotations

import json
from collections import Counter
from enum import Enum
from typing import Any, Dict, List, Optional

from harvest.schemas.messages import now_ms
from harvest.utils.logging import get_logger

logger = get_logger(__name__, category="tap")


class EventStatus(str, Enum):
    HANDLED = "handled"  # Parsed and processed
    IGNORED = "ignored"  # Recognized but intentionally skipped
    UNHANDLED = "unhandled"  # Unknown event type, no handler
    ERROR = "error"  # Handler raised


class EventType(str, Enum):
    WS_MESSAGE = "ws_message"
    WS_SEND = "ws_send"
    FETCH_RESPONSE = "fetch_response"
    XHR_RESPONSE = "xhr_response"
    EVENTSOURCE_MESSAGE = "eventsource_message"
    DOM_MUTATION = "dom_mutation"
    CHAT_MESSAGE = "chat_message"
    VIEWER_COUNT = "viewer_count"
    MESSAGE_REMOVAL = "message_removal"


def _safe_dump(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if hasattr(value, "model_dump_json"):
        return value.model_dump_json()
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return repr(value)


class Recorder:
    """Bounded in-memory log of observed traffic for one adapter."""

    def __init__(self, platform: str = "Unknown", max_events: int = 10000):
        self.platform = platform
        self.max_events = max_events
        self.events: List[Dict[str, Any]] = []
        self.recording = False
        self.start_time: Optional[int] = None

    def start(self) -> None:
        if self.recording:
            logger.info(f"[{self.platform}] Recorder already running")
            return
        self.recording = True
        self.start_time = now_ms()
        self.events = []
        logger.info(f"[{self.platform}] Started recording")

    def stop(self) -> None:
        if not self.recording:
            return
        self.recording = False
        logger.info(f"[{self.platform}] Stopped recording, captured {len(self.events)} events")

    def clear(self) -> None:
        self.events = []

    def record(
        self,
        event_type: EventType,
        *,
        status: EventStatus = EventStatus.UNHANDLED,
        url: Optional[str] = None,
        payload: Any = None,
        parsed: Any = None,
        event_name: Optional[str] = None,
        note: Optional[str] = None,
        method: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        if not self.recording:
            return

        if len(self.events) >= self.max_events:
            logger.warning(f"[{self.platform}] Recorder reached {self.max_events} events, stopping")
            self.stop()
            return

        now = now_ms()
        dumped = _safe_dump(payload)
        self.events.append(
            {
                "timestamp": now,
                "relative_time": now - (self.start_time or now),
                "type": event_type.value,
                "status": status.value,
                "url": url,
                "payload": dumped,
                "payload_size": len(dumped) if dumped else 0,
                "parsed": _safe_dump(parsed),
                "note": note,
                "meta": {
                    "method": method,
                    "status_code": status_code,
                    "event_name": event_name,
                },
            }
        )

    def stats(self) -> Dict[str, Any]:
        by_status = Counter(e["status"] for e in self.events)
        by_type = Counter(e["type"] for e in self.events)
        by_event = Counter(
            e["meta"]["event_name"] for e in self.events if e["meta"]["event_name"]
        )
        return {
            "platform": self.platform,
            "recording": self.recording,
            "total": len(self.events),
            "by_status": dict(by_status),
            "by_type": dict(by_type),
            "by_event_name": dict(by_event),
        }

    def unhandled(self) -> List[Dict[str, Any]]:
        return [e for e in self.events if e["status"] == EventStatus.UNHANDLED.value]

    def export(self) -> Dict[str, Any]:
        """Snapshot suitable for writing to a JSON file."""
        return {
            "platform": self.platform,
            "exported_at": now_ms(),
            "stats": self.stats(),
            "events": list(self.events),
        }
