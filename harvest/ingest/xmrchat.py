"""
XMRChat Harvester

XMRChat tips are Monero payments with an attached message. The tip page
polls ``/tips/page/`` and receives the full recent list each time, so tips
are deduplicated by id here. Amounts are atomic XMR units converted to USD
at the price fetched during discovery.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List, Optional, Set

import httpx

from harvest.config import settings
from harvest.ingest.base import (
    Capability,
    HandlerResult,
    PlatformAdapter,
    handled,
    ignored,
    iso_to_ms,
)
from harvest.schemas.events import RawNetworkEvent
from harvest.schemas.messages import ChatMessage, now_ms

ATOMIC_UNITS_PER_XMR = 1e12
MAX_TIP_AGE = timedelta(days=6)


class XMRChat(PlatformAdapter):
    """xmrchat.com harvester."""

    platform = "XMRChat"
    namespace = "806b15e6-d8fe-4344-b66d-9604b5d60241"
    hostnames = ("xmrchat.com",)
    capabilities = frozenset({Capability.PARSE_MESSAGE, Capability.PARSE_MONETARY_EVENT})

    def __init__(self, *args, **kwargs):
        self.xmr_price: float = settings.xmr_fallback_price
        self.tips_read: Set[str] = set()
        super().__init__(*args, **kwargs)

    def channel_from_url(self, url: str) -> Optional[str]:
        return "xmrchat"

    async def discover_identity(self) -> None:
        """Fetch the current XMR/USD price; the fallback price stays on failure."""
        try:
            text = await self.fetch_text(settings.xmr_price_url)
            self.xmr_price = float(text)
            self.log.info(f"Fetched XMR price: {self.xmr_price}")
        except (httpx.HTTPError, ValueError) as e:
            self.log.warning(f"Failed to fetch XMR price, using {self.xmr_price}: {e}")

    def prepare_chat_message(self, tip: Dict[str, Any]) -> ChatMessage:
        atomic = float((tip.get("payment") or {}).get("amount") or 0)
        return self.make_message(
            f"XMRCHAT-{tip['id']}",
            username=tip.get("name") or "Anonymous",
            message=tip.get("message") or "",
            sent_at=iso_to_ms(tip.get("createdAt")) or now_ms(),
            amount=self.xmr_price * (atomic / ATOMIC_UNITS_PER_XMR),
            currency="USD",
        )

    def receive_tips(self, tips: List[Dict[str, Any]]) -> Dict[str, int]:
        counts = {"total": len(tips), "processed": 0, "skipped_old": 0, "skipped_private": 0, "skipped_duplicate": 0}
        oldest_allowed = now_ms() - int(MAX_TIP_AGE.total_seconds() * 1000)

        for tip in tips:
            tip_id = str(tip["id"])
            if tip_id in self.tips_read:
                counts["skipped_duplicate"] += 1
                continue
            self.tips_read.add(tip_id)

            created = iso_to_ms(tip.get("createdAt"))
            if created is not None and created < oldest_allowed:
                self.log.debug(f"Skipping tip {tip_id} older than 6 days")
                counts["skipped_old"] += 1
                continue

            if tip.get("private") is True:
                self.log.debug(f"Skipping private tip {tip_id}")
                counts["skipped_private"] += 1
                continue

            counts["processed"] += len(self.send_chat_messages([self.prepare_chat_message(tip)]))

        return counts

    def on_xhr_response(self, event: RawNetworkEvent) -> Optional[HandlerResult]:
        if "/tips/page/" not in event.url:
            return ignored(note="Not tips endpoint")
        return handled("tips", self.receive_tips(event.json_data()))
