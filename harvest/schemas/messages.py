"""
Canonical Message Schemas

Pydantic models shared by every platform adapter and every consumer:
- ChatMessage: one normalized chat or monetary event
- LivestreamUpdate: the envelope an adapter sends to the relay
- RelayEnvelope and the control messages exchanged with the relay
"""

from __future__ import annotations

import json
import time
from typing import Annotated, Any, List, Literal, Optional, Tuple

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator


# Non-monetary placeholder currency, matches what the relay expects
DEFAULT_CURRENCY = "ZWL"
# Transparent 1x1 gif used when a platform provides no avatar
DEFAULT_AVATAR = "data:image/gif;base64,R0lGODlhAQABAAAAACH5BAEKAAEALAAAAAABAAEAAAICTAEAOw=="

RELAY_TAGS = ("chat_message", "feature_message", "viewers", "layout_update", "layout_list")


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def _coerce_channel(value: Any) -> Optional[str]:
    # Some platforms identify channels by number (Rumble)
    if value is None:
        return None
    return str(value)


ChannelName = Annotated[Optional[str], BeforeValidator(_coerce_channel)]


class ChatMessage(BaseModel):
    """
    One normalized chat/monetary event.

    Immutable once built. The only permitted change is replacing a
    placeholder with its final content under the same id, which consumers
    do by swapping the stored instance (see MessageStore).
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Stable canonical id (UUID string)")
    platform: str
    channel: ChannelName = None
    sent_at: int = Field(default_factory=now_ms, description="Event-origin time, ms")
    received_at: int = Field(default_factory=now_ms, description="Local observation time, ms")
    is_placeholder: bool = False

    message: str = ""
    emojis: List[Tuple[str, str, str]] = Field(
        default_factory=list, description="(marker, image url, alt text) triples"
    )
    username: str = "DUMMY_USER"
    avatar: str = DEFAULT_AVATAR

    amount: float = Field(default=0.0, ge=0)
    currency: str = DEFAULT_CURRENCY

    is_verified: bool = False
    is_sub: bool = False
    is_mod: bool = False
    is_owner: bool = False
    is_staff: bool = False

    @property
    def is_premium(self) -> bool:
        return self.amount > 0

    def to_console_msg(self) -> str:
        if self.is_premium:
            return f"[{self.platform}] [{self.currency} {self.amount:.2f}] ({self.username}): {self.message}"
        return f"[{self.platform}] {self.username}: {self.message}"


class LivestreamUpdate(BaseModel):
    """
    Envelope sent from an adapter to the relay.

    Carries at most one of: new/updated messages, ids to remove, or a
    viewer count. Built per transmission, never stored.
    """

    platform: str
    channel: ChannelName = None
    messages: Optional[List[ChatMessage]] = None
    removals: Optional[List[str]] = None
    viewers: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _single_payload(self) -> "LivestreamUpdate":
        present = [
            name
            for name in ("messages", "removals", "viewers")
            if getattr(self, name) is not None
        ]
        if len(present) > 1:
            raise ValueError(f"LivestreamUpdate carries more than one payload: {present}")
        return self

    def to_wire(self) -> str:
        return self.model_dump_json()


class RelayEnvelope(BaseModel):
    """Frame received from the relay: a tag plus a JSON-encoded message."""

    tag: str
    message: str

    def payload(self) -> Any:
        return json.loads(self.message)


class FeatureMessageCommand(BaseModel):
    """Feature (pin) a message on every overlay, or clear it with None."""

    feature_message: Optional[str] = None


class RequestLayout(BaseModel):
    request_layout: Literal[True] = True


class SubscribeLayout(BaseModel):
    subscribe_layout: str


class RequestMessages(BaseModel):
    request_messages: Literal[True] = True


class Subscription(BaseModel):
    """A subscription or gifted-subscription purchase before it becomes a ChatMessage."""

    id: str = Field(..., description="Native or synthesized key")
    buyer: str
    count: int = Field(default=1, ge=1)
    value: float = Field(default=5.0, ge=0, description="USD per unit")
    gifted: bool = False
