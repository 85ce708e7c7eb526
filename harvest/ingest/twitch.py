"""
Twitch Harvester

Twitch chat is IRC over WebSocket with IRCv3 message tags:

    @badges=moderator/1;display-name=Foo;id=...;tmi-sent-ts=... :foo!foo@foo.tmi.twitch.tv PRIVMSG #chan :hello

Twitch exposes no viewer count on the chat socket, so this adapter does
not report one.
"""

from __future__ import annotations

from typing import Any, Dict, List, NamedTuple, Optional

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
from harvest.schemas.messages import ChatMessage, Subscription
from harvest.utils.ids import synthesized_key
from harvest.utils.recorder import EventStatus

EMOTE_URL = "https://static-cdn.jtvnw.net/emoticons/v2/{id}/default/dark/1.0"
SUB_VALUE = 5.0

OWNER_BADGES = frozenset({"broadcaster"})
MOD_BADGES = frozenset({"moderator"})
SUB_BADGES = frozenset({"subscriber", "founder"})
VERIFIED_BADGES = frozenset({"partner", "verified"})
STAFF_BADGES = frozenset({"staff", "admin", "global_mod"})

SUB_NOTICES = frozenset({"sub", "resub"})
GIFT_NOTICES = frozenset({"subgift"})

# Server chatter with no chat content
IGNORED_COMMANDS = frozenset(
    {
        "PING", "PONG", "CAP", "JOIN", "PART", "ROOMSTATE", "USERSTATE", "GLOBALUSERSTATE",
        "NOTICE", "CLEARCHAT", "HOSTTARGET", "RECONNECT", "WHISPER",
        "001", "002", "003", "004", "353", "366", "372", "375", "376",
    }
)

_TAG_ESCAPES = {":": ";", "s": " ", "\\": "\\", "r": "\r", "n": "\n"}


class IrcMessage(NamedTuple):
    tags: Dict[str, str]
    prefix: Optional[str]
    command: str
    params: List[str]
    trailing: Optional[str]

    @property
    def nick(self) -> Optional[str]:
        if not self.prefix:
            return None
        return self.prefix.split("!", 1)[0]


def unescape_tag_value(value: str) -> str:
    out = []
    chars = iter(value)
    for char in chars:
        if char == "\\":
            escaped = next(chars, "")
            out.append(_TAG_ESCAPES.get(escaped, escaped))
        else:
            out.append(char)
    return "".join(out)


def parse_irc_line(line: str) -> Optional[IrcMessage]:
    """Parse one IRC line; returns None for blank lines."""
    line = line.strip("\r\n")
    if not line:
        return None

    tags: Dict[str, str] = {}
    if line.startswith("@"):
        raw_tags, _, line = line[1:].partition(" ")
        for pair in raw_tags.split(";"):
            key, _, value = pair.partition("=")
            tags[key] = unescape_tag_value(value)

    prefix = None
    if line.startswith(":"):
        prefix, _, line = line[1:].partition(" ")

    trailing = None
    if line.startswith(":"):
        trailing = line[1:]
        line = ""
    elif " :" in line:
        line, _, trailing = line.partition(" :")

    parts = line.split()
    if not parts:
        return None
    return IrcMessage(tags, prefix, parts[0].upper(), parts[1:], trailing)


def parse_irc_frame(data: str) -> List[IrcMessage]:
    """A single WebSocket frame may carry several CRLF-separated lines."""
    return [msg for msg in (parse_irc_line(line) for line in data.split("\r\n")) if msg is not None]


def parse_badges(value: str) -> List[str]:
    """'moderator/1,subscriber/12' -> ['moderator', 'subscriber']"""
    return [badge.split("/", 1)[0] for badge in value.split(",") if badge]


def parse_emotes(value: str, text: str) -> List[tuple]:
    """
    Resolve the ``emotes`` tag (``id:start-end,start-end/id:start-end``)
    to (marker, url, alt) triples. Offsets index code points of ``text``.
    """
    emojis = []
    for entry in value.split("/"):
        emote_id, _, ranges = entry.partition(":")
        if not emote_id or not ranges:
            continue
        start, _, end = ranges.split(",")[0].partition("-")
        try:
            marker = text[int(start) : int(end) + 1]
        except ValueError:
            continue
        if marker:
            emojis.append((marker, EMOTE_URL.format(id=emote_id), marker))
    return emojis


class Twitch(PlatformAdapter):
    """Twitch.tv harvester."""

    platform = "Twitch"
    namespace = "4a342b79-e302-403a-99be-669b5f27b152"
    hostnames = ("twitch.tv", "www.twitch.tv")
    capabilities = frozenset(
        {Capability.PARSE_MESSAGE, Capability.PARSE_REMOVAL, Capability.PARSE_MONETARY_EVENT}
    )

    def channel_from_url(self, url: str) -> Optional[str]:
        segments = url_segments(url.split("?")[0])
        index = 3 if "popout" in segments else 2
        if len(segments) <= index or segments[index] == "p":
            return None
        return segments[index].lower()

    def prepare_chat_message(self, irc: IrcMessage) -> ChatMessage:
        tags = irc.tags
        text = irc.trailing or ""
        # /me messages are wrapped in CTCP ACTION
        if text.startswith("\x01ACTION ") and text.endswith("\x01"):
            text = text[len("\x01ACTION ") : -1]

        fields: Dict[str, Any] = {
            "message": text,
            "username": tags.get("display-name") or irc.nick or "Unknown",
            "emojis": parse_emotes(tags.get("emotes", ""), text),
        }
        if tags.get("tmi-sent-ts", "").isdigit():
            fields["sent_at"] = int(tags["tmi-sent-ts"])

        for badge in parse_badges(tags.get("badges", "")):
            if badge in OWNER_BADGES:
                fields["is_owner"] = True
            elif badge in MOD_BADGES:
                fields["is_mod"] = True
            elif badge in SUB_BADGES:
                fields["is_sub"] = True
            elif badge in VERIFIED_BADGES:
                fields["is_verified"] = True
            elif badge in STAFF_BADGES:
                fields["is_staff"] = True

        bits = tags.get("bits", "")
        if bits.isdigit() and int(bits) > 0:
            fields["amount"] = int(bits) / 100
            fields["currency"] = "USD"

        return self.make_message(tags["id"], **fields)

    def prepare_subscription(self, irc: IrcMessage) -> Optional[Subscription]:
        tags = irc.tags
        notice = tags.get("msg-id")
        buyer = tags.get("display-name") or tags.get("login") or "Unknown"
        native_id = tags.get("id") or synthesized_key(buyer)

        if notice in SUB_NOTICES:
            months = tags.get("msg-param-cumulative-months", "1")
            return Subscription(
                id=native_id,
                buyer=buyer,
                count=max(1, int(months) if months.isdigit() else 1),
                value=SUB_VALUE,
            )
        if notice in GIFT_NOTICES:
            return Subscription(id=native_id, buyer=buyer, count=1, value=SUB_VALUE, gifted=True)
        return None

    def receive_irc(self, irc: IrcMessage) -> HandlerResult:
        command = irc.command

        if command == "PRIVMSG":
            if "id" not in irc.tags:
                return ignored(command, "No message id")
            message = self.prepare_chat_message(irc)
            self.send_chat_messages([message])
            return handled(command, message)

        if command == "CLEARMSG":
            target = irc.tags.get("target-msg-id")
            if not target:
                return ignored(command, "No target message")
            removed = self.send_removals([self.message_id(target)])
            return handled(command, {"removed": removed})

        if command == "USERNOTICE":
            sub = self.prepare_subscription(irc)
            if sub is None:
                return ignored(command, f"Unhandled notice {irc.tags.get('msg-id')}")
            self.receive_subscription(sub)
            return handled(command, sub)

        if command in IGNORED_COMMANDS:
            return ignored(command)

        return unhandled(command)

    def on_websocket_message(self, event: RawNetworkEvent) -> Optional[HandlerResult]:
        results = [self.receive_irc(irc) for irc in parse_irc_frame(event.text_data())]
        if not results:
            return ignored(note="Empty frame")
        for result in results:
            if result.status is EventStatus.HANDLED:
                return result
        return results[0]

    def on_websocket_send(self, event: RawNetworkEvent) -> Optional[HandlerResult]:
        # Outbound PRIVMSGs carry no id; the server echo is what gets harvested
        return ignored("send", "Outbound IRC")
