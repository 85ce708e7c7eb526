"""Unit tests for the Rumble harvester."""
import pytest

from harvest.ingest.rumble import SERVICE_URL, Rumble
from harvest.schemas.events import PageInfo
from harvest.utils.recorder import EventStatus
from tests.helpers import fetch_response, queued_messages, queued_viewers, sse_message, xhr_response

PAGE_HTML = """
<html><body>
  <div class="media-by-wrap"></div>
  <button class="rumbles-vote-pill rumbles-vote-up" data-id="987654">Like</button>
</body></html>
"""

USERS = [
    {"id": "u1", "username": "alice", "image.1": "https://rumble.test/a.png", "badges": ["admin", "premium"]},
    {"id": "u2", "username": "bob", "badges": ["locals", "verified"]},
]


@pytest.fixture
def rumble(connection):
    return Rumble("https://rumble.com/chat/popup/123456", connection)


@pytest.mark.unit
class TestRumble:
    """Test Rumble event handling."""

    def test_channel_from_popout_url(self, rumble):
        assert rumble.channel == "123456"

    def test_video_page_has_no_channel_in_url(self):
        assert Rumble("https://rumble.com/v4abcd-some-stream.html").channel is None

    @pytest.mark.asyncio
    async def test_discovers_channel_from_vote_pill(self, connection):
        page = PageInfo(url="https://rumble.com/v4abcd-some-stream.html", html=PAGE_HTML)
        rumble = Rumble(page, connection)
        assert await rumble.discover() is True
        assert rumble.channel == "987654"

    @pytest.mark.asyncio
    async def test_discovery_fails_without_vote_pill(self, connection):
        page = PageInfo(url="https://rumble.com/v4abcd-some-stream.html", html="<html></html>")
        rumble = Rumble(page, connection)
        assert await rumble.discover() is False

    def test_messages_joined_with_users(self, rumble, connection):
        rumble.handle_raw_event(
            fetch_response(
                "https://rumble.com/service.php?name=emote.list",
                {"data": {"items": [{"emotes": [{"name": "r+rumble", "file": "https://rumble.test/e.png"}]}]}},
            )
        )
        frame = {
            "type": "init",
            "data": {
                "messages": [
                    {"id": "m1", "user_id": "u1", "text": "hello :r+rumble:", "time": "2024-01-01T00:00:00+00:00"},
                    {"id": "m2", "user_id": "u2", "text": "rant!", "rant": {"price_cents": 500}},
                    {"id": "m3", "user_id": "u2", "text": "   "},
                    {"id": "m4", "user_id": "missing", "text": "who"},
                ],
                "users": USERS,
            },
        }

        status = rumble.handle_raw_event(sse_message(frame))

        assert status is EventStatus.HANDLED
        first, second = queued_messages(connection)
        assert first.username == "alice"
        assert first.is_owner is True
        assert first.avatar == "https://rumble.test/a.png"
        assert first.emojis == [(":r+rumble:", "https://rumble.test/e.png", ":r+rumble:")]
        assert first.sent_at == 1704067200000
        assert second.is_sub and second.is_verified
        assert second.amount == 5.0
        assert second.currency == "USD"

    def test_subscription_notification(self, rumble, connection):
        frame = {
            "type": "messages",
            "data": {
                "messages": [{"id": "n1", "user_id": "u2", "text": "", "notification": {"badge": "locals"}}],
                "users": USERS,
            },
        }
        rumble.handle_raw_event(sse_message(frame))
        [message] = queued_messages(connection)
        assert message.message == "bob subscribed for 1 month!"
        assert message.amount == 5.0

    def test_unknown_sse_type(self, rumble):
        assert rumble.handle_raw_event(sse_message({"type": "pin", "data": {}})) is EventStatus.UNHANDLED

    def test_viewer_count(self, rumble, connection):
        status = rumble.handle_raw_event(
            xhr_response(f"{SERVICE_URL}?name=video.watching-now", {"data": {"num_watching_now": 88}})
        )
        assert status is EventStatus.HANDLED
        assert queued_viewers(connection) == [88]

    def test_zero_viewers_is_forwarded(self, rumble, connection):
        rumble.handle_raw_event(xhr_response(SERVICE_URL, {"data": {"viewer_count": 0}}))
        assert queued_viewers(connection) == [0]

    def test_other_xhr_is_ignored(self, rumble):
        assert rumble.handle_raw_event(xhr_response("https://rumble.com/x", {})) is EventStatus.IGNORED
