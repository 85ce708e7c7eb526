"""
Integration tests for identity discovery against mocked platform APIs.
"""
import httpx
import pytest

from harvest.ingest.kick import Kick
from harvest.ingest.youtube import YouTube
from harvest.relay.connection import RelayConnection
from tests.helpers import FakeRelay, settle

WATCH_PAGE = "https://www.youtube.com/watch?v=abc123"


def kick_message(message_id, content, created_at):
    return {
        "id": message_id,
        "content": content,
        "created_at": created_at,
        "sender": {"id": 1, "username": "viewer", "identity": {"badges": []}},
    }


@pytest.fixture
def relay():
    return FakeRelay()


@pytest.fixture
async def connection(relay):
    connection = RelayConnection("ws://relay.test/chat.ws", connect=relay.connect, reconnect_delay=0.01)
    await connection.start()
    yield connection
    await connection.close()


@pytest.mark.integration
@pytest.mark.asyncio
class TestYouTubeDiscovery:
    """Test channel lookup through oEmbed."""

    async def test_updates_wait_for_channel(self, connection, relay):
        requested = []

        def handler(request):
            requested.append(request.url)
            if request.url.path == "/oembed":
                return httpx.Response(200, json={"author_url": "https://www.youtube.com/@SomeCreator"})
            return httpx.Response(404)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            youtube = YouTube(WATCH_PAGE, connection, http_client=client)
            youtube.send_viewer_count(42)
            await settle()
            assert relay.sent == []

            assert await youtube.discover() is True
            await settle()

        assert youtube.video_id == "abc123"
        assert youtube.channel == "SomeCreator"
        assert requested[0].params["url"] == "http://youtube.com/watch?v=abc123"
        assert relay.sent == [
            {"platform": "YouTube", "channel": "SomeCreator", "messages": None, "removals": None, "viewers": 42}
        ]

    async def test_lookup_failure_keeps_updates_queued(self, connection, relay):
        def handler(request):
            return httpx.Response(404)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            youtube = YouTube(WATCH_PAGE, connection, http_client=client)
            youtube.send_viewer_count(42)
            assert await youtube.discover() is False
            await settle()

        assert youtube.is_ready is False
        assert relay.sent == []
        assert len(connection.outbound) == 1

    async def test_author_url_without_channel(self, connection):
        def handler(request):
            return httpx.Response(200, json={"author_url": "https://example.com/"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            youtube = YouTube(WATCH_PAGE, connection, http_client=client)
            assert await youtube.discover() is False

    async def test_page_without_video_id_makes_no_request(self, connection):
        requested = []

        def handler(request):
            requested.append(request)
            return httpx.Response(500)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            youtube = YouTube("https://www.youtube.com/feed/subscriptions", connection, http_client=client)
            assert await youtube.discover() is False
        assert requested == []


@pytest.mark.integration
@pytest.mark.asyncio
class TestKickDiscovery:
    """Test channel info lookup and chat history replay."""

    async def test_history_replayed_oldest_first(self, connection, relay):
        def handler(request):
            if request.url.path == "/api/v2/channels/xqc":
                return httpx.Response(200, json={"id": 668, "livestream": {"id": 9001}})
            if request.url.path == "/api/v2/channels/668/messages":
                return httpx.Response(
                    200,
                    json={
                        "data": {
                            "messages": [
                                kick_message("7b6c4b1e-2a41-4c8e-9d7b-1f2e3a4b5c6d", "second", "2024-01-01T00:00:02Z"),
                                kick_message("0f4e2a9c-2a41-4c8e-9d7b-1f2e3a4b5c6d", "first", "2024-01-01T00:00:01Z"),
                            ]
                        }
                    },
                )
            return httpx.Response(404)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            kick = Kick("https://kick.com/xqc", connection, http_client=client)
            assert await kick.discover() is True
            await settle()

            assert kick.channel_id == 668
            assert kick.livestream_id == 9001
            texts = [m["message"] for update in relay.sent for m in update["messages"]]
            assert texts == ["first", "second"]

            # Replaying the same history forwards nothing new
            assert await kick.fetch_chat_history() == 0

    async def test_channel_without_id(self, connection, relay):
        def handler(request):
            return httpx.Response(200, json={"slug": "xqc"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            kick = Kick("https://kick.com/xqc", connection, http_client=client)
            await kick.discover()
            await settle()

        assert kick.channel_id is None
        assert relay.sent == []
