"""
Integration tests for the tap service API.

Pages are registered over HTTP and their adapters forward to an in-memory
relay, so these tests cover the whole path from an observed frame to a
relay frame.
"""
import json

import httpx
import pytest

from harvest import main
from harvest.relay.connection import RelayConnection
from tests.helpers import FakeRelay, settle

TWITCH_PAGE = "https://www.twitch.tv/streamer"
RUMBLE_PAGE = "https://rumble.com/chat/popup/12345"
PRIVMSG = "@display-name=Viewer;id=msg-1 :viewer!viewer@viewer.tmi.twitch.tv PRIVMSG #streamer :hello"


def irc_event(line=PRIVMSG):
    return {"kind": "websocket_message", "url": "wss://irc-ws.chat.twitch.tv", "data": line}


def rumble_event(data):
    return {
        "kind": "event_source_message",
        "url": "https://web7.rumble.com/chat/api/chat/12345/stream",
        "data": data,
    }


@pytest.fixture
def relay():
    return FakeRelay()


@pytest.fixture
async def client(relay, monkeypatch):
    monkeypatch.setattr(
        main,
        "create_connection",
        lambda: RelayConnection("ws://relay.test/chat.ws", connect=relay.connect, reconnect_delay=0.01),
    )
    main.pages.clear()
    await main.startup_event()
    transport = httpx.ASGITransport(app=main.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://harvest.test") as client:
        yield client
    await main.shutdown_event()


async def register(client, url=TWITCH_PAGE):
    response = await client.post("/pages", json={"url": url})
    assert response.status_code == 200
    return response.json()


@pytest.mark.integration
@pytest.mark.asyncio
class TestTapService:
    """Test the tap service endpoints."""

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "harvest"
        assert data["pages"] == 0

    async def test_register_page(self, client):
        page = await register(client)

        assert page["platform"] == "Twitch"
        assert page["channel"] == "streamer"
        assert page["ready"] is True

        health = (await client.get("/health")).json()
        assert health["pages"] == 1
        assert health["relay"] == {page["page_id"]: "open"}

    async def test_register_unknown_platform(self, client):
        response = await client.post("/pages", json={"url": "https://example.com/live"})
        assert response.status_code == 422

    async def test_register_page_without_identity(self, client):
        page = await register(client, "https://www.youtube.com/")
        assert page["platform"] == "YouTube"
        assert page["channel"] is None
        assert page["ready"] is False

        retry = await client.post(f"/pages/{page['page_id']}/discover")
        assert retry.status_code == 200
        assert retry.json()["ready"] is False

    async def test_event_forwarded_to_relay(self, client, relay):
        page = await register(client)

        response = await client.post(f"/pages/{page['page_id']}/events", json=irc_event())
        await settle()

        assert response.json() == {"status": "handled"}
        [update] = relay.sent
        assert update["platform"] == "Twitch"
        assert update["channel"] == "streamer"
        assert [m["message"] for m in update["messages"]] == ["hello"]

    async def test_duplicate_frame_forwarded_once(self, client, relay):
        page = await register(client)
        for _ in range(2):
            await client.post(f"/pages/{page['page_id']}/events", json=irc_event())
        await settle()

        assert len(relay.sent) == 1

    async def test_ignored_event(self, client, relay):
        page = await register(client)
        response = await client.post(f"/pages/{page['page_id']}/events", json=irc_event("PING :tmi.twitch.tv"))
        await settle()

        assert response.json() == {"status": "ignored"}
        assert relay.sent == []

    async def test_malformed_event_then_valid_event(self, client, relay):
        page = await register(client, RUMBLE_PAGE)
        frame = {
            "type": "messages",
            "data": {
                "messages": [{"id": "1", "user_id": "u1", "text": "still here", "time": "2024-01-01T00:00:00+00:00"}],
                "users": [{"id": "u1", "username": "alice"}],
            },
        }

        bad = await client.post(f"/pages/{page['page_id']}/events", json=rumble_event("{not json"))
        good = await client.post(f"/pages/{page['page_id']}/events", json=rumble_event(json.dumps(frame)))
        await settle()

        assert bad.json() == {"status": "error"}
        assert good.json() == {"status": "handled"}
        [update] = relay.sent
        assert update["channel"] == "12345"
        assert update["messages"][0]["username"] == "alice"

    async def test_invalid_event_body(self, client):
        page = await register(client)
        response = await client.post(f"/pages/{page['page_id']}/events", json={"kind": "telepathy"})
        assert response.status_code == 422

    async def test_unknown_page(self, client):
        assert (await client.post("/pages/missing/events", json=irc_event())).status_code == 404
        assert (await client.post("/pages/missing/discover")).status_code == 404
        assert (await client.get("/pages/missing/recording")).status_code == 404
        assert (await client.delete("/pages/missing")).status_code == 404

    async def test_recording(self, client):
        page = await register(client)
        page_id = page["page_id"]

        started = await client.post(f"/pages/{page_id}/recording/start")
        assert started.json()["recording"] is True

        await client.post(f"/pages/{page_id}/events", json=irc_event())
        await client.post(f"/pages/{page_id}/events", json=irc_event("PING :tmi.twitch.tv"))

        export = (await client.get(f"/pages/{page_id}/recording")).json()
        assert export["platform"] == "Twitch"
        assert export["stats"]["by_type"] == {"chat_message": 1, "ws_message": 2}
        assert export["stats"]["by_status"] == {"handled": 2, "ignored": 1}

        stopped = await client.post(f"/pages/{page_id}/recording/stop")
        assert stopped.json()["recording"] is False
        assert stopped.json()["total"] == 3

    async def test_close_page_reports_zero_viewers(self, client, relay):
        page = await register(client)

        response = await client.delete(f"/pages/{page['page_id']}")

        assert response.json() == {"page_id": page["page_id"], "closed": True}
        assert relay.sent[-1]["viewers"] == 0
        assert relay.sent[-1]["channel"] == "streamer"
        assert relay.sockets[0].closed is True
        assert main.pages == {}
        assert (await client.delete(f"/pages/{page['page_id']}")).status_code == 404
