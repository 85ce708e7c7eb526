"""Unit tests for the XMRChat harvester."""
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from harvest.config import settings
from harvest.ingest.xmrchat import XMRChat
from harvest.utils.recorder import EventStatus
from tests.helpers import queued_messages, xhr_response


def iso(delta=timedelta(0)):
    return (datetime.now(timezone.utc) - delta).isoformat()


def tip(tip_id, **overrides):
    data = {
        "id": tip_id,
        "name": "monero_fan",
        "message": "keep it up",
        "createdAt": iso(),
        "private": False,
        "payment": {"amount": 500_000_000_000},
    }
    data.update(overrides)
    return data


@pytest.fixture
def xmrchat(connection):
    adapter = XMRChat("https://xmrchat.com/streamer", connection)
    adapter.xmr_price = 150.0
    return adapter


@pytest.mark.unit
class TestXMRChat:
    """Test XMRChat tip handling."""

    def test_tip_amount_in_usd(self, xmrchat, connection):
        status = xmrchat.handle_raw_event(xhr_response("https://xmrchat.com/api/tips/page/streamer", [tip("t1")]))

        assert status is EventStatus.HANDLED
        [message] = queued_messages(connection)
        assert message.id == xmrchat.message_id("XMRCHAT-t1")
        assert message.amount == pytest.approx(75.0)
        assert message.currency == "USD"
        assert message.channel == "xmrchat"

    def test_repolled_tips_are_skipped(self, xmrchat, connection):
        assert xmrchat.receive_tips([tip("t1")])["processed"] == 1
        counts = xmrchat.receive_tips([tip("t1"), tip("t2")])
        assert counts["skipped_duplicate"] == 1
        assert counts["processed"] == 1
        assert len(queued_messages(connection)) == 2

    def test_old_and_private_tips_are_skipped(self, xmrchat, connection):
        counts = xmrchat.receive_tips(
            [tip("old", createdAt=iso(timedelta(days=7))), tip("secret", private=True)]
        )
        assert counts["skipped_old"] == 1
        assert counts["skipped_private"] == 1
        assert queued_messages(connection) == []

    def test_other_endpoints_ignored(self, xmrchat):
        assert xmrchat.handle_raw_event(xhr_response("https://xmrchat.com/api/me", {})) is EventStatus.IGNORED


@pytest.mark.unit
@pytest.mark.asyncio
class TestXMRChatPrice:
    """Test price discovery."""

    async def test_price_fetched(self, connection):
        def handler(request):
            return httpx.Response(200, text="321.5")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            adapter = XMRChat("https://xmrchat.com/streamer", connection, http_client=client)
            assert await adapter.discover() is True
        assert adapter.xmr_price == 321.5

    async def test_fallback_price_on_failure(self, connection):
        def handler(request):
            return httpx.Response(503)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            adapter = XMRChat("https://xmrchat.com/streamer", connection, http_client=client)
            assert await adapter.discover() is True
        assert adapter.xmr_price == settings.xmr_fallback_price
