import pytest

from harvest.relay.connection import RelayConnection


@pytest.fixture
def connection():
    """A relay connection that is never started, so every update stays queued."""
    return RelayConnection("ws://relay.test/chat.ws", queue_limit=100)
