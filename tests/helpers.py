"""Builders for observed-traffic events and queue inspection."""
import asyncio
import json

from harvest.relay.connection import RelayConnection
from harvest.schemas.events import RawEventKind, RawNetworkEvent
from harvest.schemas.messages import LivestreamUpdate


def queued_updates(connection: RelayConnection):
    """LivestreamUpdates waiting in the connection's outbound queue, oldest first."""
    return [frame for frame in connection.outbound if isinstance(frame, LivestreamUpdate)]


def queued_messages(connection: RelayConnection):
    return [m for update in queued_updates(connection) for m in (update.messages or [])]


def queued_removals(connection: RelayConnection):
    return [i for update in queued_updates(connection) for i in (update.removals or [])]


def queued_viewers(connection: RelayConnection):
    return [update.viewers for update in queued_updates(connection) if update.viewers is not None]


def _encode(frame):
    return frame if isinstance(frame, str) else json.dumps(frame)


def ws_message(frame, url="wss://example.test/socket"):
    return RawNetworkEvent(kind=RawEventKind.WEBSOCKET_MESSAGE, url=url, data=_encode(frame))


def ws_send(frame, url="wss://example.test/socket"):
    return RawNetworkEvent(kind=RawEventKind.WEBSOCKET_SEND, url=url, data=_encode(frame))


def fetch_response(url, body):
    return RawNetworkEvent(kind=RawEventKind.FETCH_RESPONSE, url=url, data=body)


def xhr_response(url, body):
    return RawNetworkEvent(kind=RawEventKind.XHR_RESPONSE, url=url, data=body)


def sse_message(data, url="https://example.test/events"):
    return RawNetworkEvent(kind=RawEventKind.EVENT_SOURCE_MESSAGE, url=url, data=_encode(data))


class FakeClock:
    def __init__(self, now=10_000):
        self.now = now

    def __call__(self):
        return self.now


class FakeTimer:
    def __init__(self, due, callback):
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Stands in for loop.call_later, firing timers against a FakeClock."""

    def __init__(self, clock):
        self.clock = clock
        self.timers = []

    def __call__(self, delay_seconds, callback):
        timer = FakeTimer(self.clock.now + round(delay_seconds * 1000, 6), callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self):
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def _fire_next(self, until=None):
        due = sorted(self.pending, key=lambda t: t.due)
        if not due or (until is not None and due[0].due > until):
            return False
        timer = due[0]
        self.clock.now = max(self.clock.now, timer.due)
        timer.fired = True
        timer.callback()
        return True

    def advance(self, ms):
        target = self.clock.now + ms
        while self._fire_next(until=target):
            pass
        self.clock.now = target

    def run_all(self):
        while self._fire_next():
            pass


async def settle(rounds=10):
    """Let scheduled tasks (flushes, readers) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeSocket:
    """In-memory websocket: records sends, yields whatever is pushed into it."""

    def __init__(self):
        self.sent = []
        self.closed = False
        self.fail_send = None
        self.incoming = asyncio.Queue()

    @property
    def decoded(self):
        return [json.loads(frame) for frame in self.sent]

    async def send(self, frame):
        if self.fail_send is not None:
            raise self.fail_send
        self.sent.append(frame)

    async def close(self):
        self.closed = True
        self.incoming.put_nowait(None)

    def push(self, item):
        """Queue an inbound frame, an exception to raise, or None to end the stream."""
        self.incoming.put_nowait(item)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.incoming.get()
        if item is None:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item


class FakeRelay:
    """Transport factory for RelayConnection that fails the first ``failures`` attempts."""

    def __init__(self, failures=0):
        self.failures = failures
        self.attempts = 0
        self.urls = []
        self.sockets = []

    async def connect(self, url):
        self.attempts += 1
        self.urls.append(url)
        if self.attempts <= self.failures:
            raise OSError("Connection refused")
        ws = FakeSocket()
        self.sockets.append(ws)
        return ws

    @property
    def sent(self):
        return [frame for ws in self.sockets for frame in ws.decoded]
