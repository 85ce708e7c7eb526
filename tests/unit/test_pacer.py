"""Unit tests for the delivery pacer."""
import pytest

from harvest.delivery.pacer import DeliveryPacer
from harvest.schemas.messages import ChatMessage
from tests.helpers import FakeClock, FakeScheduler


def message(message_id, amount=0.0):
    return ChatMessage(id=message_id, platform="Twitch", channel="c", amount=amount, currency="USD")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return FakeScheduler(clock)


@pytest.fixture
def delivered():
    return []


@pytest.fixture
def pacer(clock, scheduler, delivered):
    return DeliveryPacer(
        delivered.append, max_wait_ms=1000, min_interval_ms=50, clock=clock, call_later=scheduler
    )


@pytest.mark.unit
class TestDeliveryPacer:
    """Test DeliveryPacer."""

    def test_explicit_zero_bounds_are_kept(self, clock, scheduler):
        pacer = DeliveryPacer(
            lambda m: None, max_wait_ms=0, min_interval_ms=0, clock=clock, call_later=scheduler
        )
        assert pacer.max_wait_ms == 0
        assert pacer.min_interval_ms == 0

    def test_premium_bypasses_queue(self, pacer, delivered, scheduler):
        pacer.handle(message("regular"))
        paid = message("paid", amount=5)
        pacer.handle(paid)
        assert delivered == [paid]
        assert len(pacer) == 1

    def test_single_pending_timer(self, pacer, scheduler):
        for i in range(5):
            pacer.handle(message(str(i)))
        assert len(scheduler.pending) == 1
        assert len(pacer) == 5

    def test_growing_queue_brings_the_cycle_forward(self, pacer, scheduler, clock):
        pacer.handle(message("a"))
        assert scheduler.pending[0].due == clock.now + 1000
        pacer.handle(message("b"))
        assert scheduler.pending[0].due == clock.now + 500

    def test_delay_spreads_remaining_wait(self, pacer, clock):
        for i in range(4):
            pacer.queue.append((message(str(i)), clock.now))
        assert pacer.next_delay() == 250
        clock.now += 900
        # 100 ms left over 4 messages is below the minimum spacing
        assert pacer.next_delay() == 50
        clock.now += 70
        # never past the oldest message's deadline
        assert pacer.next_delay() == 30
        clock.now += 30
        assert pacer.next_delay() == 0

    def test_empty_queue_delay(self, pacer):
        assert pacer.next_delay() == 50

    def test_process_count_expired_prefix(self, pacer, clock):
        pacer.queue.append((message("old1"), clock.now - 1500))
        pacer.queue.append((message("old2"), clock.now - 1000))
        pacer.queue.append((message("new"), clock.now - 10))
        assert pacer.process_count() == 2

    def test_process_count_respects_min_interval(self, pacer, clock):
        pacer.queue.append((message("a"), clock.now))
        pacer.last_process_time = clock.now - 20
        assert pacer.process_count() == 0
        pacer.last_process_time = clock.now - 50
        assert pacer.process_count() == 1

    def test_burst_is_spread_out_in_order(self, pacer, clock, scheduler):
        released = []
        pacer.deliver = lambda m: released.append((m.id, clock.now))
        for i in range(5):
            pacer.handle(message(str(i)))

        scheduler.run_all()

        assert [mid for mid, _ in released] == ["0", "1", "2", "3", "4"]
        times = [t for _, t in released]
        gaps = [b - a for a, b in zip(times, times[1:])]
        assert all(gap >= 50 for gap in gaps)
        assert times[-1] - 10_000 <= 1000

    def test_sustained_load_never_exceeds_max_wait(self, pacer, clock, scheduler):
        pushed_at = {}
        released_at = {}
        pacer.deliver = lambda m: released_at.setdefault(m.id, clock.now)

        for i in range(200):
            pushed_at[str(i)] = clock.now
            pacer.handle(message(str(i)))
            scheduler.advance(7)
        scheduler.run_all()

        assert len(released_at) == 200
        assert max(released_at[k] - pushed_at[k] for k in pushed_at) <= 1000
        order = sorted(released_at, key=lambda k: (released_at[k], int(k)))
        assert order == [str(i) for i in range(200)]

    def test_visibility_catch_up(self, pacer, clock, scheduler, delivered):
        pacer.handle(message("a"))
        pacer.handle(message("b"))
        timer = scheduler.pending[0]

        # Hidden tab: the timer never fired
        clock.now += 5000
        pacer.on_visibility_change(True)

        assert [m.id for m in delivered] == ["a", "b"]
        assert timer.cancelled
        assert scheduler.pending == []

    def test_visibility_with_fresh_messages_reschedules(self, pacer, clock, scheduler, delivered):
        pacer.handle(message("a"))
        pacer.last_process_time = clock.now
        pacer.on_visibility_change(True)
        assert delivered == []
        assert len(scheduler.pending) == 1

    def test_hidden_does_nothing(self, pacer, delivered):
        pacer.handle(message("a"))
        pacer.on_visibility_change(False)
        assert delivered == []

    def test_failing_renderer_does_not_stop_delivery(self, pacer, scheduler):
        seen = []

        def deliver(m):
            seen.append(m.id)
            raise RuntimeError("render failed")

        pacer.deliver = deliver
        pacer.handle(message("a"))
        pacer.handle(message("b"))
        scheduler.run_all()
        assert seen == ["a", "b"]

    def test_stop(self, pacer, scheduler):
        pacer.handle(message("a"))
        pacer.stop()
        assert len(pacer) == 0
        assert scheduler.pending == []
