"""
Delivery Pacer

Smooths bursts of incoming chat into a steady output cadence:

- no queued message waits longer than ``max_wait_ms``
- regular messages are released at least ``min_interval_ms`` apart while
  the queue can absorb the load
- premium (paid) messages skip the queue entirely

Each cycle releases every message that has already waited ``max_wait_ms``
(a prefix of the queue, since it is ordered by arrival) or, failing that,
a single message once ``min_interval_ms`` has passed. The delay to the
next cycle spreads the oldest message's remaining wait over the queue,
and never runs past that deadline. When the wait bound and the spacing
bound conflict, the wait bound wins.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Any, Callable, Deque, Optional, Tuple

from harvest.config import settings
from harvest.utils.logging import get_logger

logger = get_logger(__name__, category="delivery")

Scheduler = Callable[[float, Callable[[], None]], Any]


def monotonic_ms() -> float:
    return time.monotonic() * 1000


def _loop_call_later(delay_seconds: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
    return asyncio.get_running_loop().call_later(delay_seconds, callback)


class DeliveryPacer:
    """Bounded-latency, bounded-rate release of queued messages."""

    def __init__(
        self,
        deliver: Callable[[Any], Any],
        *,
        max_wait_ms: Optional[int] = None,
        min_interval_ms: Optional[int] = None,
        clock: Callable[[], float] = monotonic_ms,
        call_later: Scheduler = _loop_call_later,
    ):
        """
        Args:
            deliver: Called with each released message
            max_wait_ms: Upper bound on how long a message may sit in the queue
            min_interval_ms: Lower bound on spacing between regular releases
            clock: Millisecond clock
            call_later: ``call_later(seconds, callback)`` returning a cancellable handle
        """
        self.deliver = deliver
        self.max_wait_ms = max_wait_ms if max_wait_ms is not None else settings.pacer_max_wait_ms
        self.min_interval_ms = min_interval_ms if min_interval_ms is not None else settings.pacer_min_interval_ms
        self.clock = clock
        self.call_later = call_later

        # (message, pushed at ms), oldest first
        self.queue: Deque[Tuple[Any, float]] = deque()
        self.last_process_time = 0.0
        self.timer: Optional[Any] = None
        self.timer_due: Optional[float] = None

    def __len__(self) -> int:
        return len(self.queue)

    def handle(self, message: Any) -> None:
        """Deliver premium messages immediately, pace everything else."""
        if getattr(message, "is_premium", False):
            logger.debug(f"Premium message {getattr(message, 'id', '?')} bypasses the queue")
            self._release(message)
        else:
            self.push(message)

    def push(self, message: Any) -> None:
        self.queue.append((message, self.clock()))
        self.ensure_processing()

    def ensure_processing(self) -> None:
        """Make sure a cycle is pending, pulling it earlier if the queue grew."""
        if not self.queue:
            return
        if self.timer is None:
            self.schedule_next()
            return
        # Never postpone a pending cycle, only bring it forward
        if self.clock() + self.next_delay() < self.timer_due:
            self._cancel_timer()
            self.schedule_next()

    def process_count(self, now: Optional[float] = None) -> int:
        """How many messages to release right now."""
        if not self.queue:
            return 0
        now = self.clock() if now is None else now

        count = 0
        for _, pushed_at in self.queue:
            if now - pushed_at >= self.max_wait_ms:
                count += 1
            else:
                break

        if count == 0 and now - self.last_process_time >= self.min_interval_ms:
            count = 1
        return count

    def next_delay(self, now: Optional[float] = None) -> float:
        """Milliseconds until the next cycle."""
        if not self.queue:
            return self.min_interval_ms
        now = self.clock() if now is None else now

        remaining = self.max_wait_ms - (now - self.queue[0][1])
        if remaining <= 0:
            return 0
        return min(remaining, max(self.min_interval_ms, remaining // len(self.queue)))

    def schedule_next(self) -> None:
        if not self.queue:
            self.timer = None
            self.timer_due = None
            return
        delay = self.next_delay()
        self.timer_due = self.clock() + delay
        self.timer = self.call_later(delay / 1000, self._tick)

    def _tick(self) -> None:
        self.timer = None
        self.timer_due = None
        self.process_batch()
        self.schedule_next()

    def process_batch(self) -> int:
        """Release this cycle's messages; returns how many were released."""
        if not self.queue:
            return 0

        count = self.process_count()
        released = 0
        while released < count and self.queue:
            message, _ = self.queue.popleft()
            self._release(message)
            released += 1
        if released:
            self.last_process_time = self.clock()
        return released

    def on_visibility_change(self, visible: bool) -> None:
        """
        Catch up when the consumer comes back to the foreground.

        Timers are throttled while hidden, so overdue messages are released
        at once and the cadence restarts from now.
        """
        if not visible or not self.queue:
            return
        released = self.process_batch()
        logger.debug(f"Visible again, released {released} overdue messages")
        self._cancel_timer()
        self.ensure_processing()

    def stop(self) -> None:
        self._cancel_timer()
        self.queue.clear()

    def _cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
        self.timer = None
        self.timer_due = None

    def _release(self, message: Any) -> None:
        try:
            self.deliver(message)
        except Exception as e:
            logger.error(f"Message delivery callback failed: {e}")
