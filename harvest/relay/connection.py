"""
Relay WebSocket Connection

Owns one transport connection to the relay server. Handles the
DISCONNECTED -> CONNECTING -> OPEN -> DISCONNECTED lifecycle, retries at a
fixed interval, and buffers outbound frames while the socket is down or
the owning adapter has not yet discovered its identity.
"""

from __future__ import annotations

import asyncio
import json
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Iterable, Optional

import websockets
from websockets.exceptions import ConnectionClosed
from pydantic import BaseModel

from harvest.config import settings
from harvest.utils.logging import get_logger

logger = get_logger(__name__, category="relay")


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"


class QueuePolicy(str, Enum):
    """What to do when the outbound queue is full."""

    DROP_OLDEST = "drop_oldest"
    REJECT_NEW = "reject_new"


def encode_frame(payload: Any) -> str:
    """Serialize an outbound payload (model, dict or pre-encoded str) to JSON text."""
    if isinstance(payload, str):
        return payload
    if isinstance(payload, BaseModel):
        return payload.model_dump_json()
    return json.dumps(payload)


async def _open_websocket(url: str):
    return await websockets.connect(url, ping_interval=20, ping_timeout=10)


class RelayConnection:
    """WebSocket client for the relay with fixed-interval reconnects."""

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        reconnect_delay: Optional[float] = None,
        queue_limit: Optional[int] = None,
        queue_policy: Optional[str] = None,
        on_open: Optional[Callable[[], Iterable[Any]]] = None,
        on_message: Optional[Callable[[str], None]] = None,
        connect: Optional[Callable[[str], Awaitable[Any]]] = None,
        name: str = "relay",
    ):
        """
        Initialize the relay connection.

        Args:
            url: Relay endpoint (defaults to settings.relay_url)
            reconnect_delay: Fixed retry interval in seconds
            queue_limit: Max frames buffered while not sending
            queue_policy: "drop_oldest" or "reject_new" when the buffer is full
            on_open: Returns control frames to send first on every open
            on_message: Called with each inbound text frame
            connect: Transport factory, ``await connect(url)`` -> socket
            name: Label used in log lines
        """
        self.url = url or settings.relay_url
        self.reconnect_delay = (
            reconnect_delay if reconnect_delay is not None else settings.relay_reconnect_delay
        )
        self.queue_limit = queue_limit if queue_limit is not None else settings.outbound_queue_limit
        if self.queue_limit < 1:
            raise ValueError(f"queue_limit must be at least 1, got {self.queue_limit}")
        self.queue_policy = QueuePolicy(queue_policy or settings.outbound_queue_policy)
        self.on_open = on_open
        self.on_message = on_message
        self.name = name
        self._connect = connect or _open_websocket
        self._is_ready: Callable[[], bool] = lambda: True

        self.ws: Optional[Any] = None
        self.state = ConnectionState.DISCONNECTED
        self.is_running = False

        # Outbound payloads, oldest first, encoded when transmitted
        self.outbound: Deque[Any] = deque()
        self.dropped = 0

        # None means no reconnect is pending
        self.reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._flush_task: Optional[asyncio.Task] = None
        self._connect_task: Optional[asyncio.Task] = None

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN and self.ws is not None

    def set_readiness_check(self, check: Callable[[], bool]) -> None:
        """Frames are only transmitted while ``check()`` is true (e.g. channel known)."""
        self._is_ready = check

    async def start(self) -> None:
        """Begin connecting; failures schedule retries instead of raising."""
        if self.is_running:
            logger.warning(f"[{self.name}] Connection already started")
            return
        self.is_running = True
        await self.connect()

    async def connect(self) -> None:
        """Open the transport once. Runs from DISCONNECTED only."""
        if self.state is not ConnectionState.DISCONNECTED:
            return

        self.state = ConnectionState.CONNECTING
        logger.info(f"[{self.name}] Connecting to {self.url}...")

        try:
            ws = await self._connect(self.url)
        except Exception as e:
            logger.error(f"[{self.name}] Failed to connect to {self.url}: {e}")
            self.state = ConnectionState.DISCONNECTED
            if self.is_running:
                self._schedule_reconnect()
            return

        if not self.is_running:
            # close() was called while we were connecting
            await self._close_quietly(ws)
            self.state = ConnectionState.DISCONNECTED
            return

        self.ws = ws
        self.state = ConnectionState.OPEN
        logger.info(f"[{self.name}] Connection established")

        prelude = [encode_frame(frame) for frame in (self.on_open() if self.on_open else [])]
        self._start_flush(prelude)
        self._reader_task = asyncio.create_task(self._handle_messages(ws))

    async def close(self) -> None:
        """Stop for good: cancel any pending retry and close the transport."""
        self.is_running = False

        if self.reconnect_handle is not None:
            self.reconnect_handle.cancel()
            self.reconnect_handle = None

        for task in (self._flush_task, self._connect_task):
            if task and not task.done():
                task.cancel()

        ws = self.ws
        self.ws = None
        self.state = ConnectionState.DISCONNECTED
        if ws is not None:
            await self._close_quietly(ws)

        if self._reader_task:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                # Expected when shutting the reader down
                pass
            self._reader_task = None

        logger.info(f"[{self.name}] Connection closed")

    async def wait_flushed(self, timeout: float = 1.0) -> None:
        """Wait for an in-flight flush to finish, e.g. before close()."""
        task = self._flush_task
        if task is None or task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[{self.name}] Flush still running after {timeout}s, {len(self.outbound)} frames queued")

    def send(self, payload: Any) -> bool:
        """
        Transmit a frame now if possible, otherwise buffer it.

        Returns:
            False if the frame was rejected because the buffer is full
        """
        if not self._enqueue(payload):
            return False

        if self.is_open and self._is_ready():
            self.flush()
        else:
            logger.debug(
                f"[{self.name}] Queued frame (open={self.is_open}, ready={self._is_ready()}, "
                f"queued={len(self.outbound)})"
            )
        return True

    def flush(self) -> None:
        """Drain the buffer in order if the socket is open and the owner is ready."""
        if self.is_open and self._is_ready() and self.outbound:
            self._start_flush([])

    def map_pending(self, transform: Callable[[Any], Any]) -> None:
        """Rewrite every buffered payload in place, keeping order."""
        self.outbound = deque(transform(payload) for payload in self.outbound)

    def _enqueue(self, payload: Any) -> bool:
        if len(self.outbound) >= self.queue_limit:
            self.dropped += 1
            if self.queue_policy is QueuePolicy.REJECT_NEW:
                logger.warning(f"[{self.name}] Outbound queue full ({self.queue_limit}), rejecting frame")
                return False
            self.outbound.popleft()
            logger.warning(f"[{self.name}] Outbound queue full ({self.queue_limit}), dropped oldest frame")
        self.outbound.append(payload)
        return True

    def _start_flush(self, prelude: list) -> None:
        if self._flush_task and not self._flush_task.done():
            if not prelude:
                # The running drain picks up newly queued frames
                return
        self._flush_task = asyncio.create_task(self._drain(self.ws, prelude))

    async def _drain(self, ws: Any, prelude: list) -> None:
        sent = 0
        try:
            for frame in prelude:
                await ws.send(frame)
            while self.outbound and self.ws is ws and self._is_ready():
                payload = self.outbound.popleft()
                try:
                    await ws.send(encode_frame(payload))
                except Exception:
                    self.outbound.appendleft(payload)
                    raise
                sent += 1
        except ConnectionClosed:
            logger.warning(f"[{self.name}] Connection closed while flushing, {len(self.outbound)} frames kept")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[{self.name}] Error sending frame: {e}")
            await self._close_quietly(ws)
        finally:
            if sent:
                logger.debug(f"[{self.name}] Flushed {sent} frames")

    async def _handle_messages(self, ws: Any) -> None:
        """Read inbound frames until the transport closes or errors."""
        try:
            async for message in ws:
                if self.on_message is None:
                    continue
                try:
                    self.on_message(message)
                except Exception as e:
                    logger.error(f"[{self.name}] Error handling relay message: {e}")
            logger.warning(f"[{self.name}] Connection closed by peer")
        except ConnectionClosed:
            logger.warning(f"[{self.name}] Connection closed")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[{self.name}] Connection error: {e}")
            # Never leave the transport half-open
            await self._close_quietly(ws)
        finally:
            self._on_closed(ws)

    def _on_closed(self, ws: Any) -> None:
        if self.ws is not ws:
            return
        self.ws = None
        self.state = ConnectionState.DISCONNECTED
        if self.is_running:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        """Schedule one reconnect after the fixed delay."""
        if self.reconnect_handle is not None:
            return  # Already scheduled

        logger.info(f"[{self.name}] Scheduling reconnect in {self.reconnect_delay} seconds...")
        loop = asyncio.get_running_loop()
        self.reconnect_handle = loop.call_later(self.reconnect_delay, self._reconnect)

    def _reconnect(self) -> None:
        self.reconnect_handle = None
        if self.is_running and self.state is ConnectionState.DISCONNECTED:
            logger.info(f"[{self.name}] Attempting reconnection...")
            self._connect_task = asyncio.create_task(self.connect())

    @staticmethod
    async def _close_quietly(ws: Any) -> None:
        try:
            await ws.close()
        except Exception as e:
            logger.warning(f"Error closing WebSocket: {e}")
