"""
Harvest Tap Service - FastAPI Application

This service:
- Receives traffic observed on livestream pages from a browser-side tap
- Routes it through the matching platform adapter
- Forwards the resulting LivestreamUpdates to the relay over WebSocket
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, Optional

import httpx
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from harvest.config import settings
from harvest.ingest.base import PlatformAdapter
from harvest.ingest.registry import detect_platform
from harvest.relay.connection import RelayConnection
from harvest.schemas.api import EventAccepted, HealthResponse, PageClosed, PageRegistered
from harvest.schemas.events import PageInfo, RawNetworkEvent
from harvest.utils.logging import get_logger

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = get_logger(__name__, category="system")
tap_logger = get_logger(f"{__name__}.tap", category="tap")

# Event posts arrive for every frame the page sees
access_logger = logging.getLogger("uvicorn.access")


def filter_access_log(record):
    """Filter out per-event access logs."""
    return record.getMessage().find("/events") == -1


access_logger.addFilter(filter_access_log)

app = FastAPI(
    title="Harvest Tap Service",
    description="Normalizes livestream chat observed on host pages and forwards it to the relay",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# page_id -> adapter (each adapter owns its relay connection)
pages: Dict[str, PlatformAdapter] = {}
http_client: Optional[httpx.AsyncClient] = None


def create_connection() -> RelayConnection:
    """Relay connection for a newly registered page."""
    return RelayConnection()


def get_page(page_id: str) -> PlatformAdapter:
    adapter = pages.get(page_id)
    if adapter is None:
        raise HTTPException(status_code=404, detail=f"Unknown page: {page_id}")
    return adapter


# ============================================================================
# ENDPOINTS
# ============================================================================


@app.post("/pages", response_model=PageRegistered)
async def register_page(page: PageInfo):
    """
    Attach an adapter to a host page.

    Detects the platform from the page hostname, opens the adapter's relay
    connection and runs identity discovery. Pages whose identity cannot be
    resolved yet are still registered; their updates queue until it is.
    """
    adapter_class = detect_platform(page.url)
    if adapter_class is None:
        raise HTTPException(status_code=422, detail=f"No enabled platform for {page.url}")

    connection = create_connection()
    adapter = adapter_class(page, connection, http_client=http_client)
    page_id = str(uuid.uuid4())
    pages[page_id] = adapter

    await connection.start()
    ready = await adapter.discover()

    tap_logger.info(
        f"Registered page {page_id}: {adapter.platform} channel={adapter.channel} ready={ready}"
    )
    return PageRegistered(
        page_id=page_id,
        platform=adapter.platform,
        channel=adapter.channel,
        ready=ready,
    )


@app.post("/pages/{page_id}/events", response_model=EventAccepted)
async def post_event(page_id: str, event: RawNetworkEvent):
    """Hand one observed frame, response body or DOM change to the page's adapter."""
    adapter = get_page(page_id)
    return EventAccepted(status=adapter.handle_raw_event(event))


@app.post("/pages/{page_id}/discover", response_model=PageRegistered)
async def rediscover(page_id: str):
    """Retry identity discovery for a page that is not ready yet."""
    adapter = get_page(page_id)
    ready = adapter.is_ready or await adapter.discover()
    return PageRegistered(
        page_id=page_id,
        platform=adapter.platform,
        channel=adapter.channel,
        ready=ready,
    )


@app.delete("/pages/{page_id}", response_model=PageClosed)
async def close_page(page_id: str):
    """The host page is unloading: report zero viewers and drop the connection."""
    adapter = pages.pop(page_id, None)
    if adapter is None:
        raise HTTPException(status_code=404, detail=f"Unknown page: {page_id}")

    adapter.on_unload()
    if adapter.connection is not None:
        await adapter.connection.wait_flushed()
        await adapter.connection.close()

    tap_logger.info(f"Closed page {page_id} ({adapter.platform})")
    return PageClosed(page_id=page_id)


@app.get("/pages/{page_id}/recording")
async def get_recording(page_id: str):
    """Export the page's recorded traffic."""
    return get_page(page_id).recorder.export()


@app.post("/pages/{page_id}/recording/start")
async def start_recording(page_id: str):
    recorder = get_page(page_id).recorder
    recorder.start()
    return recorder.stats()


@app.post("/pages/{page_id}/recording/stop")
async def stop_recording(page_id: str):
    recorder = get_page(page_id).recorder
    recorder.stop()
    return recorder.stats()


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Service status plus the relay connection state of every page."""
    return HealthResponse(
        timestamp=datetime.now(timezone.utc),
        pages=len(pages),
        relay={
            page_id: adapter.connection.state.value
            for page_id, adapter in pages.items()
            if adapter.connection is not None
        },
    )


# ============================================================================
# STARTUP/SHUTDOWN
# ============================================================================


@app.on_event("startup")
async def startup_event():
    """Create the shared HTTP client used for identity lookups."""
    global http_client
    logger.info(f"Harvest tap service starting on {settings.host}:{settings.port}")
    http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)


@app.on_event("shutdown")
async def shutdown_event():
    """Unload every page and close shared resources."""
    global http_client
    logger.info("Harvest tap service shutting down")

    for page_id in list(pages):
        adapter = pages.pop(page_id)
        adapter.on_unload()
        if adapter.connection is None:
            continue
        try:
            await adapter.connection.wait_flushed()
            await adapter.connection.close()
        except Exception as exc:
            logger.error(f"Error closing relay connection for page {page_id}: {exc}")

    if http_client is not None:
        await http_client.aclose()
        http_client = None


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("harvest.main:app", host=settings.host, port=settings.port)
