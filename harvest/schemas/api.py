"""
Tap Service API Schemas

Request/response models for the HTTP endpoints a browser-side tap talks to.
"""

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field

from harvest.utils.recorder import EventStatus


class PageRegistered(BaseModel):
    """Response after a page has been matched to a platform adapter"""

    page_id: str = Field(..., description="Handle for subsequent event posts")
    platform: str
    channel: Optional[str] = None
    ready: bool = Field(..., description="True once the adapter knows its channel")


class EventAccepted(BaseModel):
    """What the adapter did with one posted event"""

    status: EventStatus


class PageClosed(BaseModel):
    page_id: str
    closed: bool = True


class HealthResponse(BaseModel):
    status: str = "healthy"
    service: str = "harvest"
    timestamp: datetime
    pages: int = 0
    relay: Dict[str, str] = Field(default_factory=dict, description="page_id -> connection state")
