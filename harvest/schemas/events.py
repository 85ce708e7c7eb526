"""
Raw Network Event Schemas

Pydantic models for traffic observed on a host page (or on a socket we
wrap) before any platform adapter has interpreted it.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

from pydantic import BaseModel, Field


class RawEventKind(str, Enum):
	"""Which networking primitive produced the event."""

	WEBSOCKET_MESSAGE = "websocket_message"
	WEBSOCKET_SEND = "websocket_send"
	FETCH_RESPONSE = "fetch_response"
	XHR_RESPONSE = "xhr_response"
	EVENT_SOURCE_MESSAGE = "event_source_message"
	DOM_MUTATION = "dom_mutation"


class RawNetworkEvent(BaseModel):
	"""One observed frame, response body, or DOM change."""

	kind: RawEventKind
	url: str = Field(default="", description="Socket, request or page URL")
	data: Any = Field(default=None, description="Frame text, parsed JSON body, or DOM text")
	method: str = "GET"
	status: Optional[int] = None
	selector: Optional[str] = Field(default=None, description="CSS selector for dom_mutation events")

	def json_data(self) -> Any:
		"""Return ``data`` decoded from JSON when it arrived as text."""
		if isinstance(self.data, (str, bytes)):
			return json.loads(self.data)
		return self.data

	def text_data(self) -> str:
		if isinstance(self.data, bytes):
			return self.data.decode("utf-8")
		if isinstance(self.data, str):
			return self.data
		return json.dumps(self.data)

	def query_param(self, name: str) -> Optional[str]:
		values = parse_qs(urlparse(self.url).query).get(name)
		return values[0] if values else None


class PageInfo(BaseModel):
	"""A host page the tap is attached to."""

	url: str
	html: Optional[str] = None
	initial_data: Optional[dict] = Field(
		default=None, description="Bootstrap JSON embedded in the page (e.g. ytInitialData)"
	)
