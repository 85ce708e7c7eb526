"""
Platform registry

Maps page hostnames to adapter classes and builds the right adapter for a
page, honoring the per-platform enable flags.
"""

from __future__ import annotations

from typing import Dict, Optional, Type, Union
from urllib.parse import urlparse

from harvest.config import settings
from harvest.ingest.base import PlatformAdapter
from harvest.ingest.kick import Kick
from harvest.ingest.odysee import Odysee
from harvest.ingest.rumble import Rumble
from harvest.ingest.twitch import Twitch
from harvest.ingest.vk import VK
from harvest.ingest.x import X
from harvest.ingest.xmrchat import XMRChat
from harvest.ingest.youtube import YouTube
from harvest.schemas.events import PageInfo
from harvest.utils.logging import get_logger

logger = get_logger(__name__, category="platform")

ADAPTERS = (Kick, Odysee, Rumble, Twitch, YouTube, VK, X, XMRChat)

PLATFORMS: Dict[str, Type[PlatformAdapter]] = {
    hostname: adapter for adapter in ADAPTERS for hostname in adapter.hostnames
}


def register_platform(hostname: str, adapter: Type[PlatformAdapter]) -> None:
    PLATFORMS[hostname.lower()] = adapter


def detect_platform(url: str) -> Optional[Type[PlatformAdapter]]:
    """
    Pick the adapter class for a page URL.

    Returns:
        None when the host is unknown, the platform is disabled, or the page
        is one without chat (Twitch's static /p/ pages)
    """
    parsed = urlparse(url)
    hostname = (parsed.hostname or "").lower()
    adapter = PLATFORMS.get(hostname)
    if adapter is None:
        logger.info(f"No platform detected for {hostname}")
        return None

    if not settings.is_platform_enabled(adapter.platform):
        logger.info(f"Platform {adapter.platform} is disabled in config")
        return None

    if adapter is Twitch and parsed.path.startswith("/p/"):
        logger.info("Within Twitch static /p/ directory, no adapter")
        return None

    return adapter


def create_adapter(page: Union[PageInfo, str], connection=None, **kwargs) -> Optional[PlatformAdapter]:
    """Instantiate the adapter for ``page``, or None if no platform applies."""
    page = page if isinstance(page, PageInfo) else PageInfo(url=page)
    adapter = detect_platform(page.url)
    if adapter is None:
        return None
    return adapter(page, connection, **kwargs)
