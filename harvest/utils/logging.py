"""
Logging helpers for the harvester

Every module logs through ``get_logger(__name__, category=...)``. Setting
LOG_CATEGORIES=relay,delivery silences everything outside those categories;
leaving it unset logs all of them. Adapters wrap their logger in a
PlatformLogger so each line names the platform it came from.
"""

import logging
from typing import FrozenSet, Iterable, Optional

from harvest.config import settings

DEFAULT_CATEGORY = "system"


def parse_categories(value: Optional[str]) -> Optional[FrozenSet[str]]:
    """'relay, Tap' -> {'relay', 'tap'}; None/empty means no filtering."""
    if not value:
        return None
    return frozenset(part.strip().lower() for part in value.split(",") if part.strip())


def resolve_level(name: str) -> int:
    """Map a level name from settings ('debug', 'WARN', ...) to a logging level, INFO if unknown."""
    name = name.strip().upper()
    if name == "WARN":
        name = "WARNING"
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


# Categories enabled by LOG_CATEGORIES, read once at import like the rest of settings
ENABLED_CATEGORIES = parse_categories(settings.log_categories)


class CategoryFilter(logging.Filter):
    """Drop records whose logger category is not enabled."""

    def __init__(self, category: Optional[str] = None, enabled: Optional[Iterable[str]] = None):
        super().__init__()
        self.category = (category or DEFAULT_CATEGORY).lower()
        self.enabled = None if enabled is None else frozenset(c.lower() for c in enabled)

    def filter(self, record: logging.LogRecord) -> bool:
        enabled = self.enabled if self.enabled is not None else ENABLED_CATEGORIES
        return enabled is None or self.category in enabled


def get_logger(name: str, category: Optional[str] = None) -> logging.Logger:
    """
    Return the named logger, leveled from settings and tagged with a category.

    Calling it again for the same name replaces the category rather than
    stacking a second filter.
    """
    logger = logging.getLogger(name)
    logger.setLevel(resolve_level(settings.log_level))
    for existing in [f for f in logger.filters if isinstance(f, CategoryFilter)]:
        logger.removeFilter(existing)
    logger.addFilter(CategoryFilter(category))
    return logger


class PlatformLogger(logging.LoggerAdapter):
    """Prefix every record with the platform name, e.g. "[Kick] Deleting message".

    The ``debug`` level is gated on the adapter's verbose flag so per-frame
    chatter can stay off in production without touching the logger level.
    """

    def __init__(self, logger: logging.Logger, platform: str, verbose: bool = False):
        super().__init__(logger, {"platform": platform})
        self.verbose = verbose

    def process(self, msg, kwargs):
        return f"[{self.extra['platform']}] {msg}", kwargs

    def debug(self, msg, *args, **kwargs):
        if self.verbose:
            super().debug(msg, *args, **kwargs)
