"""
Viewer Aggregator

Keeps the last known viewer count per platform and totals them under an
all/include/exclude platform filter.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional

from harvest.utils.logging import get_logger

logger = get_logger(__name__, category="delivery")


class ViewerMode(str, Enum):
    ALL = "all"
    INCLUDE = "include"
    EXCLUDE = "exclude"


def coerce_count(value: Any) -> int:
    """Viewer counts arrive as ints or strings; anything unusable or negative is 0."""
    try:
        count = int(value)
    except (TypeError, ValueError, OverflowError):
        try:
            count = int(float(value))
        except (TypeError, ValueError, OverflowError):
            return 0
    return max(0, count)


def aggregate(counts: Mapping[str, Any], mode: str = "all", platforms: Iterable[str] = ()) -> int:
    """
    Total viewers across platforms.

    Args:
        counts: platform -> viewer count
        mode: "all", "include" (only ``platforms``) or "exclude" (all but ``platforms``)
        platforms: Platform names the mode applies to

    Returns:
        Non-negative total
    """
    try:
        mode = ViewerMode(mode)
    except ValueError:
        logger.warning(f"Unknown viewer mode {mode!r}, counting all platforms")
        mode = ViewerMode.ALL
    selected = set(platforms)

    total = 0
    for platform, value in counts.items():
        if mode is ViewerMode.INCLUDE and platform not in selected:
            continue
        if mode is ViewerMode.EXCLUDE and platform in selected:
            continue
        total += coerce_count(value)
    return max(0, total)


class ViewerAggregator:
    """Last-known per-platform viewer counts."""

    def __init__(self, mode: str = "all", platforms: Iterable[str] = ()):
        self.mode = mode
        self.platforms = list(platforms)
        self.counts: Dict[str, int] = {}

    def update(self, counts: Mapping[str, Any]) -> int:
        """Merge new counts and return the filtered total."""
        for platform, value in counts.items():
            self.counts[platform] = coerce_count(value)
        return self.total()

    def total(self, mode: Optional[str] = None, platforms: Optional[Iterable[str]] = None) -> int:
        return aggregate(
            self.counts,
            mode or self.mode,
            self.platforms if platforms is None else platforms,
        )
