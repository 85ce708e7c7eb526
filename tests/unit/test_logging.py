"""Unit tests for category-aware logging."""
import logging

import pytest

from harvest.utils import logging as harvest_logging
from harvest.utils.logging import CategoryFilter, PlatformLogger, get_logger, parse_categories, resolve_level


@pytest.mark.unit
class TestLogging:
    """Test get_logger() and PlatformLogger."""

    def test_single_category_filter(self):
        logger = get_logger("harvest.tests.single", category="relay")
        get_logger("harvest.tests.single", category="relay")
        assert len([f for f in logger.filters if isinstance(f, CategoryFilter)]) == 1

    def test_category_filtering(self, monkeypatch):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        assert CategoryFilter("relay", enabled=["relay"]).filter(record) is True
        assert CategoryFilter("platform", enabled=["relay"]).filter(record) is False

        monkeypatch.setattr(harvest_logging, "ENABLED_CATEGORIES", frozenset({"tap"}))
        assert CategoryFilter("tap").filter(record) is True
        assert CategoryFilter(None).filter(record) is False
        monkeypatch.setattr(harvest_logging, "ENABLED_CATEGORIES", None)
        assert CategoryFilter("platform").filter(record) is True

    def test_parse_categories(self):
        assert parse_categories(None) is None
        assert parse_categories("") is None
        assert parse_categories("relay, Tap,") == frozenset({"relay", "tap"})

    @pytest.mark.parametrize(
        "name,level",
        [("debug", logging.DEBUG), ("WARN", logging.WARNING), ("error", logging.ERROR), ("loud", logging.INFO)],
    )
    def test_resolve_level(self, name, level):
        assert resolve_level(name) == level

    def test_platform_prefix(self, caplog):
        base = logging.getLogger("harvest.tests.platform")
        base.setLevel(logging.DEBUG)
        log = PlatformLogger(base, "Kick", verbose=False)

        with caplog.at_level(logging.DEBUG, logger="harvest.tests.platform"):
            log.info("Channel identified")
            log.debug("frame chatter")

        assert [r.getMessage() for r in caplog.records] == ["[Kick] Channel identified"]

    def test_verbose_debug(self, caplog):
        base = logging.getLogger("harvest.tests.verbose")
        base.setLevel(logging.DEBUG)
        log = PlatformLogger(base, "Rumble", verbose=True)

        with caplog.at_level(logging.DEBUG, logger="harvest.tests.verbose"):
            log.debug("frame chatter")

        assert [r.getMessage() for r in caplog.records] == ["[Rumble] frame chatter"]
