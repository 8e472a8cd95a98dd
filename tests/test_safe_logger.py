"""
Tests for fire-and-forget logging.
"""

import pytest
from loguru import logger

from coinservice.safe_logger import safe_log, scrub_context, set_log_sink


@pytest.fixture
def records(monkeypatch: pytest.MonkeyPatch):
    """Enable logging and capture loguru records."""
    monkeypatch.delenv("COINSVC_ENVIRONMENT", raising=False)
    captured = []
    handler_id = logger.add(lambda message: captured.append(message.record), level="DEBUG")
    yield captured
    logger.remove(handler_id)


class TestScrubContext:
    def test_drops_key_material(self):
        context = {
            "ticker": "HBAR",
            "private_key": "302e...",
            "privateKey": "302e...",
            "client_secret": "y",
            "mnemonic": "abandon",
        }
        assert scrub_context(context) == {"ticker": "HBAR"}

    def test_drops_operator_key(self):
        assert scrub_context({"operator_key": "x", "operator_id": "0.0.2"}) == {
            "operator_id": "0.0.2"
        }

    def test_sanitizes_urls(self):
        context = {"url": "https://node.infura.io/v3/abc123xyz987654321token"}
        assert scrub_context(context) == {"url": "https://node.infura.io/v3/***"}

    def test_empty(self):
        assert scrub_context(None) == {}


class TestSafeLog:
    @pytest.mark.asyncio
    async def test_level_mapping(self, records):
        await safe_log("info", "one")
        await safe_log("warn", "two")
        await safe_log("error", "three")

        assert [(r["level"].name, r["message"]) for r in records] == [
            ("INFO", "one"),
            ("WARNING", "two"),
            ("ERROR", "three"),
        ]

    @pytest.mark.asyncio
    async def test_context_is_bound(self, records):
        await safe_log("info", "Fetched chain height", {"height": 42, "private_key": "secret"})

        assert records[0]["extra"] == {"height": 42}

    @pytest.mark.asyncio
    async def test_unknown_level_warns(self, records):
        with pytest.warns(RuntimeWarning, match="Unknown log level"):
            await safe_log("debug", "ignored")
        assert records == []

    @pytest.mark.asyncio
    async def test_sink_receives_record(self, records):
        received = []

        async def sink(level, message, context):
            received.append((level, message, context))

        set_log_sink(sink)
        await safe_log("warn", "low balance", {"address": "0.0.1001"})

        assert received == [("WARNING", "low balance", {"address": "0.0.1001"})]

    @pytest.mark.asyncio
    async def test_sink_failure_does_not_raise(self, records):
        async def sink(level, message, context):
            raise RuntimeError("database is down")

        set_log_sink(sink)
        with pytest.warns(RuntimeWarning, match="database is down"):
            await safe_log("info", "still fine")

    @pytest.mark.asyncio
    async def test_disabled_in_test_environment(self, records, monkeypatch):
        received = []

        async def sink(level, message, context):
            received.append(message)

        monkeypatch.setenv("COINSVC_ENVIRONMENT", "test")
        set_log_sink(sink)
        await safe_log("error", "silenced")

        assert records == []
        assert received == []

    @pytest.mark.asyncio
    async def test_disabled_by_flag(self, records, monkeypatch):
        monkeypatch.setenv("COINSVC_LOG_DISABLED", "true")
        await safe_log("info", "silenced")
        assert records == []
