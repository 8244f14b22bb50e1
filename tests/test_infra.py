"""
Tests for wallet locking, cycle context and structured logging.
"""

import asyncio
import json
import logging
import pytest

from lp_rebalancer.core.errors import CycleInProgressError
from lp_rebalancer.infra.cycle_context import CycleContext
from lp_rebalancer.infra.logging_cfg import EventJsonFormatter, EventThrottle, build_logger, log_event
from lp_rebalancer.infra.wallet_lock import WalletLockCoordinator


class TestWalletLock:

    @pytest.mark.asyncio
    async def test_same_lock_per_wallet(self):
        locks = WalletLockCoordinator()
        assert await locks.get_lock("w1") is await locks.get_lock("w1")
        assert await locks.get_lock("w1") is not await locks.get_lock("w2")

    @pytest.mark.asyncio
    async def test_try_claim_is_single_flight(self):
        locks = WalletLockCoordinator()
        async with locks.try_claim("w1"):
            assert locks.cycle_in_flight("w1")
            with pytest.raises(CycleInProgressError):
                async with locks.try_claim("w1"):
                    pass
            # Other wallets are independent.
            async with locks.try_claim("w2"):
                pass
        assert not locks.cycle_in_flight("w1")

    @pytest.mark.asyncio
    async def test_claim_released_on_error(self):
        locks = WalletLockCoordinator()
        with pytest.raises(RuntimeError):
            async with locks.try_claim("w1"):
                raise RuntimeError("boom")
        async with locks.try_claim("w1"):
            pass

    @pytest.mark.asyncio
    async def test_submissions_serialized(self):
        locks = WalletLockCoordinator()
        order = []

        async def submit(tag):
            async with await locks.get_lock("w1"):
                order.append(f"{tag}-start")
                await asyncio.sleep(0.01)
                order.append(f"{tag}-end")

        await asyncio.gather(submit("a"), submit("b"))
        assert order == ["a-start", "a-end", "b-start", "b-end"]


class RecordingHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.messages = []

    def emit(self, record):
        self.messages.append(record.getMessage())


@pytest.fixture
def recorder():
    logger = logging.getLogger("lprebal.test")
    handler = RecordingHandler()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    yield logger, handler
    logger.removeHandler(handler)


class TestCycleContext:

    def test_child_links_trace(self, recorder):
        logger, handler = recorder
        ctx = CycleContext("w1", logger=logger)
        child = ctx.child("zap_out", pool="P1")
        child.info("remove_started")
        payload = json.loads(handler.messages[-1])
        assert payload["parent_trace_id"] == ctx.trace_id
        assert payload["trace_id"] == child.trace_id
        assert payload["pool"] == "P1"
        assert payload["operation"] == "zap_out"
        assert payload["event"] == "remove_started"

    def test_log_event_is_json(self, recorder):
        logger, handler = recorder
        log_event(logger, "best_quote", venue="router", output=10)
        assert json.loads(handler.messages[-1]) == {"event": "best_quote", "venue": "router", "output": 10}


def make_record(msg, level=logging.WARNING):
    return logging.LogRecord("lprebal", level, __file__, 1, msg, None, None)


class TestEventThrottle:

    def test_repeats_suppressed_per_key(self):
        now = [0.0]
        flt = EventThrottle(clock=lambda: now[0])
        router = json.dumps({"event": "venue_quote_failed", "venue": "router"})
        pool = json.dumps({"event": "venue_quote_failed", "venue": "pool"})
        assert flt.filter(make_record(router))
        assert not flt.filter(make_record(router))
        assert flt.filter(make_record(pool))
        now[0] = 31.0
        assert flt.filter(make_record(router))

    def test_other_events_pass(self):
        flt = EventThrottle()
        msg = json.dumps({"event": "cycle_finished"})
        assert flt.filter(make_record(msg))
        assert flt.filter(make_record(msg))
        assert flt.filter(make_record("plain text"))


class TestFormatterAndBuilder:

    def test_event_fields_flattened(self):
        line = EventJsonFormatter().format(make_record(json.dumps({"event": "best_quote", "venue": "router"})))
        data = json.loads(line)
        assert data["event"] == "best_quote"
        assert data["venue"] == "router"
        assert data["level"] == "WARNING"

    def test_plain_message(self):
        data = json.loads(EventJsonFormatter().format(make_record("hello")))
        assert data["msg"] == "hello"

    def test_build_logger_writes_json_file(self, tmp_path):
        path = tmp_path / "engine.log"
        logger = build_logger("lprebal.filetest", level="DEBUG", file_path=str(path),
                              background_file=False, rich_console=False)
        try:
            log_event(logger, "cycle_started", wallet="W")
            for handler in logger.handlers:
                handler.flush()
            line = path.read_text(encoding="utf-8").strip().splitlines()[-1]
            assert json.loads(line)["event"] == "cycle_started"
            # Second call reuses the configured handlers.
            assert build_logger("lprebal.filetest", level="INFO") is logger
            assert len(logger.handlers) == 2
        finally:
            for handler in list(logger.handlers):
                handler.close()
                logger.removeHandler(handler)
