"""
Tests for the Notifier and cycle summary formatting.
"""

import pytest
from unittest.mock import AsyncMock

from lp_rebalancer.core.models import (
    Candidate,
    ItemOutcome,
    ItemStatus,
    PartialCycleOutcome,
    PhaseOutcome,
    PositionOpenResult,
    RebalancePlan,
    ZapOutResult,
)
from lp_rebalancer.monitoring.alerting import (
    NotifyConfig,
    Notifier,
    NotifySeverity,
    PayloadFormatter,
    escape_markdown_v2,
    format_cycle_summary,
)


def enabled_notifier(kind="generic"):
    notifier = Notifier(NotifyConfig(url="https://hook.test", kind=kind, chat_id="42"))
    notifier._http_post = AsyncMock(return_value=True)
    return notifier


class TestPayloads:

    def test_escape_markdown(self):
        assert escape_markdown_v2("a_b.c (d)!") == "a\\_b\\.c \\(d\\)\\!"

    def test_telegram_payload(self):
        payload = PayloadFormatter.telegram("x.y", NotifySeverity.INFO, NotifyConfig(chat_id="42"))
        assert payload["chat_id"] == "42"
        assert payload["text"] == "x\\.y"
        assert payload["parse_mode"] == "MarkdownV2"

    def test_slack_color_by_severity(self):
        payload = PayloadFormatter.slack("boom", NotifySeverity.CRITICAL, NotifyConfig())
        assert payload["attachments"][0]["color"] == "#FF0000"


class TestEmit:

    @pytest.mark.asyncio
    async def test_without_url_only_logs(self):
        assert await Notifier(NotifyConfig(url=None)).emit("hello") is False

    @pytest.mark.asyncio
    async def test_disabled(self):
        notifier = enabled_notifier()
        notifier.config.enabled = False
        assert await notifier.emit("hello") is False
        notifier._http_post.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delivery_failure_never_raises(self):
        notifier = enabled_notifier()
        notifier._http_post.side_effect = RuntimeError("boom")
        assert await notifier.emit("hello") is False

    @pytest.mark.asyncio
    async def test_formatter_selected_by_kind(self):
        notifier = enabled_notifier(kind="discord")
        await notifier.emit("hello", NotifySeverity.WARNING)
        payload = notifier._http_post.call_args[0][0]
        assert payload["embeds"][0]["description"] == "hello"


class TestMessages:

    @pytest.mark.asyncio
    async def test_zap_out_message_links_transaction(self):
        notifier = enabled_notifier()
        await notifier.zap_out_done(ZapOutResult("POOL", "router", 10, 9, "SIG"))
        text = notifier._http_post.call_args[0][0]["text"]
        assert "https://solscan.io/tx/SIG" in text
        assert "router" in text

    @pytest.mark.asyncio
    async def test_position_opened_message(self):
        notifier = enabled_notifier()
        await notifier.position_opened(PositionOpenResult(
            pool_id="POOL", symbol="TOK", swap_venue_id="pool", swap_signature="S1",
            position_signature="S2", position_nft="NFT", capital_used=0.5,
        ))
        text = notifier._http_post.call_args[0][0]["text"]
        assert "TOK" in text
        assert "Swap via pool" in text
        assert "Capital used: 0.5000" in text

    @pytest.mark.asyncio
    async def test_already_closed_has_no_explorer_link(self):
        notifier = enabled_notifier()
        await notifier.zap_out_done(ZapOutResult("POOL", "", 0, 0, ""))
        text = notifier._http_post.call_args[0][0]["text"]
        assert "already closed" in text
        assert "solscan.io" not in text

    @pytest.mark.asyncio
    async def test_already_open_has_no_explorer_link(self):
        notifier = enabled_notifier()
        await notifier.position_opened(PositionOpenResult("POOL", "TOK", "", "", ""))
        text = notifier._http_post.call_args[0][0]["text"]
        assert "already open" in text
        assert "solscan.io" not in text

    @pytest.mark.asyncio
    async def test_item_failed_is_warning(self):
        notifier = enabled_notifier()
        item = ItemOutcome("POOL", ItemStatus.RETRY_EXHAUSTED, attempts=3, error="slippage")
        await notifier.item_failed("Zap out", item)
        payload = notifier._http_post.call_args[0][0]
        assert payload["severity"] == "WARNING"
        assert "3 attempt(s)" in payload["text"]


class TestCycleSummary:

    def make_outcome(self, dry_run=False):
        cand = Candidate("POOLY", "SOL", "TOK", 100, 50, "DYN2", symbol="TOK")
        plan = RebalancePlan(to_remove=frozenset({"POOLX"}), to_add=(cand,), capital_per_addition=5.0)
        outcome = PartialCycleOutcome(trace_id="t", plan=plan, dry_run=dry_run, available_after_removal=10.0)
        outcome.removed = PhaseOutcome("remove", [ItemOutcome("POOLX", ItemStatus.SUCCEEDED)])
        outcome.added = PhaseOutcome("add", [ItemOutcome("POOLY", ItemStatus.SUCCEEDED, capital_used=5.0)])
        return outcome

    def test_summary_counts(self):
        text = format_cycle_summary(self.make_outcome())
        assert "Remove: POOLX" in text
        assert "Add: TOK" in text
        assert "Removed 1/1, added 1/1" in text
        assert "Capital used: 5.0000 of 10.0000" in text

    def test_dry_run_summary(self):
        text = format_cycle_summary(self.make_outcome(dry_run=True))
        assert text.startswith("Rebalance preview")
        assert "Removed" not in text

    def test_empty_plan(self):
        outcome = PartialCycleOutcome(trace_id="t", plan=RebalancePlan(frozenset(), ()))
        assert "No changes needed." in format_cycle_summary(outcome)
