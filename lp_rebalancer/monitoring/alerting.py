"""
Notification channel for cycle reports.

- Deliver messages to a webhook (generic, Slack, Discord, Telegram)
- Retry delivery twice with backoff
- Fire-and-forget: delivery failures are logged, never raised
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Dict, Optional

import aiohttp

from lp_rebalancer.core.models import ItemOutcome, PartialCycleOutcome, PositionOpenResult, ZapOutResult
from lp_rebalancer.core.utils import short_id
from lp_rebalancer.infra.logging_cfg import log_event

logger = logging.getLogger("lprebal")

_MARKDOWN_V2_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")


class NotifySeverity(Enum):
    CRITICAL = auto()
    WARNING = auto()
    INFO = auto()


@dataclass
class NotifyConfig:
    url: Optional[str] = None
    kind: str = "generic"  # generic, slack, discord, telegram
    chat_id: Optional[str] = None
    enabled: bool = True
    bot_name: str = "LP Rebalancer"
    timeout_sec: float = 10.0


def escape_markdown_v2(text: str) -> str:
    return _MARKDOWN_V2_SPECIAL.sub(r"\\\1", text)


class PayloadFormatter:
    """Formats a message for different webhook types."""

    @staticmethod
    def generic(text: str, severity: NotifySeverity, config: NotifyConfig) -> Dict[str, Any]:
        return {
            "source": config.bot_name,
            "severity": severity.name,
            "text": text,
            "timestamp_iso": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        }

    @staticmethod
    def slack(text: str, severity: NotifySeverity, config: NotifyConfig) -> Dict[str, Any]:
        color = {
            NotifySeverity.CRITICAL: "#FF0000",
            NotifySeverity.WARNING: "#FFA500",
            NotifySeverity.INFO: "#2EB67D",
        }.get(severity, "#808080")
        return {
            "username": config.bot_name,
            "attachments": [{"color": color, "text": text, "footer": f"{config.bot_name} | {severity.name}"}],
        }

    @staticmethod
    def discord(text: str, severity: NotifySeverity, config: NotifyConfig) -> Dict[str, Any]:
        color = {
            NotifySeverity.CRITICAL: 0xFF0000,
            NotifySeverity.WARNING: 0xFFA500,
            NotifySeverity.INFO: 0x2EB67D,
        }.get(severity, 0x808080)
        return {
            "username": config.bot_name,
            "embeds": [{"description": text, "color": color, "footer": {"text": severity.name}}],
        }

    @staticmethod
    def telegram(text: str, severity: NotifySeverity, config: NotifyConfig) -> Dict[str, Any]:
        return {
            "chat_id": config.chat_id,
            "text": escape_markdown_v2(text),
            "parse_mode": "MarkdownV2",
            "disable_web_page_preview": True,
        }


class Notifier:
    """
    Best-effort message delivery.

    ``emit`` returns True when the message was delivered, False otherwise.
    It never raises for delivery problems.
    """

    def __init__(self, config: Optional[NotifyConfig] = None, explorer_url: str = "https://solscan.io/tx") -> None:
        self.config = config or NotifyConfig()
        self.explorer_url = explorer_url

    @classmethod
    def from_settings(cls, cfg) -> "Notifier":
        return cls(NotifyConfig(
            url=cfg.notify_url,
            kind=cfg.notify_type,
            chat_id=cfg.notify_chat_id,
            enabled=cfg.notify_enabled,
        ))

    def _format(self, text: str, severity: NotifySeverity) -> Dict[str, Any]:
        formatters = {
            "generic": PayloadFormatter.generic,
            "slack": PayloadFormatter.slack,
            "discord": PayloadFormatter.discord,
            "telegram": PayloadFormatter.telegram,
        }
        formatter = formatters.get(self.config.kind, PayloadFormatter.generic)
        return formatter(text, severity, self.config)

    async def emit(self, text: str, severity: NotifySeverity = NotifySeverity.INFO) -> bool:
        log_event(logger, "notify", level=logging.INFO, severity=severity.name, text=text)
        if not self.config.enabled or not self.config.url:
            return False
        try:
            return await self._http_post(self._format(text, severity))
        except Exception as exc:
            log_event(logger, "notify_failed", level=logging.WARNING, error=str(exc))
            return False

    async def _http_post(self, payload: Dict[str, Any], retries: int = 2) -> bool:
        async with aiohttp.ClientSession() as session:
            for attempt in range(retries + 1):
                try:
                    async with session.post(
                        self.config.url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.config.timeout_sec),
                    ) as resp:
                        if resp.status < 300:
                            return True
                        log_event(logger, "notify_failed", level=logging.WARNING, status=resp.status, attempt=attempt + 1)
                except asyncio.TimeoutError:
                    log_event(logger, "notify_failed", level=logging.WARNING, error="timeout", attempt=attempt + 1)
                except aiohttp.ClientError as exc:
                    log_event(logger, "notify_failed", level=logging.WARNING, error=str(exc), attempt=attempt + 1)

                if attempt < retries:
                    await asyncio.sleep(1 * (attempt + 1))
        return False

    # ─────────────────────────────────────────────────────────────────────
    # Message helpers
    # ─────────────────────────────────────────────────────────────────────

    def tx_link(self, signature: str) -> str:
        return f"{self.explorer_url}/{signature}"

    async def zap_out_done(self, result: ZapOutResult) -> bool:
        if result.already_done:
            text = f"Position in pool {short_id(result.pool_id)} was already closed."
        else:
            text = (
                f"Zap out completed for pool {short_id(result.pool_id)}\n"
                f"Best venue: {result.venue_id or 'none (nothing to swap)'}\n"
                f"{self.tx_link(result.signature)}"
            )
        return await self.emit(text)

    async def position_opened(self, result: PositionOpenResult) -> bool:
        if result.already_done:
            return await self.emit(f"Position in {result.symbol or short_id(result.pool_id)} already open.")
        lines = [f"Position created for {result.symbol or short_id(result.pool_id)}"]
        if result.swap_signature:
            lines.append(f"Swap via {result.swap_venue_id}: {self.tx_link(result.swap_signature)}")
        if result.position_nft:
            lines.append(f"Position: {result.position_nft}")
        lines.append(f"Capital used: {result.capital_used:.4f}")
        lines.append(self.tx_link(result.position_signature))
        lines.append(f"https://dexscreener.com/solana/{result.pool_id}")
        return await self.emit("\n".join(lines))

    async def item_failed(self, phase: str, outcome: ItemOutcome) -> bool:
        text = (
            f"{phase} failed for {short_id(outcome.item_id)} "
            f"({outcome.status.value} after {outcome.attempts} attempt(s)): {outcome.error}"
        )
        return await self.emit(text, NotifySeverity.WARNING)

    async def cycle_summary(self, outcome: PartialCycleOutcome) -> bool:
        severity = NotifySeverity.WARNING if outcome.failed_phases else NotifySeverity.INFO
        return await self.emit(format_cycle_summary(outcome), severity)


def format_cycle_summary(outcome: PartialCycleOutcome) -> str:
    plan = outcome.plan
    if outcome.dry_run:
        header = "Rebalance preview (dry run)"
    else:
        header = "Rebalance cycle finished"
    lines = [header]
    if plan is None or plan.is_empty:
        lines.append("No changes needed.")
    else:
        lines.append(f"Remove: {', '.join(short_id(p) for p in sorted(plan.to_remove)) or '-'}")
        lines.append(f"Add: {', '.join(c.symbol or short_id(c.pair_id) for c in plan.to_add) or '-'}")
        if plan.to_add:
            lines.append(f"Capital per position: {plan.capital_per_addition:.4f}")
    if not outcome.dry_run:
        lines.append(f"Removed {outcome.removed.succeeded}/{outcome.removed.attempted}, "
                     f"added {outcome.added.succeeded}/{outcome.added.attempted}")
        lines.append(f"Capital used: {outcome.capital_used:.4f} of {outcome.available_after_removal:.4f}")
    return "\n".join(lines)
