"""
RebalancingController: one stateless rebalancing cycle per call.

Cycle:
    snapshot -> discover -> diff -> remove phase -> re-measure capital
    -> allocate -> add phase -> report

Architecture:
    The controller owns the control flow only. Pricing and submission live in
    the zap-out / open-position operations, retries in RetryExecutor,
    delivery in the Notifier. Everything is re-derived from the ledger and
    the market data provider on each call; nothing carries over between
    cycles.

Failure policy:
    - Unreadable positions, balance or discovery abort the cycle with
      PreconditionError.
    - Each removal/addition is isolated: its failure becomes an ItemOutcome
      and the phase continues with the next item.
    - After reporting, PhaseFailedError is raised when a non-empty phase had
      no successful item.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence

from lp_rebalancer.config.pool_overrides import PoolOverride
from lp_rebalancer.core.errors import (
    ConfigurationError,
    FatalError,
    NoRouteError,
    PhaseFailedError,
    PreconditionError,
    RetryExhaustedError,
)
from lp_rebalancer.core.models import (
    Candidate,
    ItemOutcome,
    ItemStatus,
    PartialCycleOutcome,
    PhaseOutcome,
    RebalancePlan,
    RetryParams,
)
from lp_rebalancer.execution.retry_executor import RetryExecutor
from lp_rebalancer.infra.cycle_context import CycleContext
from lp_rebalancer.infra.wallet_lock import WalletLockCoordinator
from lp_rebalancer.ledger.position_view import PositionLedgerView
from lp_rebalancer.market_data.discovery import discover_candidates
from lp_rebalancer.orchestrator.planner import capital_for, compute_plan, with_capital

log = logging.getLogger("lprebal")

ZapOutFn = Callable[[str, RetryParams], Awaitable[Any]]
OpenPositionFn = Callable[[Candidate, float, RetryParams], Awaitable[Any]]


@dataclass(frozen=True)
class ControllerSettings:
    target_asset: str
    rank_key: str = "trendingScoreM5"
    rank_page: int = 1
    pool_label: str = "DYN2"
    volume_liquidity_ratio: float = 1.0
    max_positions: int = 1
    safety_margin: float = 0.9
    max_capital_per_position: float = 1.0
    balance_reserve: float = 0.0
    pacing_delay_sec: float = 3.0
    dry_run: bool = False

    @classmethod
    def from_settings(cls, cfg) -> "ControllerSettings":
        return cls(
            target_asset=cfg.target_asset,
            rank_key=cfg.rank_key,
            rank_page=cfg.rank_page,
            pool_label=cfg.pool_label,
            volume_liquidity_ratio=cfg.volume_liquidity_ratio,
            max_positions=cfg.max_positions,
            safety_margin=cfg.safety_margin,
            max_capital_per_position=cfg.max_capital_per_position,
            balance_reserve=cfg.balance_reserve,
            pacing_delay_sec=cfg.pacing_delay_sec,
            dry_run=cfg.dry_run,
        )


class RebalancingController:
    def __init__(
        self,
        *,
        wallet: str,
        position_view: PositionLedgerView,
        market_data,
        ledger,
        metadata,
        executor: RetryExecutor,
        zap_out: ZapOutFn,
        open_position: OpenPositionFn,
        settings: ControllerSettings,
        locks: Optional[WalletLockCoordinator] = None,
        notifier: Any = None,
        metrics: Any = None,
        overrides: Optional[Mapping[str, PoolOverride]] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.wallet = wallet
        self.position_view = position_view
        self.market_data = market_data
        self.ledger = ledger
        self.metadata = metadata
        self.executor = executor
        self.zap_out = zap_out
        self.open_position = open_position
        self.settings = settings
        self.locks = locks or WalletLockCoordinator()
        self.notifier = notifier
        self.metrics = metrics
        self.overrides = dict(overrides or {})
        self.log = logger or log
        self._sleep = sleep

    # ------------------------------------------------------------------ inputs

    async def measure_available(self) -> float:
        """Spendable target-asset balance (UI units) after the fee reserve."""
        target = self.settings.target_asset
        try:
            raw = await self.ledger.get_token_balance(self.wallet, target)
            decimals = await self.metadata.get_decimals(target)
        except Exception as exc:
            raise PreconditionError(f"balance unreadable: {exc}") from exc
        available = raw / (10 ** decimals) - self.settings.balance_reserve
        return max(available, 0.0)

    async def discover(self) -> List[Candidate]:
        s = self.settings
        try:
            return await discover_candidates(
                self.market_data,
                target_asset=s.target_asset,
                rank_key=s.rank_key,
                rank_page=s.rank_page,
                pool_label=s.pool_label,
                min_ratio=s.volume_liquidity_ratio,
                max_positions=s.max_positions,
                overrides=self.overrides,
                logger=self.log,
            )
        except ConfigurationError:
            raise
        except Exception as exc:
            # An unknown desired set must not be treated as "hold nothing".
            raise PreconditionError(f"candidate discovery failed: {exc}") from exc

    async def _plan(self, ctx: CycleContext) -> tuple[RebalancePlan, float]:
        snapshot = await self.position_view.snapshot()
        if self.metrics is not None:
            self.metrics.open_positions.set(len(snapshot.positions))
        desired = await self.discover()
        available = await self.measure_available()
        plan = compute_plan(
            snapshot.pool_ids,
            desired,
            available=available,
            safety_margin=self.settings.safety_margin,
            ceiling=self.settings.max_capital_per_position,
        )
        ctx.info(
            "plan_computed",
            current=sorted(plan.current_pools),
            desired=sorted(plan.desired_pools),
            to_remove=sorted(plan.to_remove),
            to_add=[c.pair_id for c in plan.to_add],
            available=available,
            capital_per_addition=plan.capital_per_addition,
        )
        return plan, available

    # ------------------------------------------------------------------ entry points

    async def preview(self) -> PartialCycleOutcome:
        """Compute the plan without executing anything."""
        ctx = CycleContext(self.wallet, logger=self.log)
        plan, available = await self._plan(ctx)
        outcome = PartialCycleOutcome(
            trace_id=ctx.trace_id, plan=plan, available_before=available,
            available_after_removal=available, dry_run=True,
        )
        outcome.duration_ms = ctx.elapsed_ms()
        return outcome

    async def run_cycle(self) -> PartialCycleOutcome:
        """
        Run one full rebalancing cycle for the wallet.

        Raises:
            CycleInProgressError: another cycle holds the wallet
            PreconditionError: positions, balance or candidates unreadable
            PhaseFailedError: a non-empty phase had zero successes (after reporting)
        """
        async with self.locks.try_claim(self.wallet):
            return await self._run_cycle_locked()

    async def clear_all(self) -> PartialCycleOutcome:
        """Remove every open position with the same isolation and pacing as a cycle."""
        async with self.locks.try_claim(self.wallet):
            ctx = CycleContext(self.wallet, logger=self.log)
            snapshot = await self.position_view.snapshot()
            plan = RebalancePlan(
                to_remove=snapshot.pool_ids, to_add=(), current_pools=snapshot.pool_ids,
            )
            outcome = PartialCycleOutcome(trace_id=ctx.trace_id, plan=plan)
            ctx.info("clear_all_started", pools=sorted(plan.to_remove))
            outcome.removed = await self._remove_phase(sorted(plan.to_remove), ctx)
            outcome.available_after_removal = await self._measure_for_report(ctx)
            outcome.duration_ms = ctx.elapsed_ms()
            await self._report(outcome, ctx)
            if outcome.removed.all_failed:
                raise PhaseFailedError("remove", outcome)
            return outcome

    # ------------------------------------------------------------------ cycle

    async def _run_cycle_locked(self) -> PartialCycleOutcome:
        ctx = CycleContext(self.wallet, logger=self.log)
        started = time.time()
        ctx.info("cycle_started", dry_run=self.settings.dry_run)
        try:
            plan, available = await self._plan(ctx)
        except PreconditionError as exc:
            ctx.error("cycle_precondition_failed", error=str(exc))
            self._count_cycle("precondition")
            raise

        outcome = PartialCycleOutcome(
            trace_id=ctx.trace_id,
            plan=plan,
            available_before=available,
            available_after_removal=available,
            dry_run=self.settings.dry_run,
            started_at=started,
        )

        if self.settings.dry_run:
            outcome.duration_ms = ctx.elapsed_ms()
            self._count_cycle("dry_run")
            await self._report(outcome, ctx)
            return outcome

        outcome.removed = await self._remove_phase(sorted(plan.to_remove), ctx)

        if plan.to_add:
            if plan.to_remove:
                await self._sleep(self.settings.pacing_delay_sec)
            try:
                available_after = await self.measure_available()
            except PreconditionError as exc:
                ctx.error("cycle_precondition_failed", stage="after_removal", error=str(exc))
                outcome.duration_ms = ctx.elapsed_ms()
                self._count_cycle("precondition")
                await self._report(outcome, ctx)
                raise
            outcome.available_after_removal = available_after
            plan = with_capital(plan, available_after, self.settings.safety_margin,
                                self.settings.max_capital_per_position)
            outcome.plan = plan
            ctx.info("capital_allocated", available=available_after,
                     capital_per_addition=plan.capital_per_addition, additions=len(plan.to_add))
            outcome.added = await self._add_phase(plan, available_after, ctx)

        outcome.duration_ms = ctx.elapsed_ms()
        if self.metrics is not None:
            self.metrics.cycle_duration_sec.observe(outcome.duration_ms / 1000.0)
            self.metrics.available_capital.set(outcome.available_after_removal)
            self.metrics.capital_committed.set(outcome.capital_used)

        failed = outcome.failed_phases
        self._count_cycle("failed" if failed else ("partial" if outcome.removed.failed or outcome.added.failed else "ok"))
        ctx.info("cycle_finished", **outcome.to_dict())
        await self._report(outcome, ctx)

        if failed:
            phase = failed[0]
            raise PhaseFailedError(phase, outcome)
        return outcome

    async def _remove_phase(self, pool_ids: Sequence[str], ctx: CycleContext) -> PhaseOutcome:
        phase = PhaseOutcome("remove")
        for i, pool_id in enumerate(pool_ids):
            if i > 0:
                await self._sleep(self.settings.pacing_delay_sec)
            item_ctx = ctx.child("zap_out", pool=pool_id)

            async def op(params: RetryParams, pool_id: str = pool_id) -> Any:
                return await self.zap_out(pool_id, params)

            item = await self._run_item("remove", pool_id, op, item_ctx)
            phase.items.append(item)
            if item.succeeded:
                await self._notify_success("zap_out_done", item, item_ctx)
        return phase

    async def _add_phase(self, plan: RebalancePlan, available: float, ctx: CycleContext) -> PhaseOutcome:
        phase = PhaseOutcome("add")
        budget = available * self.settings.safety_margin
        committed = 0.0
        for i, cand in enumerate(plan.to_add):
            if i > 0:
                await self._sleep(self.settings.pacing_delay_sec)
            capital = min(capital_for(plan, cand, self.overrides), budget - committed)
            if capital <= 0:
                item = ItemOutcome(item_id=cand.pair_id, status=ItemStatus.SKIPPED, error="no capital available")
                ctx.warning("add_skipped", pool=cand.pair_id, reason=item.error)
                self._count_item("add", item)
                phase.items.append(item)
                continue

            item_ctx = ctx.child("open_position", pool=cand.pair_id, symbol=cand.symbol)

            async def op(params: RetryParams, cand: Candidate = cand, capital: float = capital) -> Any:
                return await self.open_position(cand, capital, params)

            item = await self._run_item("add", cand.pair_id, op, item_ctx)
            if item.succeeded:
                used = getattr(item.result, "capital_used", capital)
                item.capital_used = min(used, capital)
                committed += item.capital_used
                await self._notify_success("position_opened", item, item_ctx)
            phase.items.append(item)
        return phase

    async def _notify_success(self, message: str, item: ItemOutcome, ctx: CycleContext) -> None:
        # Idempotent successes sent no transaction; nothing new to announce.
        if getattr(item.result, "already_done", False):
            ctx.info("item_already_done", item=item.item_id)
            return
        if self.notifier is not None:
            await self._notify(getattr(self.notifier, message), item.result)

    async def _run_item(
        self,
        phase: str,
        item_id: str,
        op: Callable[[RetryParams], Awaitable[Any]],
        ctx: CycleContext,
    ) -> ItemOutcome:
        attempts = 0

        async def counted(params: RetryParams) -> Any:
            nonlocal attempts
            attempts = params.attempt
            return await op(params)

        ctx.info(f"{phase}_started")
        try:
            result = await self.executor.run(counted, label=f"{phase}:{item_id}")
            item = ItemOutcome(item_id=item_id, status=ItemStatus.SUCCEEDED, attempts=attempts, result=result)
        except RetryExhaustedError as exc:
            item = ItemOutcome(item_id=item_id, status=ItemStatus.RETRY_EXHAUSTED,
                               attempts=exc.attempts, error=str(exc.last_error))
        except (FatalError, NoRouteError) as exc:
            item = ItemOutcome(item_id=item_id, status=ItemStatus.FATAL, attempts=attempts,
                               error=f"{type(exc).__name__}: {exc}")
        except Exception as exc:
            item = ItemOutcome(item_id=item_id, status=ItemStatus.FATAL, attempts=attempts,
                               error=f"{type(exc).__name__}: {exc}")

        level = "info" if item.succeeded else "error"
        ctx.log(f"{phase}_finished", level=level, status=item.status.value, attempts=item.attempts, error=item.error)
        self._count_item(phase, item)
        if not item.succeeded and self.notifier is not None:
            await self._notify(self.notifier.item_failed, "Zap out" if phase == "remove" else "Add position", item)
        return item

    # ------------------------------------------------------------------ reporting

    async def _measure_for_report(self, ctx: CycleContext) -> float:
        try:
            return await self.measure_available()
        except PreconditionError as exc:
            ctx.warning("balance_unreadable_for_report", error=str(exc))
            return 0.0

    async def _report(self, outcome: PartialCycleOutcome, ctx: CycleContext) -> None:
        if self.notifier is None:
            return
        await self._notify(self.notifier.cycle_summary, outcome)

    async def _notify(self, fn: Callable[..., Awaitable[Any]], *args: Any) -> None:
        try:
            await fn(*args)
        except Exception as exc:
            self.log.warning(f"notification failed: {exc}")

    def _count_cycle(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.cycles_total.labels(outcome=outcome).inc()

    def _count_item(self, phase: str, item: ItemOutcome) -> None:
        if self.metrics is not None:
            self.metrics.items_total.labels(phase=phase, status=item.status.value).inc()

