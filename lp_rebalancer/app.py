"""
Engine wiring and the interval scheduler.
"""

from __future__ import annotations

import asyncio
import importlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

import httpx

from lp_rebalancer.config.config import Settings
from lp_rebalancer.config.pool_overrides import load_pool_overrides
from lp_rebalancer.core.context import ExecutionContext
from lp_rebalancer.core.errors import (
    ConfigurationError,
    CycleInProgressError,
    PhaseFailedError,
    PreconditionError,
)
from lp_rebalancer.core.models import Candidate, RetryParams
from lp_rebalancer.execution.position_opener import PositionOpenOperation
from lp_rebalancer.execution.quote_aggregator import QuoteAggregator
from lp_rebalancer.execution.retry_executor import EscalationPolicy, RetryExecutor
from lp_rebalancer.execution.transaction_sender import TransactionSender
from lp_rebalancer.execution.zap_out import ZapOutOperation
from lp_rebalancer.infra.logging_cfg import log_event
from lp_rebalancer.infra.wallet_lock import WalletLockCoordinator
from lp_rebalancer.ledger.ledger_client import RpcLedgerClient
from lp_rebalancer.ledger.position_view import PositionLedgerView
from lp_rebalancer.ledger.signer import KeypairSigner
from lp_rebalancer.market_data.dexscreener import MarketDataClient
from lp_rebalancer.market_data.token_metadata import TokenMetadataCache
from lp_rebalancer.orchestrator.rebalancing_controller import ControllerSettings, RebalancingController
from lp_rebalancer.venues.damm_v2 import DammV2Program
from lp_rebalancer.venues.router import RouterVenue

log = logging.getLogger("lprebal")


def load_object(path: str) -> Any:
    """Resolve ``package.module:attribute``."""
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"expected 'module:attribute', got {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"cannot import {module_name}: {exc}") from exc
    try:
        return getattr(module, attr)
    except AttributeError:
        raise ConfigurationError(f"{module_name} has no attribute {attr}") from None


@dataclass
class Engine:
    context: ExecutionContext
    controller: RebalancingController
    ledger: RpcLedgerClient
    closables: List[Any] = field(default_factory=list)

    async def close(self) -> None:
        for obj in self.closables:
            # httpx clients close with aclose(); close() there is the sync API.
            closer = getattr(obj, "aclose", None) or obj.close
            try:
                await closer()
            except Exception as exc:
                log.warning(f"close failed for {type(obj).__name__}: {exc}")


def _missing_signer(action: str) -> Callable[..., Awaitable[Any]]:
    async def _fail(*args: Any) -> Any:
        raise ConfigurationError(f"cannot {action}: no signing key configured")
    return _fail


def build_engine(cfg: Settings, metrics: Any = None, notifier: Any = None,
                 logger: Optional[logging.Logger] = None,
                 http: Optional[httpx.AsyncClient] = None) -> Engine:
    logger = logger or log
    ctx = ExecutionContext.from_settings(cfg)
    # One shared HTTP/2 client for every HTTP collaborator.
    http = http or httpx.AsyncClient(http2=True, timeout=cfg.http_timeout)

    ledger = RpcLedgerClient(
        ctx.rpc_url,
        commitment=ctx.commitment,
        position_indexer_url=cfg.position_indexer_url,
        client=http,
        logger=logger,
    )

    # LPR_LIQUIDITY_PROGRAM swaps in another pool family; DAMM v2 otherwise.
    if cfg.liquidity_program:
        factory = load_object(cfg.liquidity_program)
        program = factory(cfg)
    else:
        program = DammV2Program(ledger, logger=logger)
    if not cfg.position_indexer_url:
        ledger.position_source = program
    market = MarketDataClient(
        ctx.market_data_url,
        ctx.profile_api_url,
        chain_id=ctx.chain_id,
        client=http,
        logger=logger,
    )
    metadata = TokenMetadataCache(ledger, logger=logger)
    aggregator = QuoteAggregator(
        [RouterVenue(ctx.swap_api_url, client=http, logger=logger)],
        timeout=cfg.quote_timeout_sec,
        logger=logger,
        metrics=metrics,
    )
    locks = WalletLockCoordinator()
    executor = RetryExecutor(
        EscalationPolicy.from_settings(cfg),
        max_attempts=cfg.retry_max_attempts,
        delay=cfg.retry_delay_sec,
        logger=logger,
        metrics=metrics,
    )

    zap_out: Callable[[str, RetryParams], Awaitable[Any]] = _missing_signer("zap out")
    open_position: Callable[[Candidate, float, RetryParams], Awaitable[Any]] = _missing_signer("open positions")
    if cfg.private_key:
        signer = KeypairSigner.from_secret(cfg.private_key)
        if signer.public_key != ctx.wallet_address:
            raise ConfigurationError("LPR_PRIVATE_KEY does not belong to LPR_WALLET_ADDRESS")
        sender = TransactionSender(
            ledger, signer, locks, ctx.wallet_address,
            confirm_timeout=cfg.confirm_timeout_sec, logger=logger,
        )
        zap_out = ZapOutOperation(ledger, program, aggregator, sender, ctx.wallet_address, ctx.target_asset, logger=logger)
        open_position = PositionOpenOperation(
            ledger, program, aggregator, sender, metadata, ctx.wallet_address, ctx.target_asset,
            max_paired_amount=cfg.max_paired_amount, logger=logger,
        )

    controller = RebalancingController(
        wallet=ctx.wallet_address,
        position_view=PositionLedgerView(ledger, ctx.wallet_address, logger=logger),
        market_data=market,
        ledger=ledger,
        metadata=metadata,
        executor=executor,
        zap_out=zap_out,
        open_position=open_position,
        settings=ControllerSettings.from_settings(cfg),
        locks=locks,
        notifier=notifier,
        metrics=metrics,
        overrides=load_pool_overrides(cfg.pool_overrides_path),
        logger=logger,
    )
    return Engine(context=ctx, controller=controller, ledger=ledger, closables=[http])


async def run_scheduled(controller: RebalancingController, interval_sec: float,
                        stop: Optional[asyncio.Event] = None) -> None:
    """Run a cycle every ``interval_sec`` until ``stop`` is set.

    A cycle that is still running when the next tick fires is never
    overlapped; the tick is skipped.
    """
    stop = stop or asyncio.Event()
    while not stop.is_set():
        try:
            outcome = await controller.run_cycle()
            log.info(json.dumps({"event": "cycle_ok", **outcome.to_dict()}))
        except CycleInProgressError as exc:
            log_event(log, "cycle_skipped", level=logging.WARNING, reason=str(exc))
        except PreconditionError as exc:
            log_event(log, "cycle_aborted", level=logging.ERROR, reason=str(exc))
        except PhaseFailedError as exc:
            log_event(log, "cycle_phase_failed", level=logging.ERROR, phase=exc.phase)
        except ConfigurationError:
            raise
        except Exception as exc:
            log_event(log, "cycle_error", level=logging.ERROR, error=f"{type(exc).__name__}: {exc}")

        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_sec)
        except asyncio.TimeoutError:
            pass
