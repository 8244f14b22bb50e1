"""
Zap-out: withdraw a whole position and convert the non-target side into the
target asset in one transaction.

Each call is one attempt under RetryExecutor. The position and pool state are
read fresh, so an attempt after an earlier one that actually landed finds no
position and finishes without submitting anything.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from lp_rebalancer.core.errors import ConfigurationError
from lp_rebalancer.core.models import RetryParams, ZapOutResult
from lp_rebalancer.core.utils import apply_bps_floor
from lp_rebalancer.infra.logging_cfg import log_event
from lp_rebalancer.venues.base import LiquidityProgram, Venue
from lp_rebalancer.venues.pool import PoolVenue


class ZapOutOperation:
    def __init__(
        self,
        ledger,
        program: LiquidityProgram,
        aggregator,
        sender,
        wallet: str,
        target_asset: str,
        include_pool_venue: bool = True,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.ledger = ledger
        self.program = program
        self.aggregator = aggregator
        self.sender = sender
        self.wallet = wallet
        self.target_asset = target_asset
        self.include_pool_venue = include_pool_venue
        self.log = logger or logging.getLogger("lprebal")

    def _venues(self, pool_id: str) -> List[Venue]:
        venues = list(self.aggregator.venues)
        if self.include_pool_venue:
            venues.append(PoolVenue(self.program, pool_id))
        return venues

    async def __call__(self, pool_id: str, params: RetryParams) -> ZapOutResult:
        positions = await self.ledger.get_positions(self.wallet)
        position = next((p for p in positions if p.pool_id == pool_id), None)
        if position is None:
            log_event(self.log, "zap_out_nothing_to_close", pool=pool_id, attempt=params.attempt)
            return ZapOutResult(pool_id=pool_id, venue_id="", expected_output=0, min_output=0, signature="")

        state = await self.program.get_pool_state(pool_id)
        if not state.has_mint(self.target_asset):
            raise ConfigurationError(f"pool {pool_id} does not contain the target asset")
        removal = await self.program.build_remove_all(position, state, self.wallet, params.slippage_bps)

        token = state.other_mint(self.target_asset)
        withdrawn = removal.min_amounts.get(token, removal.amounts.get(token, 0))
        amount = int(withdrawn * params.amount_factor)
        amount_a = removal.amounts.get(state.token_a_mint, 0)
        amount_b = removal.amounts.get(state.token_b_mint, 0)

        if amount <= 0:
            instructions = removal.instructions
            if removal.unwrap is not None:
                instructions = instructions + removal.unwrap
            conf = await self.sender.send(instructions, label=f"zap_out:{pool_id}")
            log_event(self.log, "zap_out_done", pool=pool_id, venue=None, signature=conf.signature, swapped=0)
            return ZapOutResult(
                pool_id=pool_id, venue_id="", expected_output=0, min_output=0,
                signature=conf.signature, amount_a_removed=amount_a, amount_b_removed=amount_b,
            )

        venues = self._venues(pool_id)
        best = await self.aggregator.get_best_quote(token, self.target_asset, amount, params, venues=venues)
        min_output = apply_bps_floor(best.output_amount, params.slippage_bps)
        venue = self.aggregator.find_venue(best.venue_id, venues)
        swap = await venue.build_swap_instructions(best.quote, self.wallet, min_output, params)

        conf = await self.sender.send(removal.instructions + swap, label=f"zap_out:{pool_id}")
        log_event(
            self.log, "zap_out_done",
            pool=pool_id, venue=best.venue_id, signature=conf.signature,
            swapped=amount, expected=best.output_amount, min_output=min_output,
        )
        return ZapOutResult(
            pool_id=pool_id,
            venue_id=best.venue_id,
            expected_output=best.output_amount,
            min_output=min_output,
            signature=conf.signature,
            amount_a_removed=amount_a,
            amount_b_removed=amount_b,
        )
