"""
Position opening: swap half of the allocation into the pool's token, then
create a position with both sides.

One call is one attempt. Before doing anything the attempt checks whether a
position in the pool already exists (a previous attempt landed) and whether
the wallet already holds enough of the token (a previous swap landed), so
retries never buy twice.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from lp_rebalancer.core.errors import ConfigurationError, TransientError
from lp_rebalancer.core.models import Candidate, PositionOpenResult, RetryParams
from lp_rebalancer.core.utils import apply_bps_floor, require_positive_amount, to_raw_amount
from lp_rebalancer.infra.logging_cfg import log_event
from lp_rebalancer.venues.base import LiquidityProgram, Venue
from lp_rebalancer.venues.pool import PoolVenue


class PositionOpenOperation:
    def __init__(
        self,
        ledger,
        program: LiquidityProgram,
        aggregator,
        sender,
        metadata,
        wallet: str,
        target_asset: str,
        max_paired_amount: float = 0.5,
        include_pool_venue: bool = True,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.ledger = ledger
        self.program = program
        self.aggregator = aggregator
        self.sender = sender
        self.metadata = metadata
        self.wallet = wallet
        self.target_asset = target_asset
        self.max_paired_amount = max_paired_amount
        self.include_pool_venue = include_pool_venue
        self.log = logger or logging.getLogger("lprebal")

    def _venues(self, pool_id: str) -> List[Venue]:
        venues = list(self.aggregator.venues)
        if self.include_pool_venue:
            venues.append(PoolVenue(self.program, pool_id))
        return venues

    async def __call__(self, candidate: Candidate, capital: float, params: RetryParams) -> PositionOpenResult:
        capital = require_positive_amount(capital, "capital per position")
        pool_id = candidate.pair_id

        positions = await self.ledger.get_positions(self.wallet)
        if any(p.pool_id == pool_id for p in positions):
            log_event(self.log, "position_already_open", pool=pool_id, attempt=params.attempt)
            return PositionOpenResult(
                pool_id=pool_id, symbol=candidate.symbol, swap_venue_id="",
                swap_signature="", position_signature="", capital_used=0.0,
            )

        budget = capital * params.amount_factor
        swap_ui = budget / 2
        paired_ui = min(budget - swap_ui, self.max_paired_amount)

        state = await self.program.get_pool_state(pool_id)
        if not state.has_mint(self.target_asset):
            raise ConfigurationError(f"pool {pool_id} does not contain the target asset")
        token = state.other_mint(self.target_asset)
        target_decimals = await self.metadata.get_decimals(self.target_asset, state.program_for(self.target_asset))
        swap_raw = to_raw_amount(swap_ui, target_decimals)
        paired_raw = to_raw_amount(paired_ui, target_decimals)
        if swap_raw <= 0 or paired_raw <= 0:
            raise ConfigurationError(f"allocation {capital} too small for pool {pool_id}")

        venues = self._venues(pool_id)
        best = await self.aggregator.get_best_quote(self.target_asset, token, swap_raw, params, venues=venues)
        min_output = apply_bps_floor(best.output_amount, params.slippage_bps)

        held = await self.ledger.get_token_balance(self.wallet, token)
        swap_signature = ""
        if held < min_output:
            venue = self.aggregator.find_venue(best.venue_id, venues)
            swap = await venue.build_swap_instructions(best.quote, self.wallet, min_output, params)
            conf = await self.sender.send(swap, label=f"swap:{pool_id}")
            swap_signature = conf.signature
            held = await self.ledger.get_token_balance(self.wallet, token)
            if held <= 0:
                raise TransientError(f"swap {swap_signature} confirmed but no {token} balance visible yet")
        else:
            log_event(self.log, "swap_skipped_balance_present", pool=pool_id, held=held, min_output=min_output)

        token_raw = min(held, best.output_amount)
        created = await self.program.build_create_position(
            state, self.wallet, {token: token_raw, self.target_asset: paired_raw}, params.slippage_bps
        )
        conf = await self.sender.send(created.instructions, label=f"add:{pool_id}")

        token_decimals = await self.metadata.get_decimals(token, state.program_for(token))
        log_event(
            self.log, "position_opened",
            pool=pool_id, symbol=candidate.symbol, venue=best.venue_id,
            swap_signature=swap_signature, signature=conf.signature,
            token_amount=token_raw, token_decimals=token_decimals, paired_amount=paired_raw,
        )
        return PositionOpenResult(
            pool_id=pool_id,
            symbol=candidate.symbol,
            swap_venue_id=best.venue_id,
            swap_signature=swap_signature,
            position_signature=conf.signature,
            position_nft=created.position_nft,
            capital_used=swap_ui + paired_ui,
            token_amount=token_raw,
            paired_amount=paired_raw,
        )
