"""
PoolVenue: swap directly against the pool being exited or entered.

Quotes come from the pool's reserves using the constant product formula
with integer arithmetic; swap instructions are built by the pool program.
"""

from __future__ import annotations

from typing import Optional

from lp_rebalancer.core.errors import ConfigurationError
from lp_rebalancer.core.models import InstructionSet, Quote, RetryParams
from lp_rebalancer.venues.base import LiquidityProgram, PoolState, Venue


def constant_product_output(amount_in: int, reserve_in: int, reserve_out: int, fee_bps: int = 0) -> int:
    """
    amount_out = amount_in_with_fee * reserve_out / (reserve_in + amount_in_with_fee)
    where amount_in_with_fee = amount_in * (1 - fee). Rounds down.
    """
    if amount_in <= 0 or reserve_in <= 0 or reserve_out <= 0:
        return 0
    in_with_fee = amount_in * (10_000 - fee_bps)
    return (in_with_fee * reserve_out) // (reserve_in * 10_000 + in_with_fee)


class PoolVenue(Venue):
    """Venue bound to one pool of a liquidity program."""

    def __init__(self, program: LiquidityProgram, pool_id: str, venue_id: str = "pool") -> None:
        self.program = program
        self.pool_id = pool_id
        self.venue_id = venue_id

    async def quote(
        self,
        input_asset: str,
        output_asset: str,
        amount: int,
        params: Optional[RetryParams] = None,
    ) -> Quote:
        state: PoolState = await self.program.get_pool_state(self.pool_id)
        if not (state.has_mint(input_asset) and state.other_mint(input_asset) == output_asset):
            raise ConfigurationError(f"pool {self.pool_id} does not trade {input_asset} -> {output_asset}")
        reserve_in, reserve_out = state.reserves_for(input_asset)
        out = constant_product_output(amount, reserve_in, reserve_out, state.fee_bps)
        return Quote(
            venue_id=self.venue_id,
            output_amount=out,
            raw={"pool": state, "input_mint": input_asset, "amount_in": amount},
        )

    async def build_swap_instructions(
        self,
        quote: Quote,
        owner: str,
        min_output: int,
        params: Optional[RetryParams] = None,
    ) -> InstructionSet:
        raw = quote.raw or {}
        state = raw.get("pool")
        if state is None:
            raise ConfigurationError("pool quote is missing its pool state")
        return await self.program.build_swap(
            state, owner, raw["input_mint"], int(raw["amount_in"]), min_output
        )
