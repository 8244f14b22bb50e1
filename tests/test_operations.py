"""
Tests for the on-chain operations: PoolVenue, zap-out and position opening.

Uses an in-memory liquidity program and a recording sender so each attempt's
idempotency checks can be exercised without a ledger.
"""

import pytest
from typing import Dict, List
from unittest.mock import AsyncMock

from lp_rebalancer.core.errors import ConfigurationError, NoRouteError
from lp_rebalancer.core.models import (
    Candidate,
    Confirmation,
    InstructionSet,
    Position,
    Quote,
    RetryParams,
)
from lp_rebalancer.execution.position_opener import PositionOpenOperation
from lp_rebalancer.execution.quote_aggregator import QuoteAggregator
from lp_rebalancer.execution.zap_out import ZapOutOperation
from lp_rebalancer.venues.base import LiquidityProgram, PoolState, PositionInstructions, RemovalPlan, Venue
from lp_rebalancer.venues.pool import PoolVenue, constant_product_output

WALLET = "Wallet11111111111111111111111111111111111"
SOL = "So11111111111111111111111111111111111111112"
TOKEN = "Token1111111111111111111111111111111111111"
POOL = "Pool11111111111111111111111111111111111111"

PARAMS = RetryParams(attempt=1, slippage_bps=100, resource_ceiling=20, amount_factor=1.0)


class FakeProgram(LiquidityProgram):
    def __init__(self, reserve_sol=1_000_000_000_000, reserve_token=2_000_000_000_000):
        self.state = PoolState(POOL, SOL, TOKEN, reserve_sol, reserve_token, fee_bps=25)
        self.removals = []
        self.creations = []
        self.swaps = []

    async def get_pool_state(self, pool_id):
        return self.state

    async def build_remove_all(self, position, pool, owner, slippage_bps):
        self.removals.append((position, slippage_bps))
        return RemovalPlan(
            instructions=InstructionSet(("remove",), label="remove"),
            amounts={SOL: 500, TOKEN: 1_000},
            min_amounts={SOL: 490, TOKEN: 980},
        )

    async def build_create_position(self, pool, owner, amounts, slippage_bps):
        self.creations.append(dict(amounts))
        return PositionInstructions(InstructionSet(("create",), label="create"), position_nft="NFT")

    async def build_swap(self, pool, owner, input_mint, amount_in, min_output):
        self.swaps.append((input_mint, amount_in, min_output))
        return InstructionSet(("pool-swap",), label="pool-swap")

    async def get_positions(self, owner):
        return []


class FixedVenue(Venue):
    def __init__(self, venue_id, output):
        self.venue_id = venue_id
        self.output = output
        self.built = []

    async def quote(self, input_asset, output_asset, amount, params=None):
        return Quote(self.venue_id, self.output, raw={"amount": amount})

    async def build_swap_instructions(self, quote, owner, min_output, params=None):
        self.built.append(min_output)
        return InstructionSet((f"{self.venue_id}-swap",), label="swap")


class RecordingSender:
    def __init__(self):
        self.sent: List[InstructionSet] = []

    async def send(self, instructions, label=""):
        self.sent.append(instructions)
        return Confirmation(signature=f"sig{len(self.sent)}", slot=1)


def ledger_with(positions=(), balances: Dict[str, List[int]] = None):
    ledger = AsyncMock()
    ledger.get_positions.return_value = list(positions)
    balances = balances or {}

    async def token_balance(owner, mint):
        seq = balances.get(mint, [0])
        return seq.pop(0) if len(seq) > 1 else seq[0]

    ledger.get_token_balance.side_effect = token_balance
    return ledger


class TestPoolVenue:

    def test_constant_product(self):
        assert constant_product_output(1_000, 10_000, 10_000) == 909
        assert constant_product_output(1_000, 10_000, 10_000, fee_bps=30) == 906
        assert constant_product_output(0, 10, 10) == 0

    @pytest.mark.asyncio
    async def test_quote_and_build(self):
        program = FakeProgram(reserve_sol=10_000, reserve_token=10_000)
        program.state = PoolState(POOL, SOL, TOKEN, 10_000, 10_000, fee_bps=0)
        venue = PoolVenue(program, POOL)
        quote = await venue.quote(TOKEN, SOL, 1_000)
        assert quote.output_amount == 909
        await venue.build_swap_instructions(quote, WALLET, 900)
        assert program.swaps == [(TOKEN, 1_000, 900)]

    @pytest.mark.asyncio
    async def test_wrong_pair(self):
        venue = PoolVenue(FakeProgram(), POOL)
        with pytest.raises(ConfigurationError):
            await venue.quote(TOKEN, "Other", 10)


class TestZapOut:

    def make(self, positions, venues):
        program = FakeProgram()
        sender = RecordingSender()
        op = ZapOutOperation(
            ledger_with(positions), program, QuoteAggregator(venues), sender, WALLET, SOL,
            include_pool_venue=False,
        )
        return op, program, sender

    @pytest.mark.asyncio
    async def test_removes_and_swaps_in_one_transaction(self):
        router = FixedVenue("router", 400)
        op, program, sender = self.make([Position(POOL, WALLET)], [router])
        result = await op(POOL, PARAMS)
        assert len(sender.sent) == 1
        assert sender.sent[0].instructions == ("remove", "router-swap")
        assert result.venue_id == "router"
        assert result.expected_output == 400
        assert result.min_output == 396
        assert router.built == [396]
        assert result.amount_a_removed == 500
        assert result.amount_b_removed == 1_000

    @pytest.mark.asyncio
    async def test_amount_factor_shrinks_swap(self):
        router = FixedVenue("router", 400)
        op, _, _ = self.make([Position(POOL, WALLET)], [router])
        params = RetryParams(attempt=3, slippage_bps=500, resource_ceiling=30, amount_factor=0.5)
        aggregator = op.aggregator
        aggregator.get_best_quote = AsyncMock(wraps=aggregator.get_best_quote)
        await op(POOL, params)
        assert aggregator.get_best_quote.call_args[0][2] == 490

    @pytest.mark.asyncio
    async def test_missing_position_is_already_done(self):
        op, program, sender = self.make([], [FixedVenue("router", 1)])
        result = await op(POOL, PARAMS)
        assert result.already_done
        assert sender.sent == []
        assert program.removals == []

    @pytest.mark.asyncio
    async def test_nothing_to_swap_unwraps_native(self):
        op, program, sender = self.make([Position(POOL, WALLET)], [FixedVenue("router", 1)])

        async def remove_native_only(position, pool, owner, slippage_bps):
            return RemovalPlan(
                instructions=InstructionSet(("remove",)),
                amounts={SOL: 500, TOKEN: 0},
                min_amounts={SOL: 490, TOKEN: 0},
                unwrap=InstructionSet(("unwrap",)),
            )

        program.build_remove_all = remove_native_only
        result = await op(POOL, PARAMS)
        assert sender.sent[0].instructions == ("remove", "unwrap")
        assert result.venue_id == ""
        assert not result.already_done

    @pytest.mark.asyncio
    async def test_no_route_propagates(self):
        op, _, sender = self.make([Position(POOL, WALLET)], [FixedVenue("router", 0)])
        with pytest.raises(NoRouteError):
            await op(POOL, PARAMS)
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_pool_venue_included(self):
        program = FakeProgram()
        sender = RecordingSender()
        op = ZapOutOperation(
            ledger_with([Position(POOL, WALLET)]), program, QuoteAggregator([FixedVenue("router", 1)]),
            sender, WALLET, SOL,
        )
        result = await op(POOL, PARAMS)
        assert result.venue_id == "pool"
        assert sender.sent[0].instructions == ("remove", "pool-swap")


class TestPositionOpen:

    CANDIDATE = Candidate(
        pair_id=POOL, base_asset=SOL, quote_asset=TOKEN,
        volume_window=100, liquidity_usd=50, label="DYN2", symbol="TOK",
    )

    def make(self, positions=(), balances=None, output=2_000_000):
        program = FakeProgram()
        sender = RecordingSender()
        metadata = AsyncMock()
        metadata.get_decimals.return_value = 9
        op = PositionOpenOperation(
            ledger_with(positions, balances), program, QuoteAggregator([FixedVenue("router", output)]),
            sender, metadata, WALLET, SOL, max_paired_amount=0.5, include_pool_venue=False,
        )
        return op, program, sender

    @pytest.mark.asyncio
    async def test_swap_then_create(self):
        op, program, sender = self.make(balances={TOKEN: [0, 2_000_000]})
        result = await op(self.CANDIDATE, 0.4, PARAMS)
        assert [s.label for s in sender.sent] == ["swap", "create"]
        assert program.creations == [{TOKEN: 2_000_000, SOL: 200_000_000}]
        assert result.capital_used == pytest.approx(0.4)
        assert result.position_nft == "NFT"
        assert result.swap_signature == "sig1"
        assert result.position_signature == "sig2"

    @pytest.mark.asyncio
    async def test_paired_side_is_capped(self):
        op, program, _ = self.make(balances={TOKEN: [0, 2_000_000]})
        result = await op(self.CANDIDATE, 4.0, PARAMS)
        assert program.creations[0][SOL] == 500_000_000
        assert result.capital_used == pytest.approx(2.5)

    @pytest.mark.asyncio
    async def test_existing_balance_skips_swap(self):
        op, program, sender = self.make(balances={TOKEN: [5_000_000]})
        result = await op(self.CANDIDATE, 0.4, PARAMS)
        assert [s.label for s in sender.sent] == ["create"]
        assert result.swap_signature == ""
        assert program.creations[0][TOKEN] == 2_000_000

    @pytest.mark.asyncio
    async def test_existing_position_is_already_done(self):
        op, program, sender = self.make(positions=[Position(POOL, WALLET)])
        result = await op(self.CANDIDATE, 0.4, PARAMS)
        assert sender.sent == []
        assert result.capital_used == 0.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("capital", [0, -1, float("nan"), float("inf")])
    async def test_rejects_bad_capital(self, capital):
        op, _, _ = self.make()
        with pytest.raises(ConfigurationError):
            await op(self.CANDIDATE, capital, PARAMS)

    @pytest.mark.asyncio
    async def test_dust_allocation_rejected(self):
        op, _, _ = self.make()
        with pytest.raises(ConfigurationError):
            await op(self.CANDIDATE, 1e-10, PARAMS)
