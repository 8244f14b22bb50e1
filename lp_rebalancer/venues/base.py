"""Abstract interfaces for swap venues and the pool liquidity program.

A ``Venue`` prices and builds swaps. A ``LiquidityProgram`` reads pool state
and builds the remove-all-and-close and create-position-and-add instruction
sets for one pool family. Concrete implementations own their wire formats;
the engine only sees the typed records below.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from lp_rebalancer.core.context import TOKEN_PROGRAM_ID
from lp_rebalancer.core.errors import ConfigurationError
from lp_rebalancer.core.models import InstructionSet, Position, Quote, RetryParams


@dataclass(frozen=True)
class PoolState:
    """Reserves and token layout of one pool at read time."""
    pool_id: str
    token_a_mint: str
    token_b_mint: str
    reserve_a: int
    reserve_b: int
    fee_bps: int = 0
    token_a_program: str = TOKEN_PROGRAM_ID
    token_b_program: str = TOKEN_PROGRAM_ID

    def has_mint(self, mint: str) -> bool:
        return mint in (self.token_a_mint, self.token_b_mint)

    def other_mint(self, mint: str) -> str:
        if mint == self.token_a_mint:
            return self.token_b_mint
        if mint == self.token_b_mint:
            return self.token_a_mint
        raise ConfigurationError(f"mint {mint} is not part of pool {self.pool_id}")

    def program_for(self, mint: str) -> str:
        if mint == self.token_a_mint:
            return self.token_a_program
        if mint == self.token_b_mint:
            return self.token_b_program
        raise ConfigurationError(f"mint {mint} is not part of pool {self.pool_id}")

    def reserves_for(self, input_mint: str) -> Tuple[int, int]:
        """(reserve_in, reserve_out) for a swap that sells ``input_mint``."""
        if input_mint == self.token_a_mint:
            return self.reserve_a, self.reserve_b
        if input_mint == self.token_b_mint:
            return self.reserve_b, self.reserve_a
        raise ConfigurationError(f"mint {input_mint} is not part of pool {self.pool_id}")


@dataclass(frozen=True)
class RemovalPlan:
    """Instructions that withdraw all liquidity and close the position.

    ``amounts`` maps mint -> expected raw amount withdrawn, ``min_amounts``
    the thresholds encoded into the instructions. ``unwrap`` converts a
    wrapped native balance back when no swap follows the removal.
    """
    instructions: InstructionSet
    amounts: Dict[str, int] = field(default_factory=dict)
    min_amounts: Dict[str, int] = field(default_factory=dict)
    unwrap: Optional[InstructionSet] = None


@dataclass(frozen=True)
class PositionInstructions:
    instructions: InstructionSet
    position_nft: str = ""


class Venue(ABC):
    """A competing source of swap quotes and swap instructions."""

    venue_id: str = "venue"

    @abstractmethod
    async def quote(
        self,
        input_asset: str,
        output_asset: str,
        amount: int,
        params: Optional[RetryParams] = None,
    ) -> Quote:
        """Price ``amount`` of ``input_asset`` in ``output_asset``.

        Returns a Quote whose ``raw`` carries whatever the venue needs to
        build the swap later. Raises on failure; the aggregator converts
        the failure into a Quote with ``error`` set.
        """

    @abstractmethod
    async def build_swap_instructions(
        self,
        quote: Quote,
        owner: str,
        min_output: int,
        params: Optional[RetryParams] = None,
    ) -> InstructionSet:
        """Instructions executing ``quote`` that revert below ``min_output``."""


class LiquidityProgram(ABC):
    """Pool program adapter (pool reads, position lifecycle, direct swaps)."""

    program_id: str = ""

    @abstractmethod
    async def get_pool_state(self, pool_id: str) -> PoolState:
        ...

    @abstractmethod
    async def build_remove_all(
        self,
        position: Position,
        pool: PoolState,
        owner: str,
        slippage_bps: int,
    ) -> RemovalPlan:
        ...

    @abstractmethod
    async def build_create_position(
        self,
        pool: PoolState,
        owner: str,
        amounts: Dict[str, int],
        slippage_bps: int,
    ) -> PositionInstructions:
        ...

    @abstractmethod
    async def build_swap(
        self,
        pool: PoolState,
        owner: str,
        input_mint: str,
        amount_in: int,
        min_output: int,
    ) -> InstructionSet:
        ...

    @abstractmethod
    async def get_positions(self, owner: str) -> List[Position]:
        """Every position of ``owner`` in this program, read from the ledger."""
