"""
Typed records shared across the engine.

External responses are decoded into these records at the boundary (market data
client, ledger client, venue adapters) so the core never handles raw dicts.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


@dataclass(frozen=True)
class Position:
    """A liquidity position owned by the wallet (one per pool/owner)."""
    pool_id: str
    owner_id: str
    position_id: str = ""
    position_nft_account: str = ""
    vested_liquidity: int = 0
    unlocked_liquidity: int = 0
    permanent_locked_liquidity: int = 0
    accrued_fee_a: int = 0
    accrued_fee_b: int = 0

    @property
    def total_liquidity(self) -> int:
        return self.vested_liquidity + self.unlocked_liquidity + self.permanent_locked_liquidity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pool_id": self.pool_id,
            "owner_id": self.owner_id,
            "position_id": self.position_id,
            "vested_liquidity": str(self.vested_liquidity),
            "unlocked_liquidity": str(self.unlocked_liquidity),
            "permanent_locked_liquidity": str(self.permanent_locked_liquidity),
            "accrued_fee_a": str(self.accrued_fee_a),
            "accrued_fee_b": str(self.accrued_fee_b),
        }


@dataclass(frozen=True)
class RankedPair:
    """One row of the market data ranking endpoint."""
    pair_id: str
    base_asset: str
    quote_asset: str
    label: str
    chain: str = ""
    protocol: str = ""


@dataclass(frozen=True)
class Profile:
    """Token profile (price, volume, liquidity) from the market data provider."""
    address: str
    symbol: str
    name: str
    pair_id: str
    price_usd: float
    volume_h24: float
    liquidity_usd: float
    price_change_h24: float = 0.0
    labels: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Candidate:
    """Immutable snapshot of a pair eligible for a new position."""
    pair_id: str
    base_asset: str
    quote_asset: str
    volume_window: float
    liquidity_usd: float
    label: str
    symbol: str = ""
    price_usd: float = 0.0

    @property
    def volume_liquidity_ratio(self) -> float:
        if self.liquidity_usd <= 0:
            return 0.0
        return self.volume_window / self.liquidity_usd


@dataclass(frozen=True)
class Quote:
    """Per-venue quote result. ``error`` is set when the venue failed."""
    venue_id: str
    output_amount: int
    error: Optional[str] = None
    raw: Any = field(default=None, compare=False, repr=False)

    @property
    def usable(self) -> bool:
        return self.error is None and self.output_amount > 0


@dataclass(frozen=True)
class BestQuote:
    venue_id: str
    output_amount: int
    quotes: Tuple[Quote, ...] = ()

    @property
    def quote(self) -> Optional[Quote]:
        for q in self.quotes:
            if q.venue_id == self.venue_id:
                return q
        return None


@dataclass(frozen=True)
class RetryParams:
    """Risk parameters for one attempt, produced by an escalation function."""
    attempt: int
    slippage_bps: int
    resource_ceiling: int
    amount_factor: float


@dataclass(frozen=True)
class InstructionSet:
    """Opaque instructions produced by a venue or liquidity program.

    ``signers`` lists extra signers the instructions need besides the wallet
    (e.g. a freshly generated position NFT keypair). ``lookup_tables`` are
    address lookup table accounts the transaction should be compiled against.
    """
    instructions: Tuple[Any, ...]
    signers: Tuple[Any, ...] = ()
    lookup_tables: Tuple[str, ...] = ()
    label: str = ""

    def __add__(self, other: "InstructionSet") -> "InstructionSet":
        label = "+".join(x for x in (self.label, other.label) if x)
        tables = self.lookup_tables + tuple(t for t in other.lookup_tables if t not in self.lookup_tables)
        return InstructionSet(
            instructions=self.instructions + other.instructions,
            signers=self.signers + other.signers,
            lookup_tables=tables,
            label=label,
        )


@dataclass(frozen=True)
class FreshnessToken:
    """Recent blockhash plus the last block height it is valid for."""
    value: str
    last_valid_height: int = 0


@dataclass(frozen=True)
class Confirmation:
    signature: str
    slot: Optional[int] = None


@dataclass(frozen=True)
class TokenBalance:
    mint: str
    raw: int
    decimals: int
    program_id: str = ""

    @property
    def ui_amount(self) -> float:
        return self.raw / (10 ** self.decimals) if self.decimals >= 0 else float(self.raw)


@dataclass(frozen=True)
class RebalancePlan:
    """Diff of current vs desired holdings plus per-addition capital."""
    to_remove: FrozenSet[str]
    to_add: Tuple[Candidate, ...]
    capital_per_addition: float = 0.0
    current_pools: FrozenSet[str] = frozenset()
    desired_pools: FrozenSet[str] = frozenset()

    @property
    def is_empty(self) -> bool:
        return not self.to_remove and not self.to_add

    @property
    def untouched(self) -> FrozenSet[str]:
        return self.current_pools & self.desired_pools


@dataclass(frozen=True)
class ZapOutResult:
    pool_id: str
    venue_id: str
    expected_output: int
    min_output: int
    signature: str
    amount_a_removed: int = 0
    amount_b_removed: int = 0

    @property
    def already_done(self) -> bool:
        """No transaction was sent; the position was gone before this attempt."""
        return not self.signature


@dataclass(frozen=True)
class PositionOpenResult:
    pool_id: str
    symbol: str
    swap_venue_id: str
    swap_signature: str
    position_signature: str
    position_nft: str = ""
    capital_used: float = 0.0
    token_amount: int = 0
    paired_amount: int = 0

    @property
    def already_done(self) -> bool:
        """No transaction was sent; the position was already open."""
        return not self.position_signature


class ItemStatus(Enum):
    SUCCEEDED = "succeeded"
    RETRY_EXHAUSTED = "retry_exhausted"
    FATAL = "fatal"
    SKIPPED = "skipped"


@dataclass
class ItemOutcome:
    """Terminal outcome of one removal or addition."""
    item_id: str
    status: ItemStatus
    attempts: int = 0
    error: Optional[str] = None
    result: Any = None
    capital_used: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is ItemStatus.SUCCEEDED


@dataclass
class PhaseOutcome:
    phase: str
    items: List[ItemOutcome] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return sum(1 for i in self.items if i.status is not ItemStatus.SKIPPED)

    @property
    def succeeded(self) -> int:
        return sum(1 for i in self.items if i.succeeded)

    @property
    def failed(self) -> int:
        return self.attempted - self.succeeded

    @property
    def capital_used(self) -> float:
        return sum(i.capital_used for i in self.items if i.succeeded)

    @property
    def all_failed(self) -> bool:
        return self.attempted > 0 and self.succeeded == 0


@dataclass
class PartialCycleOutcome:
    """Aggregate record of one rebalancing cycle."""
    trace_id: str
    plan: Optional[RebalancePlan] = None
    removed: PhaseOutcome = field(default_factory=lambda: PhaseOutcome("remove"))
    added: PhaseOutcome = field(default_factory=lambda: PhaseOutcome("add"))
    available_before: float = 0.0
    available_after_removal: float = 0.0
    dry_run: bool = False
    started_at: float = field(default_factory=time.time)
    duration_ms: float = 0.0

    @property
    def capital_used(self) -> float:
        return self.added.capital_used

    @property
    def failed_phases(self) -> List[str]:
        return [p.phase for p in (self.removed, self.added) if p.all_failed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "to_remove": sorted(self.plan.to_remove) if self.plan else [],
            "to_add": [c.pair_id for c in self.plan.to_add] if self.plan else [],
            "capital_per_addition": self.plan.capital_per_addition if self.plan else 0.0,
            "removed": f"{self.removed.succeeded}/{self.removed.attempted}",
            "added": f"{self.added.succeeded}/{self.added.attempted}",
            "capital_used": self.capital_used,
            "available_before": self.available_before,
            "available_after_removal": self.available_after_removal,
            "dry_run": self.dry_run,
            "duration_ms": round(self.duration_ms, 1),
        }
