"""
PositionLedgerView: the wallet's current liquidity positions, read fresh from
the ledger on every call. Nothing is cached between cycles.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Tuple

from lp_rebalancer.core.errors import ConfigurationError, PreconditionError
from lp_rebalancer.core.models import Position
from lp_rebalancer.core.utils import short_id
from lp_rebalancer.infra.logging_cfg import log_event


@dataclass(frozen=True)
class PositionSnapshot:
    owner_id: str
    positions: Tuple[Position, ...]
    taken_at: float = field(default_factory=time.time)

    @property
    def pool_ids(self) -> FrozenSet[str]:
        return frozenset(p.pool_id for p in self.positions)

    def for_pool(self, pool_id: str) -> Optional[Position]:
        for p in self.positions:
            if p.pool_id == pool_id:
                return p
        return None


class PositionLedgerView:
    def __init__(self, ledger, owner_id: str, logger: Optional[logging.Logger] = None) -> None:
        self.ledger = ledger
        self.owner_id = owner_id
        self.log = logger or logging.getLogger("lprebal")

    async def snapshot(self) -> PositionSnapshot:
        """
        Read all positions owned by the wallet.

        Raises:
            PreconditionError: the ledger could not be read at all. A cycle
                must not diff against an unknown current set.
        """
        try:
            positions: List[Position] = list(await self.ledger.get_positions(self.owner_id))
        except ConfigurationError:
            raise
        except Exception as exc:
            raise PreconditionError(f"position snapshot unreadable: {exc}") from exc

        # One logical position per (pool, owner); keep the first reported.
        seen = set()
        unique: List[Position] = []
        for pos in positions:
            if pos.pool_id in seen:
                continue
            seen.add(pos.pool_id)
            unique.append(pos)

        snap = PositionSnapshot(owner_id=self.owner_id, positions=tuple(unique))
        log_event(self.log, "positions_snapshot", level=logging.DEBUG, owner=self.owner_id, pools=sorted(snap.pool_ids))
        return snap

    async def pool_ids(self) -> FrozenSet[str]:
        return (await self.snapshot()).pool_ids

    async def find(self, pool_id: str) -> Optional[Position]:
        return (await self.snapshot()).for_pool(pool_id)

    @staticmethod
    def describe(snapshot: PositionSnapshot) -> str:
        if not snapshot.positions:
            return "No open positions."
        lines = [f"{len(snapshot.positions)} open position(s):"]
        for i, p in enumerate(snapshot.positions, 1):
            lines.append(
                f"{i}. pool {short_id(p.pool_id)} liquidity={p.total_liquidity} "
                f"(unlocked={p.unlocked_liquidity}, vested={p.vested_liquidity}, "
                f"locked={p.permanent_locked_liquidity}) fees a={p.accrued_fee_a} b={p.accrued_fee_b}"
            )
        return "\n".join(lines)
