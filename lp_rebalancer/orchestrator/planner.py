"""
Pure planning functions: holdings diff and capital allocation.

No I/O here; the controller feeds snapshots in and executes the plan.
"""

from __future__ import annotations

import math
from typing import Iterable, Mapping, Optional, Sequence

from lp_rebalancer.config.pool_overrides import PoolOverride
from lp_rebalancer.core.errors import ConfigurationError
from lp_rebalancer.core.models import Candidate, RebalancePlan


def allocate_capital(available: float, safety_margin: float, additions: int, ceiling: float) -> float:
    """
    Per-addition capital: min(K * m / M, C).

    The sum over all additions never exceeds K * m. Returns 0.0 when there is
    nothing to add or nothing available.
    """
    for name, value in (("available", available), ("safety_margin", safety_margin), ("ceiling", ceiling)):
        if not math.isfinite(value):
            raise ConfigurationError(f"{name} must be finite, got {value}")
    if not 0 < safety_margin <= 1:
        raise ConfigurationError(f"safety_margin must be in (0, 1], got {safety_margin}")
    if ceiling <= 0:
        raise ConfigurationError(f"ceiling must be > 0, got {ceiling}")
    if additions <= 0 or available <= 0:
        return 0.0
    return min(available * safety_margin / additions, ceiling)


def compute_plan(
    current_pools: Iterable[str],
    desired: Sequence[Candidate],
    available: float = 0.0,
    safety_margin: float = 0.9,
    ceiling: float = 1.0,
) -> RebalancePlan:
    """
    to_remove = current - desired, to_add = desired - current.

    ``desired`` keeps its ranking order in ``to_add``; pools present in both
    sets are left untouched.
    """
    current = frozenset(current_pools)
    desired_ids = frozenset(c.pair_id for c in desired)
    to_remove = current - desired_ids

    seen = set()
    to_add = []
    for cand in desired:
        if cand.pair_id in current or cand.pair_id in seen:
            continue
        seen.add(cand.pair_id)
        to_add.append(cand)

    per_addition = allocate_capital(available, safety_margin, len(to_add), ceiling) if to_add else 0.0
    return RebalancePlan(
        to_remove=to_remove,
        to_add=tuple(to_add),
        capital_per_addition=per_addition,
        current_pools=current,
        desired_pools=desired_ids,
    )


def with_capital(plan: RebalancePlan, available: float, safety_margin: float, ceiling: float) -> RebalancePlan:
    """Re-allocate capital after removals changed the available balance."""
    return RebalancePlan(
        to_remove=plan.to_remove,
        to_add=plan.to_add,
        capital_per_addition=allocate_capital(available, safety_margin, len(plan.to_add), ceiling),
        current_pools=plan.current_pools,
        desired_pools=plan.desired_pools,
    )


def capital_for(
    plan: RebalancePlan,
    candidate: Candidate,
    overrides: Optional[Mapping[str, PoolOverride]] = None,
) -> float:
    """Plan allocation, tightened by a per-pool ``max_capital`` override."""
    capital = plan.capital_per_addition
    override = (overrides or {}).get(candidate.pair_id)
    if override is not None and override.max_capital is not None and override.max_capital > 0:
        capital = min(capital, override.max_capital)
    return capital
