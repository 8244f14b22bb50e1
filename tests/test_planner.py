"""
Tests for the pure planning functions.
"""

import math
import pytest

from lp_rebalancer.config.pool_overrides import PoolOverride
from lp_rebalancer.core.errors import ConfigurationError
from lp_rebalancer.core.models import Candidate
from lp_rebalancer.orchestrator.planner import allocate_capital, capital_for, compute_plan, with_capital


def cand(pool_id: str) -> Candidate:
    return Candidate(
        pair_id=pool_id, base_asset="SOL", quote_asset=f"tok-{pool_id}",
        volume_window=100.0, liquidity_usd=50.0, label="DYN2",
    )


class TestComputePlan:

    def test_diff_of_current_and_desired(self):
        plan = compute_plan({"A", "B"}, [cand("B"), cand("C")])
        assert plan.to_remove == frozenset({"A"})
        assert [c.pair_id for c in plan.to_add] == ["C"]
        assert plan.untouched == frozenset({"B"})

    def test_identical_sets_produce_empty_plan(self):
        plan = compute_plan({"A"}, [cand("A")], available=10, safety_margin=0.95, ceiling=5)
        assert plan.is_empty
        assert plan.capital_per_addition == 0.0

    def test_to_add_keeps_ranking_order(self):
        plan = compute_plan(set(), [cand("Z"), cand("A"), cand("M"), cand("A")])
        assert [c.pair_id for c in plan.to_add] == ["Z", "A", "M"]

    def test_capital_attached(self):
        plan = compute_plan({"X"}, [cand("Y")], available=10, safety_margin=0.95, ceiling=5)
        assert plan.to_remove == frozenset({"X"})
        assert plan.capital_per_addition == 5


class TestAllocateCapital:

    def test_split_below_ceiling(self):
        per_item = allocate_capital(10, 0.95, 2, 5)
        assert per_item == pytest.approx(4.75)
        assert per_item * 2 == pytest.approx(9.5)

    def test_ceiling_binds(self):
        assert allocate_capital(100, 0.9, 2, 5) == 5

    def test_total_never_exceeds_margin(self):
        for additions in range(1, 8):
            per_item = allocate_capital(3.7, 0.9, additions, 10)
            assert per_item * additions <= 3.7 * 0.9 + 1e-9

    @pytest.mark.parametrize("available, additions", [(0, 2), (-1, 2), (10, 0)])
    def test_zero_allocation(self, available, additions):
        assert allocate_capital(available, 0.9, additions, 5) == 0.0

    @pytest.mark.parametrize("margin", [0, -0.1, 1.01])
    def test_invalid_margin(self, margin):
        with pytest.raises(ConfigurationError):
            allocate_capital(10, margin, 1, 5)

    @pytest.mark.parametrize("kwargs", [
        {"available": math.nan},
        {"available": math.inf},
        {"ceiling": 0},
        {"ceiling": math.inf},
    ])
    def test_invalid_inputs(self, kwargs):
        args = {"available": 10, "safety_margin": 0.9, "additions": 1, "ceiling": 5}
        args.update(kwargs)
        with pytest.raises(ConfigurationError):
            allocate_capital(**args)


class TestCapitalHelpers:

    def test_with_capital_reallocates(self):
        plan = compute_plan({"X"}, [cand("Y"), cand("Z")], available=0, safety_margin=0.9, ceiling=5)
        assert plan.capital_per_addition == 0.0
        updated = with_capital(plan, 4, 0.9, 5)
        assert updated.capital_per_addition == pytest.approx(1.8)
        assert updated.to_remove == plan.to_remove
        assert updated.to_add == plan.to_add

    def test_override_tightens_allocation(self):
        plan = compute_plan(set(), [cand("Y")], available=10, safety_margin=1.0, ceiling=5)
        overrides = {"Y": PoolOverride(max_capital=2.0)}
        assert capital_for(plan, cand("Y"), overrides) == 2.0

    def test_override_never_raises_allocation(self):
        plan = compute_plan(set(), [cand("Y")], available=10, safety_margin=1.0, ceiling=5)
        assert capital_for(plan, cand("Y"), {"Y": PoolOverride(max_capital=50.0)}) == 5

    def test_no_override(self):
        plan = compute_plan(set(), [cand("Y")], available=1, safety_margin=1.0, ceiling=5)
        assert capital_for(plan, cand("Y")) == 1
