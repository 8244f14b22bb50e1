"""
Orchestration: planning and the rebalancing control loop.
"""

from lp_rebalancer.orchestrator.planner import allocate_capital, capital_for, compute_plan
from lp_rebalancer.orchestrator.rebalancing_controller import ControllerSettings, RebalancingController

__all__ = [
    "allocate_capital",
    "capital_for",
    "compute_plan",
    "ControllerSettings",
    "RebalancingController",
]
