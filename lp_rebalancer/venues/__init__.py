"""
Swap venues and the pool liquidity program interface.
"""

from lp_rebalancer.venues.base import LiquidityProgram, PoolState, PositionInstructions, RemovalPlan, Venue
from lp_rebalancer.venues.damm_v2 import DammV2PoolState, DammV2Program
from lp_rebalancer.venues.pool import PoolVenue, constant_product_output

__all__ = [
    "LiquidityProgram",
    "PoolState",
    "PositionInstructions",
    "RemovalPlan",
    "Venue",
    "DammV2PoolState",
    "DammV2Program",
    "PoolVenue",
    "constant_product_output",
]
