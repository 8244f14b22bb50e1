"""
Liquidity position rebalancer.
"""

__version__ = "0.1.0"
