"""
Market data: pair ranking, token profiles, candidate discovery and token metadata.
"""

from lp_rebalancer.market_data.dexscreener import MarketDataClient, RateLimiter
from lp_rebalancer.market_data.discovery import discover_candidates
from lp_rebalancer.market_data.token_metadata import DEFAULT_DECIMALS, TokenMetadataCache

__all__ = [
    "MarketDataClient",
    "RateLimiter",
    "discover_candidates",
    "DEFAULT_DECIMALS",
    "TokenMetadataCache",
]
