"""
Configuration package.

This package contains configuration loading, validation, and per-pool overrides.
"""

from lp_rebalancer.config.config import Settings
from lp_rebalancer.config.config_validator import ConfigValidator, validate_and_log
from lp_rebalancer.config.pool_overrides import PoolOverride, load_pool_overrides

__all__ = [
    "Settings",
    "ConfigValidator",
    "validate_and_log",
    "PoolOverride",
    "load_pool_overrides",
]
