"""
Infrastructure: logging, trace contexts and per-wallet coordination.
"""

from lp_rebalancer.infra.cycle_context import CycleContext
from lp_rebalancer.infra.logging_cfg import build_logger, log_event
from lp_rebalancer.infra.wallet_lock import WalletLockCoordinator

__all__ = ["CycleContext", "build_logger", "log_event", "WalletLockCoordinator"]
