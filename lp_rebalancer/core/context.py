"""
Immutable execution context handed to every component constructor.

Replaces ambient wallet/connection singletons: the signing identity, network
handle and service base URLs travel together and never change during a run.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lp_rebalancer.config.config import Settings

NATIVE_MINT = "So11111111111111111111111111111111111111112"
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"


@dataclass(frozen=True)
class ExecutionContext:
    wallet_address: str
    rpc_url: str
    swap_api_url: str
    market_data_url: str
    profile_api_url: str
    target_asset: str = NATIVE_MINT
    chain_id: str = "solana"
    commitment: str = "confirmed"

    @classmethod
    def from_settings(cls, cfg: "Settings") -> "ExecutionContext":
        return cls(
            wallet_address=cfg.wallet_address,
            rpc_url=cfg.rpc_url,
            swap_api_url=cfg.swap_api_url,
            market_data_url=cfg.market_data_url,
            profile_api_url=cfg.profile_api_url,
            target_asset=cfg.target_asset,
            chain_id=cfg.chain_id,
            commitment=cfg.commitment,
        )
