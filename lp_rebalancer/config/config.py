"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from lp_rebalancer.core.context import NATIVE_MINT
from lp_rebalancer.core.errors import ConfigurationError

load_dotenv()


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "y"}


@dataclass(frozen=True)
class Settings:
    # Endpoints
    rpc_url: str
    swap_api_url: str
    market_data_url: str
    profile_api_url: str
    position_indexer_url: str | None
    liquidity_program: str | None  # "module:factory" import path
    # Identity
    wallet_address: str
    private_key: str | None
    target_asset: str
    chain_id: str
    commitment: str
    # Discovery
    rank_key: str
    rank_page: int
    pool_label: str
    volume_liquidity_ratio: float
    max_positions: int
    # Capital allocation
    safety_margin: float
    max_capital_per_position: float
    balance_reserve: float
    max_paired_amount: float
    # Retry / escalation
    retry_max_attempts: int
    retry_delay_sec: float
    base_slippage_bps: int
    slippage_step_bps: int
    max_slippage_bps: int
    base_resource_ceiling: int
    resource_ceiling_step: int
    max_resource_ceiling: int
    amount_reduction_step: float
    min_amount_factor: float
    # Pacing / timeouts
    pacing_delay_sec: float
    quote_timeout_sec: float
    http_timeout: float
    confirm_timeout_sec: float
    cycle_interval_sec: float
    dry_run: bool
    # Notifications
    notify_url: str | None
    notify_type: str  # generic, slack, discord, telegram
    notify_chat_id: str | None
    notify_enabled: bool
    # Observability
    metrics_port: int
    log_file: str | None
    log_level: str
    pool_overrides_path: str

    def dump(self) -> dict:
        """Return a dict of settings for sanity checks/logging (secrets masked)."""
        data = self.__dict__.copy()
        if data.get("private_key"):
            data["private_key"] = "***"
        return data

    @classmethod
    def load(cls) -> "Settings":
        def _int_env(key: str, default: int) -> int:
            raw = os.getenv(key)
            if raw is None or raw == "":
                return default
            return int(raw)

        def _float_env(key: str, default: float) -> float:
            raw = os.getenv(key)
            if raw is None or raw == "":
                return default
            return float(raw)

        cfg = cls(
            rpc_url=os.getenv("LPR_RPC_URL", "https://api.mainnet-beta.solana.com"),
            swap_api_url=os.getenv("LPR_SWAP_API_URL", "https://lite-api.jup.ag"),
            market_data_url=os.getenv("LPR_MARKET_DATA_URL", ""),
            profile_api_url=os.getenv("LPR_PROFILE_API_URL", "https://api.dexscreener.com"),
            position_indexer_url=os.getenv("LPR_POSITION_INDEXER_URL"),
            liquidity_program=os.getenv("LPR_LIQUIDITY_PROGRAM"),
            wallet_address=os.getenv("LPR_WALLET_ADDRESS", ""),
            private_key=os.getenv("LPR_PRIVATE_KEY"),
            target_asset=os.getenv("LPR_TARGET_ASSET", NATIVE_MINT),
            chain_id=os.getenv("LPR_CHAIN_ID", "solana"),
            commitment=os.getenv("LPR_COMMITMENT", "confirmed"),
            rank_key=os.getenv("LPR_RANK_KEY", "trendingScoreM5"),
            rank_page=_int_env("LPR_RANK_PAGE", 1),
            pool_label=os.getenv("LPR_POOL_LABEL", "DYN2"),
            volume_liquidity_ratio=_float_env("LPR_VOLUME_LIQUIDITY_RATIO", 1.0),
            max_positions=_int_env("LPR_MAX_POSITIONS", 1),
            safety_margin=_float_env("LPR_SAFETY_MARGIN", 0.9),
            max_capital_per_position=_float_env("LPR_MAX_CAPITAL_PER_POSITION", 1.0),
            balance_reserve=_float_env("LPR_BALANCE_RESERVE", 0.0),
            max_paired_amount=_float_env("LPR_MAX_PAIRED_AMOUNT", 0.5),
            retry_max_attempts=_int_env("LPR_RETRY_MAX_ATTEMPTS", 3),
            retry_delay_sec=_float_env("LPR_RETRY_DELAY_SEC", 2.0),
            base_slippage_bps=_int_env("LPR_BASE_SLIPPAGE_BPS", 50),
            slippage_step_bps=_int_env("LPR_SLIPPAGE_STEP_BPS", 200),
            max_slippage_bps=_int_env("LPR_MAX_SLIPPAGE_BPS", 1000),
            base_resource_ceiling=_int_env("LPR_BASE_MAX_ACCOUNTS", 20),
            resource_ceiling_step=_int_env("LPR_MAX_ACCOUNTS_STEP", 5),
            max_resource_ceiling=_int_env("LPR_MAX_ACCOUNTS_CAP", 40),
            amount_reduction_step=_float_env("LPR_AMOUNT_REDUCTION_STEP", 0.01),
            min_amount_factor=_float_env("LPR_MIN_AMOUNT_FACTOR", 0.9),
            pacing_delay_sec=_float_env("LPR_PACING_DELAY_SEC", 3.0),
            quote_timeout_sec=_float_env("LPR_QUOTE_TIMEOUT_SEC", 10.0),
            http_timeout=_float_env("LPR_HTTP_TIMEOUT", 15.0),
            confirm_timeout_sec=_float_env("LPR_CONFIRM_TIMEOUT_SEC", 60.0),
            cycle_interval_sec=_float_env("LPR_CYCLE_INTERVAL_SEC", 1800.0),
            dry_run=env_bool("LPR_DRY_RUN", False),
            notify_url=os.getenv("LPR_NOTIFY_URL"),
            notify_type=os.getenv("LPR_NOTIFY_TYPE", "telegram"),
            notify_chat_id=os.getenv("LPR_NOTIFY_CHAT_ID"),
            notify_enabled=env_bool("LPR_NOTIFY_ENABLED", True),
            metrics_port=_int_env("LPR_METRICS_PORT", 0),
            log_file=os.getenv("LPR_LOG_FILE", "lprebal.log") or None,
            log_level=os.getenv("LPR_LOG_LEVEL", "INFO"),
            pool_overrides_path=os.getenv("LPR_POOL_OVERRIDES", "configs/pools.yaml"),
        )
        _sanity_check(cfg)
        cfg._validate()
        return cfg

    def _validate(self) -> None:
        if not self.wallet_address:
            raise ConfigurationError("LPR_WALLET_ADDRESS must be set")
        if not self.market_data_url:
            raise ConfigurationError("LPR_MARKET_DATA_URL must be set")
        for name in ("safety_margin", "max_capital_per_position", "volume_liquidity_ratio",
                     "retry_delay_sec", "quote_timeout_sec", "http_timeout", "confirm_timeout_sec"):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                raise ConfigurationError(f"{name} must be a finite, non-negative number")
        if not 0 < self.safety_margin <= 1:
            raise ConfigurationError("LPR_SAFETY_MARGIN must be in (0, 1]")
        if self.max_capital_per_position <= 0:
            raise ConfigurationError("LPR_MAX_CAPITAL_PER_POSITION must be > 0")
        if self.max_positions <= 0:
            raise ConfigurationError("LPR_MAX_POSITIONS must be > 0")
        if self.retry_max_attempts <= 0:
            raise ConfigurationError("LPR_RETRY_MAX_ATTEMPTS must be > 0")
        if self.base_slippage_bps < 0 or self.slippage_step_bps < 0:
            raise ConfigurationError("Slippage settings must be >= 0")
        if self.base_slippage_bps > self.max_slippage_bps:
            raise ConfigurationError("LPR_BASE_SLIPPAGE_BPS must be <= LPR_MAX_SLIPPAGE_BPS")
        if self.base_resource_ceiling > self.max_resource_ceiling:
            raise ConfigurationError("LPR_BASE_MAX_ACCOUNTS must be <= LPR_MAX_ACCOUNTS_CAP")
        if not 0 < self.min_amount_factor <= 1:
            raise ConfigurationError("LPR_MIN_AMOUNT_FACTOR must be in (0, 1]")
        if self.amount_reduction_step < 0:
            raise ConfigurationError("LPR_AMOUNT_REDUCTION_STEP must be >= 0")
        if self.notify_type not in {"generic", "slack", "discord", "telegram"}:
            raise ConfigurationError(f"Unsupported LPR_NOTIFY_TYPE: {self.notify_type}")

        if self.max_slippage_bps > 2000:
            logging.getLogger("lprebal").warning(
                f"WARNING: LPR_MAX_SLIPPAGE_BPS is {self.max_slippage_bps} ({self.max_slippage_bps / 100:.1f}%). "
                "Retries may accept very poor execution."
            )
        if self.pacing_delay_sec < 1.0:
            logging.getLogger("lprebal").warning(
                "WARNING: LPR_PACING_DELAY_SEC below 1s may collide on the wallet's freshness token."
            )


def _sanity_check(cfg: Settings) -> None:
    """
    Log critical settings once at startup so overrides are obvious.
    """
    logger = logging.getLogger("lprebal")
    payload = {
        "event": "config_loaded",
        "wallet": cfg.wallet_address,
        "rank_key": cfg.rank_key,
        "max_positions": cfg.max_positions,
        "safety_margin": cfg.safety_margin,
        "max_capital_per_position": cfg.max_capital_per_position,
        "retry_max_attempts": cfg.retry_max_attempts,
        "dry_run": cfg.dry_run,
    }
    logger.info(json.dumps(payload))
