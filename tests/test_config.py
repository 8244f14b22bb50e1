"""
Tests for Settings loading, config validation and pool overrides.
"""

import os
import pytest
from dataclasses import replace

from lp_rebalancer.config.config import Settings
from lp_rebalancer.config.config_validator import ValidationSeverity, validate_and_log, validate_config
from lp_rebalancer.config.pool_overrides import PoolOverride, load_pool_overrides
from lp_rebalancer.core.errors import ConfigurationError

BASE_ENV = {
    "LPR_WALLET_ADDRESS": "Wallet11111111111111111111111111111111111",
    "LPR_MARKET_DATA_URL": "https://crawl.test",
    "LPR_LOG_FILE": "",
}


@pytest.fixture
def env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("LPR_"):
            monkeypatch.delenv(key, raising=False)
    for key, value in BASE_ENV.items():
        monkeypatch.setenv(key, value)
    return monkeypatch


class TestSettingsLoad:

    def test_defaults(self, env):
        cfg = Settings.load()
        assert cfg.safety_margin == 0.9
        assert cfg.max_capital_per_position == 1.0
        assert cfg.retry_max_attempts == 3
        assert cfg.max_positions == 1
        assert cfg.log_file is None
        assert cfg.dry_run is False

    def test_env_overrides(self, env):
        env.setenv("LPR_SAFETY_MARGIN", "0.95")
        env.setenv("LPR_MAX_POSITIONS", "3")
        env.setenv("LPR_DRY_RUN", "yes")
        cfg = Settings.load()
        assert cfg.safety_margin == 0.95
        assert cfg.max_positions == 3
        assert cfg.dry_run is True

    @pytest.mark.parametrize("key, value", [
        ("LPR_SAFETY_MARGIN", "0"),
        ("LPR_SAFETY_MARGIN", "1.5"),
        ("LPR_MAX_CAPITAL_PER_POSITION", "0"),
        ("LPR_RETRY_MAX_ATTEMPTS", "0"),
        ("LPR_BASE_SLIPPAGE_BPS", "2000"),
        ("LPR_MIN_AMOUNT_FACTOR", "0"),
        ("LPR_NOTIFY_TYPE", "pager"),
        ("LPR_HTTP_TIMEOUT", "nan"),
    ])
    def test_invalid_values(self, env, key, value):
        env.setenv(key, value)
        with pytest.raises(ConfigurationError):
            Settings.load()

    def test_wallet_required(self, env):
        env.delenv("LPR_WALLET_ADDRESS")
        with pytest.raises(ConfigurationError):
            Settings.load()

    def test_dump_masks_private_key(self, env):
        env.setenv("LPR_PRIVATE_KEY", "secret")
        assert Settings.load().dump()["private_key"] == "***"


class TestValidator:

    def test_live_mode_requires_key(self, env):
        result = validate_config(Settings.load())
        fields = {i.field for i in result.get_errors()}
        assert "private_key" in fields
        assert not result.valid

    def test_live_mode_needs_no_program_plugin(self, env):
        env.setenv("LPR_PRIVATE_KEY", "key")
        result = validate_config(Settings.load())
        assert "liquidity_program" not in {i.field for i in result.issues}

    def test_program_plugin_must_be_import_path(self, env):
        env.setenv("LPR_PRIVATE_KEY", "key")
        env.setenv("LPR_LIQUIDITY_PROGRAM", "mypools")
        result = validate_config(Settings.load())
        assert "liquidity_program" in {i.field for i in result.get_errors()}

    def test_dry_run_without_key_is_valid(self, env):
        env.setenv("LPR_DRY_RUN", "1")
        env.setenv("LPR_NOTIFY_ENABLED", "0")
        assert validate_and_log(Settings.load())

    def test_flat_escalation_warns(self, env):
        env.setenv("LPR_DRY_RUN", "1")
        cfg = replace(Settings.load(), slippage_step_bps=0, amount_reduction_step=0.0)
        result = validate_config(cfg)
        assert any(i.field == "slippage_step_bps" and i.severity is ValidationSeverity.WARNING
                   for i in result.issues)
        assert result.valid

    def test_out_of_range(self, env):
        env.setenv("LPR_DRY_RUN", "1")
        cfg = replace(Settings.load(), max_positions=50)
        result = validate_config(cfg)
        assert [i.field for i in result.get_errors()] == ["max_positions"]

    def test_telegram_requires_chat_id(self, env):
        env.setenv("LPR_DRY_RUN", "1")
        env.setenv("LPR_NOTIFY_URL", "https://api.telegram.org/botX/sendMessage")
        result = validate_config(Settings.load())
        assert "notify_chat_id" in {i.field for i in result.get_errors()}


class TestPoolOverrides:

    def test_missing_file(self, tmp_path):
        assert load_pool_overrides(str(tmp_path / "nope.yaml")) == {}

    def test_parses_entries(self, tmp_path):
        path = tmp_path / "pools.yaml"
        path.write_text(
            "POOL_A:\n  exclude: true\n"
            "POOL_B:\n  max_capital: 0.25\n"
            "POOL_C: not-a-mapping\n"
            "POOL_D:\n  max_capital: lots\n",
            encoding="utf-8",
        )
        overrides = load_pool_overrides(str(path))
        assert overrides == {
            "POOL_A": PoolOverride(exclude=True),
            "POOL_B": PoolOverride(max_capital=0.25),
            "POOL_D": PoolOverride(),
        }

    def test_unreadable_yaml(self, tmp_path):
        path = tmp_path / "pools.yaml"
        path.write_text("a: [unclosed", encoding="utf-8")
        assert load_pool_overrides(str(path)) == {}
