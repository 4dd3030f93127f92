"""Tests for configuration loading and validation."""

from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from sentinel.config_loader import (
    AppConfig,
    ConfigLoader,
    EngineConfig,
    FeedConfig,
    HistoryConfig,
    VarianceBandsConfig,
    interpolate_env_vars,
    load_config,
    load_config_with_overrides,
    process_config_dict,
)
from sentinel.constants import CalibrationName, FeedMode, LogLevel


class TestEnvVarInterpolation:
    """Tests for environment variable interpolation."""

    def test_no_interpolation_needed(self) -> None:
        """Test that plain strings pass through unchanged."""
        assert interpolate_env_vars("hello") == "hello"
        assert interpolate_env_vars(123) == 123
        assert interpolate_env_vars(None) is None

    def test_simple_env_var(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test simple ${VAR} interpolation."""
        monkeypatch.setenv("TEST_VAR", "test_value")
        assert interpolate_env_vars("${TEST_VAR}") == "test_value"

    def test_env_var_with_default(self) -> None:
        """Test ${VAR:default} interpolation with missing var."""
        os.environ.pop("MISSING_VAR", None)
        assert interpolate_env_vars("${MISSING_VAR:default_value}") == "default_value"

    def test_env_var_with_default_when_set(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test ${VAR:default} uses actual value when set."""
        monkeypatch.setenv("SET_VAR", "actual_value")
        assert interpolate_env_vars("${SET_VAR:default_value}") == "actual_value"

    def test_missing_var_no_default(self) -> None:
        """Test ${VAR} with missing var returns empty string."""
        os.environ.pop("TOTALLY_MISSING", None)
        assert interpolate_env_vars("${TOTALLY_MISSING}") == ""


class TestProcessConfigDict:
    """Tests for recursive config dict processing."""

    def test_nested_dict(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NESTED_VAR", "nested_value")
        data = {"level1": {"level2": {"value": "${NESTED_VAR}"}}}
        result = process_config_dict(data)
        assert result["level1"]["level2"]["value"] == "nested_value"

    def test_list_processing(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LIST_VAR", "list_value")
        data = {"items": ["static", "${LIST_VAR}"]}
        result = process_config_dict(data)
        assert result["items"] == ["static", "list_value"]


class TestDefaults:
    """Default values match the reference calibration."""

    def test_engine_defaults(self) -> None:
        cfg = EngineConfig()
        assert (cfg.omega, cfg.alpha, cfg.beta) == (0.03, 0.12, 0.85)
        assert cfg.initial_variance == 0.01
        assert cfg.rsi_period == 14
        assert cfg.flow_window == 100
        assert cfg.calibration == CalibrationName.VARIANCE_BANDS
        assert (cfg.premium_floor, cfg.premium_cap) == (0.02, 0.06)

    def test_history_defaults(self) -> None:
        cfg = HistoryConfig()
        assert cfg.capacity == 45
        assert cfg.neutral_value == 50.0

    def test_stream_url(self) -> None:
        cfg = FeedConfig(symbol="paxgusdt")
        assert cfg.symbol == "PAXGUSDT"
        assert cfg.stream_url == "wss://stream.binance.com:9443/ws/paxgusdt@aggTrade"


class TestValidation:
    """Invalid calibrations are rejected at load time."""

    def test_zero_seed_variance_rejected(self) -> None:
        with pytest.raises(ValidationError):
            EngineConfig(initial_variance=0.0)

    def test_unit_persistence_rejected(self) -> None:
        with pytest.raises(ValidationError, match="alpha \\+ beta"):
            EngineConfig(alpha=0.2, beta=0.85)

    def test_zero_flow_window_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Window length"):
            EngineConfig(flow_window=0)

    def test_premium_bounds_order(self) -> None:
        with pytest.raises(ValidationError):
            EngineConfig(premium_floor=0.1, premium_cap=0.05)

    def test_variance_bands_must_be_ordered(self) -> None:
        with pytest.raises(ValidationError):
            VarianceBandsConfig(compression_variance=0.2, expansion_variance=0.16)

    def test_bad_symbol(self) -> None:
        with pytest.raises(ValidationError):
            FeedConfig(symbol="PAXG/USDT")

    def test_backoff_window(self) -> None:
        with pytest.raises(ValidationError):
            FeedConfig(reconnect_initial_delay=10.0, reconnect_max_delay=5.0)

    def test_zero_history_capacity(self) -> None:
        with pytest.raises(ValidationError):
            HistoryConfig(capacity=0)


class TestConfigLoader:
    """Tests for YAML loading."""

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            ConfigLoader(tmp_path / "nope.yaml").load()

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("")
        cfg = load_config(path)
        assert cfg == AppConfig()

    def test_none_path_gives_defaults(self) -> None:
        assert load_config(None) == AppConfig()

    def test_load_with_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SENTINEL_TEST_SYMBOL", "btcusdt")
        path = tmp_path / "config.yaml"
        path.write_text(
            "feed:\n"
            "  symbol: ${SENTINEL_TEST_SYMBOL}\n"
            "  mode: sim\n"
            "engine:\n"
            "  calibration: volatility_zscore\n"
            "  volatility_zscore:\n"
            "    shock_volatility: 0.5\n"
        )
        cfg = load_config(path)
        assert cfg.feed.symbol == "BTCUSDT"
        assert cfg.is_sim_mode
        assert cfg.engine.calibration == CalibrationName.VOLATILITY_ZSCORE
        assert cfg.engine.volatility_zscore.shock_volatility == 0.5

    def test_shipped_config_loads(self) -> None:
        path = Path(__file__).resolve().parents[1] / "config" / "config.yaml"
        cfg = load_config(path)
        assert cfg.engine == EngineConfig()
        assert cfg.history == HistoryConfig()

    def test_reload(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("history:\n  capacity: 10\n")
        loader = ConfigLoader(path)
        assert loader.config.history.capacity == 10
        path.write_text("history:\n  capacity: 20\n")
        assert loader.reload().history.capacity == 20


class TestOverrides:
    def test_no_overrides(self) -> None:
        assert load_config_with_overrides() == AppConfig()

    def test_overrides_applied(self) -> None:
        cfg = load_config_with_overrides(
            symbol="ethusdt",
            feed_mode="SIM",
            calibration="volatility_zscore",
            log_level="debug",
        )
        assert cfg.feed.symbol == "ETHUSDT"
        assert cfg.feed.mode == FeedMode.SIM
        assert cfg.engine.calibration == CalibrationName.VOLATILITY_ZSCORE
        assert cfg.environment.log_level == LogLevel.DEBUG

    def test_bad_symbol_override(self) -> None:
        with pytest.raises(ValidationError):
            load_config_with_overrides(symbol="bad symbol")
