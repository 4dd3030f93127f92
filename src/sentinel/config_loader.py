"""Configuration loader with Pydantic validation and environment variable interpolation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables at module level
load_dotenv(find_dotenv(usecwd=True))

from sentinel.constants import (
    BINANCE_WS_BASE_URL,
    BOX_MULTIPLIER,
    DEFAULT_SYMBOL,
    FLOW_WINDOW,
    GARCH_ALPHA,
    GARCH_BETA,
    GARCH_OMEGA,
    HISTORY_CAPACITY,
    HISTORY_NEUTRAL,
    INITIAL_VARIANCE,
    RISK_PREMIUM_CAP,
    RISK_PREMIUM_FLOOR,
    RISK_PREMIUM_PRICE_SCALE,
    RISK_PREMIUM_SLOPE,
    RSI_PERIOD,
    VOLATILITY_EPSILON,
    CalibrationName,
    FeedMode,
    LogLevel,
)


def interpolate_env_vars(value: Any) -> Any:
    """
    Interpolate environment variables in string values.

    Supports formats:
    - ${VAR_NAME} - replaced by the variable, empty string if unset
    - ${VAR_NAME:default} - optional with default value
    """
    if not isinstance(value, str):
        return value

    pattern = r"\$\{([^}:]+)(?::([^}]*))?\}"

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2)

        env_value = os.environ.get(var_name)

        if env_value is not None:
            return env_value
        elif default is not None:
            return default
        else:
            return ""

    return re.sub(pattern, replacer, value)


def process_config_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively process config dict to interpolate env vars."""
    result = {}
    for key, value in data.items():
        if isinstance(value, dict):
            result[key] = process_config_dict(value)
        elif isinstance(value, list):
            result[key] = [
                process_config_dict(item) if isinstance(item, dict) else interpolate_env_vars(item)
                for item in value
            ]
        else:
            result[key] = interpolate_env_vars(value)
    return result


# ============================================
# Pydantic Configuration Models
# ============================================


class EnvironmentConfig(BaseModel):
    """Environment and runtime settings."""

    log_level: LogLevel = LogLevel.INFO


class FeedConfig(BaseModel):
    """Trade feed configuration."""

    mode: FeedMode = FeedMode.BINANCE
    symbol: str = DEFAULT_SYMBOL
    base_url: str = BINANCE_WS_BASE_URL
    queue_size: int = 1000
    reconnect_initial_delay: float = 1.0
    reconnect_max_delay: float = 30.0

    # Sim feed
    sim_start_price: float = 2650.0
    sim_interval_seconds: float = 0.25
    sim_seed: int | None = None

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        """Validate symbol is a plain alphanumeric pair name."""
        if not re.match(r"^[A-Za-z0-9]+$", v):
            raise ValueError(f"Symbol must be alphanumeric, got: {v}")
        return v.upper()

    @field_validator("queue_size")
    @classmethod
    def validate_queue_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"Queue size must be positive, got: {v}")
        return v

    @field_validator(
        "reconnect_initial_delay", "reconnect_max_delay", "sim_start_price", "sim_interval_seconds"
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Value must be positive, got: {v}")
        return v

    @model_validator(mode="after")
    def validate_backoff(self) -> FeedConfig:
        """Validate the backoff window."""
        if self.reconnect_initial_delay > self.reconnect_max_delay:
            raise ValueError(
                f"reconnect_initial_delay ({self.reconnect_initial_delay}) must not exceed "
                f"reconnect_max_delay ({self.reconnect_max_delay})"
            )
        return self

    @property
    def stream_url(self) -> str:
        """Full aggTrade stream URL for the configured symbol."""
        return f"{self.base_url.rstrip('/')}/{self.symbol.lower()}@aggTrade"


class VarianceBandsConfig(BaseModel):
    """Regime bands on variance, vectors scaled off max(floor, volatility * scale)."""

    shock_variance: float = 0.38
    expansion_variance: float = 0.16
    compression_variance: float = 0.07
    range_floor: float = 1.2
    volatility_scale: float = 16.0
    near_multiplier: float = 2.5
    macro_multiplier: float = 7.0

    @model_validator(mode="after")
    def validate_band_order(self) -> VarianceBandsConfig:
        """Validate bands are strictly ordered."""
        if not (0 < self.compression_variance < self.expansion_variance < self.shock_variance):
            raise ValueError(
                "Variance bands must satisfy 0 < compression < expansion < shock, got: "
                f"{self.compression_variance}, {self.expansion_variance}, {self.shock_variance}"
            )
        return self


class VolatilityZScoreConfig(BaseModel):
    """Regime on volatility then |z-score|, vectors scaled off raw volatility."""

    shock_volatility: float = 0.08
    expansion_zscore: float = 1.5
    macro_multiplier: float = 2.5

    @field_validator("shock_volatility", "expansion_zscore", "macro_multiplier")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Value must be positive, got: {v}")
        return v


class EngineConfig(BaseModel):
    """Streaming statistics engine configuration."""

    # GARCH(1,1)
    omega: float = GARCH_OMEGA
    alpha: float = GARCH_ALPHA
    beta: float = GARCH_BETA
    initial_variance: float = INITIAL_VARIANCE
    volatility_epsilon: float = VOLATILITY_EPSILON

    # Risk premium
    premium_floor: float = RISK_PREMIUM_FLOOR
    premium_cap: float = RISK_PREMIUM_CAP
    premium_slope: float = RISK_PREMIUM_SLOPE
    premium_price_scale: float = RISK_PREMIUM_PRICE_SCALE

    # Oscillator
    rsi_period: int = RSI_PERIOD

    # Order flow
    flow_window: int = FLOW_WINDOW

    # Regime / vectors
    box_multiplier: float = BOX_MULTIPLIER
    calibration: CalibrationName = CalibrationName.VARIANCE_BANDS
    variance_bands: VarianceBandsConfig = Field(default_factory=VarianceBandsConfig)
    volatility_zscore: VolatilityZScoreConfig = Field(default_factory=VolatilityZScoreConfig)

    @field_validator("omega", "initial_variance", "volatility_epsilon", "premium_price_scale")
    @classmethod
    def validate_strictly_positive(cls, v: float) -> float:
        """Seeds and floors must be strictly positive."""
        if v <= 0:
            raise ValueError(f"Value must be strictly positive, got: {v}")
        return v

    @field_validator("alpha", "beta", "premium_slope", "box_multiplier")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"Value must be non-negative, got: {v}")
        return v

    @field_validator("rsi_period", "flow_window")
    @classmethod
    def validate_period(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Window length must be >= 1, got: {v}")
        return v

    @model_validator(mode="after")
    def validate_model(self) -> EngineConfig:
        """Validate persistence and premium bounds."""
        if self.alpha + self.beta >= 1:
            raise ValueError(
                f"alpha + beta must be < 1 for a mean-reverting variance, "
                f"got: {self.alpha} + {self.beta}"
            )
        if self.premium_floor > self.premium_cap:
            raise ValueError(
                f"premium_floor ({self.premium_floor}) must not exceed "
                f"premium_cap ({self.premium_cap})"
            )
        return self


class HistoryConfig(BaseModel):
    """RSI history buffer configuration."""

    capacity: int = HISTORY_CAPACITY
    neutral_value: float = HISTORY_NEUTRAL
    sample_interval_seconds: float = 1.0
    align_to_minute: bool = True

    @field_validator("capacity")
    @classmethod
    def validate_capacity(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Capacity must be >= 1, got: {v}")
        return v

    @field_validator("sample_interval_seconds")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Sample interval must be positive, got: {v}")
        return v

    @field_validator("neutral_value")
    @classmethod
    def validate_neutral(cls, v: float) -> float:
        if not 0 <= v <= 100:
            raise ValueError(f"Neutral value must be within [0, 100], got: {v}")
        return v


class AppConfig(BaseModel):
    """Root application configuration."""

    environment: EnvironmentConfig = Field(default_factory=EnvironmentConfig)
    feed: FeedConfig = Field(default_factory=FeedConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)

    @property
    def is_sim_mode(self) -> bool:
        """Check if using the simulated feed."""
        return self.feed.mode == FeedMode.SIM


# ============================================
# Configuration Loader
# ============================================


class ConfigLoader:
    """Load and validate configuration from YAML files with env var interpolation."""

    def __init__(self, config_path: str | Path) -> None:
        """
        Initialize config loader.

        Args:
            config_path: Path to the YAML configuration file.
        """
        self.config_path = Path(config_path)
        self._config: AppConfig | None = None

    def load(self) -> AppConfig:
        """
        Load and validate configuration.

        Returns:
            Validated AppConfig instance.

        Raises:
            FileNotFoundError: If config file doesn't exist.
            yaml.YAMLError: If YAML is invalid.
            pydantic.ValidationError: If config validation fails.
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)

        if raw_config is None:
            raw_config = {}

        processed_config = process_config_dict(raw_config)

        self._config = AppConfig.model_validate(processed_config)

        return self._config

    @property
    def config(self) -> AppConfig:
        """Get loaded config, loading if necessary."""
        if self._config is None:
            return self.load()
        return self._config

    def reload(self) -> AppConfig:
        """Force reload configuration from disk."""
        self._config = None
        return self.load()


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to the YAML configuration file. ``None`` returns defaults.

    Returns:
        Validated AppConfig instance.
    """
    if config_path is None:
        return AppConfig()
    loader = ConfigLoader(config_path)
    return loader.load()


def load_config_with_overrides(
    config_path: str | Path | None = None,
    *,
    symbol: str | None = None,
    feed_mode: str | None = None,
    calibration: str | None = None,
    log_level: str | None = None,
) -> AppConfig:
    """
    Load configuration with CLI overrides.

    Args:
        config_path: Path to the YAML configuration file.
        symbol: Override traded symbol.
        feed_mode: Override feed mode (binance or sim).
        calibration: Override regime calibration.
        log_level: Override log level.

    Returns:
        Validated AppConfig instance with overrides applied.
    """
    config = load_config(config_path)

    updates: dict[str, Any] = {}
    feed_updates: dict[str, Any] = {}

    if symbol is not None:
        feed_updates["symbol"] = symbol

    if feed_mode is not None:
        feed_updates["mode"] = FeedMode(feed_mode.lower())

    if feed_updates:
        # Re-validate so the symbol override goes through the same checks as YAML
        updates["feed"] = FeedConfig.model_validate({**config.feed.model_dump(), **feed_updates})

    if calibration is not None:
        calibration_enum = CalibrationName(calibration.lower())
        updates["engine"] = config.engine.model_copy(update={"calibration": calibration_enum})

    if log_level is not None:
        level_enum = LogLevel(log_level.upper())
        updates["environment"] = config.environment.model_copy(update={"log_level": level_enum})

    if updates:
        return config.model_copy(update=updates)

    return config
