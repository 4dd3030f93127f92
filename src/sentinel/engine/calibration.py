"""Regime and vector-target calibrations.

Two calibrations exist and they are never mixed:

- VARIANCE_BANDS: regime from the variance level itself
  (shock > expansion > compression, stable otherwise); vector targets
  scale off ``max(range_floor, volatility * volatility_scale)``.
- VOLATILITY_ZSCORE: regime from volatility, then the absolute z-score
  (mean reversion otherwise); vector targets scale off raw volatility.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from sentinel.config_loader import EngineConfig, VarianceBandsConfig, VolatilityZScoreConfig
from sentinel.constants import FLOAT_MAX, CalibrationName, Regime


def _level(value: float) -> float:
    """Clamp a target level to the finite range."""
    return min(max(value, -FLOAT_MAX), FLOAT_MAX)


@dataclass(frozen=True)
class VectorTargets:
    """Projected support/resistance levels."""

    bull: float
    bear: float
    macro_bull: float
    macro_bear: float

    def to_dict(self) -> dict:
        return {
            "bull": self.bull,
            "bear": self.bear,
            "macro_bull": self.macro_bull,
            "macro_bear": self.macro_bear,
        }


class Calibration(Protocol):
    """Maps the current volatility state to a regime and vector targets."""

    name: CalibrationName

    def classify(self, variance: float, volatility: float, z_score: float) -> Regime: ...

    def vectors(self, price: float, volatility: float) -> VectorTargets: ...


class VarianceBandsCalibration:
    """Four-state calibration on the variance level."""

    name = CalibrationName.VARIANCE_BANDS

    def __init__(self, config: VarianceBandsConfig, box: float) -> None:
        self.config = config
        self.box = box

    def classify(self, variance: float, volatility: float, z_score: float) -> Regime:
        if variance > self.config.shock_variance:
            return Regime.VOLATILITY_SHOCK
        if variance > self.config.expansion_variance:
            return Regime.LIQUIDITY_EXPANSION
        if variance < self.config.compression_variance:
            return Regime.INSTITUTIONAL_COMPRESSION
        return Regime.STABLE_ACCUMULATION

    def vectors(self, price: float, volatility: float) -> VectorTargets:
        m = max(self.config.range_floor, volatility * self.config.volatility_scale)
        near = m * self.box * self.config.near_multiplier
        macro = m * self.box * self.config.macro_multiplier
        return VectorTargets(
            bull=_level(price + near),
            bear=_level(price - near),
            macro_bull=_level(price + macro),
            macro_bear=_level(price - macro),
        )


class VolatilityZScoreCalibration:
    """Three-state calibration on volatility and z-score."""

    name = CalibrationName.VOLATILITY_ZSCORE

    def __init__(self, config: VolatilityZScoreConfig, box: float) -> None:
        self.config = config
        self.box = box

    def classify(self, variance: float, volatility: float, z_score: float) -> Regime:
        if volatility > self.config.shock_volatility:
            return Regime.VOLATILITY_SHOCK
        if abs(z_score) > self.config.expansion_zscore:
            return Regime.LIQUIDITY_EXPANSION
        return Regime.MEAN_REVERSION

    def vectors(self, price: float, volatility: float) -> VectorTargets:
        # Order-block levels: bullish below price, bearish above
        near = volatility * self.box
        macro = volatility * self.config.macro_multiplier
        return VectorTargets(
            bull=_level(price - near),
            bear=_level(price + near),
            macro_bull=_level(price - macro),
            macro_bear=_level(price + macro),
        )


def build_calibration(config: EngineConfig) -> Calibration:
    """Create the calibration selected in the engine config."""
    if config.calibration == CalibrationName.VARIANCE_BANDS:
        return VarianceBandsCalibration(config.variance_bands, config.box_multiplier)
    if config.calibration == CalibrationName.VOLATILITY_ZSCORE:
        return VolatilityZScoreCalibration(config.volatility_zscore, config.box_multiplier)
    raise ValueError(f"Unknown calibration: {config.calibration}")


def regimes_for(name: CalibrationName) -> tuple[Regime, ...]:
    """Closed set of regimes a calibration can emit."""
    if name == CalibrationName.VARIANCE_BANDS:
        return (
            Regime.VOLATILITY_SHOCK,
            Regime.LIQUIDITY_EXPANSION,
            Regime.INSTITUTIONAL_COMPRESSION,
            Regime.STABLE_ACCUMULATION,
        )
    return (
        Regime.VOLATILITY_SHOCK,
        Regime.LIQUIDITY_EXPANSION,
        Regime.MEAN_REVERSION,
    )
