"""Streaming statistics engine.

Ingests one trade at a time and carries forward:
- GARCH(1,1) variance: omega + alpha * delta^2 + beta * variance
- Wilder-smoothed average gain / loss for the RSI
- Up/down tick counters and buy/sell aggressor counters
- A rolling window of the last N aggressor sides (order flow)

State is cumulative for the lifetime of the engine. Nothing resets it
except ``reset()``, which exists for tests.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime

from sentinel.config_loader import EngineConfig
from sentinel.constants import FLOAT_MAX, Regime
from sentinel.data.market_data import Tick
from sentinel.engine.calibration import Calibration, VectorTargets, build_calibration

logger = logging.getLogger(__name__)


class InvalidTick(ValueError):
    """Tick rejected before any state was touched."""


class ArithmeticDegenerate(ArithmeticError):
    """A derived statistic came out non-finite or the variance collapsed."""


@dataclass(frozen=True)
class TickCounts:
    """Ticks with a positive / negative price change."""

    up: int = 0
    down: int = 0

    @property
    def total(self) -> int:
        return self.up + self.down


@dataclass(frozen=True)
class StealthCounts:
    """Ticks by aggressor side."""

    buy: int = 0
    sell: int = 0

    @property
    def imbalance(self) -> float:
        """(buy - sell) / total, 0 when nothing has traded."""
        total = self.buy + self.sell
        if total == 0:
            return 0.0
        return (self.buy - self.sell) / total


@dataclass(frozen=True)
class FlowTrade:
    """One entry of the rolling order-flow window."""

    is_buy: bool
    timestamp: datetime | None = None


@dataclass
class EngineState:
    """Mutable state carried between ticks."""

    variance: float
    last_price: float | None = None
    avg_gain: float = 0.0
    avg_loss: float = 0.0
    tick_counts: TickCounts = field(default_factory=TickCounts)
    stealth_counts: StealthCounts = field(default_factory=StealthCounts)
    flow: deque[FlowTrade] = field(default_factory=deque)
    flow_counts: StealthCounts = field(default_factory=StealthCounts)
    tick_total: int = 0


@dataclass(frozen=True)
class Snapshot:
    """Derived metrics after one tick."""

    price: float
    prev_price: float | None
    delta: float
    variance: float
    volatility: float
    z_score: float
    risk_premium: float
    regime: Regime
    vectors: VectorTargets
    rsi: float
    tick_counts: TickCounts
    stealth_counts: StealthCounts
    flow_counts: StealthCounts
    timestamp: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "price": self.price,
            "prev_price": self.prev_price,
            "delta": self.delta,
            "variance": self.variance,
            "volatility": self.volatility,
            "z_score": self.z_score,
            "risk_premium": self.risk_premium,
            "regime": self.regime.value,
            "vectors": self.vectors.to_dict(),
            "rsi": self.rsi,
            "ticks_up": self.tick_counts.up,
            "ticks_down": self.tick_counts.down,
            "stealth_buy": self.stealth_counts.buy,
            "stealth_sell": self.stealth_counts.sell,
            "flow_buy": self.flow_counts.buy,
            "flow_sell": self.flow_counts.sell,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


def compute_rsi(avg_gain: float, avg_loss: float) -> float:
    """
    RSI from smoothed gain/loss.

    A zero average loss substitutes a divisor of 1, so the result stays
    finite and inside [0, 100].
    """
    rs = avg_gain / (avg_loss or 1.0)
    return 100.0 - 100.0 / (1.0 + rs)


def wilder_average(previous: float, value: float, period: int) -> float:
    """Wilder smoothing step, saturating at the largest finite float."""
    smoothed = (previous * (period - 1) + value) / period
    if math.isinf(smoothed):
        # Partial sum overflowed; divide first
        smoothed = min(previous / period * (period - 1) + value / period, FLOAT_MAX)
    return smoothed


class StreamingStatsEngine:
    """
    Incremental volatility / momentum model over a single trade stream.

    Ticks must be applied in arrival order: the variance recurrence is
    not commutative. The engine performs no I/O and does no locking; the
    caller serializes access.
    """

    def __init__(self, config: EngineConfig | None = None) -> None:
        """
        Initialize the engine.

        Args:
            config: Engine coefficients and calibration. Defaults apply when omitted.
        """
        self.config = config or EngineConfig()
        self.calibration: Calibration = build_calibration(self.config)
        self._state = self._seed_state()
        self._last_snapshot: Snapshot | None = None

    def _seed_state(self) -> EngineState:
        return EngineState(
            variance=self.config.initial_variance,
            flow=deque(maxlen=self.config.flow_window),
        )

    @property
    def state(self) -> EngineState:
        """Copy of the current state."""
        flow = self._state.flow
        return replace(self._state, flow=deque(flow, maxlen=flow.maxlen))

    @property
    def last_snapshot(self) -> Snapshot | None:
        return self._last_snapshot

    @property
    def rsi(self) -> float:
        """Current RSI (0 before the first price change, per the zero seeds)."""
        return compute_rsi(self._state.avg_gain, self._state.avg_loss)

    def reset(self) -> None:
        """Re-seed all state. Test-only: a live session never resets."""
        logger.debug("Engine state reset")
        self._state = self._seed_state()
        self._last_snapshot = None

    def update(self, tick: Tick) -> Snapshot:
        """
        Apply one tick and return the resulting snapshot.

        Args:
            tick: Trade with a finite, positive price.

        Returns:
            Snapshot derived from the updated state.

        Raises:
            InvalidTick: If the price is not finite and positive. State is unchanged.
            ArithmeticDegenerate: If a derived value is non-finite. The saturating
                arithmetic keeps this from happening for any valid tick.
        """
        self._validate(tick)

        cfg = self.config
        state = self._state
        price = float(tick.price)

        # 1. Delta (zero on the first tick)
        prev_price = state.last_price
        delta = price - prev_price if prev_price is not None else 0.0

        # 2. GARCH(1,1), saturating so a huge gap cannot overflow to inf
        shock = min(delta * delta, FLOAT_MAX)
        variance = min(cfg.omega + cfg.alpha * shock + cfg.beta * state.variance, FLOAT_MAX)

        # 3. Volatility / z-score
        volatility = math.sqrt(variance) if variance > 0 else 0.0
        z_score = delta / max(volatility, cfg.volatility_epsilon)

        # 4. Risk premium, price-level dependent
        price_scale = price * cfg.premium_price_scale
        if price_scale > 0:
            ratio = min(volatility / price_scale, FLOAT_MAX)
            premium = cfg.premium_floor + ratio * cfg.premium_slope
        else:
            # Subnormal prices underflow the scale to zero
            premium = cfg.premium_cap
        risk_premium = min(max(premium, cfg.premium_floor), cfg.premium_cap)

        # 5-6. Regime and vectors
        regime = self.calibration.classify(variance, volatility, z_score)
        vectors = self.calibration.vectors(price, volatility)

        # 7. Wilder RSI
        period = cfg.rsi_period
        gain = max(delta, 0.0)
        loss = max(-delta, 0.0)
        avg_gain = wilder_average(state.avg_gain, gain, period)
        avg_loss = wilder_average(state.avg_loss, loss, period)
        rsi = compute_rsi(avg_gain, avg_loss)

        self._check_finite(variance, volatility, z_score, avg_gain, avg_loss, rsi, vectors)

        # 8. Counters
        counts = state.tick_counts
        if delta > 0:
            counts = TickCounts(up=counts.up + 1, down=counts.down)
        elif delta < 0:
            counts = TickCounts(up=counts.up, down=counts.down + 1)

        stealth = state.stealth_counts
        if tick.is_buyer_maker:
            stealth = StealthCounts(buy=stealth.buy, sell=stealth.sell + 1)
        else:
            stealth = StealthCounts(buy=stealth.buy + 1, sell=stealth.sell)

        # Rolling order-flow window: count the trade that falls out
        flow = state.flow
        is_buy = not tick.is_buyer_maker
        flow_buy = state.flow_counts.buy + int(is_buy)
        flow_sell = state.flow_counts.sell + int(not is_buy)
        if flow.maxlen is not None and len(flow) == flow.maxlen:
            if flow[0].is_buy:
                flow_buy -= 1
            else:
                flow_sell -= 1
        flow_counts = StealthCounts(buy=flow_buy, sell=flow_sell)

        # 9. Commit
        flow.append(FlowTrade(is_buy=is_buy, timestamp=tick.timestamp))
        self._state = EngineState(
            variance=variance,
            last_price=price,
            avg_gain=avg_gain,
            avg_loss=avg_loss,
            tick_counts=counts,
            stealth_counts=stealth,
            flow=flow,
            flow_counts=flow_counts,
            tick_total=state.tick_total + 1,
        )

        snapshot = Snapshot(
            price=price,
            prev_price=prev_price,
            delta=delta,
            variance=variance,
            volatility=volatility,
            z_score=z_score,
            risk_premium=risk_premium,
            regime=regime,
            vectors=vectors,
            rsi=rsi,
            tick_counts=counts,
            stealth_counts=stealth,
            flow_counts=flow_counts,
            timestamp=tick.timestamp,
        )
        self._last_snapshot = snapshot

        logger.debug(
            f"tick #{self._state.tick_total} px={price} d={delta:+.4f} "
            f"var={variance:.6f} z={z_score:+.3f} rsi={rsi:.1f} {regime.value}"
        )
        return snapshot

    @staticmethod
    def _validate(tick: Tick) -> None:
        price = tick.price
        if isinstance(price, bool) or not isinstance(price, (int, float)):
            raise InvalidTick(f"Price must be a real number, got: {price!r}")
        if not math.isfinite(price) or price <= 0:
            raise InvalidTick(f"Price must be finite and positive, got: {price!r}")
        if not isinstance(tick.is_buyer_maker, bool):
            raise InvalidTick(f"is_buyer_maker must be a bool, got: {tick.is_buyer_maker!r}")

    @staticmethod
    def _check_finite(
        variance: float,
        volatility: float,
        z_score: float,
        avg_gain: float,
        avg_loss: float,
        rsi: float,
        vectors: VectorTargets,
    ) -> None:
        if not (math.isfinite(variance) and variance > 0):
            raise ArithmeticDegenerate(f"Variance degenerated to {variance!r}")
        values = {
            "volatility": volatility,
            "z_score": z_score,
            "avg_gain": avg_gain,
            "avg_loss": avg_loss,
            "rsi": rsi,
            "bull": vectors.bull,
            "bear": vectors.bear,
            "macro_bull": vectors.macro_bull,
            "macro_bear": vectors.macro_bear,
        }
        for name, value in values.items():
            if not math.isfinite(value):
                raise ArithmeticDegenerate(f"{name} is non-finite: {value!r}")
