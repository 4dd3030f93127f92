"""Engine Module - Streaming statistics and RSI history."""

from sentinel.engine.calibration import VectorTargets, build_calibration
from sentinel.engine.history import HistoryBuffer, HistorySampler
from sentinel.engine.stats_engine import (
    ArithmeticDegenerate,
    EngineState,
    InvalidTick,
    Snapshot,
    StealthCounts,
    StreamingStatsEngine,
    TickCounts,
)

__all__ = [
    "ArithmeticDegenerate",
    "EngineState",
    "HistoryBuffer",
    "HistorySampler",
    "InvalidTick",
    "Snapshot",
    "StealthCounts",
    "StreamingStatsEngine",
    "TickCounts",
    "VectorTargets",
    "build_calibration",
]
