"""RSI history buffer and its wall-clock sampling gate."""

from __future__ import annotations

import logging
import math
from collections import deque
from collections.abc import Iterator
from datetime import datetime

from sentinel.constants import HISTORY_CAPACITY, HISTORY_NEUTRAL

logger = logging.getLogger(__name__)


class HistoryBuffer:
    """
    Fixed-capacity FIFO of RSI samples, oldest first.

    Starts full of the neutral value so the chart is deterministic
    before the first real samples arrive.
    """

    def __init__(self, capacity: int = HISTORY_CAPACITY, fill: float = HISTORY_NEUTRAL):
        if capacity < 1:
            raise ValueError(f"Capacity must be >= 1, got: {capacity}")
        self.capacity = capacity
        self._values: deque[float] = deque([float(fill)] * capacity, maxlen=capacity)
        self._sample_count = 0

    def sample(self, rsi: float) -> None:
        """Evict the oldest value and append ``rsi``."""
        if not math.isfinite(rsi):
            raise ValueError(f"History sample must be finite, got: {rsi!r}")
        self._values.append(float(rsi))
        self._sample_count += 1

    def values(self) -> list[float]:
        return list(self._values)

    @property
    def latest(self) -> float:
        return self._values[-1]

    @property
    def sample_count(self) -> int:
        """Samples taken since construction (not capped by capacity)."""
        return self._sample_count

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[float]:
        return iter(self._values)


class HistorySampler:
    """
    Decides when the history buffer takes a sample.

    Unaligned: every call is due. Aligned to the minute: due once per
    minute, at second 0 or, when the timer skipped second 0, on the
    first check after the minute rolled over.
    """

    def __init__(
        self,
        buffer: HistoryBuffer,
        interval_seconds: float = 1.0,
        align_to_minute: bool = True,
    ):
        self.buffer = buffer
        self.interval_seconds = interval_seconds
        self.align_to_minute = align_to_minute
        self._last_minute: datetime | None = None
        self._last_checked: datetime | None = None

    def due(self, now: datetime | None = None) -> bool:
        if not self.align_to_minute:
            return True
        now = now or datetime.now()
        minute = now.replace(second=0, microsecond=0)
        if minute == self._last_minute:
            return False
        if now.second == 0:
            return True
        return self._last_checked is not None and minute > self._last_checked

    def maybe_sample(self, rsi: float, now: datetime | None = None) -> bool:
        """Sample ``rsi`` if due. Returns True when a sample was taken."""
        now = now or datetime.now()
        due = self.due(now)
        self._last_checked = now.replace(second=0, microsecond=0)
        if not due:
            return False
        self.buffer.sample(rsi)
        self._last_minute = now.replace(second=0, microsecond=0)
        logger.debug(f"History sampled rsi={rsi:.1f} at {now.isoformat()}")
        return True
