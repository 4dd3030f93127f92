"""Simulation Data Feed."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from datetime import datetime

from sentinel.data.market_data import Tick

logger = logging.getLogger(__name__)


class SimDataFeed:
    """
    Generates synthetic trades for offline runs.
    Produces a random walk price path with a random aggressor side.
    """

    STEPS = (-0.5, -0.1, 0.0, 0.0, 0.1, 0.5)

    def __init__(
        self,
        callback: Callable[[Tick], Awaitable[None]],
        interval_sec: float = 0.25,
        start_price: float = 2650.0,
        seed: int | None = None,
        max_ticks: int | None = None,
    ):
        self.callback = callback
        self.interval_sec = interval_sec
        self.current_price = start_price
        self.max_ticks = max_ticks
        self.tick_count = 0
        self._rng = random.Random(seed)
        self._running = False

    def next_tick(self) -> Tick:
        """Advance the walk by one step."""
        step = self._rng.choice(self.STEPS)
        # Keep the walk strictly positive
        self.current_price = max(self.current_price + step, 0.01)
        return Tick(
            price=round(self.current_price, 2),
            is_buyer_maker=self._rng.random() < 0.5,
            timestamp=datetime.now(),
        )

    async def start(self) -> None:
        """Start generating ticks."""
        self._running = True
        logger.info(f"SimDataFeed started at {self.current_price}")

        while self._running:
            if self.max_ticks is not None and self.tick_count >= self.max_ticks:
                logger.info(f"SimDataFeed reached max_ticks={self.max_ticks}")
                break

            await self.callback(self.next_tick())
            self.tick_count += 1

            await asyncio.sleep(self.interval_sec)

        self._running = False

    def stop(self) -> None:
        """Stop generation."""
        self._running = False
        logger.info("SimDataFeed stopped")

    @property
    def is_running(self) -> bool:
        return self._running
