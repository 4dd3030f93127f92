"""Sentinel Main Application."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Callable

from sentinel.config_loader import AppConfig
from sentinel.constants import LOG_FORMAT, FeedMode
from sentinel.data.binance_feed import BinanceTradeFeed
from sentinel.data.market_data import Tick
from sentinel.data.sim_feed import SimDataFeed
from sentinel.engine.history import HistoryBuffer, HistorySampler
from sentinel.engine.stats_engine import (
    ArithmeticDegenerate,
    InvalidTick,
    Snapshot,
    StreamingStatsEngine,
)

logger = logging.getLogger(__name__)

DRAIN_TIMEOUT_SECONDS = 5.0


def format_status(snapshot: Snapshot) -> str:
    """One-line summary of a snapshot for the log."""
    v = snapshot.vectors
    return (
        f"px={snapshot.price:.2f} +{snapshot.tick_counts.up}/-{snapshot.tick_counts.down} "
        f"vol={snapshot.volatility:.4f} z={snapshot.z_score:+.2f} "
        f"prem={snapshot.risk_premium:.4f} rsi={snapshot.rsi:.1f} {snapshot.regime.value} "
        f"vec=[{v.macro_bear:.2f} {v.bear:.2f} | {v.bull:.2f} {v.macro_bull:.2f}] "
        f"flow={snapshot.stealth_counts.buy}B/{snapshot.stealth_counts.sell}S "
        f"window={snapshot.flow_counts.buy}B/{snapshot.flow_counts.sell}S "
        f"imb={snapshot.flow_counts.imbalance:+.2f}"
    )


class SentinelApp:
    """
    Main application orchestrator.

    Feed -> bounded queue -> single consumer -> engine -> snapshot listeners.
    A separate task samples the engine RSI into the history buffer on a
    wall-clock cadence. Both tasks run on one event loop, so engine
    access is serialized without a lock.
    """

    def __init__(self, config: AppConfig | None = None, max_ticks: int | None = None):
        self.config = config or AppConfig()
        self.max_ticks = max_ticks

        # Components
        self.engine: StreamingStatsEngine | None = None
        self.history: HistoryBuffer | None = None
        self.sampler: HistorySampler | None = None
        self.feed: BinanceTradeFeed | SimDataFeed | None = None
        self.queue: asyncio.Queue[Tick] | None = None

        self._snapshot_callbacks: list[Callable[[Snapshot], None]] = []

        # Tasks
        self._feed_task: asyncio.Task | None = None
        self._consumer_task: asyncio.Task | None = None
        self._sampler_task: asyncio.Task | None = None

        self._paused = False
        self._shutdown_event = asyncio.Event()

        # Stats
        self.processed_count = 0
        self.rejected_count = 0

    def _setup_logging(self) -> None:
        logging.basicConfig(
            level=self.config.environment.log_level.value,
            format=LOG_FORMAT,
        )

    async def initialize(self) -> None:
        """Build components."""
        self._setup_logging()
        logger.info("Initializing Sentinel...")

        self.engine = StreamingStatsEngine(self.config.engine)
        logger.info(
            f"Engine ready: calibration={self.config.engine.calibration.value} "
            f"seed variance={self.config.engine.initial_variance}"
        )

        hist_cfg = self.config.history
        self.history = HistoryBuffer(capacity=hist_cfg.capacity, fill=hist_cfg.neutral_value)
        self.sampler = HistorySampler(
            self.history,
            interval_seconds=hist_cfg.sample_interval_seconds,
            align_to_minute=hist_cfg.align_to_minute,
        )

        self.queue = asyncio.Queue(maxsize=self.config.feed.queue_size)
        self.feed = self._build_feed()

    def _build_feed(self) -> BinanceTradeFeed | SimDataFeed:
        feed_cfg = self.config.feed
        if feed_cfg.mode == FeedMode.SIM:
            logger.info("Using SimDataFeed (random walk)")
            return SimDataFeed(
                callback=self.enqueue,
                interval_sec=feed_cfg.sim_interval_seconds,
                start_price=feed_cfg.sim_start_price,
                seed=feed_cfg.sim_seed,
                max_ticks=self.max_ticks,
            )
        logger.info(f"Using BinanceTradeFeed ({feed_cfg.symbol})")
        return BinanceTradeFeed(feed_cfg, callback=self.enqueue)

    def add_snapshot_callback(self, callback: Callable[[Snapshot], None]) -> None:
        """Register a listener called with every new snapshot."""
        self._snapshot_callbacks.append(callback)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def enqueue(self, tick: Tick) -> None:
        """Feed callback. Blocks when the queue is full, so arrival order holds."""
        await self.queue.put(tick)

    def process_tick(self, tick: Tick) -> Snapshot | None:
        """Apply one tick to the engine and notify listeners."""
        try:
            snapshot = self.engine.update(tick)
        except InvalidTick as e:
            self.rejected_count += 1
            logger.warning(f"Rejected tick: {e}")
            return None
        except ArithmeticDegenerate as e:
            self.rejected_count += 1
            logger.error(f"Degenerate statistics, tick skipped: {e}")
            return None

        self.processed_count += 1

        for callback in self._snapshot_callbacks:
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Error in snapshot callback: {e}", exc_info=True)

        return snapshot

    async def _consume(self) -> None:
        while True:
            tick = await self.queue.get()
            try:
                self.process_tick(tick)
            finally:
                self.queue.task_done()

    async def _sample_history(self) -> None:
        interval = self.sampler.interval_seconds
        while True:
            await asyncio.sleep(interval)
            if self.sampler.maybe_sample(self.engine.rsi):
                snapshot = self.engine.last_snapshot
                if snapshot is not None:
                    logger.info(format_status(snapshot))
                else:
                    logger.info("Waiting for first trade...")

    # ------------------------------------------------------------------
    # Feed control
    # ------------------------------------------------------------------

    def _start_feed(self) -> None:
        self._feed_task = asyncio.create_task(self.feed.start())
        self._feed_task.add_done_callback(self._on_feed_done)

    def _on_feed_done(self, task: asyncio.Task) -> None:
        if task.cancelled() or self._paused:
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Feed terminated with error: {exc}")
        else:
            logger.info("Feed finished")
        self.request_shutdown()

    async def _stop_feed(self) -> None:
        if self.feed:
            self.feed.stop()
        if self._feed_task and not self._feed_task.done():
            self._feed_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._feed_task
        self._feed_task = None

    async def pause(self) -> None:
        """Stop ingestion. Engine state and history are left untouched."""
        if self._paused:
            return
        self._paused = True
        await self._stop_feed()
        logger.info("Ingestion paused")

    async def resume(self) -> None:
        """Restart ingestion; the recurrence continues from the preserved state."""
        if not self._paused:
            return
        self._paused = False
        self._start_feed()
        logger.info("Ingestion resumed")

    @property
    def is_paused(self) -> bool:
        return self._paused

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Run until a shutdown signal or the feed finishes."""
        if self.engine is None:
            await self.initialize()

        logger.info("Starting run loop...")

        loop = asyncio.get_running_loop()
        signals_installed = False
        try:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, self.request_shutdown)
            signals_installed = True
        except (NotImplementedError, RuntimeError):
            logger.warning("Signal handlers not supported in this environment. Use Ctrl+C to stop.")

        self._consumer_task = asyncio.create_task(self._consume())
        self._sampler_task = asyncio.create_task(self._sample_history())
        self._start_feed()

        try:
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            logger.info("Shutting down...")
            self._paused = True
            await self._stop_feed()

            try:
                await asyncio.wait_for(self.queue.join(), timeout=DRAIN_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                logger.warning(f"Queue not drained, {self.queue.qsize()} ticks dropped")

            for task in (self._consumer_task, self._sampler_task):
                if task:
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

            if signals_installed:
                for sig in (signal.SIGINT, signal.SIGTERM):
                    loop.remove_signal_handler(sig)

            logger.info(
                f"Shutdown complete. processed={self.processed_count} "
                f"rejected={self.rejected_count}"
            )

    def request_shutdown(self) -> None:
        logger.info("Shutdown requested")
        self._shutdown_event.set()
