"""Binance aggTrade WebSocket feed.

Connects to the public ``<symbol>@aggTrade`` stream, maps each message to
a Tick and forwards it, in arrival order, to an async callback.

Reconnection, backoff and malformed-message handling live here. The
consumer never sees a message that failed to parse, and a reconnect
never touches downstream state.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import websockets

from sentinel.config_loader import FeedConfig
from sentinel.constants import WS_PING_INTERVAL, WS_PING_TIMEOUT
from sentinel.data.market_data import Tick

logger = logging.getLogger(__name__)


def parse_agg_trade(raw: str | bytes) -> Tick | None:
    """
    Parse one aggTrade message.

    Expected fields: ``p`` price (string), ``m`` buyer-is-maker (bool),
    ``T`` trade time in epoch milliseconds (optional).

    Returns:
        Tick, or None if the message is malformed or not a trade.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning(f"Dropping undecodable message: {e}")
        return None

    if not isinstance(data, dict):
        logger.warning(f"Dropping non-object message: {data!r}")
        return None

    # Combined-stream envelope: {"stream": ..., "data": {...}}
    if "data" in data and isinstance(data["data"], dict):
        data = data["data"]

    if data.get("e", "aggTrade") != "aggTrade":
        logger.debug(f"Ignoring event type {data.get('e')}")
        return None

    try:
        price = float(data["p"])
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Dropping trade with bad price: {e} ({data.get('p')!r})")
        return None

    is_buyer_maker = data.get("m")
    if not isinstance(is_buyer_maker, bool):
        logger.warning(f"Dropping trade with bad maker flag: {is_buyer_maker!r}")
        return None

    timestamp = None
    trade_time = data.get("T")
    if isinstance(trade_time, (int, float)) and not isinstance(trade_time, bool):
        timestamp = datetime.fromtimestamp(trade_time / 1000, tz=timezone.utc)

    return Tick(price=price, is_buyer_maker=is_buyer_maker, timestamp=timestamp)


class BinanceTradeFeed:
    """
    Binance aggTrade client with auto-reconnect.

    Usage:
        feed = BinanceTradeFeed(config.feed, callback=queue_tick)
        await feed.start()   # runs until stop()
    """

    def __init__(
        self,
        config: FeedConfig,
        callback: Callable[[Tick], Awaitable[None]],
        connect: Callable[..., Any] | None = None,
    ):
        """
        Args:
            config: Feed configuration (symbol, URL, backoff).
            callback: Awaited once per parsed tick, in arrival order.
            connect: WebSocket connect factory, ``websockets.connect`` by default.
        """
        self.config = config
        self.callback = callback
        self.url = config.stream_url
        self._connect = connect or websockets.connect
        self._ws: Any = None
        self._running = False
        self._close_task: asyncio.Task | None = None

        # Stats
        self.message_count = 0
        self.tick_count = 0
        self.parse_errors = 0
        self.reconnect_count = 0

    async def start(self) -> None:
        """Connect and stream until stopped, reconnecting with exponential backoff."""
        self._running = True
        delay = self.config.reconnect_initial_delay
        logger.info(f"BinanceTradeFeed starting: {self.url}")

        while self._running:
            try:
                async with self._connect(
                    self.url, ping_interval=WS_PING_INTERVAL, ping_timeout=WS_PING_TIMEOUT
                ) as ws:
                    self._ws = ws
                    delay = self.config.reconnect_initial_delay
                    logger.info(f"Connected to {self.url}")
                    await self._listen(ws)
            except websockets.exceptions.ConnectionClosed as e:
                logger.warning(f"Connection closed: {e}")
            except (websockets.exceptions.WebSocketException, OSError, asyncio.TimeoutError) as e:
                logger.error(f"WebSocket error: {e}")
            finally:
                self._ws = None

            if not self._running:
                break

            self.reconnect_count += 1
            logger.info(f"Reconnecting in {delay:.1f}s (attempt {self.reconnect_count})")
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.config.reconnect_max_delay)

        await self._await_close()
        logger.info("BinanceTradeFeed stopped")

    async def _await_close(self) -> None:
        task, self._close_task = self._close_task, None
        if task is None:
            return
        try:
            await task
        except (websockets.exceptions.WebSocketException, OSError) as e:
            logger.warning(f"Error closing websocket: {e}")

    async def _listen(self, ws: Any) -> None:
        async for message in ws:
            if not self._running:
                return
            self.message_count += 1
            tick = parse_agg_trade(message)
            if tick is None:
                self.parse_errors += 1
                continue
            self.tick_count += 1
            await self.callback(tick)

    def stop(self) -> None:
        """Stop streaming and close the socket if open."""
        self._running = False
        if self._ws is not None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return
            self._close_task = loop.create_task(self._ws.close())

    @property
    def is_running(self) -> bool:
        return self._running
