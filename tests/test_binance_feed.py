"""Tests for the Binance aggTrade feed."""

import asyncio
import json
from datetime import datetime, timezone

import pytest

from sentinel.config_loader import FeedConfig
from sentinel.data import binance_feed
from sentinel.data.binance_feed import BinanceTradeFeed, parse_agg_trade
from sentinel.data.market_data import Tick


def agg_trade(price="2650.10", maker=False, trade_time=1700000000000, **extra) -> str:
    msg = {
        "e": "aggTrade",
        "E": trade_time + 5,
        "s": "PAXGUSDT",
        "a": 12345,
        "p": price,
        "q": "0.5",
        "f": 100,
        "l": 105,
        "T": trade_time,
        "m": maker,
        "M": True,
    }
    msg.update(extra)
    return json.dumps(msg)


class FakeConnection:
    """Async context manager / iterator standing in for a websocket."""

    def __init__(self, messages, close_error=None):
        self.messages = list(messages)
        self.closed = False
        self.close_calls = 0
        self.close_error = close_error

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True
        return False

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for message in self.messages:
            yield message

    async def close(self):
        self.close_calls += 1
        self.closed = True
        if self.close_error is not None:
            raise self.close_error


class FakeConnector:
    """Hands out scripted connections; an Exception entry raises on connect."""

    def __init__(self, script):
        self.script = list(script)
        self.calls = []

    def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        item = self.script.pop(0) if self.script else FakeConnection([])
        if isinstance(item, Exception):
            raise item
        return item


# ============================================
# Parsing
# ============================================


class TestParseAggTrade:
    def test_valid_trade(self):
        tick = parse_agg_trade(agg_trade())
        assert tick == Tick(
            price=2650.10,
            is_buyer_maker=False,
            timestamp=datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc),
        )
        assert tick.is_aggressive_buy

    def test_bytes_payload(self):
        tick = parse_agg_trade(agg_trade(maker=True).encode())
        assert tick.is_buyer_maker is True

    def test_combined_stream_envelope(self):
        raw = json.dumps({"stream": "paxgusdt@aggTrade", "data": json.loads(agg_trade("1.5"))})
        assert parse_agg_trade(raw).price == 1.5

    def test_missing_trade_time(self):
        raw = json.dumps({"p": "10.0", "m": True})
        tick = parse_agg_trade(raw)
        assert tick.price == 10.0
        assert tick.timestamp is None

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "[]",
            "42",
            json.dumps({"m": True}),
            json.dumps({"p": "abc", "m": True}),
            json.dumps({"p": None, "m": True}),
            json.dumps({"p": "1.0", "m": "false"}),
            json.dumps({"p": "1.0"}),
        ],
    )
    def test_malformed_messages_dropped(self, raw):
        assert parse_agg_trade(raw) is None

    def test_other_event_ignored(self):
        raw = json.dumps({"e": "trade", "p": "1.0", "m": True})
        assert parse_agg_trade(raw) is None

    def test_non_positive_price_passes_through_to_engine(self):
        # Range checks are the engine's job (InvalidTick)
        assert parse_agg_trade(agg_trade("0")).price == 0.0


# ============================================
# Streaming
# ============================================


@pytest.fixture
def feed_config():
    return FeedConfig(
        symbol="PAXGUSDT", reconnect_initial_delay=0.01, reconnect_max_delay=0.02
    )


@pytest.mark.asyncio
async def test_forwards_ticks_in_order_and_skips_garbage(feed_config):
    received = []
    connector = FakeConnector(
        [FakeConnection([agg_trade("1.0"), "garbage", agg_trade("2.0"), agg_trade("3.0")])]
    )

    async def on_tick(tick):
        received.append(tick.price)
        if len(received) == 3:
            feed.stop()

    feed = BinanceTradeFeed(feed_config, callback=on_tick, connect=connector)
    await asyncio.wait_for(feed.start(), timeout=2)

    assert received == [1.0, 2.0, 3.0]
    assert feed.message_count == 4
    assert feed.tick_count == 3
    assert feed.parse_errors == 1
    assert feed.is_running is False

    url, kwargs = connector.calls[0]
    assert url == "wss://stream.binance.com:9443/ws/paxgusdt@aggTrade"
    assert kwargs == {"ping_interval": 30, "ping_timeout": 10}


@pytest.mark.asyncio
async def test_reconnects_after_connect_error(feed_config):
    received = []
    connector = FakeConnector(
        [OSError("network down"), FakeConnection([agg_trade("5.0")])]
    )

    async def on_tick(tick):
        received.append(tick.price)
        feed.stop()

    feed = BinanceTradeFeed(feed_config, callback=on_tick, connect=connector)
    await asyncio.wait_for(feed.start(), timeout=2)

    assert received == [5.0]
    assert feed.reconnect_count == 1
    assert len(connector.calls) == 2


@pytest.mark.asyncio
async def test_backoff_doubles_up_to_max(monkeypatch):
    config = FeedConfig(reconnect_initial_delay=1.0, reconnect_max_delay=4.0)
    delays = []
    connector = FakeConnector([OSError("down")] * 10)

    async def fake_sleep(delay):
        delays.append(delay)
        if len(delays) == 4:
            feed.stop()

    async def on_tick(tick):
        pass

    monkeypatch.setattr(binance_feed.asyncio, "sleep", fake_sleep)
    feed = BinanceTradeFeed(config, callback=on_tick, connect=connector)
    await feed.start()

    assert delays == [1.0, 2.0, 4.0, 4.0]
    assert feed.reconnect_count == 4


@pytest.mark.asyncio
async def test_stop_closes_socket_before_start_returns(feed_config):
    connection = FakeConnection([agg_trade("1.0"), agg_trade("2.0")])

    async def on_tick(tick):
        feed.stop()

    feed = BinanceTradeFeed(feed_config, callback=on_tick, connect=FakeConnector([connection]))
    await asyncio.wait_for(feed.start(), timeout=2)

    assert connection.close_calls == 1
    assert feed._close_task is None
    assert feed.tick_count == 1


@pytest.mark.asyncio
async def test_close_error_is_logged_not_raised(feed_config, caplog):
    connection = FakeConnection([agg_trade("1.0")], close_error=OSError("reset by peer"))

    async def on_tick(tick):
        feed.stop()

    feed = BinanceTradeFeed(feed_config, callback=on_tick, connect=FakeConnector([connection]))
    await asyncio.wait_for(feed.start(), timeout=2)

    assert connection.close_calls == 1
    assert "Error closing websocket" in caplog.text


def test_stop_without_connection_is_noop(feed_config):
    async def on_tick(tick):
        pass

    feed = BinanceTradeFeed(feed_config, callback=on_tick)
    feed.stop()
    assert feed.is_running is False
    assert feed._close_task is None
