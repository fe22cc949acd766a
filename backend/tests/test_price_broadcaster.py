import asyncio
import random

import pytest

from broker_dashboard.core.tickers import SUPPORTED_TICKERS
from broker_dashboard.services.channel_manager import ChannelManager, LiveConnection, ticker_channel
from broker_dashboard.services.price_broadcaster import PriceBroadcaster
from broker_dashboard.services.price_engine import PriceEngine


class FakeTransport:
    def __init__(self):
        self.sent = []

    async def send_json(self, data):
        self.sent.append(data)


class StalledTransport:
    """Never finishes a send, like a peer that stopped reading"""

    async def send_json(self, data):
        await asyncio.Event().wait()


class FlakyManager(ChannelManager):
    """Fails while emitting one ticker's update"""

    def __init__(self, broken_channel):
        super().__init__()
        self.broken_channel = broken_channel

    async def emit_to_channel(self, channel, event, data):
        if channel == self.broken_channel:
            raise RuntimeError("boom")
        await super().emit_to_channel(channel, event, data)


def _setup(manager=None):
    manager = manager or ChannelManager()
    broadcaster = PriceBroadcaster(engine=PriceEngine(rng=random.Random(3)), manager=manager, interval=0.01)
    first = LiveConnection(FakeTransport(), user_id=1)
    second = LiveConnection(FakeTransport(), user_id=1)
    manager.register(first)
    manager.register(second)
    manager.sync_tickers(first, ["AAPL", "TSLA"])
    return broadcaster, first, second


@pytest.mark.asyncio
async def test_run_once_fans_out_one_consistent_tick():
    broadcaster, first, second = _setup()
    snapshot = await broadcaster.run_once()

    for conn in (first, second):
        assert conn.transport.sent[0] == {"event": "all_prices_update", "data": snapshot}

    updates = [m["data"] for m in first.transport.sent if m["event"] == "price_update"]
    assert [u["ticker"] for u in updates] == ["AAPL", "TSLA"]
    for update in updates:
        quote = snapshot["stocks"][update["ticker"]]
        assert update["price"] == quote["price"]
        assert update["change"] == quote["change"]
        assert update["history"] == quote["history"]
        assert update["timestamp"] == snapshot["timestamp"]

    assert [m["event"] for m in second.transport.sent] == ["all_prices_update"]
    assert broadcaster.status()["tick_count"] == 1


@pytest.mark.asyncio
async def test_one_ticker_failure_does_not_stop_others():
    manager = FlakyManager(ticker_channel("AAPL"))
    broadcaster, first, _ = _setup(manager)

    await broadcaster.run_once()

    tickers = [m["data"]["ticker"] for m in first.transport.sent if m["event"] == "price_update"]
    assert tickers == ["TSLA"]


@pytest.mark.asyncio
async def test_start_is_idempotent_and_stop_cancels():
    broadcaster, first, _ = _setup()
    broadcaster.start()
    task = broadcaster._task
    broadcaster.start()
    assert broadcaster._task is task

    await asyncio.sleep(0.05)
    await broadcaster.stop()

    assert not broadcaster.is_running()
    status = broadcaster.status()
    assert status["tick_count"] >= 1
    assert status["connections"] == 2
    assert any(m["event"] == "all_prices_update" for m in first.transport.sent)


@pytest.mark.asyncio
async def test_each_tick_covers_every_ticker():
    broadcaster, _, _ = _setup()
    snapshot = await broadcaster.run_once()
    assert set(snapshot["stocks"]) == set(SUPPORTED_TICKERS)


@pytest.mark.asyncio
async def test_stalled_client_is_dropped_and_tick_completes():
    manager = ChannelManager(send_timeout=0.05)
    broadcaster, first, second = _setup(manager)
    stalled = LiveConnection(StalledTransport(), user_id=2)
    manager.register(stalled)
    manager.sync_tickers(stalled, ["AAPL"])

    await asyncio.wait_for(broadcaster.run_once(), timeout=1)

    assert manager.get(stalled.id) is None
    assert manager.members(ticker_channel("AAPL")) == [first]
    assert [m["event"] for m in first.transport.sent] == ["all_prices_update", "price_update", "price_update"]
    assert [m["event"] for m in second.transport.sent] == ["all_prices_update"]


@pytest.mark.asyncio
async def test_stalled_client_does_not_freeze_the_schedule():
    manager = ChannelManager(send_timeout=0.05)
    broadcaster, first, _ = _setup(manager)
    manager.register(LiveConnection(StalledTransport(), user_id=2))

    broadcaster.start()
    await asyncio.sleep(0.5)
    await broadcaster.stop()

    assert broadcaster.status()["tick_count"] >= 5
    assert sum(m["event"] == "all_prices_update" for m in first.transport.sent) >= 5
    assert manager.connection_count == 2
