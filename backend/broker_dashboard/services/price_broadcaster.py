"""Periodic price broadcast to live connections."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from prometheus_client import Counter, Gauge

from broker_dashboard.config import settings
from broker_dashboard.schemas.stock import PriceUpdate
from broker_dashboard.services.channel_manager import ChannelManager, channel_manager, ticker_channel
from broker_dashboard.services.price_engine import PriceEngine, price_engine

logger = logging.getLogger(__name__)

PRICE_TICKS = Counter("broker_price_ticks_total", "Price ticks broadcast")
LIVE_CONNECTIONS = Gauge("broker_live_connections", "Admitted live connections")


class PriceBroadcaster:
    """One ticking task per process; the only caller of `PriceEngine.tick`."""

    def __init__(
        self,
        engine: PriceEngine = price_engine,
        manager: ChannelManager = channel_manager,
        interval: Optional[float] = None,
    ) -> None:
        self.engine = engine
        self.manager = manager
        self.interval = interval if interval is not None else settings.PRICE_TICK_INTERVAL_SECONDS
        self._task: Optional[asyncio.Task] = None
        self._tick_count = 0
        self._last_tick: float = 0.0

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running():
            return
        self._task = asyncio.get_running_loop().create_task(self._run_loop(), name="price-broadcaster")
        logger.info(f"Price broadcaster started (interval {self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Price broadcaster stopped")

    def status(self) -> dict:
        return {
            "running": self.is_running(),
            "tick_count": self._tick_count,
            "last_tick": self._last_tick,
            "connections": self.manager.connection_count,
        }

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("Price tick failed: %s", exc)

    async def run_once(self) -> dict:
        """Advance the engine once and fan the result out."""
        snapshot = self.engine.tick()
        self._tick_count += 1
        self._last_tick = time.time()
        PRICE_TICKS.inc()

        await self.manager.broadcast("all_prices_update", snapshot)

        timestamp = snapshot["timestamp"]
        for ticker, quote in snapshot["stocks"].items():
            try:
                payload = PriceUpdate(ticker=ticker, timestamp=timestamp, **quote).model_dump()
                await self.manager.emit_to_channel(ticker_channel(ticker), "price_update", payload)
            except Exception as exc:
                logger.exception("Price update for %s failed: %s", ticker, exc)

        LIVE_CONNECTIONS.set(self.manager.connection_count)
        return snapshot


price_broadcaster = PriceBroadcaster()
