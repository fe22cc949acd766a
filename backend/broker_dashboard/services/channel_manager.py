"""Live connection registry and channel membership"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set, Tuple

from broker_dashboard.config import settings

logger = logging.getLogger(__name__)

TICKER_CHANNEL_PREFIX = "ticker:"
USER_CHANNEL_PREFIX = "user:"


def ticker_channel(ticker: str) -> str:
    return f"{TICKER_CHANNEL_PREFIX}{ticker}"


def user_channel(user_id: int) -> str:
    return f"{USER_CHANNEL_PREFIX}{user_id}"


def is_ticker_channel(channel: str) -> bool:
    return channel.startswith(TICKER_CHANNEL_PREFIX)


def reconcile(current: Iterable[str], desired: Iterable[str]) -> Tuple[Set[str], Set[str]]:
    """
    Set difference between the ticker channels a connection holds and the ones it should hold

    Non-ticker channels in `current` are never returned for leaving.

    Returns:
        (to_leave, to_join)
    """
    current_tickers = {c for c in current if is_ticker_channel(c)}
    wanted = {ticker_channel(t) for t in desired}
    return current_tickers - wanted, wanted - current_tickers


class Transport(Protocol):
    async def send_json(self, data: Any) -> None: ...


class LiveConnection:
    """One admitted client; every outbound frame goes through `send`"""

    _ids = itertools.count(1)

    def __init__(self, transport: Transport, user_id: int):
        self.id = next(self._ids)
        self.user_id = user_id
        self.transport = transport
        self.channels: Set[str] = set()
        # Held for the whole of admission and resync so ticks queue behind them.
        self.lock = asyncio.Lock()

    async def send(self, event: str, data: Any) -> None:
        async with self.lock:
            await self.send_unlocked(event, data)

    async def send_unlocked(self, event: str, data: Any) -> None:
        await self.transport.send_json({"event": event, "data": data})

    def __repr__(self) -> str:
        return f"<LiveConnection id={self.id} user={self.user_id}>"


class ChannelManager:
    """
    Tracks admitted connections and which channels each belongs to

    Membership is kept both ways: connection -> channels on the connection
    itself and channel -> connection ids here.
    """

    def __init__(self, send_timeout: Optional[float] = None):
        self.send_timeout = send_timeout if send_timeout is not None else settings.LIVE_SEND_TIMEOUT_SECONDS
        self._connections: Dict[int, LiveConnection] = {}
        self._members: Dict[str, Set[int]] = {}

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def connections(self) -> List[LiveConnection]:
        return list(self._connections.values())

    def get(self, connection_id: int) -> Optional[LiveConnection]:
        return self._connections.get(connection_id)

    def register(self, connection: LiveConnection) -> None:
        self._connections[connection.id] = connection
        self.join(connection, user_channel(connection.user_id))
        logger.info(f"Live connection {connection.id} admitted for user {connection.user_id}")

    def unregister(self, connection: LiveConnection) -> None:
        if self._connections.pop(connection.id, None) is None:
            return
        for channel in list(connection.channels):
            self.leave(connection, channel)
        logger.info(f"Live connection {connection.id} closed for user {connection.user_id}")

    def join(self, connection: LiveConnection, channel: str) -> None:
        connection.channels.add(channel)
        self._members.setdefault(channel, set()).add(connection.id)

    def leave(self, connection: LiveConnection, channel: str) -> None:
        connection.channels.discard(channel)
        members = self._members.get(channel)
        if members is not None:
            members.discard(connection.id)
            if not members:
                del self._members[channel]

    def members(self, channel: str) -> List[LiveConnection]:
        ids = self._members.get(channel, ())
        return [self._connections[i] for i in list(ids) if i in self._connections]

    def sync_tickers(self, connection: LiveConnection, tickers: Iterable[str]) -> Tuple[Set[str], Set[str]]:
        """Make the connection's ticker channels equal to `tickers`"""
        to_leave, to_join = reconcile(connection.channels, tickers)
        for channel in to_leave:
            self.leave(connection, channel)
        for channel in to_join:
            self.join(connection, channel)
        if to_leave or to_join:
            logger.debug(f"Connection {connection.id} left {sorted(to_leave)} joined {sorted(to_join)}")
        return to_leave, to_join

    async def _deliver(self, connection: LiveConnection, event: str, data: Any) -> None:
        try:
            await asyncio.wait_for(connection.send(event, data), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Dropping live connection {connection.id}: no frame accepted in {self.send_timeout}s")
            self.unregister(connection)
        except Exception as e:
            logger.warning(f"Dropping live connection {connection.id}: {e}")
            self.unregister(connection)

    async def broadcast(self, event: str, data: Any) -> None:
        """Send to every admitted connection"""
        targets = self.connections()
        if targets:
            await asyncio.gather(*(self._deliver(c, event, data) for c in targets))

    async def emit_to_channel(self, channel: str, event: str, data: Any) -> None:
        """Send to the members of one channel"""
        targets = self.members(channel)
        if targets:
            await asyncio.gather(*(self._deliver(c, event, data) for c in targets))

    def clear(self) -> None:
        self._connections.clear()
        self._members.clear()


channel_manager = ChannelManager()
