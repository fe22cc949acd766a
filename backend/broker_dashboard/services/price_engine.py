"""Simulated price feed: a bounded random walk per supported ticker"""

import random
import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from broker_dashboard.core.tickers import SUPPORTED_TICKERS

SEED_PRICES: Dict[str, float] = {
    "AAPL": 193.42,
    "GOOG": 191.41,
    "TSLA": 389.22,
    "AMZN": 180.50,
    "META": 591.55,
    "NVDA": 138.25,
    "MSFT": 448.39,
}

HISTORY_LIMIT = 50
SNAPSHOT_HISTORY = 20
MAX_STEP = 2.0
PRICE_FLOOR = 1.0


class _TickerState:
    __slots__ = ("price", "base", "history")

    def __init__(self, seed: float):
        self.price = seed
        self.base = seed
        self.history: List[float] = [seed]


class PriceEngine:
    """
    Holds the current price, base price and bounded history of every ticker

    Only the broadcaster advances the walk. All reads return copies taken
    under the same lock as `tick`, so a reader sees either the state before a
    tick or after it.
    """

    def __init__(self, rng: Optional[random.Random] = None, seeds: Optional[Dict[str, float]] = None):
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        seeds = seeds or SEED_PRICES
        self._state: Dict[str, _TickerState] = {
            ticker: _TickerState(seeds[ticker]) for ticker in SUPPORTED_TICKERS
        }

    @staticmethod
    def _timestamp() -> str:
        return datetime.utcnow().isoformat() + "Z"

    def _change(self, state: _TickerState) -> float:
        return round((state.price - state.base) / state.base * 100, 2)

    def _quote(self, state: _TickerState) -> dict:
        return {
            "price": state.price,
            "change": self._change(state),
            "history": list(state.history[-SNAPSHOT_HISTORY:]),
        }

    def tick(self) -> dict:
        """
        Advance every ticker one step

        Returns:
            {"stocks": {ticker: quote}, "timestamp": iso8601} taken after the step
        """
        with self._lock:
            for state in self._state.values():
                step = (self._rng.random() - 0.5) * (MAX_STEP * 2)
                state.price = round(max(PRICE_FLOOR, state.price + step), 2)
                state.history.append(state.price)
                if len(state.history) > HISTORY_LIMIT:
                    del state.history[: len(state.history) - HISTORY_LIMIT]
            stocks = {ticker: self._quote(state) for ticker, state in self._state.items()}
        return {"stocks": stocks, "timestamp": self._timestamp()}

    def change_percent(self, ticker: str) -> float:
        with self._lock:
            return self._change(self._state[ticker])

    def current_price(self, ticker: str) -> float:
        with self._lock:
            return self._state[ticker].price

    def history(self, ticker: str) -> List[float]:
        """Full retained history (up to 50 points), oldest first"""
        with self._lock:
            return list(self._state[ticker].history)

    def snapshot(self, tickers: Optional[Iterable[str]] = None) -> dict:
        """
        Quotes for the requested tickers, or all of them

        Unsupported names are skipped rather than rejected.
        """
        with self._lock:
            names = list(self._state) if tickers is None else [t for t in tickers if t in self._state]
            stocks = {ticker: self._quote(self._state[ticker]) for ticker in names}
        return {"stocks": stocks, "timestamp": self._timestamp()}


price_engine = PriceEngine()
