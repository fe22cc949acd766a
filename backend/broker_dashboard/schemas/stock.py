"""Stock subscription and live price schemas"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from broker_dashboard.schemas.user import CamelModel


class TickerRequest(CamelModel):
    ticker: Optional[str] = None


class StockQuote(BaseModel):
    price: float
    change: float
    history: List[float]


class PricesPayload(BaseModel):
    """Body of `prices_snapshot` and `all_prices_update`"""
    stocks: Dict[str, StockQuote]
    timestamp: str


class PriceUpdate(BaseModel):
    """Body of `price_update`, sent only to a ticker's channel"""
    ticker: str
    price: float
    change: float
    history: List[float]
    timestamp: str


class LiveMessage(BaseModel):
    """Frame exchanged over the live channel"""
    event: str
    data: Any = None
