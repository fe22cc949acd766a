"""Stock list and subscription routes"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from broker_dashboard.core.database import get_db
from broker_dashboard.core.tickers import SUPPORTED_TICKERS
from broker_dashboard.schemas.response import TickerListResponse
from broker_dashboard.schemas.stock import TickerRequest
from broker_dashboard.services.subscription_service import subscription_service
from broker_dashboard.api.deps import get_current_user
from broker_dashboard.models.user import User

router = APIRouter()


@router.get("", response_model=TickerListResponse)
def list_supported_stocks(
    current_user: User = Depends(get_current_user)
):
    """Tickers a user may subscribe to"""
    return TickerListResponse(data=list(SUPPORTED_TICKERS))


@router.get("/subscribed", response_model=TickerListResponse)
def list_subscribed_stocks(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """The caller's subscriptions, oldest first"""
    return TickerListResponse(data=subscription_service.list_tickers(db, current_user.id))


@router.post("/subscribe", response_model=TickerListResponse)
def subscribe(
    body: TickerRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Subscribe to a ticker

    Returns the full updated list. Open live connections pick the change up
    when the client sends `update_subscriptions`.
    """
    tickers = subscription_service.subscribe(db, current_user.id, body.ticker)
    return TickerListResponse(message=f"Subscribed to {tickers[-1]}", data=tickers)


@router.post("/unsubscribe", response_model=TickerListResponse)
def unsubscribe(
    body: TickerRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Unsubscribe from a ticker and return the remaining list"""
    tickers = subscription_service.unsubscribe(db, current_user.id, body.ticker)
    ticker = body.ticker.strip().upper()
    return TickerListResponse(message=f"Unsubscribed from {ticker}", data=tickers)
