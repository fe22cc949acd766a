"""Subscription service - per-user ticker lists"""

from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from broker_dashboard.core import tickers
from broker_dashboard.core.exceptions import ConflictError, NotFoundError, ValidationError
from broker_dashboard.models.subscription import Subscription
from broker_dashboard.models.user import User
import logging

logger = logging.getLogger(__name__)


class SubscriptionService:
    """Validates tickers and mutates a user's subscription list"""

    @staticmethod
    def _validated(raw_ticker: Optional[str]) -> str:
        ticker = tickers.normalize_ticker(raw_ticker)
        if not ticker or not tickers.is_supported(ticker):
            raise ValidationError(
                f"Invalid stock ticker. Supported: {', '.join(tickers.SUPPORTED_TICKERS)}",
                code="INVALID_TICKER",
            )
        return ticker

    @staticmethod
    def _find(db: Session, user_id: int, ticker: str) -> Optional[Subscription]:
        return (
            db.query(Subscription)
            .filter(Subscription.user_id == user_id, Subscription.ticker == ticker)
            .first()
        )

    @staticmethod
    def list_tickers(db: Session, user_id: int) -> List[str]:
        """Current list, in the order the user subscribed"""
        rows = (
            db.query(Subscription.ticker)
            .filter(Subscription.user_id == user_id)
            .order_by(Subscription.id.asc())
            .all()
        )
        return [row.ticker for row in rows]

    @staticmethod
    def subscribe(db: Session, user_id: int, raw_ticker: Optional[str]) -> List[str]:
        """
        Add a ticker to the user's list

        Args:
            db: Database session
            user_id: Subscriber
            raw_ticker: Ticker as sent by the client; trimmed and uppercased

        Returns:
            The updated list
        """
        ticker = SubscriptionService._validated(raw_ticker)
        if not db.query(User.id).filter(User.id == user_id).first():
            raise NotFoundError("User")

        if SubscriptionService._find(db, user_id, ticker):
            raise ConflictError(f"Already subscribed to {ticker}", code="ALREADY_SUBSCRIBED")

        db.add(Subscription(user_id=user_id, ticker=ticker))
        try:
            db.commit()
        except IntegrityError:
            # A concurrent request inserted the same row first
            db.rollback()
            raise ConflictError(f"Already subscribed to {ticker}", code="ALREADY_SUBSCRIBED")

        logger.info(f"User {user_id} subscribed to {ticker}")
        return SubscriptionService.list_tickers(db, user_id)

    @staticmethod
    def unsubscribe(db: Session, user_id: int, raw_ticker: Optional[str]) -> List[str]:
        """
        Remove a ticker from the user's list

        Returns:
            The updated list
        """
        ticker = SubscriptionService._validated(raw_ticker)

        deleted = (
            db.query(Subscription)
            .filter(Subscription.user_id == user_id, Subscription.ticker == ticker)
            .delete()
        )
        if not deleted:
            raise ValidationError(f"Not subscribed to {ticker}", code="NOT_SUBSCRIBED")
        db.commit()

        logger.info(f"User {user_id} unsubscribed from {ticker}")
        return SubscriptionService.list_tickers(db, user_id)

    @staticmethod
    def purge_unsupported(db: Session) -> int:
        """
        Delete rows whose ticker left the supported set, plus duplicate rows

        Returns:
            Number of rows removed
        """
        removed = 0
        seen = set()
        for row in db.query(Subscription).order_by(Subscription.id.asc()).all():
            key = (row.user_id, row.ticker)
            if not tickers.is_supported(row.ticker) or key in seen:
                logger.info(f"Removing subscription {row.ticker} from user {row.user_id}")
                db.delete(row)
                removed += 1
            else:
                seen.add(key)
        db.commit()
        return removed


subscription_service = SubscriptionService()
