"""Ticker subscription model"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint, Index, CheckConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from broker_dashboard.core.database import Base
from broker_dashboard.core.tickers import SUPPORTED_TICKERS

_TICKER_LIST = ", ".join(f"'{t}'" for t in SUPPORTED_TICKERS)


class Subscription(Base):
    """One row per (user, ticker) the user follows"""

    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    ticker = Column(String(10), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    user = relationship("User", back_populates="subscriptions")

    __table_args__ = (
        UniqueConstraint('user_id', 'ticker', name='uq_subscription_user_ticker'),
        Index('idx_subscriptions_user', 'user_id'),
        CheckConstraint(f"ticker IN ({_TICKER_LIST})", name='chk_subscription_ticker'),
    )

    def __repr__(self):
        return f"<Subscription(id={self.id}, user_id={self.user_id}, ticker='{self.ticker}')>"
