"""User model"""

from datetime import datetime

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from broker_dashboard.core.database import Base


class User(Base):
    """User account: credentials, refresh token digest, lockout state and subscriptions"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Only the SHA-256 digest of the active refresh token is kept.
    refresh_token_hash = Column(String(64), nullable=True, index=True)
    refresh_token_expires_at = Column(DateTime(timezone=True), nullable=True)

    last_login = Column(DateTime(timezone=True))
    failed_login_attempts = Column(Integer, default=0, nullable=False)
    locked_until = Column(DateTime(timezone=True))
    password_changed_at = Column(DateTime(timezone=True))

    # Relationships
    subscriptions = relationship(
        "Subscription",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="Subscription.id",
    )

    __table_args__ = (
        Index('idx_users_email', 'email'),
    )

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}')>"

    @property
    def subscribed_stocks(self) -> list:
        return [s.ticker for s in self.subscriptions]

    def changed_password_after(self, issued_at: int) -> bool:
        """True when the password changed after a token with this `iat` was issued"""
        if not self.password_changed_at:
            return False
        changed = self.password_changed_at
        if changed.tzinfo is not None:
            changed_ts = int(changed.timestamp())
        else:
            changed_ts = int((changed - datetime(1970, 1, 1)).total_seconds())
        return issued_at < changed_ts

