"""Access/refresh token issuance, rotation and verification."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy.orm import Session
import logging

from broker_dashboard.config import settings
from broker_dashboard.core.exceptions import (
    AccountDeactivatedError,
    AuthError,
    MissingTokenError,
    PasswordChangedError,
    TokenExpiredError,
    TokenInvalidError,
    TokenTypeError,
)
from broker_dashboard.core.security import (
    ACCESS_TOKEN_TYPE,
    REFRESH_TOKEN_TYPE,
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_refresh_token,
)
from broker_dashboard.models.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str

    @property
    def expires_in_ms(self) -> int:
        return settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60 * 1000


class TokenService:
    """One active refresh token per user, rotated on every use."""

    @staticmethod
    def _subject(payload: dict) -> Optional[int]:
        try:
            return int(payload.get("sub"))
        except (TypeError, ValueError):
            return None

    @staticmethod
    def issue_token_pair(db: Session, user: User) -> TokenPair:
        """
        Issue a fresh access/refresh pair and persist the refresh digest

        Any previously issued refresh token stops working.
        """
        claims = {"sub": str(user.id)}
        pair = TokenPair(
            access_token=create_access_token(claims),
            refresh_token=create_refresh_token(claims),
        )
        user.refresh_token_hash = hash_refresh_token(pair.refresh_token)
        user.refresh_token_expires_at = datetime.utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
        db.commit()
        return pair

    @staticmethod
    def rotate_refresh_token(db: Session, refresh_token: Optional[str]) -> Tuple[User, TokenPair]:
        """
        Exchange a refresh token for a new pair

        Args:
            db: Database session
            refresh_token: Raw refresh token from the cookie or body

        Returns:
            The owning user and the rotated token pair
        """
        if not refresh_token:
            raise AuthError("Refresh token not provided", code="NO_REFRESH_TOKEN")

        try:
            payload = decode_token(refresh_token, refresh=True)
        except (TokenExpiredError, TokenInvalidError):
            raise AuthError("Invalid or expired refresh token", code="INVALID_REFRESH_TOKEN")

        user_id = TokenService._subject(payload)
        if payload.get("typ") != REFRESH_TOKEN_TYPE or user_id is None:
            raise AuthError("Invalid or expired refresh token", code="INVALID_REFRESH_TOKEN")

        user = (
            db.query(User)
            .filter(
                User.id == user_id,
                User.refresh_token_hash == hash_refresh_token(refresh_token),
                User.refresh_token_expires_at > datetime.utcnow(),
            )
            .first()
        )
        if not user or not user.is_active:
            # Stale token from an earlier rotation, a logout or a password change.
            logger.warning(f"Rejected refresh token for user {user_id}")
            raise AuthError("Invalid refresh token or token expired", code="INVALID_REFRESH_TOKEN")

        return user, TokenService.issue_token_pair(db, user)

    @staticmethod
    def revoke_refresh_token(db: Session, user: User) -> None:
        """Forget the stored refresh token; safe to call repeatedly."""
        user.refresh_token_hash = None
        user.refresh_token_expires_at = None
        db.commit()

    @staticmethod
    def authenticate_access_token(db: Session, token: Optional[str]) -> User:
        """
        Resolve an access token to an active user

        Shared by the HTTP dependency and the live channel handshake.

        Raises:
            AuthError: with code NO_TOKEN, TOKEN_EXPIRED, INVALID_TOKEN,
                INVALID_TOKEN_TYPE, USER_NOT_FOUND, ACCOUNT_DEACTIVATED or
                PASSWORD_CHANGED
        """
        if not token:
            raise MissingTokenError()

        payload = decode_token(token)
        if payload.get("typ") != ACCESS_TOKEN_TYPE:
            raise TokenTypeError()

        user_id = TokenService._subject(payload)
        if user_id is None:
            raise TokenInvalidError()

        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise AuthError("User not found", code="USER_NOT_FOUND")
        if not user.is_active:
            raise AccountDeactivatedError()
        if user.changed_password_after(int(payload.get("iat", 0))):
            raise PasswordChangedError()

        return user


token_service = TokenService()
