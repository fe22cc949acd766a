"""User service - registration, credential checks, lockout and password changes"""

import math
import re
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from broker_dashboard.config import settings
from broker_dashboard.models.user import User
from broker_dashboard.core.security import (
    get_password_hash,
    verify_password,
    generate_throwaway_password,
    naive_utc,
)
from broker_dashboard.core.exceptions import (
    AccountDeactivatedError,
    AuthError,
    ConflictError,
    InvalidCredentialsError,
    LockedError,
    NotFoundError,
    ValidationError,
)
import logging

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^\w+([.+-]?\w+)*@\w+([.-]?\w+)*(\.\w{2,})+$")

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50
PASSWORD_MIN_LENGTH = 6


def normalize_email(email: Optional[str]) -> str:
    return str(email or "").strip().lower()


class UserService:
    """Service for user accounts"""

    @staticmethod
    def create_user(db: Session, name: Optional[str], email: Optional[str], password: Optional[str]) -> User:
        """
        Register a new user

        Args:
            db: Database session
            name: Display name (2-50 characters)
            email: Email address, stored lowercased
            password: Plain text password (6+ characters)

        Returns:
            Created user
        """
        name = (name or "").strip()
        email = normalize_email(email)

        if not name or not email or not password:
            raise ValidationError("Please provide name, email and password")
        if not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
            raise ValidationError(
                f"Name must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters"
            )
        if not _EMAIL_RE.match(email):
            raise ValidationError("Please provide a valid email")
        if len(password) < PASSWORD_MIN_LENGTH:
            raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")

        if UserService.get_user_by_email(db, email):
            raise ConflictError("User with this email already exists", code="EMAIL_IN_USE")

        user = User(
            name=name,
            email=email,
            password_hash=get_password_hash(password),
        )

        db.add(user)
        db.commit()
        db.refresh(user)

        logger.info(f"Registered user {user.id} ({user.email})")
        return user

    @staticmethod
    def authenticate_user(db: Session, email: Optional[str], password: Optional[str]) -> User:
        """
        Check credentials with account lockout protection

        A lock that has run out is only cleared here, on the next attempt.

        Args:
            db: Database session
            email: Email address
            password: Password

        Returns:
            Authenticated user, with attempts reset and last_login stamped
        """
        email = normalize_email(email)
        if not email or not password:
            raise ValidationError("Please provide email and password")

        user = UserService.get_user_by_email(db, email)
        if not user:
            raise InvalidCredentialsError()

        if not user.is_active:
            raise AccountDeactivatedError()

        now = datetime.utcnow()
        locked_until = naive_utc(user.locked_until)

        if locked_until and locked_until > now:
            remaining = math.ceil((locked_until - now).total_seconds() / 60)
            raise LockedError(remaining)

        if not verify_password(password, user.password_hash):
            if locked_until:
                # Previous lock expired: start a fresh count.
                user.failed_login_attempts = 1
                user.locked_until = None
            else:
                user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
                if user.failed_login_attempts >= settings.MAX_FAILED_LOGIN_ATTEMPTS:
                    user.locked_until = now + timedelta(minutes=settings.LOCKOUT_DURATION_MINUTES)
                    logger.warning(f"Account locked for user {user.id} until {user.locked_until.isoformat()}")
            db.commit()
            raise InvalidCredentialsError()

        UserService.record_successful_login(db, user)
        return user

    @staticmethod
    def record_successful_login(db: Session, user: User) -> None:
        user.failed_login_attempts = 0
        user.locked_until = None
        user.last_login = datetime.utcnow()
        db.commit()
        logger.info(f"User authenticated: {user.id}")

    @staticmethod
    def get_or_create_by_email(db: Session, email: Optional[str]) -> User:
        """
        Find a user by email, provisioning one with a throwaway password if none exists

        Args:
            db: Database session
            email: Email address

        Returns:
            Active user
        """
        email = normalize_email(email)
        if not email:
            raise ValidationError("Please provide email")

        user = UserService.get_user_by_email(db, email)
        if not user:
            if not _EMAIL_RE.match(email):
                raise ValidationError("Please provide a valid email")
            local_part = email.split("@")[0]
            name = local_part[:NAME_MAX_LENGTH] if len(local_part) >= NAME_MIN_LENGTH else "User"
            user = User(
                name=name,
                email=email,
                password_hash=get_password_hash(generate_throwaway_password()),
            )
            db.add(user)
            db.commit()
            db.refresh(user)
            logger.info(f"Provisioned user {user.id} from email-only login")

        if not user.is_active:
            raise AccountDeactivatedError()

        UserService.record_successful_login(db, user)
        return user

    @staticmethod
    def change_password(
        db: Session,
        user_id: int,
        current_password: Optional[str],
        new_password: Optional[str]
    ) -> None:
        """
        Replace the password and invalidate the stored refresh token

        Access tokens issued before the change are rejected by the gate through
        `password_changed_at`.
        """
        if not current_password or not new_password:
            raise ValidationError("Please provide current and new password")
        if len(new_password) < PASSWORD_MIN_LENGTH:
            raise ValidationError(f"New password must be at least {PASSWORD_MIN_LENGTH} characters")

        user = UserService.get_user_by_id(db, user_id)
        if not user:
            raise NotFoundError("User")

        if not verify_password(current_password, user.password_hash):
            raise AuthError("Current password is incorrect", code="INVALID_PASSWORD")

        user.password_hash = get_password_hash(new_password)
        # One second back so a token issued right after the change stays valid.
        user.password_changed_at = datetime.utcnow() - timedelta(seconds=1)
        user.refresh_token_hash = None
        user.refresh_token_expires_at = None
        db.commit()

        logger.info(f"Password changed for user {user.id}")

    @staticmethod
    def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
        """Get user by ID"""
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_user_by_email(db: Session, email: str) -> Optional[User]:
        """Get user by normalized email"""
        return db.query(User).filter(User.email == normalize_email(email)).first()


# Singleton instance
user_service = UserService()
