"""API dependencies - authentication"""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional

from broker_dashboard.core.database import get_db
from broker_dashboard.models.user import User
from broker_dashboard.services.token_service import token_service

# The gate reports its own NO_TOKEN error instead of FastAPI's 403.
security = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Get current authenticated user from the access token

    Args:
        credentials: HTTP Bearer credentials, if any
        db: Database session

    Returns:
        Current user

    Raises:
        AuthError: If the token is missing, invalid, expired or stale
    """
    token = credentials.credentials if credentials else None
    return token_service.authenticate_access_token(db, token)


def get_client_ip(request) -> str:
    """Best-effort client address for rate limiting"""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
