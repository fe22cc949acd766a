"""Security utilities - JWT, password hashing, refresh token digests"""

from datetime import datetime, timedelta
from typing import Optional, Dict, Any
import hashlib
import secrets

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from broker_dashboard.config import settings
from broker_dashboard.core.exceptions import TokenExpiredError, TokenInvalidError

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

# bcrypt only looks at the first 72 bytes and newer releases refuse longer input.
_BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash

    Args:
        plain_password: Plain text password
        hashed_password: Hashed password

    Returns:
        bool: True if password matches
    """
    if not plain_password or not hashed_password:
        return False
    return bcrypt.checkpw(
        _password_bytes(plain_password),
        hashed_password.encode("utf-8")
    )


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt

    Args:
        password: Plain text password

    Returns:
        str: Hashed password
    """
    return bcrypt.hashpw(
        _password_bytes(password),
        bcrypt.gensalt(rounds=12)
    ).decode("utf-8")


def generate_throwaway_password() -> str:
    """Random password for accounts provisioned by email-only login."""
    return secrets.token_hex(12)


def hash_refresh_token(token: str) -> str:
    """One-way digest stored in place of the raw refresh token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _encode(data: Dict[str, Any], token_type: str, expires_delta: timedelta, secret: str) -> str:
    now = datetime.utcnow()
    to_encode = data.copy()
    to_encode.update({
        "typ": token_type,
        "exp": now + expires_delta,
        "iat": now,
        "jti": secrets.token_urlsafe(16)  # Unique token ID
    })
    return jwt.encode(to_encode, secret, algorithm=settings.ALGORITHM)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create JWT access token

    Args:
        data: Data to encode in token
        expires_delta: Token expiration time

    Returns:
        str: Encoded JWT token
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return _encode(data, ACCESS_TOKEN_TYPE, expires_delta, settings.SECRET_KEY)


def create_refresh_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create JWT refresh token, signed with the refresh secret

    Args:
        data: Data to encode in token
        expires_delta: Token expiration time

    Returns:
        str: Encoded JWT token
    """
    if expires_delta is None:
        expires_delta = timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
    return _encode(data, REFRESH_TOKEN_TYPE, expires_delta, settings.get_refresh_secret())


def decode_token(token: str, refresh: bool = False) -> Dict[str, Any]:
    """
    Decode and verify a JWT

    Args:
        token: JWT token string
        refresh: Verify against the refresh secret instead of the access secret

    Returns:
        Dict: Decoded claims

    Raises:
        TokenExpiredError: Signature is valid but `exp` has passed
        TokenInvalidError: Token is malformed or the signature does not verify
    """
    secret = settings.get_refresh_secret() if refresh else settings.SECRET_KEY
    try:
        return jwt.decode(token, secret, algorithms=[settings.ALGORITHM])
    except ExpiredSignatureError:
        raise TokenExpiredError()
    except JWTError:
        raise TokenInvalidError()


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode an access token, returning None if it is invalid, expired or not an access token
    """
    try:
        payload = decode_token(token)
    except (TokenExpiredError, TokenInvalidError):
        return None
    if payload.get("typ") != ACCESS_TOKEN_TYPE:
        return None
    return payload


def naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Drop tzinfo so values read back from timezone-aware columns compare with utcnow()."""
    if dt is not None and dt.tzinfo is not None:
        return dt.replace(tzinfo=None) - (dt.utcoffset() or timedelta(0))
    return dt
