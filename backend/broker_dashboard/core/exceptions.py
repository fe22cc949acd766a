"""Custom exception classes for the application"""

from typing import Optional, Dict, Any


class BaseAPIException(Exception):
    """Base exception for all API errors"""

    default_code = "ERROR"

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)


# Authentication Errors
class AuthError(BaseAPIException):
    """Bad credentials or token. `code` tells the client which one."""

    default_code = "AUTH_ERROR"

    def __init__(self, message: str = "Authentication failed", code: Optional[str] = None):
        super().__init__(message, status_code=401, code=code)


class InvalidCredentialsError(AuthError):
    """Invalid email or password"""
    def __init__(self):
        super().__init__("Invalid email or password", code="INVALID_CREDENTIALS")


class MissingTokenError(AuthError):
    def __init__(self):
        super().__init__("Not authorized to access this route", code="NO_TOKEN")


class TokenExpiredError(AuthError):
    """JWT token has expired"""
    def __init__(self):
        super().__init__("Token has expired", code="TOKEN_EXPIRED")


class TokenInvalidError(AuthError):
    """JWT token is invalid"""
    def __init__(self):
        super().__init__("Invalid token", code="INVALID_TOKEN")


class TokenTypeError(AuthError):
    """A refresh token was presented where an access token is required"""
    def __init__(self):
        super().__init__("Invalid token type", code="INVALID_TOKEN_TYPE")


class AccountDeactivatedError(AuthError):
    def __init__(self):
        super().__init__(
            "Account has been deactivated. Please contact support.",
            code="ACCOUNT_DEACTIVATED",
        )


class PasswordChangedError(AuthError):
    def __init__(self):
        super().__init__(
            "Password recently changed. Please login again.",
            code="PASSWORD_CHANGED",
        )


class LockedError(BaseAPIException):
    """Account is locked due to failed login attempts"""
    def __init__(self, remaining_minutes: int):
        super().__init__(
            "Account is locked due to too many failed attempts. "
            f"Try again in {remaining_minutes} minutes.",
            status_code=423,
            code="ACCOUNT_LOCKED",
            details={"remaining_minutes": remaining_minutes}
        )


# Resource Errors
class NotFoundError(BaseAPIException):
    """Resource not found"""
    def __init__(self, resource: str):
        super().__init__(f"{resource} not found", status_code=404, code="NOT_FOUND")


class ConflictError(BaseAPIException):
    """Request would duplicate existing state"""
    def __init__(self, message: str, code: str = "CONFLICT"):
        super().__init__(message, status_code=400, code=code)


# Validation Errors
class ValidationError(BaseAPIException):
    """Validation error"""
    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, status_code=400, code=code, details=details)


# System Errors
class ServerError(BaseAPIException):
    """Unexpected failure; the message is safe to show to clients"""
    def __init__(self, message: str = "Internal server error"):
        super().__init__(message, status_code=500, code="SERVER_ERROR")


class RateLimitExceededError(BaseAPIException):
    """Rate limit exceeded"""
    def __init__(self, message: str = "Rate limit exceeded. Please try again later."):
        super().__init__(message, status_code=429, code="RATE_LIMITED")
