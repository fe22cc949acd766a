"""Pydantic schemas for API validation"""

from broker_dashboard.schemas.user import (
    RegisterRequest,
    LoginRequest,
    EmailLoginRequest,
    RefreshTokenRequest,
    ChangePasswordRequest,
    UserSummary,
    UserResponse,
    LoginData,
    TokenData,
)
from broker_dashboard.schemas.stock import TickerRequest, StockQuote, PricesPayload, PriceUpdate, LiveMessage
from broker_dashboard.schemas.response import APIResponse, ErrorResponse

__all__ = [
    "RegisterRequest", "LoginRequest", "EmailLoginRequest", "RefreshTokenRequest", "ChangePasswordRequest",
    "UserSummary", "UserResponse", "LoginData", "TokenData",
    "TickerRequest", "StockQuote", "PricesPayload", "PriceUpdate", "LiveMessage",
    "APIResponse", "ErrorResponse"
]
