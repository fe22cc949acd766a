"""Generic API response schemas"""

from pydantic import BaseModel, Field
from typing import Optional, Any, Dict, List
from datetime import datetime

from broker_dashboard.schemas.user import LoginData, TokenData, UserResponse, UserSummary, VerifyData


def _now() -> str:
    return datetime.utcnow().isoformat()


class APIResponse(BaseModel):
    """Generic API success response"""
    success: bool = True
    message: Optional[str] = None
    data: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Generic API error response"""
    success: bool = False
    error: str
    code: str
    details: Optional[Dict[str, Any]] = None
    path: Optional[str] = None
    timestamp: str = Field(default_factory=_now)


class RegisterResponse(APIResponse):
    data: UserSummary


class LoginResponse(APIResponse):
    data: LoginData


class TokenResponse(APIResponse):
    data: TokenData


class UserEnvelope(APIResponse):
    data: UserResponse


class VerifyResponse(APIResponse):
    data: VerifyData


class TickerListResponse(APIResponse):
    data: List[str]
