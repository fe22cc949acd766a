"""User and token schemas

Field names are snake_case in Python and camelCase on the wire.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Optional, List
from datetime import datetime


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# Requests are deliberately lenient: field rules live in the services so that
# a missing field and a too-short field produce the same error envelope.
class RegisterRequest(CamelModel):
    """Registration payload"""
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(CamelModel):
    """Email + password login"""
    email: Optional[str] = None
    password: Optional[str] = None
    remember_me: bool = False


class EmailLoginRequest(CamelModel):
    """Email-only login (auto-provisions unknown addresses)"""
    email: Optional[str] = None
    remember_me: bool = False


class RefreshTokenRequest(CamelModel):
    """Body fallback when the refresh cookie is not sent"""
    refresh_token: Optional[str] = None


class ChangePasswordRequest(CamelModel):
    current_password: Optional[str] = None
    new_password: Optional[str] = None


class UserSummary(CamelModel):
    """Returned by registration"""
    id: int
    name: str
    email: str


class UserResponse(CamelModel):
    """Client-safe user projection"""
    id: int
    name: str
    email: str
    subscribed_stocks: List[str] = []
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None


class LoginData(CamelModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int
    user: UserResponse


class TokenData(CamelModel):
    access_token: str
    refresh_token: str
    expires_in: int


class VerifyData(CamelModel):
    user_id: int
