"""Authentication routes"""

from fastapi import APIRouter, Depends, status, Request, Response
from sqlalchemy.orm import Session
from typing import Optional

from broker_dashboard.core.database import get_db
from broker_dashboard.config import settings
from broker_dashboard.schemas.user import (
    RegisterRequest,
    LoginRequest,
    EmailLoginRequest,
    RefreshTokenRequest,
    ChangePasswordRequest,
    LoginData,
    TokenData,
    UserResponse,
    UserSummary,
    VerifyData,
)
from broker_dashboard.schemas.response import (
    APIResponse,
    LoginResponse,
    RegisterResponse,
    TokenResponse,
    UserEnvelope,
    VerifyResponse,
)
from broker_dashboard.services.user_service import user_service
from broker_dashboard.services.token_service import TokenPair, token_service
from broker_dashboard.services.rate_limiter import rate_limiter
from broker_dashboard.api.deps import get_client_ip, get_current_user
from broker_dashboard.models.user import User

router = APIRouter()


def _login_rules():
    return [
        (settings.LOGIN_RATE_LIMIT_PER_MINUTE, 60, "Too many login attempts. Please wait a minute."),
        (settings.LOGIN_RATE_LIMIT_PER_HOUR, 3600, "Too many login attempts. Please try again later."),
    ]


def _set_refresh_cookie(response: Response, refresh_token: str) -> None:
    response.set_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        value=refresh_token,
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
        httponly=True,
        secure=settings.is_production,
        samesite="none" if settings.is_production else "strict",
    )


def _clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        httponly=True,
        secure=settings.is_production,
        samesite="none" if settings.is_production else "strict",
    )


def _login_response(user: User, pair: TokenPair, remember_me: bool, response: Response) -> LoginResponse:
    _set_refresh_cookie(response, pair.refresh_token)
    return LoginResponse(
        message="Login successful",
        data=LoginData(
            access_token=pair.access_token,
            # The body copy is only for clients that persist it themselves.
            refresh_token=pair.refresh_token if remember_me else None,
            expires_in=pair.expires_in_ms,
            user=UserResponse.model_validate(user),
        ),
    )


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(
    body: RegisterRequest,
    db: Session = Depends(get_db)
):
    """
    Register a new account

    No token is issued; the client logs in afterwards.
    """
    user = user_service.create_user(db, body.name, body.email, body.password)
    return RegisterResponse(
        message="User registered successfully. Please login.",
        data=UserSummary.model_validate(user),
    )


@router.post(
    "/login",
    response_model=LoginResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
)
def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db)
):
    """
    Login endpoint - authenticate with email and password

    Args:
        body: Email, password and rememberMe flag
        db: Database session

    Returns:
        Access token, expiry in milliseconds and user info; the refresh token
        travels in an HTTP-only cookie and, with rememberMe, in the body too
    """
    rate_limiter.enforce(f"login:{get_client_ip(request)}", _login_rules())

    user = user_service.authenticate_user(db, body.email, body.password)
    pair = token_service.issue_token_pair(db, user)
    return _login_response(user, pair, body.remember_me, response)


@router.post(
    "/email-login",
    response_model=LoginResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
)
def email_login(
    body: EmailLoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db)
):
    """Login with an email address only; unknown addresses get an account"""
    rate_limiter.enforce(f"login:{get_client_ip(request)}", _login_rules())

    user = user_service.get_or_create_by_email(db, body.email)
    pair = token_service.issue_token_pair(db, user)
    return _login_response(user, pair, body.remember_me, response)


@router.post("/refresh-token", response_model=TokenResponse)
def refresh_token(
    request: Request,
    response: Response,
    body: Optional[RefreshTokenRequest] = None,
    db: Session = Depends(get_db),
):
    """
    Exchange a refresh token for a new pair

    The cookie wins over the body when both are present.
    """
    rate_limiter.enforce(
        f"refresh:{get_client_ip(request)}",
        [(settings.REFRESH_RATE_LIMIT_PER_MINUTE, 60, "Too many refresh attempts. Slow down.")],
    )

    raw = request.cookies.get(settings.REFRESH_COOKIE_NAME) or (body.refresh_token if body else None)
    _, pair = token_service.rotate_refresh_token(db, raw)
    _set_refresh_cookie(response, pair.refresh_token)

    return TokenResponse(
        message="Token refreshed successfully",
        data=TokenData(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_in=pair.expires_in_ms,
        ),
    )


@router.get("/me", response_model=UserEnvelope)
def get_current_user_info(
    current_user: User = Depends(get_current_user)
):
    """Current user information"""
    return UserEnvelope(data=UserResponse.model_validate(current_user))


@router.post("/logout", response_model=APIResponse, status_code=status.HTTP_200_OK)
def logout(
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Forget the stored refresh token and expire the cookie"""
    token_service.revoke_refresh_token(db, current_user)
    _clear_refresh_cookie(response)
    return APIResponse(message="Logged out successfully")


@router.put("/change-password", response_model=APIResponse)
def change_password(
    body: ChangePasswordRequest,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Change the password

    Existing sessions end: the refresh token is cleared and access tokens
    issued before the change are rejected.
    """
    user_service.change_password(db, current_user.id, body.current_password, body.new_password)
    _clear_refresh_cookie(response)
    return APIResponse(message="Password changed successfully. Please login again.")


@router.get("/verify", response_model=VerifyResponse)
def verify(
    current_user: User = Depends(get_current_user)
):
    """Cheap token check for clients"""
    return VerifyResponse(message="Token is valid", data=VerifyData(user_id=current_user.id))
