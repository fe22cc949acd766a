"""Async API client that keeps a login session alive.

Every call carries the access token and a per-login session id. When the
server answers 401 TOKEN_EXPIRED the client refreshes once, no matter how
many calls hit the expiry together, and each call is retried once with the
new token. Any other authentication failure ends the session locally.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import secrets
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx

from broker_dashboard.client.storage import (
    ACCESS_TOKEN,
    REFRESH_TOKEN,
    SESSION_ID,
    TOKEN_EXPIRY,
    USER,
    SessionStorage,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:5000/api/v1"

# 401 codes from the access gate that cannot be fixed by refreshing.
GATE_FAILURE_CODES = frozenset({
    "NO_TOKEN",
    "INVALID_TOKEN",
    "INVALID_TOKEN_TYPE",
    "USER_NOT_FOUND",
    "ACCOUNT_DEACTIVATED",
    "PASSWORD_CHANGED",
    "TOKEN_ERROR",
})

REFRESH_MARGIN_MS = 2 * 60 * 1000
INACTIVITY_TIMEOUT_SECONDS = 30 * 60

SessionCallback = Callable[[str], Union[None, Awaitable[None]]]


class SessionExpiredError(Exception):
    """The session ended; `reason` is "expired", "unauthorized" or "inactive"."""

    def __init__(self, reason: str, message: Optional[str] = None):
        super().__init__(message or f"Session ended: {reason}")
        self.reason = reason


class APIError(Exception):
    """Non-success answer from the API"""

    def __init__(self, status_code: int, code: Optional[str], message: str, response_data: Optional[dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.response_data = response_data or {}


def _body(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _now_ms() -> int:
    return int(time.time() * 1000)


def new_session_id() -> str:
    return f"session_{_now_ms()}_{secrets.token_hex(6)}"


class SessionClient:
    """Client for the broker dashboard API"""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        storage: Optional[SessionStorage] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        on_session_expired: Optional[SessionCallback] = None,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.storage = storage or SessionStorage()
        self._http = http_client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)
        self._on_session_expired = on_session_expired
        self._clock = clock
        self._last_activity = clock()
        self._refresh_task: Optional[asyncio.Task] = None
        self.refresh_count = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        await self._http.aclose()

    # Session state

    @property
    def access_token(self) -> Optional[str]:
        return self.storage.get(ACCESS_TOKEN)

    @property
    def session_id(self) -> Optional[str]:
        return self.storage.get(SESSION_ID)

    @property
    def user(self) -> Optional[dict]:
        return self.storage.get(USER)

    def is_authenticated(self) -> bool:
        if not self.access_token:
            return False
        expiry = self.storage.get(TOKEN_EXPIRY)
        if expiry and _now_ms() > int(expiry):
            return bool(self.storage.get(REFRESH_TOKEN))
        return True

    def is_token_expiring_soon(self) -> bool:
        expiry = self.storage.get(TOKEN_EXPIRY)
        if not expiry:
            return False
        return _now_ms() > int(expiry) - REFRESH_MARGIN_MS

    def _store_tokens(self, data: Dict[str, Any]) -> None:
        self.storage.set(ACCESS_TOKEN, data["accessToken"])
        if data.get("refreshToken"):
            self.storage.set(REFRESH_TOKEN, data["refreshToken"])
        self.storage.set(TOKEN_EXPIRY, _now_ms() + int(data.get("expiresIn", 0)))

    def _clear_local(self) -> None:
        self.storage.clear_all()
        self._http.cookies.clear()

    async def _notify(self, reason: str) -> None:
        if self._on_session_expired is None:
            return
        result = self._on_session_expired(reason)
        if inspect.isawaitable(result):
            await result

    async def _end_session(self, reason: str) -> None:
        logger.info(f"Session ended locally ({reason})")
        self._clear_local()
        await self._notify(reason)

    # Transport

    def _headers(self, token: Optional[str]) -> Dict[str, str]:
        headers = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        session_id = self.session_id
        if session_id:
            headers["X-Session-ID"] = session_id
        return headers

    async def _send(self, method: str, path: str, json: Any = None, token: Optional[str] = None) -> httpx.Response:
        return await self._http.request(method, path, json=json, headers=self._headers(token))

    async def request(self, method: str, path: str, json: Any = None) -> httpx.Response:
        """
        Send an authenticated request, refreshing the session if the token expired

        Returns:
            The final response; 401s that are not access-gate failures are
            returned unchanged

        Raises:
            SessionExpiredError: refresh failed or the gate rejected the session
        """
        self._last_activity = self._clock()
        token = self.access_token
        response = await self._send(method, path, json, token)
        if response.status_code != 401:
            return response

        code = _body(response).get("code")
        if code == "TOKEN_EXPIRED":
            fresh = await self._fresh_token(token)
            return await self._send(method, path, json, fresh)

        if code in GATE_FAILURE_CODES:
            await self._end_session("unauthorized")
            raise SessionExpiredError("unauthorized", _body(response).get("error"))

        return response

    # Refresh

    async def _fresh_token(self, stale_token: Optional[str]) -> str:
        current = self.access_token
        if current != stale_token:
            if current:
                # Someone else already rotated the pair.
                return current
            # The session ended while this call was in flight.
            raise SessionExpiredError("expired")
        if self._refresh_task is None:
            self._refresh_task = asyncio.ensure_future(self._refresh())
        return await asyncio.shield(self._refresh_task)

    async def _refresh(self) -> str:
        try:
            stored = self.storage.get(REFRESH_TOKEN)
            # Without a stored token the server falls back to the cookie.
            body = {"refreshToken": stored} if stored else None
            try:
                response = await self._http.post("/auth/refresh-token", json=body, headers=self._headers(None))
            except httpx.HTTPError as exc:
                logger.warning(f"Token refresh failed: {exc}")
                await self._end_session("expired")
                raise SessionExpiredError("expired", str(exc))

            payload = _body(response)
            if response.status_code != 200 or not payload.get("success"):
                logger.warning(f"Token refresh rejected: {payload.get('code')}")
                await self._end_session("expired")
                raise SessionExpiredError("expired", payload.get("error"))

            self.refresh_count += 1
            self._store_tokens(payload["data"])
            return payload["data"]["accessToken"]
        finally:
            self._refresh_task = None

    async def refresh(self) -> str:
        """Refresh now, sharing any refresh already in flight"""
        return await self._fresh_token(self.access_token)

    async def ensure_fresh_token(self) -> bool:
        """Refresh ahead of time when the token expires within two minutes"""
        if not self.access_token or not self.is_token_expiring_soon():
            return False
        await self.refresh()
        return True

    async def expire_if_idle(self) -> bool:
        """Log out when no call was made for thirty minutes"""
        if not self.access_token:
            return False
        if self._clock() - self._last_activity < INACTIVITY_TIMEOUT_SECONDS:
            return False
        await self.logout()
        await self._notify("inactive")
        return True

    # Auth endpoints

    async def _unauthenticated(self, path: str, json: Any) -> Dict[str, Any]:
        response = await self._send("POST", path, json)
        return self._unwrap(response)

    @staticmethod
    def _unwrap(response: httpx.Response) -> Dict[str, Any]:
        payload = _body(response)
        if response.is_success and payload.get("success", True):
            return payload
        raise APIError(
            response.status_code,
            payload.get("code"),
            payload.get("error") or f"Request failed with status {response.status_code}",
            payload,
        )

    async def register(self, name: str, email: str, password: str) -> Dict[str, Any]:
        return await self._unauthenticated("/auth/register", {"name": name, "email": email, "password": password})

    async def login(self, email: str, password: Optional[str] = None, remember_me: bool = False) -> Dict[str, Any]:
        """
        Log in with a password, or with the email alone when `password` is None

        The storage scope is fixed here for the whole session.
        """
        if password is None:
            payload = await self._unauthenticated("/auth/email-login", {"email": email, "rememberMe": remember_me})
        else:
            payload = await self._unauthenticated(
                "/auth/login", {"email": email, "password": password, "rememberMe": remember_me}
            )

        self.storage.clear_all()
        self.storage.choose_scope(remember_me)
        data = payload["data"]
        self._store_tokens(data)
        self.storage.set(USER, data.get("user"))
        self.storage.set(SESSION_ID, new_session_id())
        self._last_activity = self._clock()
        return payload

    async def logout(self) -> None:
        """Tell the server (best effort) and always clear local state"""
        token = self.access_token
        if token:
            try:
                await self._send("POST", "/auth/logout", None, token)
            except httpx.HTTPError as exc:
                logger.warning(f"Logout request failed: {exc}")
        self._clear_local()

    async def call(self, method: str, path: str, json: Any = None) -> Dict[str, Any]:
        """Authenticated call returning the decoded envelope"""
        return self._unwrap(await self.request(method, path, json))

    async def me(self) -> Dict[str, Any]:
        return await self.call("GET", "/auth/me")

    async def verify(self) -> Dict[str, Any]:
        return await self.call("GET", "/auth/verify")

    async def change_password(self, current_password: str, new_password: str) -> Dict[str, Any]:
        return await self.call(
            "PUT", "/auth/change-password", {"currentPassword": current_password, "newPassword": new_password}
        )

    # Stocks

    async def supported_stocks(self) -> Dict[str, Any]:
        return await self.call("GET", "/stocks")

    async def subscribed_stocks(self) -> Dict[str, Any]:
        return await self.call("GET", "/stocks/subscribed")

    async def subscribe(self, ticker: str) -> Dict[str, Any]:
        return await self.call("POST", "/stocks/subscribe", {"ticker": ticker})

    async def unsubscribe(self, ticker: str) -> Dict[str, Any]:
        return await self.call("POST", "/stocks/unsubscribe", {"ticker": ticker})
