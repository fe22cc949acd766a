import asyncio
import stat
from datetime import timedelta

import httpx
import pytest

from broker_dashboard.client import (
    APIError,
    FileTokenStore,
    MemoryTokenStore,
    SessionClient,
    SessionExpiredError,
    SessionStorage,
    StorageScope,
)
from broker_dashboard.client.storage import ACCESS_TOKEN, REFRESH_TOKEN, REMEMBER_ME, TOKEN_EXPIRY
from broker_dashboard.core.security import create_access_token
from broker_dashboard.main import app


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _session_client(**kwargs):
    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver/api/v1")
    return SessionClient(http_client=http, **kwargs)


async def _logged_in(client, remember_me=False):
    await client.register("Ann", "ann@x.com", "secret1")
    await client.login("ann@x.com", "secret1", remember_me=remember_me)


def _expire_access_token(client):
    expired = create_access_token({"sub": str(client.user["id"])}, expires_delta=timedelta(seconds=-1))
    client.storage.set(ACCESS_TOKEN, expired)
    return expired


@pytest.mark.asyncio
async def test_concurrent_calls_share_a_single_refresh():
    ended = []
    async with _session_client(on_session_expired=ended.append) as client:
        await _logged_in(client, remember_me=True)
        await client.subscribe("AAPL")
        expired = _expire_access_token(client)

        results = await asyncio.gather(*(client.subscribed_stocks() for _ in range(5)))

        assert [r["data"] for r in results] == [["AAPL"]] * 5
        assert client.refresh_count == 1
        assert client.access_token != expired
        assert ended == []


@pytest.mark.asyncio
async def test_refresh_falls_back_to_cookie_without_stored_token():
    async with _session_client() as client:
        await _logged_in(client, remember_me=False)
        assert client.storage.get(REFRESH_TOKEN) is None
        _expire_access_token(client)

        me = await client.me()

        assert me["data"]["email"] == "ann@x.com"
        assert client.refresh_count == 1


@pytest.mark.asyncio
async def test_remember_me_selects_storage_scope():
    durable, session = MemoryTokenStore(), MemoryTokenStore()
    async with _session_client(storage=SessionStorage(durable=durable, session=session)) as client:
        await _logged_in(client, remember_me=True)
        assert client.storage.scope is StorageScope.DURABLE
        assert durable.get(ACCESS_TOKEN) and durable.get(REFRESH_TOKEN)
        assert session.get(ACCESS_TOKEN) is None
        assert client.session_id.startswith("session_")

        await client.login("ann@x.com", "secret1", remember_me=False)
        assert client.storage.scope is StorageScope.SESSION
        assert session.get(ACCESS_TOKEN)
        assert durable.get(ACCESS_TOKEN) is None


@pytest.mark.asyncio
async def test_failed_refresh_fails_every_waiter_and_ends_session():
    ended = []
    async with _session_client(on_session_expired=ended.append) as client:
        await _logged_in(client)
        _expire_access_token(client)
        client._http.cookies.clear()

        results = await asyncio.gather(
            *(client.subscribed_stocks() for _ in range(3)),
            return_exceptions=True,
        )

        assert all(isinstance(r, SessionExpiredError) and r.reason == "expired" for r in results)
        assert ended == ["expired"]
        assert client.access_token is None
        assert not client.is_authenticated()


@pytest.mark.asyncio
async def test_gate_failure_logs_out_without_refreshing():
    ended = []
    async with _session_client(on_session_expired=ended.append) as client:
        await _logged_in(client)
        client.storage.set(ACCESS_TOKEN, "garbage")

        with pytest.raises(SessionExpiredError) as exc:
            await client.me()

        assert exc.value.reason == "unauthorized"
        assert ended == ["unauthorized"]
        assert client.refresh_count == 0
        assert client.access_token is None


@pytest.mark.asyncio
async def test_other_unauthorized_answers_reach_the_caller():
    async with _session_client() as client:
        await _logged_in(client)

        with pytest.raises(APIError) as exc:
            await client.change_password("wrong-password", "newsecret")

        assert exc.value.status_code == 401
        assert exc.value.code == "INVALID_PASSWORD"
        assert client.access_token is not None


@pytest.mark.asyncio
async def test_login_errors_are_raised():
    async with _session_client() as client:
        with pytest.raises(APIError) as exc:
            await client.login("nobody@x.com", "secret1")
        assert exc.value.code == "INVALID_CREDENTIALS"
        assert not client.is_authenticated()


@pytest.mark.asyncio
async def test_ensure_fresh_token_refreshes_near_expiry():
    async with _session_client() as client:
        await _logged_in(client, remember_me=True)
        assert await client.ensure_fresh_token() is False

        client.storage.set(TOKEN_EXPIRY, client.storage.get(TOKEN_EXPIRY) - 14 * 60 * 1000)
        assert client.is_token_expiring_soon()
        assert await client.ensure_fresh_token() is True
        assert client.refresh_count == 1
        assert not client.is_token_expiring_soon()


@pytest.mark.asyncio
async def test_inactivity_logout():
    ended = []
    clock = Clock()
    async with _session_client(on_session_expired=ended.append, clock=clock) as client:
        await _logged_in(client)
        clock.now += 10 * 60
        assert await client.expire_if_idle() is False

        clock.now += 31 * 60
        assert await client.expire_if_idle() is True
        assert ended == ["inactive"]
        assert client.access_token is None


@pytest.mark.asyncio
async def test_logout_revokes_server_session():
    async with _session_client() as client:
        await _logged_in(client, remember_me=True)
        refresh_token = client.storage.get(REFRESH_TOKEN)

        await client.logout()

        assert client.access_token is None
        response = await client._http.post("/auth/refresh-token", json={"refreshToken": refresh_token})
        assert response.status_code == 401


def test_file_store_survives_restart(tmp_path):
    path = tmp_path / "tokens.json"
    storage = SessionStorage(durable=FileTokenStore(path))
    storage.choose_scope(True)
    storage.set(ACCESS_TOKEN, "abc")

    reloaded = SessionStorage(durable=FileTokenStore(path))
    assert reloaded.scope is StorageScope.DURABLE
    assert reloaded.get(ACCESS_TOKEN) == "abc"

    reloaded.clear_all()
    assert SessionStorage(durable=FileTokenStore(path)).get(ACCESS_TOKEN) is None


def test_scope_is_fixed_until_the_next_choice():
    durable = MemoryTokenStore()
    storage = SessionStorage(durable=durable)
    storage.choose_scope(True)
    storage.set(ACCESS_TOKEN, "abc")

    durable.delete(REMEMBER_ME)
    assert storage.scope is StorageScope.DURABLE
    assert storage.get(ACCESS_TOKEN) == "abc"

    storage.clear_all()
    assert storage.scope is StorageScope.SESSION


def test_file_store_is_private_to_owner(tmp_path):
    path = tmp_path / "tokens.json"
    path.write_text("{}", encoding="utf-8")
    path.chmod(0o644)

    store = FileTokenStore(path)
    store.set(REFRESH_TOKEN, "secret-refresh")

    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    assert FileTokenStore(path).get(REFRESH_TOKEN) == "secret-refresh"
