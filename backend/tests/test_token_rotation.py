from datetime import datetime, timedelta

from broker_dashboard.config import settings
from broker_dashboard.core.security import hash_refresh_token
from broker_dashboard.models.user import User
from broker_dashboard.services.token_service import token_service


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


def test_refresh_from_cookie_rotates_pair(client, login):
    data = login()
    old_cookie = client.cookies.get(settings.REFRESH_COOKIE_NAME)

    response = client.post("/api/v1/auth/refresh-token")
    assert response.status_code == 200
    refreshed = response.json()["data"]
    assert refreshed["accessToken"] != data["accessToken"]
    assert refreshed["refreshToken"] != old_cookie
    assert refreshed["expiresIn"] == settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60 * 1000
    assert client.cookies.get(settings.REFRESH_COOKIE_NAME) == refreshed["refreshToken"]

    me = client.get("/api/v1/auth/me", headers=_auth(refreshed["accessToken"]))
    assert me.status_code == 200


def test_refresh_from_body_when_no_cookie(client, login):
    data = login(remember_me=True)
    client.cookies.clear()

    response = client.post("/api/v1/auth/refresh-token", json={"refreshToken": data["refreshToken"]})
    assert response.status_code == 200
    assert response.json()["data"]["refreshToken"] != data["refreshToken"]


def test_refresh_token_is_single_use(client, login):
    data = login(remember_me=True)
    client.cookies.clear()

    first = client.post("/api/v1/auth/refresh-token", json={"refreshToken": data["refreshToken"]})
    assert first.status_code == 200

    client.cookies.clear()
    replay = client.post("/api/v1/auth/refresh-token", json={"refreshToken": data["refreshToken"]})
    assert replay.status_code == 401
    assert replay.json()["code"] == "INVALID_REFRESH_TOKEN"


def test_refresh_requires_a_token(client):
    response = client.post("/api/v1/auth/refresh-token")
    assert response.status_code == 401
    assert response.json()["code"] == "NO_REFRESH_TOKEN"


def test_access_token_is_not_a_refresh_token(client, login):
    data = login()
    client.cookies.clear()
    response = client.post("/api/v1/auth/refresh-token", json={"refreshToken": data["accessToken"]})
    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_REFRESH_TOKEN"


def test_logout_revokes_refresh_token(client, login, db):
    data = login(remember_me=True)
    response = client.post("/api/v1/auth/logout", headers=_auth(data["accessToken"]))
    assert response.status_code == 200
    assert not client.cookies.get(settings.REFRESH_COOKIE_NAME)

    db.expire_all()
    user = db.query(User).filter(User.id == data["user"]["id"]).first()
    assert user.refresh_token_hash is None
    assert user.refresh_token_expires_at is None

    again = client.post("/api/v1/auth/logout", headers=_auth(data["accessToken"]))
    assert again.status_code == 200

    refresh = client.post("/api/v1/auth/refresh-token", json={"refreshToken": data["refreshToken"]})
    assert refresh.status_code == 401
    assert refresh.json()["code"] == "INVALID_REFRESH_TOKEN"


def test_only_digest_is_persisted(client, login, db):
    data = login(remember_me=True)
    db.expire_all()
    user = db.query(User).filter(User.id == data["user"]["id"]).first()
    assert user.refresh_token_hash == hash_refresh_token(data["refreshToken"])
    assert user.refresh_token_hash != data["refreshToken"]


def test_new_login_replaces_previous_refresh_token(client, login, db):
    first = login(remember_me=True)
    second = client.post(
        "/api/v1/auth/login",
        json={"email": "ann@x.com", "password": "secret1", "rememberMe": True},
    ).json()["data"]

    owner, pair = token_service.rotate_refresh_token(db, second["refreshToken"])
    assert pair.refresh_token != second["refreshToken"]

    client.cookies.clear()
    stale = client.post("/api/v1/auth/refresh-token", json={"refreshToken": first["refreshToken"]})
    assert stale.status_code == 401
    assert owner.id == first["user"]["id"]


def test_expired_refresh_token_is_rejected(client, login, db):
    data = login(remember_me=True)
    user = db.query(User).filter(User.id == data["user"]["id"]).first()
    user.refresh_token_expires_at = datetime.utcnow() - timedelta(minutes=1)
    db.commit()

    client.cookies.clear()
    response = client.post("/api/v1/auth/refresh-token", json={"refreshToken": data["refreshToken"]})
    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_REFRESH_TOKEN"


def test_change_password_revokes_refresh_token(client, login):
    data = login(remember_me=True)
    changed = client.put(
        "/api/v1/auth/change-password",
        json={"currentPassword": "secret1", "newPassword": "newsecret"},
        headers=_auth(data["accessToken"]),
    )
    assert changed.status_code == 200

    client.cookies.clear()
    response = client.post("/api/v1/auth/refresh-token", json={"refreshToken": data["refreshToken"]})
    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_REFRESH_TOKEN"
