import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="broker-dashboard-tests-")

# Settings are read at import time, so the environment must be ready first.
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["DB_INIT_MODE"] = "create_all"
os.environ["BROADCAST_ENABLED"] = "false"
os.environ["LOG_FILE"] = os.path.join(_TMP_DIR, "app.log")
os.environ["ENVIRONMENT"] = "test"

import pytest
from fastapi.testclient import TestClient

from broker_dashboard.core.database import Base, SessionLocal, engine
from broker_dashboard.main import app
from broker_dashboard.services.channel_manager import channel_manager
from broker_dashboard.services.rate_limiter import rate_limiter

DEFAULT_PASSWORD = "secret1"


@pytest.fixture(autouse=True)
def fresh_state():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    rate_limiter.reset()
    channel_manager.clear()
    yield
    channel_manager.clear()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def login(client):
    """Register (if needed) and log in; returns the login `data` payload."""

    def _login(email="ann@x.com", password=DEFAULT_PASSWORD, name="Ann", remember_me=False):
        client.post("/api/v1/auth/register", json={"name": name, "email": email, "password": password})
        response = client.post(
            "/api/v1/auth/login",
            json={"email": email, "password": password, "rememberMe": remember_me},
        )
        assert response.status_code == 200, response.text
        return response.json()["data"]

    return _login
