import os

# Settings are read at import time, so the environment goes first.
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LOG_FILE"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from journal.database import get_db
from journal.main import app
from journal.models import Base


@pytest.fixture(scope="session")
def engine():
    """In-memory SQLite engine shared for the test session."""
    return create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )

@pytest.fixture
def tables(engine):
    """Fresh tables for every test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)

@pytest.fixture
def db_session(engine, tables):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()

@pytest.fixture
def client(db_session):
    """TestClient with the app's database swapped for the test session."""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()

@pytest.fixture
def user_data():
    return {"username": "alice", "password": "alicepassword123"}

@pytest.fixture
def second_user_data():
    return {"username": "bob", "password": "bobpassword456"}

def register_and_auth(client, username, password):
    """Registers (if needed) then logs in, returning the bearer token."""
    r1 = client.post("/api/auth/register", json={"username": username, "password": password})
    assert r1.status_code in (201, 409)

    r2 = client.post("/api/auth/login", data={"username": username, "password": password})
    assert r2.status_code == 200
    return r2.json()["access_token"]

@pytest.fixture
def auth_header(client, user_data):
    token = register_and_auth(client, user_data["username"], user_data["password"])
    return {"Authorization": f"Bearer {token}"}

@pytest.fixture
def second_auth_header(client, second_user_data):
    token = register_and_auth(client, second_user_data["username"], second_user_data["password"])
    return {"Authorization": f"Bearer {token}"}

@pytest.fixture
def admin_header(client):
    token = register_and_auth(client, "admin", "adminpassword")
    return {"Authorization": f"Bearer {token}"}
