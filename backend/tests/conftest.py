import os

# Settings and the engine are built at import time; point them at test values first.
os.environ.setdefault("ENV", "dev")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("CORS_ORIGINS", "https://app.example.com,https://www.example.com")

import base64
from contextlib import contextmanager

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.auth.identity import Identity
from app.auth.provider import resolve_principal
from app.core import config as app_config
from app.core.base import Base
from app.core.database import get_db

# Import models so they register with SQLAlchemy metadata.
from app.models.user import User  # noqa: F401

TEST_WEBHOOK_SECRET = "whsec_" + base64.b64encode(b"test-webhook-secret").decode("utf-8")
DEFAULT_ORIGIN = "https://app.example.com"


@pytest.fixture(scope="session")
def db_engine():
    # In-memory SQLite for fast, isolated tests.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture()
def db_session(db_engine):
    # The in-memory DB persists across tests with StaticPool; reset schema per test.
    Base.metadata.drop_all(bind=db_engine)
    Base.metadata.create_all(bind=db_engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def _reset_mutable_settings():
    """
    Tests tweak the process-global settings object; restore it after each test.
    """
    keys = [
        "IDENTITY_WEBHOOK_SECRET",
    ]
    original = {k: getattr(app_config.settings, k) for k in keys}
    app_config.settings.IDENTITY_WEBHOOK_SECRET = TEST_WEBHOOK_SECRET
    try:
        yield
    finally:
        for k, v in original.items():
            setattr(app_config.settings, k, v)


@pytest.fixture()
def app(db_session):
    import app.main as main

    fastapi_app = main.app

    def override_get_db():
        yield db_session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.state.principal_resolver = lambda request: Identity.unauthenticated()
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()
    fastapi_app.state.principal_resolver = resolve_principal


@pytest.fixture()
def anonymous_client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def principal():
    return Identity.from_claims(
        {
            "sub": "user_2abc",
            "email": "Ada@Example.com",
            "first_name": "Ada",
            "last_name": "Lovelace",
        }
    )


@pytest.fixture()
def client(app, principal):
    """
    Default client whose requests resolve to ``principal``.
    """
    app.state.principal_resolver = lambda request: principal
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def client_for(app):
    """
    Context manager to create a client authenticated as an arbitrary identity.

    Usage:
        with client_for(identity) as c:
            ...
    """

    @contextmanager
    def _client_for(identity: Identity):
        previous = app.state.principal_resolver
        app.state.principal_resolver = lambda request: identity
        with TestClient(app) as c:
            yield c
        app.state.principal_resolver = previous

    return _client_for


@pytest.fixture()
def webhook_secret() -> str:
    return TEST_WEBHOOK_SECRET


@pytest.fixture()
def default_origin() -> str:
    return DEFAULT_ORIGIN
