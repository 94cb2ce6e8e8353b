"""Shared pytest fixtures for test suite"""
import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Generator
from unittest.mock import patch

import pytest
from cryptography.fernet import Fernet

# Settings are read at import time, so the environment must be ready first
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("ADMIN_USERNAME", "admin")
os.environ.setdefault("ADMIN_PASSWORD", "admin-test-password")
os.environ.setdefault("TOKEN_REFRESH_ENABLED", "false")
os.environ["STRIPE_SECRET_KEY"] = ""

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from igbridge.db.session import get_db
from igbridge.db.sql_repositories import SqlCredentialRepository
from igbridge.main import app
from igbridge.models import Base
from igbridge.tasks.token_refresh import TokenRefreshScheduler

from fakes import FakeGraphClient, RecordingSleep


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

ADMIN_AUTH = ("admin", "admin-test-password")


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def graph_client() -> FakeGraphClient:
    return FakeGraphClient()


@pytest.fixture(scope="function")
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture(autouse=True)
def mock_stripe():
    """No test talks to Stripe"""
    with patch("igbridge.services.subscription_service.stripe.Subscription.list") as subscription_list:
        subscription_list.return_value = {"data": []}
        yield subscription_list


@pytest.fixture(scope="function")
def client(db_session: Session, graph_client: FakeGraphClient,
           recording_sleep: RecordingSleep) -> Generator[TestClient, None, None]:
    """FastAPI test client on the test database with a scripted Graph client.

    The lifespan is not entered, so app.state is populated here instead.
    """

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    @contextmanager
    def credential_scope():
        yield SqlCredentialRepository(db_session)

    app.dependency_overrides[get_db] = override_get_db
    app.state.graph_client = graph_client
    app.state.token_scheduler = TokenRefreshScheduler(
        graph_client, repository_scope=credential_scope, delay_seconds=0, sleep=recording_sleep
    )

    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
