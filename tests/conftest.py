"""
Pytest configuration and shared fixtures for TimeTide tests.
"""
import os
import tempfile

# Keep the application engine away from the working directory
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(tempfile.gettempdir(), 'timetide_app_test.sqlite')}")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from database.models import Base
from database.connection import get_db
from main import app
from timetide import services
from timetide.application.configuration import ConfigurationService
from timetide.config import get_settings
from timetide.infrastructure.calendar_providers import StaticCalendarProvider


@pytest.fixture(scope="session")
def test_db_engine():
    """Create a test database engine backed by a SQLite file."""
    # File-based SQLite allows multiple connections (TestClient, direct sessions, threads)
    tmp_path = os.path.join(tempfile.gettempdir(), "timetide_test_db.sqlite")
    if os.path.exists(tmp_path):
        os.remove(tmp_path)
    engine = create_engine(
        f"sqlite:///{tmp_path}",
        connect_args={"check_same_thread": False, "timeout": 30}
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(scope="function")
def session_factory(test_db_engine):
    """Session factory bound to the test engine, for code that opens its own sessions."""
    return sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)


@pytest.fixture(scope="function")
def test_db_session(test_db_engine, session_factory):
    """Create a fresh database session for each test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
        # Clean up tables between tests
        with test_db_engine.connect() as connection:
            with connection.begin():
                for table in reversed(Base.metadata.sorted_tables):
                    connection.execute(table.delete())


@pytest.fixture(scope="function")
def calendar():
    """In-memory calendar provider installed for the duration of a test."""
    provider = StaticCalendarProvider()
    services.set_calendar_provider(provider)
    yield provider
    services.set_calendar_provider(None)


@pytest.fixture(scope="function")
def test_client(test_db_session, calendar):
    """Create a test client with overridden database dependency."""

    def override_get_db():
        try:
            yield test_db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield client

    # Clean up
    app.dependency_overrides.clear()


@pytest.fixture
def config_service(test_db_session):
    return ConfigurationService(test_db_session)


@pytest.fixture
def sample_host(config_service):
    """A New York host onboarded with the default Mon-Fri 09:00-17:00 schedule."""
    return config_service.create_host("Ada Host", "ada@example.com", "America/New_York")


@pytest.fixture
def sample_event_type(config_service, sample_host):
    """30 minute meeting, no buffers, no notice."""
    return config_service.create_event_type(
        str(sample_host.id),
        title="Intro call",
        duration_minutes=30,
        minimum_notice_minutes=0,
        period_type="ROLLING",
        period_days=60,
    )


@pytest.fixture
def group_event_type(config_service, sample_host):
    """60 minute workshop with ten seats per slot."""
    return config_service.create_event_type(
        str(sample_host.id),
        title="Workshop",
        duration_minutes=60,
        minimum_notice_minutes=0,
        seats_per_slot=10,
        period_type="UNLIMITED",
    )


@pytest.fixture(autouse=True)
def setup_test_environment():
    """Set up test environment variables."""
    test_env_vars = {
        "ENVIRONMENT": "testing",
        "CALENDAR_FAILURE_POLICY": "fail_closed",
        "CALENDAR_TIMEOUT_SECONDS": "2",
    }

    # Store original values
    original_values = {}
    for key, value in test_env_vars.items():
        original_values[key] = os.getenv(key)
        os.environ[key] = value
    get_settings(refresh=True)

    yield

    # Restore original values
    for key, original_value in original_values.items():
        if original_value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = original_value
    get_settings(refresh=True)
