import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from onetime.database import Base, get_db
from onetime.main import create_app
from onetime.services.crypto import CryptoEngine
from onetime.services.secret_service import SecretLifecycle
from onetime.services.secret_store import SecretStore
from tests.test_utils import FakeClock, make_settings


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def crypto(settings):
    return CryptoEngine.from_settings(settings)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def lifecycle(db_session, crypto, settings, clock):
    return SecretLifecycle(SecretStore(db_session), crypto, site_url=settings.site_url, clock=clock)


@pytest.fixture
def app(settings, db_session, clock):
    """Application wired to the test database with a controllable clock."""
    application = create_app(settings)
    application.state.engine = db_session.get_bind()
    application.state.clock = clock

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    application.dependency_overrides[get_db] = override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Create a test client with the test database and disabled rate limiting."""
    app.state.rate_limiter.enabled = False

    with TestClient(app) as test_client:
        yield test_client
