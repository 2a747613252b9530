"""
Global test configuration and fixtures for ShopState

Shared fixtures: an in-memory substrate, a fixed clock, a fake auth service
behind the real httpx client, temporary sqlite databases and an API client.
"""

import os
import tempfile
from pathlib import Path

# Keep the module-level app and engine away from the working directory
_TEST_DATA_DIR = tempfile.mkdtemp(prefix="shopstate-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{Path(_TEST_DATA_DIR) / 'shopstate.db'}")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from shopstate.api.deps import get_auth_client
from shopstate.core.feature_flags import feature_flags as global_feature_flags
from shopstate.core.limiter import limiter
from shopstate.core.utils.encryption import TokenCipher
from shopstate.db.base import Base
from shopstate.state.context import StorefrontContext
from shopstate.storage.backends import MemoryStorage
from shopstate.storage.durable import DurableStore
from tests.utils.helpers import FakeAuthService, FixedClock

TEST_EMAIL = "jane@example.com"
TEST_PASSWORD = "secret123"
TEST_USER_ID = "u1"


# ============================================================================
# Core Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def clock():
    """Clock frozen at 2023-11-14T22:13:20Z"""
    return FixedClock()


@pytest.fixture(scope="function")
def memory_storage():
    return MemoryStorage()


@pytest.fixture(scope="function")
def durable_store(memory_storage, clock):
    return DurableStore(memory_storage, clock=clock, origin="tab-under-test")


@pytest.fixture(scope="function")
def token_cipher():
    """Cipher with a cheap key derivation"""
    return TokenCipher(secret_key="test-secret-key-for-testing-only", salt="test-salt", iterations=100_000)


@pytest.fixture(scope="function", autouse=True)
def reset_feature_flags():
    """Drop runtime flag overrides after every test"""
    yield
    global_feature_flags.reset()


# ============================================================================
# Auth Service Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def auth_service():
    service = FakeAuthService()
    service.add_user(TEST_EMAIL, TEST_PASSWORD, user_id=TEST_USER_ID)
    return service


@pytest.fixture(scope="function")
def auth_client(auth_service):
    client = auth_service.client()
    yield client
    client.close()


@pytest.fixture(scope="function")
def credentials():
    return {"email": TEST_EMAIL, "password": TEST_PASSWORD}


@pytest.fixture(scope="function")
def storefront(memory_storage, auth_client, clock):
    """A single tab over the in-memory substrate"""
    ctx = StorefrontContext(memory_storage, auth_client=auth_client, clock=clock, origin="tab-a")
    ctx.initialize()
    yield ctx
    ctx.close()


@pytest.fixture(scope="function")
def signed_in_storefront(storefront, credentials):
    storefront.login(credentials)
    return storefront


@pytest.fixture(scope="function")
def second_tab(memory_storage, auth_client, clock):
    """Another tab of the same browser profile"""
    ctx = StorefrontContext(memory_storage, auth_client=auth_client, clock=clock, origin="tab-b")
    ctx.initialize()
    yield ctx
    ctx.close()


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def session_factory():
    """Session factory bound to a temporary sqlite database"""
    db_fd, db_path = tempfile.mkstemp(suffix=".db")
    engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)

    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)

    engine.dispose()
    os.close(db_fd)
    os.unlink(db_path)


# ============================================================================
# Application Client Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def app_factory(session_factory, auth_client, clock):
    """Build apps bound to the test database and fake auth service"""
    from shopstate.main import create_app

    def _create():
        app = create_app(session_factory=session_factory, clock=clock)
        app.dependency_overrides[get_auth_client] = lambda: auth_client
        return app

    return _create


@pytest.fixture(scope="function")
def client(app_factory):
    """FastAPI test client with rate limiting switched off"""
    limiter.enabled = False
    app = app_factory()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    limiter.enabled = True


@pytest.fixture(scope="function")
def signed_in_client(client):
    response = client.post("/api/session/login", json={"email": TEST_EMAIL, "password": TEST_PASSWORD})
    assert response.status_code == 200
    return client


# ============================================================================
# Test Markers and Configuration
# ============================================================================

def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: fast tests without I/O beyond sqlite")
    config.addinivalue_line("markers", "integration: tests that drive the HTTP API")
    config.addinivalue_line("markers", "critical: mark test as critical path functionality")
    config.addinivalue_line("markers", "security: mark test as security-related")
    config.addinivalue_line("markers", "feature_flag: mark test as requiring feature flags")


def pytest_collection_modifyitems(config, items):
    """Add markers based on file location"""
    for item in items:
        path = str(item.fspath)
        if "security" in path:
            item.add_marker(pytest.mark.security)
        if "critical" in path:
            item.add_marker(pytest.mark.critical)
        if "feature_flag" in path:
            item.add_marker(pytest.mark.feature_flag)
