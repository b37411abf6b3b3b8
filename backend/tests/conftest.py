"""
Test fixtures and configuration for pytest.
"""

import os
import sys
import tempfile
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Settings are cached at import time, so the environment must be ready first
TEST_DB_PATH = os.path.join(tempfile.gettempdir(), f"iconstore_test_{os.getpid()}.db")
os.environ["APP_MODE"] = "dev"
os.environ["DEBUG"] = "false"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DB_PATH}"
os.environ["JWT_ACCESS_SECRET"] = "test-access-secret-" + "a" * 40
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret-" + "b" * 40
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RATE_LIMIT_ENABLED"] = "true"
os.environ.pop("REDIS_URL", None)
os.environ.pop("TRUSTED_PROXIES", None)

from config import get_settings  # noqa: E402
from db.database import AsyncSessionLocal, Base, engine, get_db  # noqa: E402
from middleware.rate_limit import get_rate_limiter  # noqa: E402
from services.auth import AuthService  # noqa: E402

STRONG_PASSWORD = "Passw0rd!"


@pytest.fixture(scope="session", autouse=True)
def _remove_test_database():
    yield
    if os.path.exists(TEST_DB_PATH):
        os.remove(TEST_DB_PATH)


@pytest_asyncio.fixture(scope="function", autouse=True)
async def _schema():
    """Fresh tables for every test."""
    from models import refresh_token, security_audit, user  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # Pooled connections must not outlive the test's event loop
    await engine.dispose()


@pytest_asyncio.fixture(scope="function", autouse=True)
async def _reset_rate_limiter():
    await get_rate_limiter().clear()
    yield
    await get_rate_limiter().clear()


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for direct store access in a test."""
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def auth_service(db_session: AsyncSession, settings) -> AuthService:
    return AuthService(db_session, settings=settings)


@pytest_asyncio.fixture(scope="function")
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Create a test client; every request gets its own session, like production."""
    from main import app

    async def override_get_db():
        async with AsyncSessionLocal() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def registered(client: AsyncClient) -> dict:
    """Register alice through the API and return the response body."""
    response = await client.post(
        "/auth/register",
        json={"email": "a@b.com", "username": "alice", "password": STRONG_PASSWORD},
    )
    assert response.status_code == 201, response.text
    return response.json()


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
