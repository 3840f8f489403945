"""
Test configuration and fixtures for pytest.

Every test gets its own file-backed SQLite database so that concurrent
sessions use separate pooled connections, as they would in production.
"""

import pytest
import pytest_asyncio
from typing import AsyncGenerator
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.main import app
from app.db.async_session import AsyncDatabaseManager, get_async_db_manager
from app.models.user import User
from tests.async_test_utils import AsyncDatabaseTestUtils


@pytest.fixture
def async_test_db_url(tmp_path) -> str:
    """Get the async test database URL."""
    return f"sqlite+aiosqlite:///{tmp_path / 'test_async.db'}"


@pytest_asyncio.fixture
async def db_manager(async_test_db_url) -> AsyncGenerator[AsyncDatabaseManager, None]:
    """Database manager bound to a fresh schema."""
    manager = AsyncDatabaseManager(async_test_db_url, pool_size=5, pool_timeout=5)
    await manager.create_all()
    yield manager
    await manager.close()


@pytest_asyncio.fixture
async def async_db_session(db_manager) -> AsyncGenerator[AsyncSession, None]:
    async with db_manager.lease() as session:
        yield session


@pytest_asyncio.fixture
async def db_utils(async_db_session) -> AsyncDatabaseTestUtils:
    return AsyncDatabaseTestUtils(async_db_session)


@pytest_asyncio.fixture
async def test_user(db_utils) -> User:
    return await db_utils.create_user("test-session")


@pytest_asyncio.fixture
async def async_client(db_manager) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client talking to the app in-process against the test database."""
    app.dependency_overrides[get_async_db_manager] = lambda: db_manager
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def session_header():
    return {"session-id": "session_test_123"}
