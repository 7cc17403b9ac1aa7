"""
Shared test fixtures and configuration for AgentRadar SSO backend tests.
"""
import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tests.utils.sso_factories import IdPStub

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "development"
os.environ["DEBUG"] = "true"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only-min-32-chars"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ.pop("ENCRYPTION_KEY", None)


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """In-memory SQLite database with the full schema."""
    from app.db.base import Base
    from app.db.session import build_session_factory

    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield build_session_factory(engine)

    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def idp() -> IdPStub:
    return IdPStub()


@pytest.fixture
def test_settings():
    from app.core.config import Settings
    return Settings(_env_file=None)


@pytest_asyncio.fixture
async def app(test_settings, session_factory, idp):
    from app.main import create_app
    return create_app(settings=test_settings, session_factory=session_factory, transport=idp.transport)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def admin_token(test_settings):
    from app.core.security import create_session_token
    return create_session_token(user_id="admin-1", email="admin@agentradar.app", role="ADMIN", config=test_settings)


@pytest.fixture
def user_token(test_settings):
    from app.core.security import create_session_token
    return create_session_token(user_id="user-1", email="user@agentradar.app", role="USER", config=test_settings)


@pytest.fixture
def admin_headers(admin_token):
    return {"Authorization": f"Bearer {admin_token}"}


@pytest.fixture
def user_headers(user_token):
    return {"Authorization": f"Bearer {user_token}"}


@pytest.fixture
def provider_service():
    from app.services.sso_provider_service import SSOProviderService
    return SSOProviderService()


@pytest.fixture
def auth_service(test_settings, provider_service, idp):
    from app.services.sso_auth_service import SSOAuthService
    return SSOAuthService(settings=test_settings, provider_service=provider_service, transport=idp.transport)
