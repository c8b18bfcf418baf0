"""
Pytest configuration and fixtures.

Services run against an in-memory SQLite database; the API client shares
the same session so tests can inspect what a request wrote.
"""

from typing import AsyncGenerator
from uuid import uuid4

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from incident_ledger.core import create_access_token, get_session
from incident_ledger.main import app
from incident_ledger.models import Base, User, UserRole
from incident_ledger.services import AIAnalyzerService

# Use in-memory SQLite for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest.fixture
def session_factory() -> async_sessionmaker[AsyncSession]:
    """Factory bound to the test engine, for code that opens its own sessions."""
    return TestingSessionLocal


@pytest.fixture
async def session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh schema and session per test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestingSessionLocal() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


# =============================================================================
# USERS
# =============================================================================


async def _make_user(session: AsyncSession, role: UserRole, name: str) -> User:
    user = User(
        id=uuid4(),
        email=f"{name.lower().replace(' ', '.')}@example.com",
        name=name,
        role=role,
    )
    session.add(user)
    await session.flush()
    return user


@pytest.fixture
async def admin(session: AsyncSession) -> User:
    return await _make_user(session, UserRole.ADMIN, "Ada Admin")


@pytest.fixture
async def editor(session: AsyncSession) -> User:
    return await _make_user(session, UserRole.EDITOR, "Eddie Editor")


@pytest.fixture
async def other_editor(session: AsyncSession) -> User:
    return await _make_user(session, UserRole.EDITOR, "Olive Editor")


@pytest.fixture
async def viewer(session: AsyncSession) -> User:
    return await _make_user(session, UserRole.VIEWER, "Vic Viewer")


# =============================================================================
# AI
# =============================================================================


def gemini_reply(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


@pytest.fixture
async def make_analyzer():
    """Build an analyzer whose Gemini calls are answered by a mock transport."""
    clients: list[httpx.AsyncClient] = []

    def factory(text: str = "1. Connection pool exhausted", status_code: int = 200) -> AIAnalyzerService:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status_code, json=gemini_reply(text))

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        return AIAnalyzerService(api_key="test-key", client=client)

    yield factory

    for client in clients:
        await client.aclose()


# =============================================================================
# API
# =============================================================================


@pytest.fixture
async def client(session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Test client with the database dependency overridden."""

    async def override_get_session():
        yield session
        await session.flush()

    app.dependency_overrides[get_session] = override_get_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Bearer header carrying the identity claim of a user."""

    def build(user: User) -> dict[str, str]:
        token = create_access_token(user.id, user.name, user.email, user.role)
        return {"Authorization": f"Bearer {token}"}

    return build
