"""
Pytest configuration.

- Environment is fixed before anything under ``app`` is imported
- Each test gets its own in-memory SQLite database (StaticPool keeps the
  single connection alive for the test's lifetime)
- HTTP tests drive the ASGI app in-process through httpx
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("RATE_LIMIT", "100000/minute")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from datetime import datetime, timedelta, timezone

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core import config
from app.core.database import engine as database_engine
from app.core.database.engine import init_db
from app.features.rbac.models import user_roles, utcnow
from app.features.rbac.seed import seed_reference_data
from app.features.users.models import User
from tests.fakes import InMemoryIdentityStore


@pytest.fixture
def store() -> InMemoryIdentityStore:
    return InMemoryIdentityStore()


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seeded(db):
    """Default roles, permissions and links, committed."""
    summary = await seed_reference_data(db)
    await db.commit()
    return summary


@pytest.fixture
def make_user(db):
    """Create a committed user, optionally holding some roles by id."""

    async def _make_user(username: str, role_ids=(), is_active: bool = True) -> User:
        user = User(username=username, email=f"{username}@example.com", name=username.title(), is_active=is_active)
        db.add(user)
        await db.flush()
        if role_ids:
            await db.execute(
                insert(user_roles),
                [{"user_id": user.id, "role_id": role_id, "created_at": utcnow()} for role_id in role_ids],
            )
        await db.commit()
        return user

    return _make_user


def token_for(user_id: str, expires_in: timedelta = timedelta(hours=1)) -> str:
    return jwt.encode(
        {"sub": user_id, "exp": datetime.now(timezone.utc) + expires_in},
        config.JWT_SECRET,
        algorithm=config.JWT_ALGORITHM,
    )


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {token_for(user_id)}"}


@pytest_asyncio.fixture
async def client(session_factory, monkeypatch):
    """The app with the real `get_db`, bound to this test's database."""
    from app.main import app

    monkeypatch.setattr(database_engine, "AsyncSessionLocal", session_factory)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()
