"""
Test configuration and fixtures.

- In-memory SQLite (aiosqlite) with a StaticPool, recreated for every test
- get_db overridden so the API runs real queries against it
- Bearer tokens minted with the configured secret
"""
import os
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

# Must be set before app modules read their configuration
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ["RATE_LIMIT"] = "1000/minute"
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core import config
from app.core.database.base import Base
from app.core.database.engine import get_db
from app.features.modules.models import Module  # noqa: F401
from app.features.modules.service import ensure_catalog_modules
from app.features.permissions.models import GrantedPermission, PermissionAuditLog  # noqa: F401
from app.features.users.models import Role, User
from app.features.users.schemas import Identity


SEED_USERS = {
    "admin-1": ("admin@example.edu", "IT Head", Role.ADMIN, True),
    "admin-2": ("admin2@example.edu", "Deputy IT Head", Role.ADMIN, True),
    "staff-7": ("staff7@example.edu", "DRD Staff", Role.STAFF, True),
    "faculty-1": ("faculty@example.edu", "Professor", Role.FACULTY, True),
    "student-1": ("student@example.edu", "Student", Role.STUDENT, True),
    "inactive-1": ("inactive@example.edu", "Former Staff", Role.STAFF, False),
}


def make_token(user_id: str, expires_in: timedelta = timedelta(minutes=15)) -> str:
    payload = {"sub": user_id, "exp": datetime.now(timezone.utc) + expires_in}
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def auth(user_id: str) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


def identity(user_id: str) -> Identity:
    return Identity(id=user_id, role=SEED_USERS[user_id][2])


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    factory = async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    async with factory() as session:
        for user_id, (email, name, role, is_active) in SEED_USERS.items():
            session.add(User(id=user_id, email=email, name=name, role=role, is_active=is_active))
        await session.commit()
        await ensure_catalog_modules(session)
    return factory


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    from app.main import app

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def admin() -> Identity:
    return identity("admin-1")
