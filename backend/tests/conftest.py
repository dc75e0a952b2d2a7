"""
Centralized Test Configuration.
"""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool, Pool

from backend.app.main import app
from backend.app.db.session import get_db, Base
from backend.app.models.branch import Branch
from backend.app.models.branch_enums import BranchStatus
from backend.app.models.enums import UserRole
from backend.app.services.audit import Actor
from backend.tests.factories import auth_headers

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)).lower():
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    yield

    app.dependency_overrides = {}
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def actor():
    return Actor(user_id=7, username="supervisor.north", role=UserRole.SUPERVISOR.value)


@pytest.fixture
def supervisor_headers():
    return auth_headers(UserRole.SUPERVISOR, user_id=7, username="supervisor.north")


@pytest.fixture
def manager_headers():
    return auth_headers(UserRole.MANAGER, user_id=3, username="manager.north")


@pytest.fixture
def make_branch(db_session):
    """Factory inserting a branch row directly (branches are external records)."""
    counter = {"n": 0}

    async def _make(capacity_limit=None, status=BranchStatus.ACTIVE, current_load=0):
        counter["n"] += 1
        branch = Branch(
            company_id=1,
            name=f"Branch {counter['n']}",
            code=f"BR{counter['n']:03d}",
            status=status,
            capacity_limit=capacity_limit,
            current_load=current_load,
        )
        db_session.add(branch)
        await db_session.commit()
        return branch

    return _make



@pytest.fixture
def session_factory():
    """Independent sessions on the test database, for concurrent-writer tests."""
    return TestingSessionLocal
