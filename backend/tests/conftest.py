"""
Pytest fixtures for test database, client, accounts and lessons.

Each test gets a fresh in-memory SQLite database (or the database named by
TEST_DATABASE_URL) with the schema created from the models and dropped
afterwards. Events are captured by a RecordingNotifier instead of Redis.
"""

import os

os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("NOTIFIER_BACKEND", "null")
os.environ.setdefault("ENVIRONMENT", "test")

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tutorbook.main import app
from tutorbook.db.base import Base
from tutorbook.db.session import get_db
from tutorbook.models.lesson import Lesson
from tutorbook.models.user import User, ROLE_ADMIN, ROLE_TEACHER
from tutorbook.services.interfaces.null_notifier import RecordingNotifier
from tutorbook.services.strategy_factory import set_notifier

from tests.factories import (
    TEST_DATABASE_URL,
    TEST_PASSWORD,
    auth_headers_for,
    is_sqlite,
    make_lesson,
    make_user,
    next_slot,
)


@pytest_asyncio.fixture(scope="function")
async def engine():
    """Create tables, yield engine, then drop tables for isolation."""
    if is_sqlite():
        test_engine = create_async_engine(
            TEST_DATABASE_URL,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        test_engine = create_async_engine(TEST_DATABASE_URL, pool_size=10)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def notifier() -> RecordingNotifier:
    """Capture published domain events in memory."""
    recorder = RecordingNotifier()
    set_notifier(recorder)
    yield recorder
    set_notifier(None)


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client that overrides the DB dependency with the test session."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# --- Accounts ---------------------------------------------------------------


@pytest_asyncio.fixture
async def student(db_session: AsyncSession) -> User:
    return await make_user(db_session, "student@example.com", balance=10, password=TEST_PASSWORD)


@pytest_asyncio.fixture
async def other_student(db_session: AsyncSession) -> User:
    return await make_user(db_session, "other.student@example.com", balance=10)


@pytest_asyncio.fixture
async def teacher(db_session: AsyncSession) -> User:
    return await make_user(db_session, "teacher@example.com", role=ROLE_TEACHER)


@pytest_asyncio.fixture
async def admin(db_session: AsyncSession) -> User:
    return await make_user(db_session, "admin@example.com", role=ROLE_ADMIN)


@pytest_asyncio.fixture
async def student_headers(student: User) -> dict:
    return auth_headers_for(student)


@pytest_asyncio.fixture
async def admin_headers(admin: User) -> dict:
    return auth_headers_for(admin)


# --- Lessons ----------------------------------------------------------------


@pytest_asyncio.fixture
async def lesson(db_session: AsyncSession, teacher: User) -> Lesson:
    """Individual lesson three days out costing 2 credits."""
    return await make_lesson(db_session, teacher.id, credits_cost=2)


@pytest_asyncio.fixture
async def group_lesson(db_session: AsyncSession, teacher: User) -> Lesson:
    return await make_lesson(
        db_session,
        teacher.id,
        start=next_slot(days=4),
        kind="group",
        max_students=4,
        credits_cost=1,
    )
