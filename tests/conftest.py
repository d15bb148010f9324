"""
Pytest configuration for BeeBuildR backend tests.

Each test gets a fresh SQLite database, a private fake Redis server and an
httpx client bound to the ASGI app.
"""

import os

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-that-is-at-least-32-characters")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

from unittest.mock import MagicMock  # noqa: E402

import fakeredis  # noqa: E402
import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from app.core.database import get_db  # noqa: E402
from app.core.dependencies import get_redis  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Base  # noqa: E402

BASE_URL = "http://test"


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    # pysqlite's own transaction handling breaks SAVEPOINT; emit BEGIN ourselves
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def redis():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture(autouse=True)
def email_task(monkeypatch):
    """Stand-in for the Celery email task so no broker is needed."""
    task = MagicMock()
    monkeypatch.setattr("app.workers.email_tasks.send_membership_email", task)
    return task


@pytest.fixture
def override_dependencies(session_factory, redis):
    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def _get_redis():
        return redis

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_redis] = _get_redis
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def client(override_dependencies):
    transport = httpx.ASGITransport(app=override_dependencies)
    async with httpx.AsyncClient(transport=transport, base_url=BASE_URL) as client:
        yield client

