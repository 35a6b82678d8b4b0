import asyncio
import os
import uuid

# Configure before the app modules build their settings and engine
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
import pytest_asyncio
from sqlalchemy.pool import NullPool, StaticPool

from timeline_chat.database import Base, make_engine, make_sessionmaker
from timeline_chat.models.timeline import Timeline, ClientSession
from timeline_chat.utils.security import create_access_token

AGENT_ID = "agent-a"
OTHER_AGENT_ID = "agent-b"
CLIENT_ID = "client-c"
OTHER_CLIENT_ID = "client-d"
TIMELINE_ID = "timeline-t"
OTHER_TIMELINE_ID = "timeline-u"
SHARE_TOKEN = "share-t"
OTHER_SHARE_TOKEN = "share-u"
SESSION_TOKEN = "session-t"
OTHER_SESSION_TOKEN = "session-u"


async def seed_timelines(session_factory):
    """Two timelines: T (agent A, client C) and U (agent B, client D), each with a client session."""
    async with session_factory() as db:
        db.add_all([
            Timeline(id=TIMELINE_ID, title="Downtown lofts", share_token=SHARE_TOKEN,
                     agent_id=AGENT_ID, client_id=CLIENT_ID),
            Timeline(id=OTHER_TIMELINE_ID, title="Suburbs", share_token=OTHER_SHARE_TOKEN,
                     agent_id=OTHER_AGENT_ID, client_id=OTHER_CLIENT_ID),
        ])
        await db.flush()
        db.add_all([
            ClientSession(id=uuid.uuid4().hex, session_token=SESSION_TOKEN, timeline_id=TIMELINE_ID,
                          client_name="Casey"),
            ClientSession(id=uuid.uuid4().hex, session_token=OTHER_SESSION_TOKEN, timeline_id=OTHER_TIMELINE_ID,
                          client_name="Dana"),
        ])
        await db.commit()


async def _create_schema(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test."""
    test_engine = make_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    await _create_schema(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    factory = make_sessionmaker(engine)
    await seed_timelines(factory)
    return factory


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """File-backed database with one connection per session, for concurrency tests."""
    file_engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'concurrency.db'}", poolclass=NullPool)
    await _create_schema(file_engine)
    factory = make_sessionmaker(file_engine)
    await seed_timelines(factory)
    yield factory
    await file_engine.dispose()


@pytest.fixture
def sync_session_factory(tmp_path):
    """File-backed database usable from TestClient's own event loop."""
    file_engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}", poolclass=NullPool)
    factory = make_sessionmaker(file_engine)

    async def _setup():
        await _create_schema(file_engine)
        await seed_timelines(factory)

    asyncio.run(_setup())
    yield factory
    asyncio.run(file_engine.dispose())


@pytest.fixture
def agent_token():
    return create_access_token({"sub": AGENT_ID})


@pytest.fixture
def other_agent_token():
    return create_access_token({"sub": OTHER_AGENT_ID})


@pytest.fixture
def api(sync_session_factory, monkeypatch):
    """TestClient wired to the file database; sockets share one event loop."""
    from fastapi.testclient import TestClient

    from timeline_chat.database import get_db
    from timeline_chat.main import app
    from timeline_chat.realtime.gateway import gateway
    from timeline_chat.realtime.rooms import ConnectionManager

    async def override_get_db():
        async with sync_session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(gateway, "session_factory", sync_session_factory)
    monkeypatch.setattr(gateway, "manager", ConnectionManager())

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


def bearer(token):
    return {"Authorization": f"Bearer {token}"}
