"""
Shared fixtures.

Every test gets its own SQLite file with NullPool, so no connection outlives
the event loop that opened it (TestClient runs the app on its own loop).
"""
import asyncio
import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["AUTO_CREATE_TABLES"] = "false"
os.environ["KAFKA_BOOTSTRAP"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from portal.db import Base, get_db
from portal.main import app
from portal.services.auth_service import create_access_token
from seed_data import seed_profiles


@pytest.fixture
def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'portal.db'}", poolclass=NullPool)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def _create():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(_create())
    yield factory
    asyncio.run(engine.dispose())


@pytest.fixture
def profiles(session_factory) -> dict:
    """student, other_student, counselor, other_counselor -> profile id"""

    async def _seed():
        async with session_factory() as session:
            return await seed_profiles(session)

    return asyncio.run(_seed())


@pytest.fixture
def override_db(session_factory):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(override_db):
    with TestClient(override_db) as c:
        yield c


def token_for(profile_id) -> str:
    return create_access_token({"sub": str(profile_id)})


def auth(profile_id) -> dict:
    return {"Authorization": f"Bearer {token_for(profile_id)}"}


@pytest.fixture
async def asgi_app(tmp_path):
    """App wired to a fresh database on the test's own loop, plus seeded profile ids."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'portal.db'}", poolclass=NullPool)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with factory() as session:
        ids = await seed_profiles(session)

    async def _get_db():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    yield app, ids
    app.dependency_overrides.clear()
    await engine.dispose()


def start_conversation(client, profiles, student="student", counselor="counselor") -> dict:
    resp = client.post(
        "/conversations",
        json={"counselor_id": str(profiles[counselor])},
        headers=auth(profiles[student]),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()
