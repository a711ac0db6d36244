from __future__ import annotations

import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("GATEWAY_ENVIRONMENT", "sandbox")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from settlement.api.deps import get_gateway_client
from settlement.database import Base, get_db, custom_json_dumps
import settlement.models  # noqa: F401

from tests.helpers import FakeGateway, RecordingSleep, make_gateway


# ---------------------------------------------------------
# Database: one SQLite file per test
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'settlement.db'}",
        poolclass=NullPool,
        json_serializer=custom_json_dumps,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture()
def sessionmaker(engine):
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture()
async def db(sessionmaker):
    """Session for service calls, setup and assertions."""
    async with sessionmaker() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------
# Payment gateway
# ---------------------------------------------------------
@pytest.fixture()
def fake_gateway():
    return FakeGateway()


@pytest.fixture()
def sleep_recorder():
    return RecordingSleep()


@pytest_asyncio.fixture()
async def gateway(fake_gateway, sleep_recorder):
    client = make_gateway(fake_gateway, sleep=sleep_recorder)
    yield client
    await client.aclose()


# ---------------------------------------------------------
# FastAPI app + dependency override
# ---------------------------------------------------------
@pytest.fixture()
def app(sessionmaker, gateway):
    from settlement.main import app as fastapi_app

    async def _override_get_db():
        async with sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    fastapi_app.dependency_overrides[get_db] = _override_get_db
    fastapi_app.dependency_overrides[get_gateway_client] = lambda: gateway
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
    ) as ac:
        yield ac
