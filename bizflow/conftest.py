"""
Shared pytest fixtures for the bizflow tests.
This file contains database setup, test client configuration, and utility fixtures
that can be reused across all test files.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from bizflow.app import app
from bizflow.db import db_client
from bizflow.db.models import Base

TEST_DATABASE_URL = "sqlite+aiosqlite://"


def _enable_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores ON DELETE clauses unless foreign keys are switched on
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest_asyncio.fixture
async def db_session():
    """
    Create a test database client backed by an in-memory SQLite database.
    This fixture replaces the global db_client's engine and session maker, so
    services importing db_client use the test database.
    """
    original_engine = db_client.engine
    original_session = db_client.async_session

    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    event.listen(test_engine.sync_engine, "connect", _enable_foreign_keys)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    db_client.engine = test_engine
    db_client.async_session = async_sessionmaker(bind=test_engine)

    yield db_client

    # Restore original database client
    await test_engine.dispose()
    db_client.engine = original_engine
    db_client.async_session = original_session


@pytest_asyncio.fixture
async def file_db_session(tmp_path):
    """
    Like db_session, but backed by a database file with one connection per
    session, so concurrent sessions get real SQLite transaction isolation.
    """
    original_engine = db_client.engine
    original_session = db_client.async_session

    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'bizflow.db'}", poolclass=NullPool
    )
    event.listen(test_engine.sync_engine, "connect", _enable_foreign_keys)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    db_client.engine = test_engine
    db_client.async_session = async_sessionmaker(bind=test_engine)

    yield db_client

    await test_engine.dispose()
    db_client.engine = original_engine
    db_client.async_session = original_session


@pytest_asyncio.fixture
async def organization(db_session):
    return await db_session.create_organization("org_test_primary", "Clínica Teste")


@pytest_asyncio.fixture
async def other_organization(db_session):
    return await db_session.create_organization("org_test_other", "Construtora Outra")


@pytest_asyncio.fixture
async def test_client_factory(db_session):
    """
    Factory fixture that creates test clients acting for an organization.

    Usage:
        async def test_something(test_client_factory, organization):
            async with test_client_factory(organization) as client:
                response = await client.get("/api/v1/workflows")
    """
    from contextlib import asynccontextmanager

    @asynccontextmanager
    async def _create_client_for_organization(organization):
        headers = {"X-Organization-Id": str(organization.id)}
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
            headers=headers,
        ) as client:
            yield client

    return _create_client_for_organization
