"""pytest fixtures for sukuk sync tests.

Provides:
- postgres_container: Session-scoped testcontainer PostgreSQL instance
- utc_timezone: Autouse fixture enforcing UTC timezone
- session: Function-scoped database session with table truncation
- uow_factory: Function-scoped UnitOfWork factory
- session_factory: Function-scoped session factory on the test engine
- indexer: Function-scoped helper creating hash-prefixed indexer tables
"""

import os
import subprocess
import sys
from pathlib import Path
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from testcontainers.postgres import PostgresContainer

from sukuk.core.database import setup_db_session
from sukuk.models.blockchain_event import EVENT_LOG_SCHEMA, BlockchainEvent

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Column DDL per indexer event type; every table also gets the common columns
INDEXER_COLUMNS: dict[str, str] = {
    "sukuk_purchase": (
        "buyer text NOT NULL, sukuk_address text NOT NULL, "
        "payment_token text NOT NULL, amount numeric(78,0) NOT NULL"
    ),
    "redemption_request": (
        "\"user\" text NOT NULL, sukuk_address text NOT NULL, amount numeric(78,0) NOT NULL, "
        "payment_token text NOT NULL, total_supply numeric(78,0) NOT NULL"
    ),
    "redemption_approval": (
        "\"user\" text NOT NULL, sukuk_address text NOT NULL, amount numeric(78,0) NOT NULL, "
        "total_supply numeric(78,0) NOT NULL"
    ),
    "yield_distribution": (
        "sukuk_address text NOT NULL, distribution_id bigint NOT NULL, "
        "payment_token text NOT NULL, amount numeric(78,0) NOT NULL"
    ),
    "yield_claim": (
        "\"user\" text NOT NULL, sukuk_address text NOT NULL, "
        "distribution_id bigint NOT NULL, amount numeric(78,0) NOT NULL"
    ),
    "snapshot_taken": (
        "sukuk_address text NOT NULL, snapshot_id bigint NOT NULL, "
        "total_supply numeric(78,0) NOT NULL, holder_count integer NOT NULL, "
        "eligible_count integer NOT NULL"
    ),
    "holder_update": (
        "holder text NOT NULL, sukuk_address text NOT NULL, new_balance numeric(78,0) NOT NULL"
    ),
}
COMMON_DDL = 'id text PRIMARY KEY, block_number bigint NOT NULL, tx_hash text NOT NULL, "timestamp" bigint NOT NULL'


@pytest.fixture(scope="session")
def postgres_container():
    """Provide session-scoped PostgreSQL container with migrations applied.

    Container starts once per test session and is reused across all tests.
    Migrations are applied using subprocess to avoid asyncio event loop conflicts.
    """
    container = PostgresContainer(
        image="postgres:17",
        username="test",
        password="test",
        dbname="test_sukuk",
    ).with_bind_ports(5432, None)

    try:
        container.start()
    except Exception as e:
        pytest.skip(f"Docker is not available for PostgreSQL tests: {e}")

    try:
        db_url = container.get_connection_url(driver="psycopg")

        # Set DATABASE_URL environment variable for alembic env.py
        env = os.environ.copy()
        env["DATABASE_URL"] = db_url

        subprocess.run(
            [sys.executable, "-m", "alembic", "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
            env=env,
            cwd=PROJECT_ROOT,
        )

        yield container
    finally:
        container.stop()


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    os.environ.setdefault("APP_ENV", "test")
    yield


async def _ensure_event_log(engine: AsyncEngine) -> None:
    # The event log belongs to the listener, so migrations never create it
    async with engine.begin() as conn:
        await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {EVENT_LOG_SCHEMA}"))
        await conn.run_sync(
            lambda sync_conn: BlockchainEvent.__table__.create(sync_conn, checkfirst=True)  # type: ignore[attr-defined]
        )


@pytest_asyncio.fixture(scope="function")
async def session(postgres_container) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session with table truncation.

    Each test gets a fresh session with empty tables (truncated between tests).
    """
    db_url = postgres_container.get_connection_url(driver="psycopg")
    session_factory = setup_db_session(db_url, pool_size=5)

    async with session_factory() as session:
        engine = session.bind
        await _ensure_event_log(engine)  # type: ignore[arg-type]

        yield session

        # Rollback any uncommitted changes from the test
        await session.rollback()

        # Order matters: delete from dependent tables first
        await session.execute(text("DELETE FROM redemptions"))
        await session.execute(text("DELETE FROM yield_claims"))
        await session.execute(text("DELETE FROM investments"))
        await session.execute(text("DELETE FROM sukuk_series"))
        await session.execute(text("DELETE FROM system_state"))
        await session.execute(text(f"TRUNCATE {EVENT_LOG_SCHEMA}.events RESTART IDENTITY"))
        await session.commit()

    await engine.dispose()  # type: ignore[union-attr]


@pytest_asyncio.fixture(scope="function")
async def session_factory(session: AsyncSession) -> async_sessionmaker[AsyncSession]:
    """Session factory sharing the test session's engine."""
    return async_sessionmaker(bind=session.bind, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory.

    Returns a callable that creates UoW instances using the test engine.
    """
    from sukuk.uow import create_uow_factory

    return create_uow_factory(session_factory)


class IndexerTables:
    """Creates hash-prefixed indexer tables and drops them after the test."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.created: list[str] = []

    async def create(
        self, table_name: str, rows: list[dict[str, Any]] | None = None, ddl: str | None = None
    ) -> str:
        """Create an indexer table; ddl overrides the column list for its event type."""
        event_type = table_name.split("__", 1)[1]
        columns = ddl if ddl is not None else f"{COMMON_DDL}, {INDEXER_COLUMNS[event_type]}"
        async with self.engine.begin() as conn:
            await conn.execute(text(f'CREATE TABLE "{table_name}" ({columns})'))
        self.created.append(table_name)
        if rows:
            await self.insert(table_name, rows)
        return table_name

    async def insert(self, table_name: str, rows: list[dict[str, Any]]) -> None:
        for row in rows:
            columns = ", ".join(f'"{c}"' for c in row)
            params = ", ".join(f":{c}" for c in row)
            async with self.engine.begin() as conn:
                await conn.execute(
                    text(f'INSERT INTO "{table_name}" ({columns}) VALUES ({params})'), row
                )

    async def drop_all(self) -> None:
        async with self.engine.begin() as conn:
            for table_name in self.created:
                await conn.execute(text(f'DROP TABLE IF EXISTS "{table_name}"'))
        self.created.clear()


@pytest_asyncio.fixture(scope="function")
async def indexer(session: AsyncSession) -> AsyncGenerator[IndexerTables, None]:
    """Provide a helper for creating indexer event tables in the test database."""
    tables = IndexerTables(session.bind)  # type: ignore[arg-type]
    yield tables
    await tables.drop_all()


@pytest.fixture
def indexer_engine(session: AsyncSession) -> AsyncEngine:
    """Indexer tables live in the test database's public schema."""
    return session.bind  # type: ignore[return-value]
