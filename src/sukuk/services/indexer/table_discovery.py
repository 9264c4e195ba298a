"""Discovery of hash-prefixed indexer tables.

The indexer re-creates its event tables under a new hash prefix on every
contract redeployment (``f243__sukuk_purchase``, ``a1b2__sukuk_purchase``,
...). This module enumerates those tables from ``information_schema``,
resolves the single "latest" table per event type, and validates table
columns before anything queries them.

Latest-table rule (deterministic for a given database state):
1. Highest ``MAX(block_number)`` wins (empty table counts as -1)
2. Tie: higher ``COUNT(*)`` wins
3. Tie: lexicographically greatest full table name wins
Candidates whose statistics cannot be read rank below all others.
"""

import re
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

import sqlalchemy as sa
import structlog
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from sukuk.services.exceptions import (
    DatabaseConnectionError,
    SchemaMismatchError,
    TableNotFoundError,
)
from sukuk.services.indexer.registry import expected_columns

logger = structlog.get_logger()

INDEXER_SCHEMA = "public"
TABLE_NAME_PATTERN = re.compile(r"^([a-f0-9]+)__([a-z_]+)$")
# Same pattern in POSIX form for the catalog query; excludes *_reorg__* tables
_CATALOG_PATTERN = "^[a-f0-9]+__[a-z_]+$"


@dataclass(frozen=True)
class DiscoveredTable:
    """A hash-prefixed indexer table found in the catalog."""

    full_name: str  # e.g. "f243__sukuk_purchase"
    hash_prefix: str  # e.g. "f243"
    event_type: str  # e.g. "sukuk_purchase"
    schema_name: str = INDEXER_SCHEMA


@dataclass(frozen=True)
class TableStats:
    """Freshness statistics used to rank candidate tables."""

    table: DiscoveredTable
    max_block: int | None  # None when statistics could not be read
    row_count: int | None


@dataclass
class IndexerTableInfo:
    """Operator-facing description of one discovered table."""

    event_type: str
    table_name: str
    hash_prefix: str
    row_count: int
    is_latest: bool


def parse_table_name(table_name: str, schema_name: str = INDEXER_SCHEMA) -> DiscoveredTable | None:
    """Split a table name into hash prefix and event type, or None if it doesn't match."""
    match = TABLE_NAME_PATTERN.match(table_name)
    if match is None:
        return None
    return DiscoveredTable(
        full_name=table_name,
        hash_prefix=match.group(1),
        event_type=match.group(2),
        schema_name=schema_name,
    )


def select_latest_table(candidates: list[TableStats]) -> str:
    """Pick the latest table among candidates sharing one event type.

    Args:
        candidates: Non-empty list of candidate tables with their statistics

    Returns:
        Full name of the winning table

    Raises:
        ValueError: If candidates is empty
    """
    if not candidates:
        raise ValueError("no candidate tables")

    def rank(stats: TableStats) -> tuple[bool, int, int, str]:
        readable = stats.max_block is not None and stats.row_count is not None
        return (
            readable,
            stats.max_block if stats.max_block is not None else -1,
            stats.row_count if stats.row_count is not None else -1,
            stats.table.full_name,
        )

    return max(candidates, key=rank).table.full_name


class TableDiscoveryService:
    """Service for discovering and validating hash-prefixed indexer tables.

    No results are cached between calls; every call reads the catalog.
    """

    def __init__(self, engine: AsyncEngine):
        """Initialize discovery service.

        Args:
            engine: Async engine bound to the indexer database
        """
        self.engine = engine
        self._connected = False

    async def connect(self) -> None:
        """Verify indexer connectivity once (idempotent).

        Raises:
            DatabaseConnectionError: If the indexer database is unreachable
        """
        if self._connected:
            return
        try:
            async with self.engine.connect() as conn:
                await conn.execute(sa.text("SELECT 1"))
        except (OperationalError, InterfaceError, OSError) as e:
            logger.error("table_discovery.connect_failed", error=str(e))
            raise DatabaseConnectionError(f"Indexer database unreachable: {e}") from e
        self._connected = True
        logger.debug("table_discovery.connected")

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[AsyncConnection]:
        """Yield an indexer connection, translating connectivity failures."""
        await self.connect()
        try:
            async with self.engine.connect() as conn:
                yield conn
        except (OperationalError, InterfaceError, OSError) as e:
            raise DatabaseConnectionError(f"Indexer database unavailable: {e}") from e

    async def discover_all_tables(self) -> list[DiscoveredTable]:
        """Find all hash-prefixed indexer tables, ordered by name descending."""
        async with self.connection() as conn:
            return await self._discover(conn)

    async def _discover(self, conn: AsyncConnection) -> list[DiscoveredTable]:
        result = await conn.execute(
            sa.text(
                """
                SELECT table_name, table_schema
                FROM information_schema.tables
                WHERE table_schema = :schema
                AND table_name ~ :pattern
                ORDER BY table_name DESC
                """
            ),
            {"schema": INDEXER_SCHEMA, "pattern": _CATALOG_PATTERN},
        )

        tables = []
        for table_name, schema_name in result.all():
            table = parse_table_name(table_name, schema_name)
            if table is not None:
                tables.append(table)

        logger.debug("table_discovery.discovered", count=len(tables))
        return tables

    async def _table_stats(self, conn: AsyncConnection, table: DiscoveredTable) -> TableStats:
        t = sa.table(table.full_name, sa.column("block_number"))
        stmt = sa.select(
            sa.func.coalesce(sa.func.max(t.c.block_number), -1),
            sa.func.count(),
        ).select_from(t)

        try:
            # Savepoint keeps the outer transaction usable if this table is broken
            async with conn.begin_nested():
                max_block, row_count = (await conn.execute(stmt)).one()
        except DBAPIError as e:
            logger.warning(
                "table_discovery.stats_failed",
                table=table.full_name,
                error=str(e),
            )
            return TableStats(table=table, max_block=None, row_count=None)

        return TableStats(table=table, max_block=int(max_block), row_count=int(row_count))

    async def _pick_latest(self, conn: AsyncConnection, tables: list[DiscoveredTable]) -> str:
        if len(tables) == 1:
            return tables[0].full_name

        candidates = [await self._table_stats(conn, table) for table in tables]
        winner = select_latest_table(candidates)
        logger.debug(
            "table_discovery.latest_selected",
            event_type=tables[0].event_type,
            winner=winner,
            candidates=[
                {"table": c.table.full_name, "max_block": c.max_block, "rows": c.row_count}
                for c in candidates
            ],
        )
        return winner

    async def latest_table_for(self, event_type: str) -> str:
        """Resolve the latest table for an event type.

        Args:
            event_type: Event type suffix (e.g. "redemption_request")

        Returns:
            Full table name (e.g. "f243__redemption_request")

        Raises:
            TableNotFoundError: If no table exists for the event type
            DatabaseConnectionError: If the indexer database is unreachable
        """
        async with self.connection() as conn:
            tables = [t for t in await self._discover(conn) if t.event_type == event_type]
            if not tables:
                raise TableNotFoundError(event_type)
            return await self._pick_latest(conn, tables)

    async def all_latest_tables(self) -> dict[str, str]:
        """Map every discovered event type to its latest table in one discovery pass."""
        async with self.connection() as conn:
            groups: dict[str, list[DiscoveredTable]] = defaultdict(list)
            for table in await self._discover(conn):
                groups[table.event_type].append(table)

            return {
                event_type: await self._pick_latest(conn, tables)
                for event_type, tables in sorted(groups.items())
            }

    async def available_event_types(self) -> list[str]:
        """Distinct event types across all discovered tables, sorted."""
        tables = await self.discover_all_tables()
        return sorted({t.event_type for t in tables})

    async def tables_with_hash_prefix(self, hash_prefix: str) -> list[DiscoveredTable]:
        """All discovered tables belonging to one deployment."""
        tables = await self.discover_all_tables()
        return [t for t in tables if t.hash_prefix == hash_prefix]

    async def table_exists(self, table_name: str) -> bool:
        """Check whether a table exists in the indexer schema."""
        async with self.connection() as conn:
            result = await conn.execute(
                sa.text(
                    """
                    SELECT COUNT(*)
                    FROM information_schema.tables
                    WHERE table_schema = :schema
                    AND table_name = :table_name
                    """
                ),
                {"schema": INDEXER_SCHEMA, "table_name": table_name},
            )
            return result.scalar_one() > 0

    async def row_count(self, table_name: str) -> int:
        """Count rows in an indexer event table.

        Raises:
            ValueError: If table_name is not a hash-prefixed indexer table name
        """
        if parse_table_name(table_name) is None:
            raise ValueError(f"Not an indexer table name: {table_name}")

        t = sa.table(table_name)
        async with self.connection() as conn:
            result = await conn.execute(sa.select(sa.func.count()).select_from(t))
            return int(result.scalar_one())

    async def table_columns(self, table_name: str) -> list[str]:
        """Column names of a table in ordinal order."""
        async with self.connection() as conn:
            result = await conn.execute(
                sa.text(
                    """
                    SELECT column_name
                    FROM information_schema.columns
                    WHERE table_schema = :schema
                    AND table_name = :table_name
                    ORDER BY ordinal_position
                    """
                ),
                {"schema": INDEXER_SCHEMA, "table_name": table_name},
            )
            return list(result.scalars().all())

    async def validate_schema(self, table_name: str, event_type: str) -> None:
        """Check that a table has every column expected for its event type.

        Raises:
            SchemaMismatchError: Listing the missing columns
        """
        present = {column.lower() for column in await self.table_columns(table_name)}
        missing = [c for c in expected_columns(event_type) if c.lower() not in present]
        if missing:
            logger.warning(
                "table_discovery.schema_mismatch",
                table=table_name,
                event_type=event_type,
                missing_columns=missing,
            )
            raise SchemaMismatchError(table_name, event_type, missing)

    async def describe_tables(self) -> list[IndexerTableInfo]:
        """Describe every discovered table with its row count and latest flag."""
        latest = set((await self.all_latest_tables()).values())
        tables = await self.discover_all_tables()

        infos = []
        for table in tables:
            infos.append(
                IndexerTableInfo(
                    event_type=table.event_type,
                    table_name=table.full_name,
                    hash_prefix=table.hash_prefix,
                    row_count=await self.row_count(table.full_name),
                    is_latest=table.full_name in latest,
                )
            )
        return infos
