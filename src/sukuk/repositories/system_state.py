"""SystemState repository.

Provides data access methods for the SystemState key-value store, plus typed
accessors for the keys the sync loop and operators rely on.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from sukuk.models.system_state import SystemState

LAST_PROCESSED_EVENT_ID = "last_processed_event_id"
SYNC_STATUS = "sync_status"
LAST_SYNC_TIME = "last_sync_time"
BLOCKCHAIN_HEIGHT = "blockchain_height"
INDEXER_VERSION = "indexer_version"
MAINTENANCE_MODE = "maintenance_mode"

SYNC_STATUS_ACTIVE = "active"
SYNC_STATUS_PAUSED = "paused"
SYNC_STATUS_ERROR = "error"
SYNC_STATUSES = (SYNC_STATUS_ACTIVE, SYNC_STATUS_PAUSED, SYNC_STATUS_ERROR)


class SystemStateRepository:
    """Repository for SystemState key-value store.

    Provides UPSERT behavior (INSERT ... ON CONFLICT DO UPDATE) for setting state.
    State values are stored as JSON and automatically serialized/deserialized.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_state(self, key: str) -> Any | None:
        """Retrieve state value for a key.

        Args:
            key: State key (e.g., "last_processed_event_id")

        Returns:
            Deserialized state value if found, None otherwise
        """
        # Column select: upserts bypass the identity map, so never read a cached entity
        result = await self.session.execute(
            select(SystemState.state_value).where(SystemState.key == key)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def set_state(self, key: str, value: Any) -> None:
        """Set state value for a key (UPSERT).

        Args:
            key: State key (alphanumeric + underscores only)
            value: State value (must be JSON-serializable)
        """
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        stmt = insert(SystemState).values(key=key, state_value=value, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=["key"],
            set_={"state_value": value, "updated_at": now},
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def delete_state(self, key: str) -> bool:
        """Delete state entry for a key (idempotent).

        Returns:
            True if key was deleted, False if key did not exist
        """
        result = await self.session.execute(delete(SystemState).where(SystemState.key == key))  # type: ignore[arg-type]
        await self.session.flush()
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def list_all_keys(self) -> list[str]:
        """Retrieve all state keys."""
        result = await self.session.execute(select(SystemState.key))  # type: ignore[arg-type]
        return list(result.scalars().all())

    async def get_cursor(self) -> int:
        """Last processed blockchain event ID; 0 when never set."""
        value = await self.get_state(LAST_PROCESSED_EVENT_ID)
        if value is None or value == "":
            return 0
        return int(value)

    async def set_cursor(self, event_id: int) -> None:
        """Persist the cursor as a decimal string.

        Raises:
            ValueError: If event_id is negative
        """
        if event_id < 0:
            raise ValueError(f"Cursor must be non-negative, got {event_id}")
        await self.set_state(LAST_PROCESSED_EVENT_ID, str(event_id))

    async def get_sync_status(self) -> str:
        """Sync status flag; "active" when unset."""
        value = await self.get_state(SYNC_STATUS)
        return value if value in SYNC_STATUSES else SYNC_STATUS_ACTIVE

    async def set_sync_status(self, status: str) -> None:
        if status not in SYNC_STATUSES:
            raise ValueError(f"Unknown sync status: {status}")
        await self.set_state(SYNC_STATUS, status)

    async def get_last_sync_time(self) -> datetime | None:
        value = await self.get_state(LAST_SYNC_TIME)
        return datetime.fromisoformat(value) if value else None

    async def set_last_sync_time(self, when: datetime) -> None:
        await self.set_state(LAST_SYNC_TIME, when.isoformat())

    async def is_maintenance_mode(self) -> bool:
        return await self.get_state(MAINTENANCE_MODE) == "on"

    async def set_maintenance_mode(self, enabled: bool) -> None:
        await self.set_state(MAINTENANCE_MODE, "on" if enabled else "off")
