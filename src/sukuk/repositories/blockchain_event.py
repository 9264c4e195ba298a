"""BlockchainEvent repository.

Read access to the unified event log in id order.
"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sukuk.models.blockchain_event import BlockchainEvent


class BlockchainEventRepository:
    """Repository for the ``blockchain.events`` log."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def fetch_after(self, cursor: int, limit: int = 1000) -> list[BlockchainEvent]:
        """Retrieve events with id > cursor in ascending id order.

        Query explanation:
        - WHERE id > cursor: Only events not yet processed
        - ORDER BY id ASC: Apply events in log order
        - LIMIT: Batch size for one sync pass

        Args:
            cursor: Last processed event ID
            limit: Maximum number of events to return

        Returns:
            Events ordered by id
        """
        result = await self.session.execute(
            select(BlockchainEvent)
            .where(BlockchainEvent.id > cursor)  # type: ignore[arg-type,operator]
            .order_by(BlockchainEvent.id.asc())  # type: ignore[union-attr]
            .limit(limit)
        )
        return list(result.scalars().all())

    async def max_id(self) -> int:
        """Highest event ID in the log; 0 when empty."""
        result = await self.session.execute(select(func.coalesce(func.max(BlockchainEvent.id), 0)))
        return int(result.scalar_one())
