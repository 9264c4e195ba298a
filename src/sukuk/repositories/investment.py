"""Investment repository.

Provides data access methods for Investment entities with duplicate detection.
"""

from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from sukuk.models.investment import Investment, InvestmentStatus


class InvestmentRepository:
    """Repository for Investment entities.

    Provides duplicate detection to prevent applying the same event twice.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, investment: Investment) -> Investment:
        """Persist new investment to database.

        Args:
            investment: Investment entity to persist

        Returns:
            Persisted investment with generated ID
        """
        self.session.add(investment)
        await self.session.flush()
        return investment

    async def exists(self, tx_hash: str, log_index: int) -> bool:
        """Check if an investment already exists for this log (duplicate detection).

        The (tx_hash, log_index) pair uniquely identifies a blockchain event.

        Args:
            tx_hash: Transaction hash (0x...)
            log_index: Log index within transaction

        Returns:
            True if investment exists, False otherwise
        """
        result = await self.session.execute(
            select(
                exists().where(Investment.tx_hash == tx_hash, Investment.log_index == log_index)  # type: ignore[arg-type]
            )
        )
        return result.scalar()  # type: ignore[return-value]

    async def get_active_by_sukuk(self, sukuk_id: UUID) -> list[Investment]:
        """Retrieve active investments for a sukuk, oldest first."""
        result = await self.session.execute(
            select(Investment)
            .where(
                Investment.sukuk_id == sukuk_id,  # type: ignore[arg-type]
                Investment.status == InvestmentStatus.ACTIVE,  # type: ignore[arg-type]
            )
            .order_by(Investment.investment_date.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def get_by_investor(self, investor_address: str) -> list[Investment]:
        """Retrieve all investments for an investor, newest first."""
        result = await self.session.execute(
            select(Investment)
            .where(Investment.investor_address == investor_address.lower())  # type: ignore[arg-type]
            .order_by(Investment.investment_date.desc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())
