"""Yield repository.

Provides data access methods for per-investment yield records.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sukuk.models.yield_claim import Yield, YieldStatus


class YieldRepository:
    """Repository for Yield entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, yield_record: Yield) -> Yield:
        self.session.add(yield_record)
        await self.session.flush()
        return yield_record

    async def exists_for_distribution(self, investment_id: UUID, distribution_id: int) -> bool:
        """Check whether an investment already has a yield for this distribution."""
        result = await self.session.execute(
            select(
                exists().where(
                    Yield.investment_id == investment_id,  # type: ignore[arg-type]
                    Yield.distribution_id == distribution_id,  # type: ignore[arg-type]
                )
            )
        )
        return result.scalar()  # type: ignore[return-value]

    async def mark_claimed_range(
        self,
        investor_address: str,
        from_distribution: int,
        to_distribution: int,
        tx_hash: str,
        block_number: int,
        claimed_at: datetime,
    ) -> int:
        """Mark an investor's pending yields in [from, to] as claimed.

        Query explanation:
        - WHERE investor matches and distribution_id BETWEEN from AND to
        - AND status = 'pending': claimed/expired yields are left alone

        Returns:
            Number of yields updated
        """
        result = await self.session.execute(
            update(Yield)
            .where(
                Yield.investor_address == investor_address.lower(),  # type: ignore[arg-type]
                Yield.distribution_id >= from_distribution,  # type: ignore[arg-type]
                Yield.distribution_id <= to_distribution,  # type: ignore[arg-type]
                Yield.status == YieldStatus.PENDING,  # type: ignore[arg-type]
            )
            .values(
                status=YieldStatus.CLAIMED,
                claim_tx_hash=tx_hash,
                claim_block_number=block_number,
                claimed_at=claimed_at,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return result.rowcount  # type: ignore[attr-defined]

    async def get_by_investor(
        self, investor_address: str, status: YieldStatus | None = None
    ) -> list[Yield]:
        """Retrieve yields for an investor ordered by distribution."""
        stmt = select(Yield).where(Yield.investor_address == investor_address.lower())  # type: ignore[arg-type]
        if status is not None:
            stmt = stmt.where(Yield.status == status)  # type: ignore[arg-type]
        result = await self.session.execute(stmt.order_by(Yield.distribution_id.asc()))  # type: ignore[attr-defined]
        return list(result.scalars().all())
