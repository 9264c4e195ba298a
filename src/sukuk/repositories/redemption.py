"""Redemption repository."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sukuk.models.redemption import Redemption


class RedemptionRepository:
    """Repository for Redemption entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, redemption: Redemption) -> Redemption:
        self.session.add(redemption)
        await self.session.flush()
        return redemption

    async def get_by_external_id(self, external_id: str) -> Redemption | None:
        """Retrieve redemption by on-chain redemption ID."""
        result = await self.session.execute(
            select(Redemption).where(Redemption.external_id == external_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def save(self, redemption: Redemption) -> Redemption:
        self.session.add(redemption)
        await self.session.flush()
        return redemption
