"""Sukuk repository.

Provides data access methods for Sukuk series, looked up by name (pre-deployment)
or by token contract address (post-deployment).
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sukuk.models.sukuk import Sukuk


class SukukRepository:
    """Repository for Sukuk entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, sukuk: Sukuk) -> Sukuk:
        """Persist new sukuk series to database."""
        self.session.add(sukuk)
        await self.session.flush()
        return sukuk

    async def get_by_id(self, sukuk_id: UUID) -> Sukuk | None:
        result = await self.session.execute(select(Sukuk).where(Sukuk.id == sukuk_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def get_by_token_address(self, token_address: str) -> Sukuk | None:
        """Retrieve sukuk by deployed token address (case-insensitive).

        Args:
            token_address: Token contract address (0x...)

        Returns:
            Sukuk if found, None otherwise
        """
        result = await self.session.execute(
            select(Sukuk).where(Sukuk.token_address == token_address.lower())  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_undeployed_by_name(self, name: str) -> Sukuk | None:
        """Retrieve the oldest series with this name that has no token address yet.

        Args:
            name: Series name as emitted by the deployment event

        Returns:
            Sukuk if found, None otherwise
        """
        result = await self.session.execute(
            select(Sukuk)
            .where(
                Sukuk.name == name,  # type: ignore[arg-type]
                (Sukuk.token_address.is_(None)) | (Sukuk.token_address == ""),  # type: ignore[union-attr]
            )
            .order_by(Sukuk.created_at.asc())  # type: ignore[attr-defined]
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def save(self, sukuk: Sukuk) -> Sukuk:
        self.session.add(sukuk)
        await self.session.flush()
        return sukuk
