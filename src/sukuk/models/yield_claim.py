"""Yield entity - Per-investment share of a yield distribution."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from sukuk.models.sukuk import InvalidStateTransition


class YieldStatus(str, Enum):
    PENDING = "pending"
    CLAIMED = "claimed"
    EXPIRED = "expired"


class Yield(SQLModel, table=True):
    """Yield is created pending on distribution and marked claimed on claim."""

    __tablename__ = "yield_claims"  # type: ignore[assignment]
    __table_args__ = (
        UniqueConstraint("investment_id", "distribution_id", name="uq_yield_claims_investment_dist"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    sukuk_id: UUID = Field(foreign_key="sukuk_series.id", index=True)
    investment_id: UUID = Field(foreign_key="investments.id", index=True)
    distribution_id: int = Field(sa_column=Column(BigInteger, nullable=False, index=True))
    investor_address: str = Field(max_length=42, index=True)
    yield_amount: str = Field(default="0", max_length=78)  # payment token, wei
    period_start: datetime
    period_end: datetime
    distribution_date: datetime
    status: YieldStatus = Field(default=YieldStatus.PENDING, index=True)
    dist_tx_hash: str = Field(max_length=66)
    dist_log_index: int
    claim_tx_hash: Optional[str] = Field(default=None, max_length=66)
    claim_block_number: Optional[int] = Field(default=None)
    claimed_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def mark_claimed(self, tx_hash: str, block_number: int, claimed_at: datetime) -> None:
        """Transition from pending to claimed.

        Raises:
            InvalidStateTransition: If current status is not pending
        """
        if self.status != YieldStatus.PENDING:
            raise InvalidStateTransition(
                f"Cannot mark claimed from {self.status.value}. Yield must be pending."
            )
        self.status = YieldStatus.CLAIMED
        self.claim_tx_hash = tx_hash
        self.claim_block_number = block_number
        self.claimed_at = claimed_at
