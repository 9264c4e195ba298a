"""Redemption entity - Token burn for payout, keyed by on-chain redemption ID."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from sukuk.models.sukuk import InvalidStateTransition


class RedemptionStatus(str, Enum):
    REQUESTED = "requested"
    APPROVED = "approved"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class Redemption(SQLModel, table=True):
    """Redemption lifecycle record; completed by the RedemptionCompleted event."""

    __tablename__ = "redemptions"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    sukuk_id: UUID = Field(foreign_key="sukuk_series.id", index=True)
    external_id: Optional[str] = Field(default=None, max_length=78, unique=True, index=True)
    investor_address: str = Field(max_length=42, index=True)
    token_amount: str = Field(max_length=78)  # sukuk tokens, wei
    redemption_amount: str = Field(default="0", max_length=78)  # payment token, wei
    request_tx_hash: Optional[str] = Field(default=None, max_length=66)
    request_log_index: Optional[int] = Field(default=None)
    complete_tx_hash: Optional[str] = Field(default=None, max_length=66)
    complete_log_index: Optional[int] = Field(default=None)
    request_date: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = Field(default=None)
    status: RedemptionStatus = Field(default=RedemptionStatus.REQUESTED, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def mark_completed(
        self,
        tx_hash: str,
        log_index: int,
        completed_at: datetime,
        redemption_amount: Optional[str] = None,
    ) -> None:
        """Transition to completed.

        Raises:
            InvalidStateTransition: If already in a terminal state
        """
        if self.status in (
            RedemptionStatus.COMPLETED,
            RedemptionStatus.REJECTED,
            RedemptionStatus.CANCELLED,
        ):
            raise InvalidStateTransition(
                f"Cannot mark completed from terminal state {self.status.value}."
            )
        self.status = RedemptionStatus.COMPLETED
        self.complete_tx_hash = tx_hash
        self.complete_log_index = log_index
        self.completed_at = completed_at
        if redemption_amount is not None:
            self.redemption_amount = redemption_amount
