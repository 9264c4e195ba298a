"""Investment entity - One on-chain purchase of sukuk tokens."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from pydantic import field_validator
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class InvestmentStatus(str, Enum):
    ACTIVE = "active"
    REDEEMED = "redeemed"
    MATURED = "matured"


class Investment(SQLModel, table=True):
    """Investment tracks a purchase event; (tx_hash, log_index) identifies it."""

    __tablename__ = "investments"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("tx_hash", "log_index", name="uq_investments_tx_log"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    sukuk_id: UUID = Field(foreign_key="sukuk_series.id", index=True)
    investor_address: str = Field(max_length=42, index=True)
    investment_amount: str = Field(max_length=78)  # payment token, wei
    token_amount: str = Field(max_length=78)  # sukuk tokens, wei
    token_price: str = Field(max_length=78)
    status: InvestmentStatus = Field(default=InvestmentStatus.ACTIVE, index=True)
    tx_hash: str = Field(max_length=66, index=True)
    log_index: int
    block_number: int = Field(index=True)
    investment_date: datetime
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("investor_address")
    @classmethod
    def normalize_investor_address(cls, v: str) -> str:
        return v.lower()

    @field_validator("log_index")
    @classmethod
    def validate_log_index(cls, v: int) -> int:
        """Validate log index is non-negative."""
        if v < 0:
            raise ValueError("Log index must be non-negative")
        return v
