"""Sukuk entity - Bond series with on-chain deployment tracking."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import field_validator
from sqlmodel import Field, SQLModel


class SukukStatus(str, Enum):
    """Sukuk series lifecycle status."""

    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    MATURED = "matured"
    CLOSED = "closed"
    SUSPENDED = "suspended"


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid projection state transition."""

    pass


class Sukuk(SQLModel, table=True):
    """Sukuk represents one bond series; token_address is set on deployment."""

    __tablename__ = "sukuk_series"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(max_length=255, index=True)
    symbol: str = Field(max_length=20)
    description: Optional[str] = Field(default=None)
    total_supply: str = Field(default="0", max_length=78)  # wei string
    outstanding_supply: str = Field(default="0", max_length=78)  # wei string
    token_address: Optional[str] = Field(default=None, max_length=42, unique=True, index=True)
    status: SukukStatus = Field(default=SukukStatus.DRAFT, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("token_address")
    @classmethod
    def normalize_token_address(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else v

    def mark_deployed(self, token_address: str) -> None:
        """Attach the deployed token contract and activate the series.

        Raises:
            InvalidStateTransition: If the series already has a token address
        """
        if self.token_address:
            raise InvalidStateTransition(
                f"Sukuk {self.name} already deployed at {self.token_address}"
            )
        self.token_address = token_address.lower()
        self.status = SukukStatus.ACTIVE
        self.updated_at = datetime.utcnow()

    def set_outstanding_supply(self, supply: str) -> None:
        self.outstanding_supply = supply
        self.updated_at = datetime.utcnow()
