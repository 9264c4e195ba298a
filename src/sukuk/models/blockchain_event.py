"""BlockchainEvent entity - Row of the unified on-chain event log.

The ``blockchain.events`` table is written by the event listener and only read
here; it lives outside this service's migrations.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, BigInteger, Column
from sqlmodel import Field, SQLModel

EVENT_LOG_SCHEMA = "blockchain"


class BlockchainEvent(SQLModel, table=True):
    """BlockchainEvent is one decoded contract log, ordered by id."""

    __tablename__ = "events"  # type: ignore[assignment]
    __table_args__ = {"schema": EVENT_LOG_SCHEMA}

    id: Optional[int] = Field(
        default=None, sa_column=Column(BigInteger, primary_key=True, autoincrement=True)
    )
    event_name: str = Field(max_length=100, index=True)
    tx_hash: str = Field(max_length=66)
    log_index: int
    block_number: int = Field(sa_column=Column(BigInteger, nullable=False))
    block_timestamp: datetime
    contract_address: str = Field(max_length=42)
    event_data: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    chain_id: int = Field(default=0, sa_column=Column(BigInteger, nullable=False))
