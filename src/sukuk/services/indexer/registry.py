"""Event-type registry for indexer tables.

Each indexer event type (the suffix after ``<hash>__`` in a table name) is
registered with a strict pydantic row model. The row model is the single
source of truth for:

- the columns a table must have before it is queried (schema validation)
- the columns selected by every query (no ``SELECT *``)
- how a raw row is decoded (unknown or missing fields are rejected)
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Any

import sqlalchemy as sa
from eth_utils.address import is_address
from pydantic import BaseModel, BeforeValidator, ConfigDict
from sqlalchemy.sql.expression import TableClause

from sukuk.core.token_math import to_amount

# Columns every Ponder event table carries
COMMON_COLUMNS: tuple[str, ...] = ("id", "timestamp", "block_number", "tx_hash")


def normalize_address(address: str) -> str:
    """Lower-case an EVM address after validating its format."""
    if not isinstance(address, str) or not is_address(address):
        raise ValueError(f"invalid address: {address!r}")
    return address.lower()


def _to_int(value: Any) -> Any:
    if isinstance(value, Decimal):
        if value != value.to_integral_value():
            raise ValueError(f"expected integral value, got {value}")
        return int(value)
    return value


def _to_str(value: Any) -> Any:
    if isinstance(value, (int, Decimal)) and not isinstance(value, bool):
        return str(value)
    return value


Address = Annotated[str, BeforeValidator(normalize_address)]
Amount = Annotated[str, BeforeValidator(to_amount)]
Integer = Annotated[int, BeforeValidator(_to_int)]
RowId = Annotated[str, BeforeValidator(_to_str)]


class IndexerRow(BaseModel):
    """Columns shared by all indexer event rows."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: RowId
    block_number: Integer
    tx_hash: str
    timestamp: Integer  # unix seconds

    @property
    def occurred_at(self) -> datetime:
        """Block timestamp as an aware UTC datetime."""
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)


class PurchaseRow(IndexerRow):
    buyer: Address
    sukuk_address: Address
    payment_token: Address
    amount: Amount


class RedemptionRequestRow(IndexerRow):
    user: Address
    sukuk_address: Address
    amount: Amount
    payment_token: Address
    total_supply: Amount


class RedemptionApprovalRow(IndexerRow):
    user: Address
    sukuk_address: Address
    amount: Amount
    total_supply: Amount


class YieldDistributionRow(IndexerRow):
    sukuk_address: Address
    distribution_id: Integer
    payment_token: Address
    amount: Amount


class YieldClaimRow(IndexerRow):
    user: Address
    sukuk_address: Address
    distribution_id: Integer
    amount: Amount


class SnapshotRow(IndexerRow):
    sukuk_address: Address
    snapshot_id: Integer
    total_supply: Amount
    holder_count: Integer
    eligible_count: Integer


class HolderUpdateRow(IndexerRow):
    holder: Address
    sukuk_address: Address
    new_balance: Amount


@dataclass(frozen=True)
class EventSchema:
    """Expected shape of one indexer event type."""

    event_type: str
    row_model: type[IndexerRow]
    columns: tuple[str, ...] = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", tuple(self.row_model.model_fields))

    def table(self, table_name: str) -> TableClause:
        """Build a lightweight table construct for a concrete hash-prefixed table."""
        return sa.table(table_name, *(sa.column(name) for name in self.columns))

    def decode(self, row: Any) -> IndexerRow:
        """Decode a SQLAlchemy Row (or mapping) into the typed row model."""
        mapping = row._mapping if hasattr(row, "_mapping") else row
        return self.row_model.model_validate(dict(mapping))


# Event type names are the table suffixes produced by the indexer
SUKUK_PURCHASE = "sukuk_purchase"
REDEMPTION_REQUEST = "redemption_request"
REDEMPTION_APPROVAL = "redemption_approval"
YIELD_DISTRIBUTION = "yield_distribution"
YIELD_CLAIM = "yield_claim"
SNAPSHOT_TAKEN = "snapshot_taken"
HOLDER_UPDATE = "holder_update"

EVENT_SCHEMAS: dict[str, EventSchema] = {
    schema.event_type: schema
    for schema in (
        EventSchema(SUKUK_PURCHASE, PurchaseRow),
        EventSchema(REDEMPTION_REQUEST, RedemptionRequestRow),
        EventSchema(REDEMPTION_APPROVAL, RedemptionApprovalRow),
        EventSchema(YIELD_DISTRIBUTION, YieldDistributionRow),
        EventSchema(YIELD_CLAIM, YieldClaimRow),
        EventSchema(SNAPSHOT_TAKEN, SnapshotRow),
        EventSchema(HOLDER_UPDATE, HolderUpdateRow),
    )
}


def expected_columns(event_type: str) -> tuple[str, ...]:
    """Columns a table for event_type must have; unregistered types need the common set."""
    schema = EVENT_SCHEMAS.get(event_type)
    return schema.columns if schema else COMMON_COLUMNS


def get_schema(event_type: str) -> EventSchema:
    """Look up a registered event schema.

    Raises:
        KeyError: If the event type has no registered row model
    """
    return EVENT_SCHEMAS[event_type]
