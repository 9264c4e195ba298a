"""Typed queries against the indexer's latest event tables.

Every public query resolves the latest table for each event type it needs
through ``TableDiscoveryService``, validates the table's columns, then runs a
single parameterized, ordered read. A missing or malformed table fails the
whole query (``TableNotFoundError`` / ``SchemaMismatchError``); only genuinely
empty tables produce empty results.
"""

from dataclasses import dataclass, field
from datetime import datetime
from fractions import Fraction
from typing import Any

import sqlalchemy as sa
import structlog
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.sql.expression import TableClause

from sukuk.core import token_math
from sukuk.services.exceptions import RecordNotFoundError
from sukuk.services.indexer.registry import (
    HOLDER_UPDATE,
    REDEMPTION_APPROVAL,
    REDEMPTION_REQUEST,
    SNAPSHOT_TAKEN,
    SUKUK_PURCHASE,
    YIELD_CLAIM,
    YIELD_DISTRIBUTION,
    EventSchema,
    HolderUpdateRow,
    IndexerRow,
    PurchaseRow,
    RedemptionApprovalRow,
    RedemptionRequestRow,
    SnapshotRow,
    YieldClaimRow,
    YieldDistributionRow,
    get_schema,
    normalize_address,
)
from sukuk.services.indexer.table_discovery import TableDiscoveryService

logger = structlog.get_logger()

# Caller-supplied limits are clamped to bound indexer load
DEFAULT_DISTRIBUTION_LIMIT = 20
MAX_DISTRIBUTION_LIMIT = 100
DEFAULT_SNAPSHOT_LIMIT = 10
MAX_SNAPSHOT_LIMIT = 100
DEFAULT_ALL_SNAPSHOTS_LIMIT = 50
MAX_ALL_SNAPSHOTS_LIMIT = 200
DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 200


def clamp_limit(limit: int | None, default: int, maximum: int) -> int:
    """Apply the default for missing/non-positive limits and cap at maximum."""
    if limit is None or limit <= 0:
        return default
    return min(limit, maximum)


@dataclass
class ActivityEvent:
    """Purchase or redemption request in an activity feed."""

    type: str  # "purchase" | "redemption_request"
    address: str
    sukuk_address: str
    amount: str
    tx_hash: str
    block_number: int
    timestamp: datetime


@dataclass
class TransactionEvent:
    """One entry in a user's combined transaction history."""

    type: str  # "purchase" | "redemption_request" | "yield_claim"
    sukuk_address: str
    amount: str
    tx_hash: str
    block_number: int
    timestamp: datetime
    status: str = "confirmed"
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class DistributionAvailability:
    """Per-distribution claim state for one user."""

    distribution_id: int
    amount: str
    payment_token: str
    claimed_amount: str
    user_claimable_amount: str
    claimable: bool


@dataclass
class SukukHolding:
    """A user's position in one sukuk."""

    sukuk_address: str
    balance: str
    claimable_yield: str
    total_yield_claimed: str
    unclaimed_distribution_ids: list[int]
    yield_history: list[YieldDistributionRow]


@dataclass
class PortfolioSummary:
    total_sukuk_count: int
    active_sukuk_count: int  # non-zero balance
    total_claimable_yield: str
    total_yield_claimed: str


@dataclass
class UserPortfolio:
    address: str
    holdings: list[SukukHolding]
    summary: PortfolioSummary


class IndexerQueryService:
    """Service for reading indexer event tables through the latest-table registry."""

    def __init__(self, engine: AsyncEngine, discovery: TableDiscoveryService | None = None):
        """Initialize query service.

        Args:
            engine: Async engine bound to the indexer database
            discovery: Table discovery service (created from engine if omitted)
        """
        self.engine = engine
        self.discovery = discovery or TableDiscoveryService(engine)

    async def _resolve(self, event_type: str) -> tuple[EventSchema, TableClause]:
        table_name = await self.discovery.latest_table_for(event_type)
        await self.discovery.validate_schema(table_name, event_type)
        schema = get_schema(event_type)
        return schema, schema.table(table_name)

    async def _fetch(
        self,
        event_type: str,
        filters: dict[str, Any] | None = None,
        order_by: str = "timestamp",
        descending: bool = True,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Any]:
        """Run a filtered, ordered read against the latest table for event_type.

        Filters whose value is None or "" are ignored.
        """
        schema, table = await self._resolve(event_type)

        stmt = sa.select(*table.c)
        for column, value in (filters or {}).items():
            if value is None or value == "":
                continue
            stmt = stmt.where(table.c[column] == value)

        order_column = table.c[order_by]
        if descending:
            stmt = stmt.order_by(order_column.desc(), table.c.block_number.desc(), table.c.id.desc())
        else:
            stmt = stmt.order_by(order_column.asc(), table.c.block_number.asc(), table.c.id.asc())

        if limit is not None and limit > 0:
            stmt = stmt.limit(limit)
        if offset is not None and offset > 0:
            stmt = stmt.offset(offset)

        async with self.discovery.connection() as conn:
            result = await conn.execute(stmt)
            rows = [schema.decode(row) for row in result.all()]

        logger.debug(
            "indexer_query.fetched",
            event_type=event_type,
            table=table.name,
            count=len(rows),
        )
        return rows

    @staticmethod
    def _address(address: str | None) -> str | None:
        return normalize_address(address) if address else None

    # ------------------------------------------------------------------
    # Raw event reads
    # ------------------------------------------------------------------

    async def get_purchases(
        self,
        sukuk_address: str | None = None,
        buyer: str | None = None,
        limit: int | None = None,
    ) -> list[PurchaseRow]:
        """Purchase events, newest first, optionally filtered by sukuk and/or buyer."""
        return await self._fetch(
            SUKUK_PURCHASE,
            {"sukuk_address": self._address(sukuk_address), "buyer": self._address(buyer)},
            limit=limit,
        )

    async def get_redemption_requests(
        self,
        sukuk_address: str | None = None,
        user: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[RedemptionRequestRow]:
        """Redemption request events, newest first."""
        return await self._fetch(
            REDEMPTION_REQUEST,
            {"sukuk_address": self._address(sukuk_address), "user": self._address(user)},
            limit=limit,
            offset=offset,
        )

    async def get_redemption_approvals(
        self,
        sukuk_address: str | None = None,
        user: str | None = None,
        limit: int | None = None,
    ) -> list[RedemptionApprovalRow]:
        """Redemption approval events, newest first."""
        return await self._fetch(
            REDEMPTION_APPROVAL,
            {"sukuk_address": self._address(sukuk_address), "user": self._address(user)},
            limit=limit,
        )

    async def get_yield_distributions(
        self, sukuk_address: str | None, limit: int | None = None
    ) -> list[YieldDistributionRow]:
        """Yield distributions for a sukuk, newest first (limit clamped to 100)."""
        return await self._fetch(
            YIELD_DISTRIBUTION,
            {"sukuk_address": self._address(sukuk_address)},
            limit=clamp_limit(limit, DEFAULT_DISTRIBUTION_LIMIT, MAX_DISTRIBUTION_LIMIT),
        )

    async def get_yield_claims(
        self,
        user: str | None = None,
        sukuk_address: str | None = None,
        limit: int | None = None,
    ) -> list[YieldClaimRow]:
        """Yield claim events, newest first."""
        return await self._fetch(
            YIELD_CLAIM,
            {"user": self._address(user), "sukuk_address": self._address(sukuk_address)},
            limit=limit,
        )

    async def get_snapshots(self, sukuk_address: str, limit: int | None = None) -> list[SnapshotRow]:
        """Balance snapshots for a sukuk, newest first (limit clamped to 100)."""
        return await self._fetch(
            SNAPSHOT_TAKEN,
            {"sukuk_address": self._address(sukuk_address)},
            limit=clamp_limit(limit, DEFAULT_SNAPSHOT_LIMIT, MAX_SNAPSHOT_LIMIT),
        )

    async def get_all_snapshots(self, limit: int | None = None) -> list[SnapshotRow]:
        """Balance snapshots across all sukuk, newest first (limit clamped to 200)."""
        return await self._fetch(
            SNAPSHOT_TAKEN,
            limit=clamp_limit(limit, DEFAULT_ALL_SNAPSHOTS_LIMIT, MAX_ALL_SNAPSHOTS_LIMIT),
        )

    async def get_snapshot_by_id(self, sukuk_address: str, snapshot_id: int) -> SnapshotRow:
        """Fetch one snapshot.

        Raises:
            RecordNotFoundError: If the sukuk has no snapshot with that ID
        """
        rows = await self._fetch(
            SNAPSHOT_TAKEN,
            {"sukuk_address": self._address(sukuk_address), "snapshot_id": snapshot_id},
            limit=1,
        )
        if not rows:
            raise RecordNotFoundError(f"Snapshot {snapshot_id} not found for sukuk {sukuk_address}")
        return rows[0]

    # ------------------------------------------------------------------
    # Balances and yield
    # ------------------------------------------------------------------

    async def get_current_balance(self, user: str, sukuk_address: str) -> str:
        """Latest holder balance for (user, sukuk); "0" when the user has no rows."""
        rows: list[HolderUpdateRow] = await self._fetch(
            HOLDER_UPDATE,
            {"holder": self._address(user), "sukuk_address": self._address(sukuk_address)},
            limit=1,
        )
        return rows[0].new_balance if rows else "0"

    async def get_total_supply(self, sukuk_address: str) -> str:
        """Total supply from the newest snapshot, falling back to the newest redemption request."""
        snapshots = await self._fetch(
            SNAPSHOT_TAKEN, {"sukuk_address": self._address(sukuk_address)}, limit=1
        )
        if snapshots:
            return snapshots[0].total_supply

        requests = await self._fetch(
            REDEMPTION_REQUEST, {"sukuk_address": self._address(sukuk_address)}, limit=1
        )
        if requests:
            return requests[0].total_supply

        logger.debug("indexer_query.total_supply_unknown", sukuk_address=sukuk_address)
        return "0"

    async def get_total_yield_distributed(self, sukuk_address: str) -> str:
        """Sum of all yield distributed for a sukuk."""
        rows = await self._fetch(YIELD_DISTRIBUTION, {"sukuk_address": self._address(sukuk_address)})
        return token_math.sum_amounts([r.amount for r in rows])

    async def get_total_yield_claimed(self, user: str, sukuk_address: str) -> str:
        """Sum of all yield a user has claimed from a sukuk."""
        rows = await self.get_yield_claims(user=user, sukuk_address=sukuk_address)
        return token_math.sum_amounts([r.amount for r in rows])

    async def _share_fraction(self, user: str, sukuk_address: str) -> Fraction:
        balance = await self.get_current_balance(user, sukuk_address)
        if token_math.is_zero(balance):
            return Fraction(0)
        total_supply = await self.get_total_supply(sukuk_address)
        if token_math.is_zero(total_supply):
            return Fraction(0)
        return Fraction(token_math.parse_amount(balance), token_math.parse_amount(total_supply))

    async def get_user_share_percentage(self, user: str, sukuk_address: str) -> float:
        """User's share of total supply (0.0 - 1.0), based on current holdings."""
        return float(await self._share_fraction(user, sukuk_address))

    async def get_claimable_yield(self, user: str, sukuk_address: str) -> str:
        """Claimable yield = total distributed * share - total claimed (never negative).

        The share uses current holdings, not balances at each distribution.
        """
        share = await self._share_fraction(user, sukuk_address)
        total_distributed = await self.get_total_yield_distributed(sukuk_address)
        total_claimed = await self.get_total_yield_claimed(user, sukuk_address)

        entitled = token_math.multiply_by_fraction(total_distributed, share)
        return token_math.subtract(entitled, total_claimed)

    async def get_sukuk_owned_by_address(self, address: str) -> list[str]:
        """Distinct sukuk addresses the address has ever purchased, sorted."""
        schema, table = await self._resolve(SUKUK_PURCHASE)
        stmt = (
            sa.select(sa.distinct(table.c.sukuk_address))
            .where(table.c.buyer == normalize_address(address))
        )
        async with self.discovery.connection() as conn:
            result = await conn.execute(stmt)
            return sorted({normalize_address(a) for a in result.scalars().all()})

    async def _claimed_by_distribution(self, user: str, sukuk_address: str) -> dict[int, str]:
        claims = await self.get_yield_claims(user=user, sukuk_address=sukuk_address)
        claimed: dict[int, str] = {}
        for claim in claims:
            # Multiple claims against one distribution are summed
            claimed[claim.distribution_id] = token_math.add(
                claimed.get(claim.distribution_id, "0"), claim.amount
            )
        return claimed

    async def get_unclaimed_distribution_ids(self, user: str, sukuk_address: str) -> list[int]:
        """Distribution IDs for a sukuk that the user has not claimed, ascending."""
        distributions = await self._fetch(
            YIELD_DISTRIBUTION,
            {"sukuk_address": self._address(sukuk_address)},
            order_by="distribution_id",
            descending=False,
        )
        claimed = await self._claimed_by_distribution(user, sukuk_address)
        return [d.distribution_id for d in distributions if d.distribution_id not in claimed]

    async def get_available_distributions(
        self, user: str, sukuk_address: str
    ) -> list[DistributionAvailability]:
        """Every distribution for a sukuk with the user's claimed and claimable amounts."""
        distributions: list[YieldDistributionRow] = await self._fetch(
            YIELD_DISTRIBUTION,
            {"sukuk_address": self._address(sukuk_address)},
            order_by="distribution_id",
            descending=False,
        )
        if not distributions:
            return []

        claimed = await self._claimed_by_distribution(user, sukuk_address)
        share = await self._share_fraction(user, sukuk_address)

        result = []
        for dist in distributions:
            claimed_amount = claimed.get(dist.distribution_id, "0")
            entitled = token_math.multiply_by_fraction(dist.amount, share)
            claimable_amount = token_math.subtract(entitled, claimed_amount)
            result.append(
                DistributionAvailability(
                    distribution_id=dist.distribution_id,
                    amount=dist.amount,
                    payment_token=dist.payment_token,
                    claimed_amount=claimed_amount,
                    user_claimable_amount=claimable_amount,
                    claimable=token_math.is_positive(claimable_amount),
                )
            )
        return result

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    async def get_sukuk_holding(
        self, user: str, sukuk_address: str, history_limit: int = 5
    ) -> SukukHolding:
        """User's balance, yield position and recent distributions for one sukuk."""
        return SukukHolding(
            sukuk_address=normalize_address(sukuk_address),
            balance=await self.get_current_balance(user, sukuk_address),
            claimable_yield=await self.get_claimable_yield(user, sukuk_address),
            total_yield_claimed=await self.get_total_yield_claimed(user, sukuk_address),
            unclaimed_distribution_ids=await self.get_unclaimed_distribution_ids(user, sukuk_address),
            yield_history=await self.get_yield_distributions(sukuk_address, limit=history_limit),
        )

    async def get_user_portfolio(self, address: str, history_limit: int = 5) -> UserPortfolio:
        """Holdings across every sukuk the address has purchased.

        Holdings with a zero balance are kept (they may still carry unclaimed
        yield); ``summary.active_sukuk_count`` counts the non-zero ones.
        """
        holdings = [
            await self.get_sukuk_holding(address, sukuk_address, history_limit)
            for sukuk_address in await self.get_sukuk_owned_by_address(address)
        ]

        summary = PortfolioSummary(
            total_sukuk_count=len(holdings),
            active_sukuk_count=sum(1 for h in holdings if token_math.is_positive(h.balance)),
            total_claimable_yield=token_math.sum_amounts([h.claimable_yield for h in holdings]),
            total_yield_claimed=token_math.sum_amounts([h.total_yield_claimed for h in holdings]),
        )

        logger.info(
            "indexer_query.portfolio_built",
            address=address,
            holdings=summary.total_sukuk_count,
            active=summary.active_sukuk_count,
        )
        return UserPortfolio(address=normalize_address(address), holdings=holdings, summary=summary)

    @staticmethod
    def _merge_activities(
        purchases: list[PurchaseRow],
        requests: list[RedemptionRequestRow],
        limit: int,
    ) -> list[ActivityEvent]:
        activities = [
            ActivityEvent(
                type="purchase",
                address=p.buyer,
                sukuk_address=p.sukuk_address,
                amount=p.amount,
                tx_hash=p.tx_hash,
                block_number=p.block_number,
                timestamp=p.occurred_at,
            )
            for p in purchases
        ] + [
            ActivityEvent(
                type="redemption_request",
                address=r.user,
                sukuk_address=r.sukuk_address,
                amount=r.amount,
                tx_hash=r.tx_hash,
                block_number=r.block_number,
                timestamp=r.occurred_at,
            )
            for r in requests
        ]
        activities.sort(key=lambda a: (a.timestamp, a.block_number), reverse=True)
        return activities[:limit]

    async def get_latest_activities(self, sukuk_address: str, limit: int = 10) -> list[ActivityEvent]:
        """Latest purchases and redemption requests for a sukuk, merged newest first."""
        limit = limit if limit > 0 else 10
        purchases = await self.get_purchases(sukuk_address=sukuk_address, limit=limit)
        requests = await self.get_redemption_requests(sukuk_address=sukuk_address, limit=limit)
        return self._merge_activities(purchases, requests, limit)

    async def get_activities_by_address(self, address: str, limit: int = 50) -> list[ActivityEvent]:
        """Purchases and redemption requests made by an address, merged newest first."""
        limit = limit if limit > 0 else 50
        purchases = await self.get_purchases(buyer=address, limit=limit)
        requests = await self.get_redemption_requests(user=address, limit=limit)
        return self._merge_activities(purchases, requests, limit)

    async def get_user_transaction_history(
        self, address: str, limit: int | None = DEFAULT_HISTORY_LIMIT
    ) -> list[TransactionEvent]:
        """Purchases, redemption requests and yield claims for an address, newest first.

        Each event type is read with the same limit, then merged and truncated.
        """
        limit = clamp_limit(limit, DEFAULT_HISTORY_LIMIT, MAX_HISTORY_LIMIT)

        purchases = await self.get_purchases(buyer=address, limit=limit)
        requests = await self.get_redemption_requests(user=address, limit=limit)
        claims = await self.get_yield_claims(user=address, limit=limit)

        transactions: list[TransactionEvent] = []
        for p in purchases:
            transactions.append(
                TransactionEvent(
                    type="purchase",
                    sukuk_address=p.sukuk_address,
                    amount=p.amount,
                    tx_hash=p.tx_hash,
                    block_number=p.block_number,
                    timestamp=p.occurred_at,
                    details={"payment_token": p.payment_token, "buyer": p.buyer},
                )
            )
        for r in requests:
            transactions.append(
                TransactionEvent(
                    type="redemption_request",
                    sukuk_address=r.sukuk_address,
                    amount=r.amount,
                    tx_hash=r.tx_hash,
                    block_number=r.block_number,
                    timestamp=r.occurred_at,
                    details={"payment_token": r.payment_token, "user": r.user},
                )
            )
        for c in claims:
            transactions.append(
                TransactionEvent(
                    type="yield_claim",
                    sukuk_address=c.sukuk_address,
                    amount=c.amount,
                    tx_hash=c.tx_hash,
                    block_number=c.block_number,
                    timestamp=c.occurred_at,
                    details={"user": c.user, "distribution_id": c.distribution_id},
                )
            )

        transactions.sort(key=lambda t: (t.timestamp, t.block_number), reverse=True)
        return transactions[:limit]

    async def get_available_tables(self) -> dict[str, str]:
        """Event type -> latest table name for every discovered type."""
        return await self.discovery.all_latest_tables()


__all__ = [
    "ActivityEvent",
    "DistributionAvailability",
    "IndexerQueryService",
    "IndexerRow",
    "PortfolioSummary",
    "SukukHolding",
    "TransactionEvent",
    "UserPortfolio",
    "clamp_limit",
]
