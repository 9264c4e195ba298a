"""Redemption lifecycle view built from indexer request and approval events.

Requests and approvals are separate indexer tables with no shared redemption
ID. Approvals are matched to requests by ``(user, sukuk_address)``; when the
same user has several requests for one sukuk, all of them match the same
(oldest) approval.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

import structlog

from sukuk.core import token_math
from sukuk.services.indexer.query import IndexerQueryService
from sukuk.services.indexer.registry import RedemptionApprovalRow, RedemptionRequestRow

logger = structlog.get_logger()

STATS_SAMPLE_SIZE = 1000


class ApprovalStatus(str, Enum):
    REQUESTED = "requested"
    APPROVED = "approved"


@dataclass
class RedemptionView:
    """A redemption request annotated with its matched approval, if any."""

    request_id: str
    user: str
    sukuk_address: str
    amount: str
    payment_token: str
    total_supply: str
    request_tx_hash: str
    request_block_number: int
    request_time: datetime
    status: ApprovalStatus = ApprovalStatus.REQUESTED
    approval_id: str | None = None
    approval_tx_hash: str | None = None
    approval_block_number: int | None = None
    approval_time: datetime | None = None
    approved_amount: str | None = None

    @property
    def can_approve(self) -> bool:
        return self.status == ApprovalStatus.REQUESTED


@dataclass
class RedemptionList:
    redemptions: list[RedemptionView]
    total: int
    pending_count: int
    approved_count: int


@dataclass
class SukukRedemptionStats:
    sukuk_address: str
    request_count: int = 0
    requested_amount: str = "0"
    approved_amount: str = "0"


@dataclass
class RedemptionStats:
    total_requests: int
    pending_count: int
    approved_count: int
    total_requested_amount: str
    total_approved_amount: str
    by_sukuk: dict[str, SukukRedemptionStats] = field(default_factory=dict)


def _approval_key(user: str, sukuk_address: str) -> tuple[str, str]:
    return (user.lower(), sukuk_address.lower())


def merge_redemptions(
    requests: list[RedemptionRequestRow],
    approvals: list[RedemptionApprovalRow],
) -> list[RedemptionView]:
    """Annotate each request with the oldest approval for the same (user, sukuk).

    Request order is preserved.
    """
    approval_by_key: dict[tuple[str, str], RedemptionApprovalRow] = {}
    for approval in approvals:
        key = _approval_key(approval.user, approval.sukuk_address)
        current = approval_by_key.get(key)
        if current is None or (approval.timestamp, approval.block_number) < (
            current.timestamp,
            current.block_number,
        ):
            approval_by_key[key] = approval

    views = []
    for request in requests:
        view = RedemptionView(
            request_id=request.id,
            user=request.user,
            sukuk_address=request.sukuk_address,
            amount=request.amount,
            payment_token=request.payment_token,
            total_supply=request.total_supply,
            request_tx_hash=request.tx_hash,
            request_block_number=request.block_number,
            request_time=request.occurred_at,
        )
        approval = approval_by_key.get(_approval_key(request.user, request.sukuk_address))
        if approval is not None:
            view.status = ApprovalStatus.APPROVED
            view.approval_id = approval.id
            view.approval_tx_hash = approval.tx_hash
            view.approval_block_number = approval.block_number
            view.approval_time = approval.occurred_at
            view.approved_amount = approval.amount
        views.append(view)
    return views


class RedemptionService:
    """Service merging indexer redemption requests with their approvals."""

    def __init__(self, query: IndexerQueryService):
        self.query = query

    async def get_all_redemptions(self, limit: int = 50, offset: int = 0) -> RedemptionList:
        """Page through all redemption requests (newest first) with status counts.

        Counts cover the returned page.
        """
        requests = await self.query.get_redemption_requests(limit=limit, offset=offset)
        approvals = await self.query.get_redemption_approvals()
        views = merge_redemptions(requests, approvals)

        approved = sum(1 for v in views if v.status == ApprovalStatus.APPROVED)
        return RedemptionList(
            redemptions=views,
            total=len(views),
            pending_count=len(views) - approved,
            approved_count=approved,
        )

    async def get_redemptions_by_user(self, user: str) -> list[RedemptionView]:
        requests = await self.query.get_redemption_requests(user=user)
        approvals = await self.query.get_redemption_approvals(user=user)
        return merge_redemptions(requests, approvals)

    async def get_redemptions_by_sukuk(self, sukuk_address: str) -> list[RedemptionView]:
        requests = await self.query.get_redemption_requests(sukuk_address=sukuk_address)
        approvals = await self.query.get_redemption_approvals(sukuk_address=sukuk_address)
        return merge_redemptions(requests, approvals)

    async def get_redemption_stats(self) -> RedemptionStats:
        """Aggregate counts and amounts over the newest requests, globally and per sukuk."""
        page = await self.get_all_redemptions(limit=STATS_SAMPLE_SIZE, offset=0)

        by_sukuk: dict[str, SukukRedemptionStats] = {}
        total_requested = "0"
        total_approved = "0"
        for view in page.redemptions:
            stats = by_sukuk.setdefault(
                view.sukuk_address, SukukRedemptionStats(sukuk_address=view.sukuk_address)
            )
            stats.request_count += 1
            stats.requested_amount = token_math.add(stats.requested_amount, view.amount)
            total_requested = token_math.add(total_requested, view.amount)

            if view.status == ApprovalStatus.APPROVED and view.approved_amount:
                stats.approved_amount = token_math.add(stats.approved_amount, view.approved_amount)
                total_approved = token_math.add(total_approved, view.approved_amount)

        logger.debug(
            "redemption.stats_computed",
            total=page.total,
            pending=page.pending_count,
            approved=page.approved_count,
        )
        return RedemptionStats(
            total_requests=page.total,
            pending_count=page.pending_count,
            approved_count=page.approved_count,
            total_requested_amount=total_requested,
            total_approved_amount=total_approved,
            by_sukuk=by_sukuk,
        )
