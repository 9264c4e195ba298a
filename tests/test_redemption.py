"""Redemption merge tests.

Requests and approvals share no redemption ID; they are joined on
(user, sukuk_address) and the oldest approval wins.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from sukuk.services.indexer.registry import RedemptionApprovalRow, RedemptionRequestRow
from sukuk.services.redemption import ApprovalStatus, RedemptionService, merge_redemptions

S = "0x1111111111111111111111111111111111111111"
S2 = "0x4444444444444444444444444444444444444444"
IDRX = "0x2222222222222222222222222222222222222222"
U = "0x3333333333333333333333333333333333333333"
V = "0x5555555555555555555555555555555555555555"
T0 = 1_700_000_000


def request(row_id: str, user: str = U, sukuk: str = S, amount: int = 100, ts: int = T0):
    return RedemptionRequestRow.model_validate(
        {
            "id": row_id,
            "user": user,
            "sukuk_address": sukuk,
            "amount": amount,
            "payment_token": IDRX,
            "total_supply": 1000,
            "block_number": ts - T0,
            "tx_hash": f"0x{row_id}",
            "timestamp": ts,
        }
    )


def approval(row_id: str, user: str = U, sukuk: str = S, amount: int = 100, ts: int = T0 + 10):
    return RedemptionApprovalRow.model_validate(
        {
            "id": row_id,
            "user": user,
            "sukuk_address": sukuk,
            "amount": amount,
            "total_supply": 900,
            "block_number": ts - T0,
            "tx_hash": f"0x{row_id}",
            "timestamp": ts,
        }
    )


def test_unmatched_request_is_requested():
    [view] = merge_redemptions([request("r1")], [])

    assert view.status == ApprovalStatus.REQUESTED
    assert view.can_approve is True
    assert view.approval_time is None
    assert view.approved_amount is None


def test_matched_request_is_approved_with_time_and_amount():
    [view] = merge_redemptions([request("r1")], [approval("a1", amount=95, ts=T0 + 60)])

    assert view.status == ApprovalStatus.APPROVED
    assert view.can_approve is False
    assert view.approval_id == "a1"
    assert view.approved_amount == "95"
    assert view.approval_time == datetime.fromtimestamp(T0 + 60, tz=timezone.utc)


def test_oldest_approval_wins():
    """Approvals arrive newest first; the earliest one stays attached."""
    approvals = [approval("new", amount=70, ts=T0 + 50), approval("old", amount=30, ts=T0 + 10)]

    [view] = merge_redemptions([request("r1")], approvals)
    assert (view.approval_id, view.approved_amount) == ("old", "30")

    [view] = merge_redemptions([request("r1")], list(reversed(approvals)))
    assert view.approval_id == "old"


def test_approvals_only_match_same_user_and_sukuk():
    views = merge_redemptions(
        [request("r1", user=U, sukuk=S), request("r2", user=V, sukuk=S), request("r3", user=U, sukuk=S2)],
        [approval("a1", user=U, sukuk=S)],
    )

    assert [v.status for v in views] == [
        ApprovalStatus.APPROVED,
        ApprovalStatus.REQUESTED,
        ApprovalStatus.REQUESTED,
    ]


def test_repeat_requests_share_one_approval():
    """Known limitation of the (user, sukuk) key: every request matches."""
    views = merge_redemptions(
        [request("r1", ts=T0 + 30), request("r2", ts=T0)], [approval("a1", ts=T0 + 40)]
    )

    assert [v.request_id for v in views] == ["r1", "r2"]
    assert all(v.approval_id == "a1" for v in views)


@pytest.fixture
def query():
    query = MagicMock()
    query.get_redemption_requests = AsyncMock(
        return_value=[
            request("r1", user=U, sukuk=S, amount=100, ts=T0 + 30),
            request("r2", user=V, sukuk=S, amount=40, ts=T0 + 20),
            request("r3", user=U, sukuk=S2, amount=7, ts=T0 + 10),
        ]
    )
    query.get_redemption_approvals = AsyncMock(return_value=[approval("a1", user=U, sukuk=S, amount=90)])
    return query


@pytest.mark.asyncio
async def test_get_all_redemptions_counts_page(query):
    service = RedemptionService(query)

    page = await service.get_all_redemptions(limit=3, offset=0)

    query.get_redemption_requests.assert_awaited_once_with(limit=3, offset=0)
    assert page.total == 3
    assert page.approved_count == 1
    assert page.pending_count == 2


@pytest.mark.asyncio
async def test_get_redemption_stats(query):
    service = RedemptionService(query)

    stats = await service.get_redemption_stats()

    assert stats.total_requests == 3
    assert stats.total_requested_amount == "147"
    assert stats.total_approved_amount == "90"
    assert stats.by_sukuk[S].request_count == 2
    assert stats.by_sukuk[S].requested_amount == "140"
    assert stats.by_sukuk[S].approved_amount == "90"
    assert stats.by_sukuk[S2].approved_amount == "0"


@pytest.mark.asyncio
async def test_get_redemptions_by_user_filters_both_sides(query):
    service = RedemptionService(query)

    await service.get_redemptions_by_user(U)

    query.get_redemption_requests.assert_awaited_once_with(user=U)
    query.get_redemption_approvals.assert_awaited_once_with(user=U)
