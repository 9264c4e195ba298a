"""Event sync tests.

Tests focus on the pass contract:
- Cursor starts at 0, advances to the last attempted event, never decreases
- A pass over zero events writes nothing
- Duplicates and unknown events are skipped; failed events don't block the batch
- Each handler updates its projection exactly
"""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from sukuk.models.blockchain_event import BlockchainEvent
from sukuk.models.investment import Investment
from sukuk.models.redemption import Redemption, RedemptionStatus
from sukuk.models.sukuk import Sukuk, SukukStatus
from sukuk.models.yield_claim import Yield, YieldStatus
from sukuk.repositories.system_state import LAST_PROCESSED_EVENT_ID, SYNC_STATUS_PAUSED
from sukuk.services.blockchain.event_sync import EventSyncService
from sukuk.services.exceptions import BatchTransactionError, DatabaseConnectionError

TOKEN = "0x1111111111111111111111111111111111111111"
OTHER_TOKEN = "0x9999999999999999999999999999999999999999"
INVESTOR = "0x3333333333333333333333333333333333333333"
BLOCK_TIME = datetime(2025, 1, 1, 12, 0, 0)


def make_event(event_id: int, name: str, data: dict, tx_hash: str | None = None, log_index: int = 0):
    return BlockchainEvent(
        id=event_id,
        event_name=name,
        tx_hash=tx_hash or f"0x{event_id:064x}",
        log_index=log_index,
        block_number=1000 + event_id,
        block_timestamp=BLOCK_TIME,
        contract_address=TOKEN,
        event_data=data,
        chain_id=4202,
    )


def investment_data(token: str = TOKEN, token_amount: str = "3000000000000000000", **extra) -> dict:
    return {
        "investor": INVESTOR,
        "sukukToken": token,
        "idrxAmount": "3000000",
        "tokenAmount": token_amount,
        "tokenPrice": "1000000",
        **extra,
    }


async def add_events(session, *events: BlockchainEvent) -> None:
    for event in events:
        session.add(event)
    await session.commit()


@pytest_asyncio.fixture
async def sukuk(session) -> Sukuk:
    sukuk = Sukuk(
        name="Green Sukuk I",
        symbol="GSK1",
        total_supply="10000000000000000000",
        outstanding_supply="10000000000000000000",
        token_address=TOKEN,
        status=SukukStatus.ACTIVE,
    )
    session.add(sukuk)
    await session.commit()
    return sukuk


@pytest.fixture
def service(session_factory) -> EventSyncService:
    return EventSyncService(session_factory, batch_size=1000)


async def load_all(uow_factory, model) -> list:
    async with await uow_factory() as uow:
        result = await uow.session.execute(select(model))
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_first_pass_applies_investment_and_advances_cursor(session, sukuk, service, uow_factory):
    """Event {id: 1, Investment} with cursor 0 leaves cursor 1 and one Investment row."""
    await add_events(session, make_event(1, "Investment", investment_data()))

    result = await service.sync_once()

    assert (result.fetched, result.applied, result.failed, result.skipped) == (1, 1, 0, 0)
    assert (result.cursor_before, result.cursor_after) == (0, 1)

    investments = await load_all(uow_factory, Investment)
    assert len(investments) == 1
    assert investments[0].investor_address == INVESTOR
    assert investments[0].token_amount == "3000000000000000000"
    assert investments[0].sukuk_id == sukuk.id

    async with await uow_factory() as uow:
        assert await uow.system_state.get_cursor() == 1
        assert await uow.system_state.get_last_sync_time() is not None


@pytest.mark.asyncio
async def test_duplicate_investment_creates_one_row(session, sukuk, service, uow_factory):
    tx_hash = "0x" + "ab" * 32
    await add_events(
        session,
        make_event(1, "Investment", investment_data(), tx_hash=tx_hash, log_index=3),
        make_event(2, "Investment", investment_data(), tx_hash=tx_hash, log_index=3),
    )

    result = await service.sync_once()

    assert (result.applied, result.skipped, result.cursor_after) == (1, 1, 2)
    assert len(await load_all(uow_factory, Investment)) == 1


@pytest.mark.asyncio
async def test_pass_over_zero_events_writes_nothing(session, service, uow_factory):
    result = await service.sync_once()

    assert result.fetched == 0
    assert result.advanced is False
    async with await uow_factory() as uow:
        assert await uow.system_state.list_all_keys() == []
        assert await uow.system_state.get_state(LAST_PROCESSED_EVENT_ID) is None


@pytest.mark.asyncio
async def test_failed_event_is_skipped_and_cursor_advances(session, sukuk, service, uow_factory):
    """An investment for an unknown sukuk fails alone; later events still apply."""
    await add_events(
        session,
        make_event(1, "Investment", investment_data(), log_index=0),
        make_event(2, "Investment", investment_data(token=OTHER_TOKEN), log_index=1),
        make_event(3, "Investment", {"investor": "not-an-address"}, log_index=2),
        make_event(4, "Investment", investment_data(), log_index=3),
    )

    result = await service.sync_once()

    assert (result.applied, result.failed, result.cursor_after) == (2, 2, 4)
    assert len(result.errors) == 2
    assert result.errors[0].startswith("2:Investment")
    assert len(await load_all(uow_factory, Investment)) == 2


@pytest.mark.asyncio
async def test_unknown_and_lifecycle_events_are_skipped(session, service, uow_factory):
    await add_events(
        session,
        make_event(1, "SomethingNew", {"foo": "bar"}),
        make_event(2, "RedemptionRequested", {}),
    )

    result = await service.sync_once()

    assert (result.applied, result.failed, result.skipped) == (0, 0, 2)
    assert result.cursor_after == 2


@pytest.mark.asyncio
async def test_paused_sync_reads_nothing(session, sukuk, service, uow_factory):
    await add_events(session, make_event(1, "Investment", investment_data()))
    await service.set_sync_status(SYNC_STATUS_PAUSED)

    result = await service.sync_once()

    assert result.paused is True
    assert result.fetched == 0
    assert await load_all(uow_factory, Investment) == []
    async with await uow_factory() as uow:
        assert await uow.system_state.get_cursor() == 0


@pytest.mark.asyncio
async def test_batch_size_limits_each_pass(session, sukuk, session_factory):
    await add_events(
        session,
        make_event(1, "Investment", investment_data(), log_index=0),
        make_event(2, "Investment", investment_data(), log_index=1),
    )
    service = EventSyncService(session_factory, batch_size=1)

    first = await service.sync_once()
    second = await service.sync_once()
    third = await service.sync_once()

    assert (first.cursor_before, first.cursor_after) == (0, 1)
    assert (second.cursor_before, second.cursor_after) == (1, 2)
    assert third.fetched == 0


@pytest.mark.asyncio
async def test_sukuk_deployed_activates_draft(session, service, uow_factory):
    draft = Sukuk(name="Blue Sukuk", symbol="BSK", total_supply="1000")
    session.add(draft)
    await session.commit()

    await add_events(
        session,
        make_event(1, "SukukDeployed", {"seriesName": "Blue Sukuk", "tokenAddress": "0x" + OTHER_TOKEN[2:].upper()}),
        make_event(2, "SukukDeployed", {"seriesName": "Blue Sukuk", "tokenAddress": OTHER_TOKEN}),
    )

    result = await service.sync_once()

    assert (result.applied, result.skipped) == (1, 1)
    async with await uow_factory() as uow:
        deployed = await uow.sukuk.get_by_id(draft.id)
        assert deployed is not None
        assert deployed.token_address == OTHER_TOKEN
        assert deployed.status == SukukStatus.ACTIVE


@pytest.mark.asyncio
async def test_investment_updates_outstanding_supply(session, sukuk, service, uow_factory):
    await add_events(
        session,
        make_event(
            1,
            "Investment",
            investment_data(
                previousOutstandingSupply="10000000000000000000",
                newOutstandingSupply="7000000000000000000",
            ),
        ),
    )

    await service.sync_once()

    async with await uow_factory() as uow:
        updated = await uow.sukuk.get_by_id(sukuk.id)
        assert updated is not None
        assert updated.outstanding_supply == "7000000000000000000"


@pytest.mark.asyncio
async def test_yield_distribution_is_exact_and_claimable(session, sukuk, service, uow_factory):
    """3 tokens x 0.333... per token = 999999999999999999 wei, no float rounding."""
    distribution = {
        "distributionId": 1,
        "sukukToken": TOKEN,
        "totalYieldAmount": "999999999999999999",
        "periodStart": 1_735_689_600,
        "periodEnd": 1_738_368_000,
        "yieldPerToken": "333333333333333333",
    }
    await add_events(
        session,
        make_event(1, "Investment", investment_data()),
        make_event(2, "YieldDistributed", distribution),
        make_event(3, "YieldDistributed", distribution),
        make_event(
            4,
            "YieldClaimed",
            {
                "investor": INVESTOR,
                "yieldAmount": "999999999999999999",
                "fromDistribution": 1,
                "toDistribution": 1,
            },
        ),
    )

    result = await service.sync_once()

    assert (result.applied, result.skipped, result.failed) == (3, 1, 0)
    [yield_record] = await load_all(uow_factory, Yield)
    assert yield_record.yield_amount == "999999999999999999"
    assert yield_record.period_start == datetime(2025, 1, 1)
    assert yield_record.status == YieldStatus.CLAIMED
    assert yield_record.claim_tx_hash == f"0x{4:064x}"
    assert yield_record.claim_block_number == 1004
    assert yield_record.claimed_at == BLOCK_TIME


@pytest.mark.asyncio
async def test_yield_distribution_without_rate_is_zero(session, sukuk, service, uow_factory):
    await add_events(
        session,
        make_event(1, "Investment", investment_data()),
        make_event(
            2,
            "YieldDistributed",
            {
                "distributionId": 5,
                "sukukToken": TOKEN,
                "totalYieldAmount": "100",
                "periodStart": 1,
                "periodEnd": 2,
            },
        ),
    )

    await service.sync_once()

    [yield_record] = await load_all(uow_factory, Yield)
    assert yield_record.yield_amount == "0"
    assert yield_record.status == YieldStatus.PENDING


@pytest.mark.asyncio
async def test_yield_claim_with_inverted_range_fails(session, service):
    await add_events(
        session,
        make_event(
            1,
            "YieldClaimed",
            {"investor": INVESTOR, "yieldAmount": "1", "fromDistribution": 5, "toDistribution": 2},
        ),
    )

    result = await service.sync_once()

    assert (result.failed, result.cursor_after) == (1, 1)


@pytest.mark.asyncio
async def test_redemption_completed(session, sukuk, service, uow_factory):
    redemption = Redemption(
        sukuk_id=sukuk.id,
        external_id="7",
        investor_address=INVESTOR,
        token_amount="1000000000000000000",
        status=RedemptionStatus.REQUESTED,
    )
    session.add(redemption)
    await session.commit()

    completed = {
        "redemptionId": 7,
        "investor": INVESTOR,
        "tokensBurned": "1000000000000000000",
        "idrxPaid": "1050000",
        "previousOutstandingSupply": "10000000000000000000",
        "newOutstandingSupply": "9000000000000000000",
    }
    await add_events(
        session,
        make_event(1, "RedemptionCompleted", completed),
        make_event(2, "RedemptionCompleted", completed, tx_hash=f"0x{1:064x}"),
        make_event(3, "RedemptionCompleted", {**completed, "redemptionId": 8}),
    )

    result = await service.sync_once()

    assert (result.applied, result.skipped, result.failed) == (1, 1, 1)
    async with await uow_factory() as uow:
        stored = await uow.redemptions.get_by_external_id("7")
        assert stored is not None
        assert stored.status == RedemptionStatus.COMPLETED
        assert stored.redemption_amount == "1050000"
        assert stored.completed_at == BLOCK_TIME
        updated = await uow.sukuk.get_by_id(sukuk.id)
        assert updated is not None
        assert updated.outstanding_supply == "9000000000000000000"


@pytest.mark.asyncio
async def test_cursor_only_moves_forward(session, service):
    await service.advance_cursor(10)

    with pytest.raises(ValueError):
        await service.advance_cursor(5)

    status = await service.get_status()
    assert status.cursor == 10


@pytest.mark.asyncio
async def test_status_reports_lag(session, sukuk, service):
    await add_events(
        session,
        make_event(1, "Investment", investment_data(), log_index=0),
        make_event(2, "Investment", investment_data(), log_index=1),
        make_event(3, "Investment", investment_data(), log_index=2),
    )
    await service.advance_cursor(1)

    status = await service.get_status()

    assert (status.cursor, status.latest_event_id, status.lag) == (1, 3, 2)


def test_batch_size_must_be_positive():
    with pytest.raises(ValueError):
        EventSyncService(MagicMock(), batch_size=0)


def failing_uow(error: Exception) -> MagicMock:
    uow = MagicMock()
    uow.__aenter__ = AsyncMock(return_value=uow)
    uow.__aexit__ = AsyncMock(return_value=False)
    uow.system_state.get_sync_status = AsyncMock(side_effect=error)
    return uow


@pytest.mark.asyncio
async def test_unreachable_database_raises_connection_error():
    """Connection loss surfaces as DatabaseConnectionError, not a batch failure."""
    service = EventSyncService(MagicMock())
    service.uow_factory = AsyncMock(
        return_value=failing_uow(OperationalError("SELECT", {}, Exception("connection lost")))
    )

    with pytest.raises(DatabaseConnectionError):
        await service.sync_once()


@pytest.mark.asyncio
async def test_transaction_failure_raises_batch_transaction_error():
    """A pass whose transaction fails is reported as retryable."""
    service = EventSyncService(MagicMock())
    service.uow_factory = AsyncMock(return_value=failing_uow(SQLAlchemyError("commit failed")))

    with pytest.raises(BatchTransactionError):
        await service.sync_once()
