"""Event sync service for applying the unified event log to projections.

This module provides:
1. One sync pass: read events after the persisted cursor, apply each one in
   its own savepoint, advance the cursor, commit
2. Per-event handlers keyed by ``event_name``
3. Cursor and sync-status helpers used by the worker and the CLI

Delivery is at-least-once: a batch whose commit fails is re-read on the next
pass, so handlers deduplicate where the projection allows it.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from fractions import Fraction
from typing import Awaitable, Callable

import structlog
from pydantic import ValidationError
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sukuk.core import token_math
from sukuk.models.blockchain_event import BlockchainEvent
from sukuk.models.investment import Investment, InvestmentStatus
from sukuk.models.redemption import RedemptionStatus
from sukuk.models.sukuk import InvalidStateTransition
from sukuk.models.yield_claim import Yield, YieldStatus
from sukuk.repositories.system_state import SYNC_STATUS_PAUSED
from sukuk.services.blockchain.event_payloads import (
    InvestmentPayload,
    RedemptionCompletedPayload,
    SukukDeployedPayload,
    YieldClaimedPayload,
    YieldDistributedPayload,
    decode_payload,
)
from sukuk.services.exceptions import (
    BatchTransactionError,
    DatabaseConnectionError,
    EventProcessingError,
    PermanentError,
)
from sukuk.uow import UnitOfWork, create_uow_factory

logger = structlog.get_logger()

DEFAULT_BATCH_SIZE = 1000

# Errors that fail a single event; anything else aborts the pass
EVENT_ERRORS = (
    EventProcessingError,
    PermanentError,
    ValidationError,
    ValueError,
    InvalidStateTransition,
    SQLAlchemyError,
)

Handler = Callable[[UnitOfWork, BlockchainEvent], Awaitable[bool]]


@dataclass
class SyncPassResult:
    """Outcome of one sync pass.

    ``skipped`` counts events that changed nothing: duplicates, unknown event
    names and lifecycle events without a handler.
    """

    fetched: int = 0
    applied: int = 0
    failed: int = 0
    skipped: int = 0
    cursor_before: int = 0
    cursor_after: int = 0
    paused: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def advanced(self) -> bool:
        return self.cursor_after > self.cursor_before


@dataclass
class SyncStatus:
    cursor: int
    latest_event_id: int
    sync_status: str
    last_sync_time: datetime | None

    @property
    def lag(self) -> int:
        return max(self.latest_event_id - self.cursor, 0)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class EventSyncService:
    """Service applying ``blockchain.events`` to the sukuk projections."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        """Initialize sync service.

        Args:
            session_factory: Session factory for the primary database
            batch_size: Maximum events applied per pass

        Raises:
            ValueError: If batch_size is not positive
        """
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        self.uow_factory = create_uow_factory(session_factory)
        self.batch_size = batch_size
        self.handlers: dict[str, Handler] = {
            "SukukDeployed": self._handle_sukuk_deployed,
            "Investment": self._handle_investment,
            "YieldDistributed": self._handle_yield_distributed,
            "YieldClaimed": self._handle_yield_claimed,
            "RedemptionCompleted": self._handle_redemption_completed,
            "RedemptionRequested": self._handle_not_implemented,
            "RedemptionApproved": self._handle_not_implemented,
            "RedemptionRejected": self._handle_not_implemented,
            "EmergencySuspended": self._handle_not_implemented,
        }

    async def sync_once(self, on_batch: Callable[[int], None] | None = None) -> SyncPassResult:
        """Run one sync pass.

        Args:
            on_batch: Called with the batch size once events have been read,
                before any of them is applied

        Returns:
            SyncPassResult with per-event counts and the cursor movement

        Raises:
            DatabaseConnectionError: If the primary database is unreachable
            BatchTransactionError: If the pass transaction failed; the cursor
                is unchanged and the batch is retried on the next pass
        """
        try:
            async with await self.uow_factory() as uow:
                return await self._run_pass(uow, on_batch)
        except (OperationalError, InterfaceError) as e:
            logger.error("sync.database_unreachable", error=str(e), error_type=type(e).__name__)
            raise DatabaseConnectionError(f"Primary database unreachable: {e}") from e
        except SQLAlchemyError as e:
            logger.error(
                "sync.batch_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise BatchTransactionError(f"Sync pass transaction failed: {e}") from e

    async def _run_pass(
        self, uow: UnitOfWork, on_batch: Callable[[int], None] | None = None
    ) -> SyncPassResult:
        if await uow.system_state.get_sync_status() == SYNC_STATUS_PAUSED:
            logger.info("sync.paused")
            return SyncPassResult(paused=True)

        cursor = await uow.system_state.get_cursor()
        result = SyncPassResult(cursor_before=cursor, cursor_after=cursor)

        events = await uow.events.fetch_after(cursor, self.batch_size)
        result.fetched = len(events)
        if not events:
            logger.debug("sync.no_new_events", cursor=cursor)
            return result

        logger.info("sync.pass_started", cursor=cursor, count=len(events))
        if on_batch is not None:
            on_batch(len(events))

        last_attempted = cursor
        for event in events:
            last_attempted = max(last_attempted, event.id)  # type: ignore[type-var]
            try:
                async with uow.session.begin_nested():
                    applied = await self._dispatch(uow, event)
            except EVENT_ERRORS as e:
                result.failed += 1
                result.errors.append(f"{event.id}:{event.event_name}: {e}")
                logger.error(
                    "sync.event_failed",
                    event_id=event.id,
                    event_name=event.event_name,
                    tx_hash=event.tx_hash,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            if applied:
                result.applied += 1
            else:
                result.skipped += 1

        result.cursor_after = last_attempted
        await uow.system_state.set_cursor(result.cursor_after)
        await uow.system_state.set_last_sync_time(datetime.now(timezone.utc))

        logger.info(
            "sync.pass_complete",
            fetched=result.fetched,
            applied=result.applied,
            failed=result.failed,
            skipped=result.skipped,
            cursor_before=result.cursor_before,
            cursor_after=result.cursor_after,
        )
        return result

    async def _dispatch(self, uow: UnitOfWork, event: BlockchainEvent) -> bool:
        handler = self.handlers.get(event.event_name)
        if handler is None:
            logger.warning("sync.unknown_event", event_id=event.id, event_name=event.event_name)
            return False
        return await handler(uow, event)

    # ------------------------------------------------------------------
    # Handlers: return True when the projection changed, False when skipped
    # ------------------------------------------------------------------

    async def _handle_sukuk_deployed(self, uow: UnitOfWork, event: BlockchainEvent) -> bool:
        payload = decode_payload(SukukDeployedPayload, event.event_data)

        existing = await uow.sukuk.get_by_token_address(payload.token_address)
        if existing is not None:
            logger.debug(
                "sync.sukuk_already_deployed",
                event_id=event.id,
                token_address=payload.token_address,
            )
            return False

        sukuk = await uow.sukuk.get_undeployed_by_name(payload.series_name)
        if sukuk is None:
            raise EventProcessingError(
                f"No undeployed sukuk series named {payload.series_name!r}",
                event_id=event.id,
                event_name=event.event_name,
            )

        sukuk.mark_deployed(payload.token_address)
        await uow.sukuk.save(sukuk)
        logger.info(
            "sync.sukuk_deployed",
            sukuk_id=str(sukuk.id),
            name=sukuk.name,
            token_address=payload.token_address,
        )
        return True

    async def _handle_investment(self, uow: UnitOfWork, event: BlockchainEvent) -> bool:
        payload = decode_payload(InvestmentPayload, event.event_data)

        if await uow.investments.exists(event.tx_hash, event.log_index):
            logger.debug(
                "sync.investment_duplicate",
                event_id=event.id,
                tx_hash=event.tx_hash,
                log_index=event.log_index,
            )
            return False

        sukuk = await uow.sukuk.get_by_token_address(payload.sukuk_token)
        if sukuk is None:
            raise EventProcessingError(
                f"Sukuk series not found for token address {payload.sukuk_token}",
                event_id=event.id,
                event_name=event.event_name,
            )

        if payload.has_supply_change:
            logger.info(
                "sync.supply_changed",
                sukuk_id=str(sukuk.id),
                previous_supply=payload.previous_outstanding_supply,
                new_supply=payload.new_outstanding_supply,
                tx_hash=event.tx_hash,
            )
            sukuk.set_outstanding_supply(payload.new_outstanding_supply)  # type: ignore[arg-type]
            await uow.sukuk.save(sukuk)

        investment = Investment(
            sukuk_id=sukuk.id,
            investor_address=payload.investor,
            investment_amount=payload.idrx_amount,
            token_amount=payload.token_amount,
            token_price=payload.token_price,
            status=InvestmentStatus.ACTIVE,
            tx_hash=event.tx_hash,
            log_index=event.log_index,
            block_number=event.block_number,
            investment_date=_naive_utc(event.block_timestamp),
        )
        await uow.investments.add(investment)
        logger.info(
            "sync.investment_recorded",
            sukuk_id=str(sukuk.id),
            investor=payload.investor,
            token_amount=payload.token_amount,
        )
        return True

    async def _handle_yield_distributed(self, uow: UnitOfWork, event: BlockchainEvent) -> bool:
        payload = decode_payload(YieldDistributedPayload, event.event_data)

        sukuk = await uow.sukuk.get_by_token_address(payload.sukuk_token)
        if sukuk is None:
            raise EventProcessingError(
                f"Sukuk series not found for token address {payload.sukuk_token}",
                event_id=event.id,
                event_name=event.event_name,
            )

        per_token = (
            Fraction(token_math.parse_amount(payload.yield_per_token), token_math.WEI_PER_TOKEN)
            if payload.yield_per_token is not None
            else None
        )

        investments = await uow.investments.get_active_by_sukuk(sukuk.id)
        created = 0
        for investment in investments:
            if await uow.yields.exists_for_distribution(investment.id, payload.distribution_id):
                continue

            amount = (
                token_math.multiply_by_fraction(investment.token_amount, per_token)
                if per_token is not None
                else "0"
            )
            await uow.yields.add(
                Yield(
                    sukuk_id=sukuk.id,
                    investment_id=investment.id,
                    distribution_id=payload.distribution_id,
                    investor_address=investment.investor_address,
                    yield_amount=amount,
                    period_start=payload.period_start,
                    period_end=payload.period_end,
                    distribution_date=payload.period_end,
                    status=YieldStatus.PENDING,
                    dist_tx_hash=event.tx_hash,
                    dist_log_index=event.log_index,
                )
            )
            created += 1

        logger.info(
            "sync.yield_distributed",
            sukuk_id=str(sukuk.id),
            distribution_id=payload.distribution_id,
            active_investments=len(investments),
            created=created,
        )
        # Every investment already had a yield for this distribution
        return created > 0 or not investments

    async def _handle_yield_claimed(self, uow: UnitOfWork, event: BlockchainEvent) -> bool:
        payload = decode_payload(YieldClaimedPayload, event.event_data)

        if payload.from_distribution > payload.to_distribution:
            raise EventProcessingError(
                f"Invalid distribution range {payload.from_distribution}..{payload.to_distribution}",
                event_id=event.id,
                event_name=event.event_name,
            )

        updated = await uow.yields.mark_claimed_range(
            investor_address=payload.investor,
            from_distribution=payload.from_distribution,
            to_distribution=payload.to_distribution,
            tx_hash=event.tx_hash,
            block_number=event.block_number,
            claimed_at=_naive_utc(event.block_timestamp),
        )
        logger.info(
            "sync.yield_claimed",
            investor=payload.investor,
            from_distribution=payload.from_distribution,
            to_distribution=payload.to_distribution,
            updated=updated,
        )
        return True

    async def _handle_redemption_completed(self, uow: UnitOfWork, event: BlockchainEvent) -> bool:
        payload = decode_payload(RedemptionCompletedPayload, event.event_data)

        redemption = await uow.redemptions.get_by_external_id(payload.redemption_id)
        if redemption is None:
            raise EventProcessingError(
                f"Redemption not found for ID {payload.redemption_id}",
                event_id=event.id,
                event_name=event.event_name,
            )

        if (
            redemption.status == RedemptionStatus.COMPLETED
            and redemption.complete_tx_hash == event.tx_hash
        ):
            return False

        redemption.mark_completed(
            tx_hash=event.tx_hash,
            log_index=event.log_index,
            completed_at=_naive_utc(event.block_timestamp),
            redemption_amount=payload.idrx_paid,
        )
        await uow.redemptions.save(redemption)

        if payload.has_supply_change:
            sukuk = await uow.sukuk.get_by_id(redemption.sukuk_id)
            if sukuk is not None:
                sukuk.set_outstanding_supply(payload.new_outstanding_supply)  # type: ignore[arg-type]
                await uow.sukuk.save(sukuk)
                logger.info(
                    "sync.supply_changed",
                    sukuk_id=str(sukuk.id),
                    redemption_id=payload.redemption_id,
                    previous_supply=payload.previous_outstanding_supply,
                    new_supply=payload.new_outstanding_supply,
                    previous_balance=payload.previous_token_balance,
                    new_balance=payload.new_token_balance,
                    tx_hash=event.tx_hash,
                )

        logger.info(
            "sync.redemption_completed",
            redemption_id=payload.redemption_id,
            investor=payload.investor,
            tokens_burned=payload.tokens_burned,
        )
        return True

    async def _handle_not_implemented(self, uow: UnitOfWork, event: BlockchainEvent) -> bool:
        logger.info(
            "sync.handler_not_implemented",
            event_id=event.id,
            event_name=event.event_name,
        )
        return False

    # ------------------------------------------------------------------
    # Cursor and status
    # ------------------------------------------------------------------

    async def get_status(self) -> SyncStatus:
        async with await self.uow_factory() as uow:
            return SyncStatus(
                cursor=await uow.system_state.get_cursor(),
                latest_event_id=await uow.events.max_id(),
                sync_status=await uow.system_state.get_sync_status(),
                last_sync_time=await uow.system_state.get_last_sync_time(),
            )

    async def advance_cursor(self, event_id: int) -> int:
        """Move the cursor forward to event_id (operator skip).

        Returns:
            The new cursor

        Raises:
            ValueError: If event_id is lower than the current cursor
        """
        async with await self.uow_factory() as uow:
            current = await uow.system_state.get_cursor()
            if event_id < current:
                raise ValueError(f"Cursor only moves forward (current {current}, requested {event_id})")
            await uow.system_state.set_cursor(event_id)
            logger.info("sync.cursor_advanced", cursor_before=current, cursor_after=event_id)
            return event_id

    async def set_sync_status(self, status: str) -> None:
        async with await self.uow_factory() as uow:
            await uow.system_state.set_sync_status(status)
        logger.info("sync.status_changed", sync_status=status)
