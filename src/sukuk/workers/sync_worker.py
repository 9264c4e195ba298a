"""Sync worker for periodic event log processing.

Ticks every ``interval`` seconds and launches one sync pass per tick. A tick
that arrives while the previous pass is still running is skipped, so passes
never overlap.

Worker lifecycle:
- Starts with the FastAPI app (registered in lifespan)
- Stops when the stop event is set or the task is cancelled
- An in-flight pass gets ``grace_period`` seconds to finish, then is cancelled
"""

import asyncio
from enum import Enum
from typing import Callable

import structlog

from sukuk.core.config import Settings
from sukuk.services.blockchain.event_sync import EventSyncService, SyncPassResult

logger = structlog.get_logger()


class SyncState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    PROCESSING = "processing"
    STOPPED = "stopped"


class SyncWorker:
    """Periodic driver for EventSyncService with an explicit overlap guard."""

    def __init__(self, service: EventSyncService, interval: float = 30, grace_period: float = 10):
        """Initialize sync worker.

        Args:
            service: Sync service running the passes
            interval: Seconds between ticks
            grace_period: Seconds an in-flight pass may run after stop

        Raises:
            ValueError: If interval is not positive or grace_period is negative
        """
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        if grace_period < 0:
            raise ValueError(f"grace_period must be non-negative, got {grace_period}")

        self.service = service
        self.interval = interval
        self.grace_period = grace_period
        self.state = SyncState.IDLE
        self.last_result: SyncPassResult | None = None
        self.completed_passes = 0
        self.failed_passes = 0
        self.skipped_ticks = 0
        self._pass_task: asyncio.Task | None = None

    @property
    def busy(self) -> bool:
        """True while a pass is in flight."""
        return self._pass_task is not None and not self._pass_task.done()

    def tick(self) -> bool:
        """Launch a pass unless one is already running.

        Returns:
            True if a pass was launched, False if the tick was skipped
        """
        if self.state == SyncState.STOPPED:
            return False
        if self.busy:
            self.skipped_ticks += 1
            logger.warning(
                "sync.tick_skipped",
                state=self.state.value,
                skipped_ticks=self.skipped_ticks,
            )
            return False

        self._pass_task = asyncio.create_task(self._run_pass())
        return True

    def _on_batch(self, count: int) -> None:
        self.state = SyncState.PROCESSING

    async def _run_pass(self) -> None:
        self.state = SyncState.POLLING
        try:
            self.last_result = await self.service.sync_once(on_batch=self._on_batch)
            self.completed_passes += 1

        except asyncio.CancelledError:
            # Propagate cancellation for graceful shutdown
            raise

        except Exception as e:
            # Pass failed - log and let the next tick retry
            self.failed_passes += 1
            logger.error(
                "worker.error",
                worker_type="sync_worker",
                error_type=type(e).__name__,
                error_message=str(e),
                exc_info=True,
            )

        finally:
            if self.state != SyncState.STOPPED:
                self.state = SyncState.IDLE

    async def start(self, stop_event: asyncio.Event | None = None) -> None:
        """Tick until stop_event is set or the task is cancelled.

        Args:
            stop_event: Event signalling shutdown (a private one is used if None)
        """
        stop_event = stop_event or asyncio.Event()
        self.state = SyncState.IDLE
        stop_waiter = asyncio.create_task(stop_event.wait())

        logger.info(
            "worker.started",
            worker="sync_worker",
            interval=self.interval,
            batch_size=self.service.batch_size,
        )

        try:
            while not stop_event.is_set():
                self.tick()
                await asyncio.wait({stop_waiter}, timeout=self.interval)

        except asyncio.CancelledError:
            logger.info(
                "worker.stopped",
                worker="sync_worker",
                message="Cancellation requested",
            )
            raise

        finally:
            stop_waiter.cancel()
            await self._drain()
            self.state = SyncState.STOPPED

        logger.info(
            "worker.stopped",
            worker="sync_worker",
            message="Graceful shutdown requested",
            completed_passes=self.completed_passes,
            failed_passes=self.failed_passes,
            skipped_ticks=self.skipped_ticks,
        )

    async def _drain(self) -> None:
        """Wait up to grace_period for the in-flight pass, then cancel it."""
        task = self._pass_task
        if task is None or task.done():
            return

        done, _ = await asyncio.wait({task}, timeout=self.grace_period)
        if not done:
            logger.warning(
                "sync.shutdown_grace_exceeded",
                grace_period=self.grace_period,
                state=self.state.value,
            )
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)


async def run_sync_worker(
    session_factory: Callable,
    settings: Settings,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Main entry point for the sync worker.

    Args:
        session_factory: Factory function to create new database sessions
        settings: Application settings (interval, batch size, grace period)
        stop_event: Event signalling graceful shutdown
    """
    service = EventSyncService(session_factory, batch_size=settings.sync_batch_size)
    worker = SyncWorker(
        service,
        interval=settings.sync_interval_seconds,
        grace_period=settings.sync_shutdown_grace_seconds,
    )
    await worker.start(stop_event)
