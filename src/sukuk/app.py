"""FastAPI application factory."""

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from sukuk.core.config import Settings, configure_logging
from sukuk.core.database import create_engine, create_session_factory
from sukuk.services.blockchain.event_sync import EventSyncService
from sukuk.services.indexer.query import IndexerQueryService
from sukuk.services.indexer.table_discovery import TableDiscoveryService
from sukuk.services.redemption import RedemptionService
from sukuk.uow import create_uow_factory
from sukuk.workers.sync_worker import run_sync_worker

logger = structlog.get_logger()


def create_resilient_worker(
    coro_func, session_factory, settings, worker_name: str, shutdown_event: asyncio.Event
):
    """Create a worker with automatic restart on failure.

    Args:
        coro_func: Worker coroutine function (e.g., run_sync_worker)
        session_factory: Database session factory
        settings: Application settings
        worker_name: Human-readable worker name for logging
        shutdown_event: Event to signal graceful shutdown (passed to the worker)

    Returns:
        Holder dict whose "task" key always points at the current worker task
        (replaced on each restart)
    """
    RESTART_DELAY = 1  # Fixed 1 second delay between restarts
    holder: dict[str, asyncio.Task] = {}

    def on_worker_done(task: asyncio.Task):
        # Check if shutdown was requested
        if shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=worker_name)
            return

        # Check if task was cancelled (normal shutdown)
        if task.cancelled():
            logger.info("worker.cancelled", worker=worker_name)
            return

        exc = task.exception()
        if exc:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=RESTART_DELAY,
                exc_info=exc,
            )
        else:
            # Worker stopped without a shutdown request
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=RESTART_DELAY,
            )

        async def restart_worker():
            await asyncio.sleep(RESTART_DELAY)

            # Check again if shutdown was requested during sleep
            if shutdown_event.is_set():
                return

            logger.info("worker.restarting", worker=worker_name)
            new_task = asyncio.create_task(coro_func(session_factory, settings, shutdown_event))
            new_task.add_done_callback(on_worker_done)
            holder["task"] = new_task

        asyncio.create_task(restart_worker())

    task = asyncio.create_task(coro_func(session_factory, settings, shutdown_event))
    task.add_done_callback(on_worker_done)
    holder["task"] = task
    return holder


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Configure logging, create both database engines, build services, start sync worker
    - Shutdown: Stop the sync worker within its grace period, dispose engines
    """
    settings: Settings = app.state.settings

    configure_logging(settings)

    # Primary database: projections, system_state, blockchain.events
    engine = create_engine(settings.database_url, settings.db_pool_size)
    session_factory = create_session_factory(engine)

    # Indexer database: hash-prefixed event tables (read-only)
    indexer_engine = create_engine(
        settings.resolved_indexer_database_url, settings.indexer_pool_size
    )

    table_discovery = TableDiscoveryService(indexer_engine)
    indexer_query = IndexerQueryService(indexer_engine, table_discovery)

    # Store in app.state for access by collaborators
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.uow_factory = create_uow_factory(session_factory)
    app.state.indexer_engine = indexer_engine
    app.state.table_discovery = table_discovery
    app.state.indexer_query = indexer_query
    app.state.redemption_service = RedemptionService(indexer_query)
    app.state.sync_service = EventSyncService(session_factory, settings.sync_batch_size)

    shutdown_event = asyncio.Event()
    sync_worker = None
    if settings.sync_enabled:
        sync_worker = create_resilient_worker(
            run_sync_worker, session_factory, settings, "event_sync", shutdown_event
        )
    else:
        logger.info("application.sync_disabled")

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        indexer_db_url=settings.resolved_indexer_database_url.split("@")[-1],
        sync_enabled=settings.sync_enabled,
    )

    yield

    logger.info("application.shutdown")
    shutdown_event.set()

    if sync_worker is not None:
        # Restarts replace the task, so read the current one only after shutdown is set
        sync_task = sync_worker["task"]
        # Worker drains its own in-flight pass within the grace period
        done, _ = await asyncio.wait({sync_task}, timeout=settings.sync_shutdown_grace_seconds + 1)
        if not done:
            sync_task.cancel()
        await asyncio.gather(sync_task, return_exceptions=True)

    await indexer_engine.dispose()
    await engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        settings: Application settings (loaded from the environment if None)

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Sukuk Sync Service",
        description="Indexer queries and blockchain event sync for sukuk projections",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check endpoint with database validation
    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with connectivity tests for both databases.

        Returns:
            200: {"status": "healthy", ...} if both databases respond
            503: {"status": "unhealthy", "error": {...}} if either check fails
        """
        checks = {}
        try:
            async with app.state.session_factory() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = "ok"

            async with app.state.indexer_engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["indexer"] = "ok"

            logger.debug("health_check.success")
            return {"status": "healthy", "checks": checks}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
                checks=checks,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "checks": checks,
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app
