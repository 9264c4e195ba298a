"""Background workers for async processing tasks."""

from sukuk.workers.sync_worker import SyncState, SyncWorker, run_sync_worker

__all__ = [
    "SyncState",
    "SyncWorker",
    "run_sync_worker",
]
