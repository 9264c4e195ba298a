"""Service error hierarchy for indexer access and event synchronization.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (database unreachable, failed commits)
- PermanentError: Non-retryable errors (missing tables, schema drift, bad input)
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Indexer or primary database unreachable
    - Batch transaction failed to commit
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - No indexer table exists for an event type
    - Indexer table lacks expected columns
    - Malformed token amount
    """

    pass


# Database errors
class DatabaseConnectionError(TransientError, ConnectionError):
    """Failed to connect to the indexer or primary database."""

    pass


# Indexer-specific errors
class TableNotFoundError(PermanentError, LookupError):
    """No indexer table exists for the requested event type."""

    def __init__(self, event_type: str):
        self.event_type = event_type
        super().__init__(f"No indexer table found for event type: {event_type}")


class RecordNotFoundError(PermanentError, LookupError):
    """A single-row indexer lookup matched nothing."""

    pass


class SchemaMismatchError(PermanentError):
    """Indexer table exists but lacks the columns expected for its event type."""

    def __init__(self, table_name: str, event_type: str, missing_columns: list[str]):
        self.table_name = table_name
        self.event_type = event_type
        self.missing_columns = missing_columns
        super().__init__(
            f"Table {table_name} ({event_type}) missing required columns: "
            + ", ".join(missing_columns)
        )


# Event sync errors
class EventProcessingError(ServiceError):
    """A single event in a sync batch could not be applied."""

    def __init__(self, message: str, event_id: int | None = None, event_name: str | None = None):
        self.event_id = event_id
        self.event_name = event_name
        super().__init__(message)


class BatchTransactionError(TransientError):
    """The sync pass transaction failed to commit; the batch is retried next tick."""

    pass


# Token math errors
class InvalidAmountError(PermanentError, ValueError):
    """Token amount is not a valid unsigned decimal integer string."""

    pass
