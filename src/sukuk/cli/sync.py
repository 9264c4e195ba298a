"""Operator CLI for the event sync loop and indexer tables.

Usage:
    python -m sukuk.cli COMMAND [OPTIONS]

Examples:
    # Run a single sync pass and print the result
    python -m sukuk.cli sync-once

    # List discovered indexer tables and the latest table per event type
    python -m sukuk.cli tables

    # Show the sync cursor, or move it forward past a poison event
    python -m sukuk.cli cursor
    python -m sukuk.cli cursor --set 1200

    # Verbose logging
    python -m sukuk.cli sync-once -v
"""

import asyncio
import sys
from argparse import SUPPRESS, ArgumentParser, Namespace

import structlog

from sukuk.core.config import Settings, configure_logging
from sukuk.core.database import create_engine, create_session_factory
from sukuk.services.blockchain.event_sync import EventSyncService
from sukuk.services.exceptions import ServiceError
from sukuk.services.indexer.table_discovery import TableDiscoveryService

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments.

    -v is accepted before or after the subcommand.
    """
    common = ArgumentParser(add_help=False)
    common.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=SUPPRESS,
        help="Enable verbose logging (DEBUG level)",
    )

    parser = ArgumentParser(
        description="Sukuk event sync and indexer maintenance", parents=[common]
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_once = subparsers.add_parser(
        "sync-once", help="Run a single sync pass", parents=[common]
    )
    sync_once.add_argument(
        "--batch-size",
        type=int,
        help="Maximum events to apply (default: SYNC_BATCH_SIZE)",
    )

    subparsers.add_parser("tables", help="List discovered indexer tables", parents=[common])

    cursor = subparsers.add_parser(
        "cursor", help="Show or advance the sync cursor", parents=[common]
    )
    cursor.add_argument(
        "--set",
        dest="set_to",
        type=int,
        metavar="EVENT_ID",
        help="Move the cursor forward to EVENT_ID (never backwards)",
    )

    args = parser.parse_args(argv)
    args.verbose = getattr(args, "verbose", False)
    return args


async def run_sync_once(settings: Settings, batch_size: int | None) -> int:
    engine = create_engine(settings.database_url, pool_size=2)
    try:
        service = EventSyncService(
            create_session_factory(engine), batch_size or settings.sync_batch_size
        )

        result = await service.sync_once()
        if result.paused:
            print("Sync is paused (system_state.sync_status = paused); nothing done.")
            return 0

        print(
            f"fetched={result.fetched} applied={result.applied} failed={result.failed} "
            f"skipped={result.skipped} cursor={result.cursor_before}->{result.cursor_after}"
        )
        for error in result.errors:
            print(f"  failed: {error}")
        return 2 if result.failed else 0
    finally:
        await engine.dispose()


async def run_tables(settings: Settings) -> int:
    engine = create_engine(settings.resolved_indexer_database_url, pool_size=2)
    try:
        discovery = TableDiscoveryService(engine)
        infos = await discovery.describe_tables()
        if not infos:
            print("No indexer tables found.")
            return 0

        for info in sorted(infos, key=lambda i: (i.event_type, i.table_name)):
            marker = "*" if info.is_latest else " "
            print(f"{marker} {info.event_type:<24} {info.table_name:<40} rows={info.row_count}")
        print("(* = latest table for event type)")
        return 0
    finally:
        await engine.dispose()


async def run_cursor(settings: Settings, set_to: int | None) -> int:
    engine = create_engine(settings.database_url, pool_size=2)
    try:
        service = EventSyncService(create_session_factory(engine), settings.sync_batch_size)

        if set_to is not None:
            try:
                await service.advance_cursor(set_to)
            except ValueError as e:
                logger.error("cursor.rejected", error=str(e))
                print(f"error: {e}")
                return 1

        status = await service.get_status()
        last_sync = status.last_sync_time.isoformat() if status.last_sync_time else "never"
        print(
            f"cursor={status.cursor} latest_event_id={status.latest_event_id} lag={status.lag} "
            f"sync_status={status.sync_status} last_sync_time={last_sync}"
        )
        return 0
    finally:
        await engine.dispose()


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error), 2 (pass completed with failed events),
        130 (interrupted)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    try:
        if args.command == "sync-once":
            return await run_sync_once(settings, args.batch_size)
        if args.command == "tables":
            return await run_tables(settings)
        return await run_cursor(settings, args.set_to)

    except KeyboardInterrupt:
        logger.warning("cli.interrupted", command=args.command)
        return 130

    except ServiceError as e:
        logger.error("cli.error", command=args.command, error=str(e), error_type=type(e).__name__)
        return 1


def main(argv: list[str] | None = None) -> int:
    """Synchronous wrapper for async main."""
    return asyncio.run(async_main(argv))


if __name__ == "__main__":
    sys.exit(main())
