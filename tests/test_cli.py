"""CLI tests: argument parsing and exit codes with the services mocked out."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from sukuk.cli import sync as cli
from sukuk.services.blockchain.event_sync import SyncPassResult
from sukuk.services.exceptions import DatabaseConnectionError


@pytest.fixture
def engine():
    """Patch engine creation; the returned engine records dispose() calls."""
    engine = MagicMock()
    engine.dispose = AsyncMock()
    with (
        patch.object(cli, "create_engine", MagicMock(return_value=engine)),
        patch.object(cli, "create_session_factory", MagicMock()),
    ):
        yield engine


def test_parse_sync_once():
    args = cli.parse_args(["sync-once", "--batch-size", "50", "-v"])
    assert (args.command, args.batch_size, args.verbose) == ("sync-once", 50, True)


def test_verbose_accepted_before_subcommand():
    assert cli.parse_args(["-v", "tables"]).verbose is True
    assert cli.parse_args(["--verbose", "cursor"]).verbose is True
    assert cli.parse_args(["tables"]).verbose is False


def test_parse_cursor_set():
    args = cli.parse_args(["cursor", "--set", "1200"])
    assert (args.command, args.set_to) == ("cursor", 1200)
    assert cli.parse_args(["cursor"]).set_to is None


def test_command_is_required():
    with pytest.raises(SystemExit):
        cli.parse_args([])


@pytest.mark.asyncio
async def test_sync_once_exit_code_reflects_failed_events(engine, capsys):
    service = MagicMock()
    service.sync_once = AsyncMock(
        return_value=SyncPassResult(
            fetched=2,
            applied=1,
            failed=1,
            cursor_before=0,
            cursor_after=2,
            errors=["2:Investment: Sukuk series not found"],
        )
    )

    with patch.object(cli, "EventSyncService", MagicMock(return_value=service)):
        code = await cli.async_main(["sync-once"])

    assert code == 2
    output = capsys.readouterr().out
    assert "cursor=0->2" in output
    assert "2:Investment" in output
    engine.dispose.assert_awaited_once()


@pytest.mark.asyncio
async def test_sync_once_disposes_engine_on_error(engine):
    service = MagicMock()
    service.sync_once = AsyncMock(side_effect=DatabaseConnectionError("primary down"))

    with patch.object(cli, "EventSyncService", MagicMock(return_value=service)):
        code = await cli.async_main(["sync-once"])

    assert code == 1
    engine.dispose.assert_awaited_once()


@pytest.mark.asyncio
async def test_cursor_rejects_backwards_move(engine):
    service = MagicMock()
    service.advance_cursor = AsyncMock(side_effect=ValueError("Cursor only moves forward"))

    with patch.object(cli, "EventSyncService", MagicMock(return_value=service)):
        code = await cli.async_main(["cursor", "--set", "1"])

    assert code == 1
    service.get_status.assert_not_called()
    engine.dispose.assert_awaited_once()


@pytest.mark.asyncio
async def test_service_errors_exit_with_one():
    with patch.object(
        cli, "run_tables", AsyncMock(side_effect=DatabaseConnectionError("indexer down"))
    ):
        code = await cli.async_main(["tables"])

    assert code == 1


@pytest.mark.asyncio
async def test_interrupt_has_its_own_exit_code():
    with patch.object(cli, "run_tables", AsyncMock(side_effect=KeyboardInterrupt)):
        code = await cli.async_main(["tables"])

    assert code == 130
