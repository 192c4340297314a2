"""
Tests for the command line entry point.

SyncEngine.create and setup_logging are patched; the commands are checked
for argument handling, output and exit codes.
"""

import json
from datetime import date
from unittest.mock import MagicMock, patch

import pytest

import main as cli
from lectio_sync.engine import FetchError, OutOfWindowError, ReconcileResult


@pytest.fixture
def mock_engine():
    engine = MagicMock()
    with patch("main.SyncEngine.create", return_value=engine), \
         patch("main.setup_logging"), \
         patch("main.load_dotenv"):
        yield engine


class TestParseArgs:

    def test_sync_date_parsed(self):
        args = cli.parse_args(["sync", "--date", "2025-12-25"])

        assert args.command == "sync"
        assert args.date == date(2025, 12, 25)

    def test_invalid_date_rejected(self):
        with pytest.raises(SystemExit):
            cli.parse_args(["sync", "--date", "christmas"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.parse_args([])

    def test_serve_defaults(self):
        args = cli.parse_args(["serve"])

        assert args.host == "127.0.0.1"
        assert args.port == 8000


class TestCommands:

    def test_sync_prints_counts(self, mock_engine, capsys):
        mock_engine.trigger_manual_sync.return_value = ReconcileResult(readings_created=8)

        exit_code = cli.main(["sync", "--date", "2025-01-01"])

        assert exit_code == 0
        mock_engine.trigger_manual_sync.assert_called_once_with(date(2025, 1, 1))
        assert json.loads(capsys.readouterr().out) == {
            "readings_created": 8,
            "readings_updated": 0,
        }
        mock_engine.close.assert_called_once()
        mock_engine.start.assert_not_called()

    def test_sync_failure_exit_code(self, mock_engine):
        mock_engine.trigger_manual_sync.side_effect = FetchError(
            date(2025, 1, 1), "Network unreachable"
        )

        assert cli.main(["sync"]) == 1
        mock_engine.close.assert_called_once()

    def test_sync_outside_cache_window_exit_code(self, mock_engine):
        mock_engine.trigger_manual_sync.side_effect = OutOfWindowError(
            date(2026, 1, 1), date(2024, 10, 3), date(2025, 3, 31)
        )

        assert cli.main(["sync", "--date", "2026-01-01"]) == 1
        mock_engine.close.assert_called_once()

    def test_preload_exit_code_reflects_failures(self, mock_engine, capsys):
        mock_engine.preload_window.return_value = {
            "requested": 3, "synced": 2, "failed": 1, "skipped_offline": 0, "trimmed_days": 0,
        }

        assert cli.main(["preload", "--batch-size", "2"]) == 1
        mock_engine.preload_window.assert_called_once_with(batch_size=2)
        assert json.loads(capsys.readouterr().out)["failed"] == 1

    def test_trim(self, mock_engine, capsys):
        mock_engine.trim_cache.return_value = 4

        assert cli.main(["trim"]) == 0
        assert json.loads(capsys.readouterr().out) == {"removed_days": 4}

    def test_status_report(self, mock_engine, capsys):
        mock_engine.get_status.return_value = {"state": "UNINITIALIZED"}
        mock_engine.get_cache_stats.return_value = {"cached_days": 0}
        mock_engine.get_performance_metrics.return_value = {"total_jobs": 0}
        mock_engine.scheduler.is_data_stale.return_value = True
        mock_engine.get_recent_sync_jobs.return_value = []

        assert cli.main(["status", "--days", "3", "--jobs", "5"]) == 0

        report = json.loads(capsys.readouterr().out)
        assert report["is_data_stale"] is True
        mock_engine.get_performance_metrics.assert_called_once_with(window_days=3)
        mock_engine.get_recent_sync_jobs.assert_called_once_with(5)

    def test_run_stops_engine_on_shutdown_flag(self, mock_engine, monkeypatch):
        monkeypatch.setattr(cli, "shutdown_requested", True)

        with patch("main.signal.signal"):
            assert cli.main(["run"]) == 0

        mock_engine.start.assert_called_once()
        mock_engine.stop.assert_called_once()
