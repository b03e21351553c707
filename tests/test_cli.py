"""Tests for the jobai-calendar CLI."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from click.testing import CliRunner

import jobai_calendar.cli as cli_mod
from jobai_calendar.calendar.models import SyncError, SyncStatus
from jobai_calendar.cli import cli

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _isolated(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("JOBAI_CALENDAR_CONFIG", raising=False)
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
    monkeypatch.setattr(cli_mod, "configure_logging", MagicMock())


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def _status(success: bool = True) -> SyncStatus:
    status = SyncStatus(
        user_id="u1",
        start_time=datetime(2025, 1, 6, 12, tzinfo=UTC),
        end_time=datetime(2025, 1, 6, 12, 0, 2, tzinfo=UTC),
        window_start=datetime(2025, 1, 6, tzinfo=UTC),
        window_end=datetime(2025, 4, 6, tzinfo=UTC),
        success=success,
    )
    if not success:
        status.errors.append(SyncError(provider="SYSTEM", message="db down"))
    return status


class TestGroup:
    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_missing_config_file_exits_2(self, runner, tmp_path):
        result = runner.invoke(cli, ["--config", str(tmp_path / "missing.toml"), "migrate"])
        assert result.exit_code == 2
        assert "Configuration error" in result.output

    def test_logging_configured_from_file(self, runner, tmp_path, monkeypatch):
        (tmp_path / "jobai.toml").write_text('[logging]\nlevel = "debug"\nformat = "json"\n')
        monkeypatch.setattr(cli_mod, "_migrate", AsyncMock())

        result = runner.invoke(cli, ["migrate"])

        assert result.exit_code == 0
        cli_mod.configure_logging.assert_called_once_with("DEBUG", "json", None)


class TestCommands:
    def test_migrate(self, runner, monkeypatch):
        migrate = AsyncMock()
        monkeypatch.setattr(cli_mod, "_migrate", migrate)

        result = runner.invoke(cli, ["migrate"])

        assert result.exit_code == 0
        assert "Migrations applied" in result.output
        migrate.assert_awaited_once()

    def test_sync_prints_camel_case_json(self, runner, monkeypatch):
        sync_user = AsyncMock(return_value=_status())
        monkeypatch.setattr(cli_mod, "_sync_user", sync_user)

        result = runner.invoke(cli, ["sync", "--user-id", "u1"])

        assert result.exit_code == 0
        payload = json.loads(result.output)
        assert payload["userId"] == "u1"
        assert payload["success"] is True
        assert sync_user.await_args.args[1] == "u1"

    def test_sync_failure_exits_1(self, runner, monkeypatch):
        monkeypatch.setattr(cli_mod, "_sync_user", AsyncMock(return_value=_status(False)))

        result = runner.invoke(cli, ["sync", "--user-id", "u1"])

        assert result.exit_code == 1
        assert json.loads(result.output)["errors"] == [{"provider": "SYSTEM", "message": "db down"}]

    def test_sync_requires_user(self, runner):
        result = runner.invoke(cli, ["sync"])
        assert result.exit_code == 2

    def test_sync_due(self, runner, monkeypatch):
        monkeypatch.setattr(cli_mod, "_sync_due", AsyncMock(return_value=3))
        result = runner.invoke(cli, ["sync-due"])
        assert result.exit_code == 0
        assert "Synced 3 user(s)" in result.output

    def test_serve_runs_migrations_then_uvicorn(self, runner, monkeypatch):
        migrate = AsyncMock()
        run = MagicMock()
        monkeypatch.setattr(cli_mod, "_migrate", migrate)
        monkeypatch.setattr(cli_mod.uvicorn, "run", run)

        result = runner.invoke(cli, ["serve", "--port", "9001"])

        assert result.exit_code == 0, result.output
        migrate.assert_awaited_once()
        assert run.call_args.kwargs["port"] == 9001
        assert run.call_args.kwargs["host"] == "0.0.0.0"
        assert run.call_args.kwargs["log_config"] is None

    def test_serve_skip_migrations(self, runner, monkeypatch):
        migrate = AsyncMock()
        monkeypatch.setattr(cli_mod, "_migrate", migrate)
        monkeypatch.setattr(cli_mod.uvicorn, "run", MagicMock())

        result = runner.invoke(cli, ["serve", "--skip-migrations"])

        assert result.exit_code == 0, result.output
        migrate.assert_not_awaited()
