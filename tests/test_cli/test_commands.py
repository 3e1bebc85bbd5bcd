"""Tests for the router CLI."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from src.cli import main


@pytest.fixture
def runner():
    return CliRunner()


class TestHelp:
    def test_lists_commands(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ("serve", "init-db", "health", "listen"):
            assert command in result.output

    def test_listen_requires_user(self, runner):
        result = runner.invoke(main, ["listen"])
        assert result.exit_code == 2
        assert "--user-id" in result.output


class TestInitDb:
    def test_creates_tables(self, runner):
        db = MagicMock()
        db.__aenter__ = AsyncMock(return_value=db)
        db.__aexit__ = AsyncMock(return_value=None)
        create_tables = AsyncMock()

        with (
            patch("src.storage.database.Database", return_value=db),
            patch("src.storage.schema.create_tables", create_tables),
        ):
            result = runner.invoke(main, ["init-db"])

        assert result.exit_code == 0, result.output
        create_tables.assert_awaited_once_with(db)
        assert "Database initialized" in result.output


class TestServe:
    def test_passes_factory_to_uvicorn(self, runner):
        with (
            patch("uvicorn.run") as run,
            patch("src.cli.get_metrics") as get_metrics,
        ):
            result = runner.invoke(main, ["serve", "--port", "9100", "--metrics-port", "9190"])

        assert result.exit_code == 0, result.output
        get_metrics.return_value.start_server.assert_called_once_with(port=9190)
        args, kwargs = run.call_args
        assert args == ("src.api.app:create_app",)
        assert kwargs["factory"] is True
        assert kwargs["port"] == 9100
