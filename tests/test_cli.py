"""Tests for the click entry point."""

import logging
import tempfile
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner
from rich.console import Console

from dstui.cli import HeldLogHandler, main, release_held_logs, setup_logging
from dstui.config import Config, load_config, save_config
from dstui.errors import AuthError, AuthErrorKind
from dstui.models import Task, TaskStatus


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    for name in ("ADDRESS", "USERNAME", "PASSWORD", "POLL_INTERVAL", "TIMEOUT", "VERIFY_CERTIFICATES", "DEBUG_LOGGING"):
        monkeypatch.delenv(f"DSTUI_{name}", raising=False)
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir)
        with patch("dstui.config.CONFIG_DIR", path), patch("dstui.config.CONFIG_FILE", path / "config.toml"), \
                patch("dstui.cli.CONFIG_FILE", path / "config.toml"), patch("dstui.cli.console", Console(width=200)):
            yield path


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def _configured():
    save_config(Config(address="https://nas:5001", username="admin", secret="s3cret"))


class TestList:
    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "dstui v" in result.output

    def test_without_credentials_exits_1(self, runner):
        result = runner.invoke(main, ["list"])
        assert result.exit_code == 1
        assert "no credentials" in result.output

    def test_malformed_address_exits_1(self, runner, monkeypatch):
        monkeypatch.setenv("DSTUI_ADDRESS", "ftp://nas")
        monkeypatch.setenv("DSTUI_USERNAME", "admin")
        monkeypatch.setenv("DSTUI_PASSWORD", "s3cret")

        result = runner.invoke(main, ["list"])

        assert result.exit_code == 1
        assert "invalid server address" in result.output

    def test_rejected_login_exits_1(self, runner):
        _configured()
        client = MagicMock()
        client.list_tasks.side_effect = AuthError(AuthErrorKind.INVALID_CREDENTIALS, "No such account or incorrect password", 400)

        with patch("dstui.cli.build_client", return_value=client):
            result = runner.invoke(main, ["list"])

        assert result.exit_code == 1
        assert "cannot log in" in result.output
        client.session.logout.assert_called_once()

    def test_prints_tasks(self, runner):
        _configured()
        client = MagicMock()
        client.list_tasks.return_value = [Task("dbid_1", "ubuntu.iso", TaskStatus.DOWNLOADING, 2048, 1024, 512)]

        with patch("dstui.cli.build_client", return_value=client):
            result = runner.invoke(main, ["list"])

        assert result.exit_code == 0
        assert "ubuntu.iso" in result.output

    def test_insecure_mode_warns(self, runner):
        _configured()
        client = MagicMock()
        client.list_tasks.return_value = []

        with patch("dstui.cli.build_client", return_value=client):
            result = runner.invoke(main, ["--no-verify", "list"])

        assert result.exit_code == 0
        assert "Certificate validation is disabled" in result.output


class TestConfigCommand:
    def test_show_never_prints_the_secret(self, runner):
        _configured()
        result = runner.invoke(main, ["config", "--show"])
        assert result.exit_code == 0
        assert "https://nas:5001" in result.output
        assert "s3cret" not in result.output

    def test_update_saves(self, runner):
        result = runner.invoke(
            main,
            ["config", "--address", "nas.local:5001", "--username", "admin", "--password", "--interval", "15"],
            input="s3cret\n",
        )

        assert result.exit_code == 0, result.output
        config = load_config()
        assert config.address == "nas.local:5001"
        assert config.secret == "s3cret"
        assert config.poll_interval == 15.0
        assert config.base_url == "https://nas.local:5001"

    def test_rejects_bad_address(self, runner, isolated_config):
        result = runner.invoke(main, ["config", "--address", "ftp://nas"])
        assert result.exit_code != 0
        assert not (isolated_config / "config.toml").exists()


class TestHeldLogs:
    def _record(self, message: str) -> logging.LogRecord:
        return logging.makeLogRecord({"name": "dstui.poller", "levelno": logging.WARNING, "levelname": "WARNING", "msg": message})

    def test_keeps_only_the_newest_records(self):
        held = HeldLogHandler(capacity=2)
        for i in range(5):
            held.handle(self._record(f"Task refresh failed: {i}"))
        assert [r.getMessage() for r in held.buffer] == ["Task refresh failed: 3", "Task refresh failed: 4"]

    def test_nothing_reaches_stderr_until_released(self, capsys):
        root = logging.getLogger()
        held = HeldLogHandler()
        root.addHandler(held)
        try:
            held.handle(self._record("Task refresh failed: timed out"))
            assert capsys.readouterr().err == ""

            stream = release_held_logs(held)
        finally:
            root.removeHandler(held)
        root.removeHandler(stream)

        assert held not in root.handlers
        assert "Task refresh failed: timed out" in capsys.readouterr().err

    def test_interactive_setup_holds_warnings(self):
        with patch("dstui.cli.logging.basicConfig") as basic_config:
            held = setup_logging(False, hold=True)
        assert isinstance(held, HeldLogHandler)
        assert basic_config.call_args.kwargs["handlers"] == [held]
