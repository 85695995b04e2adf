"""Tests for the root Typer app and the ``main`` entry point."""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import patch

import pytest
from rich.logging import RichHandler

from looplogin import __version__
from looplogin.app import app, main
from looplogin.exceptions import CsrfValidationError


class TestRootCallback:
    def test_version(self, cli_runner) -> None:
        result = cli_runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"looplogin {__version__}" in result.output

    def test_no_args_shows_help(self, cli_runner) -> None:
        result = cli_runner.invoke(app, [])
        assert "login" in result.output
        assert "config" in result.output

    def test_verbose_enables_debug_logging(self, cli_runner, isolated_config: Path) -> None:
        cli_runner.invoke(app, ["--verbose", "config", "show"])
        logger = logging.getLogger("looplogin")
        assert logger.level == logging.DEBUG
        assert sum(isinstance(h, RichHandler) for h in logger.handlers) == 1

    def test_default_log_level_is_warning(self, cli_runner, isolated_config: Path) -> None:
        cli_runner.invoke(app, ["config", "show"])
        cli_runner.invoke(app, ["config", "show"])
        logger = logging.getLogger("looplogin")
        assert logger.level == logging.WARNING
        assert sum(isinstance(h, RichHandler) for h in logger.handlers) == 1


class TestMain:
    @pytest.fixture(autouse=True)
    def _keep_sigint_handler(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("looplogin.app._setup_signal_handlers", lambda: None)

    def test_login_error_exits_with_its_code(self, capfd) -> None:
        with patch("looplogin.app.app", side_effect=CsrfValidationError("state mismatch")):
            with pytest.raises(SystemExit) as exc_info:
                main()
        assert exc_info.value.code == 6
        assert "state mismatch" in capfd.readouterr().err

    def test_unexpected_error_writes_crash_log(self, capfd, isolated_config: Path) -> None:
        with patch("looplogin.app.app", side_effect=RuntimeError("boom")):
            with pytest.raises(SystemExit) as exc_info:
                main()

        assert exc_info.value.code == 1
        logs = list((isolated_config / "data" / "looplogin" / "logs").glob("crash-*.log"))
        assert len(logs) == 1
        assert "RuntimeError: boom" in logs[0].read_text()
        assert "Debug log" in capfd.readouterr().err

    def test_keyboard_interrupt_exits_130(self) -> None:
        with patch("looplogin.app.app", side_effect=KeyboardInterrupt):
            with pytest.raises(SystemExit) as exc_info:
                main()
        assert exc_info.value.code == 130
