"""Tests for CLI main entry point."""

from __future__ import annotations

import sys
from unittest.mock import patch

from typer.testing import CliRunner

from agentchain_cli import __version__
from agentchain_cli.main import app, cli_main

runner = CliRunner()


def test_cli_help() -> None:
    """Test that --help flag works."""
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "agentchain CLI" in result.stdout
    for command in ("run", "resume", "requests", "examples"):
        assert command in result.stdout


def test_cli_version() -> None:
    """Test that --version flag works."""
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"agentchain CLI version: {__version__}" in result.stdout


def test_cli_version_short() -> None:
    """Test that -v flag works for version."""
    result = runner.invoke(app, ["-v"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_cli_no_args() -> None:
    """Test that CLI shows help when no arguments provided."""
    result = runner.invoke(app, [])
    # Typer exits with code 2 when no_args_is_help=True
    assert result.exit_code in (0, 2)
    assert "Usage:" in result.stdout


def test_cli_main_keyboard_interrupt() -> None:
    """Test that KeyboardInterrupt is handled gracefully in cli_main()."""
    with patch("agentchain_cli.main.app") as mock_app:
        mock_app.side_effect = KeyboardInterrupt()
        with patch.object(sys, "exit") as mock_exit:
            cli_main()
            mock_exit.assert_called_once_with(130)
