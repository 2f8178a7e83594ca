"""Tests for CLI components."""

from __future__ import annotations

import asyncio
import tomllib
from unittest.mock import MagicMock

import pytest
from typer.testing import CliRunner

from agriassist import __version__
from agriassist.cli import SLASH_COMMANDS, SlashCompleter, _handle_command, app
from agriassist.config import ENV_TOKEN

runner = CliRunner()


def completions_for(text: str) -> list[str]:
    completer = SlashCompleter(SLASH_COMMANDS)
    document = MagicMock()
    document.text_before_cursor = text
    return [c.text for c in completer.get_completions(document, None)]


class TestSlashCompleter:
    def test_no_completions_for_regular_text(self):
        assert completions_for("how much water") == []

    def test_no_completions_for_empty_input(self):
        assert completions_for("") == []

    def test_shows_all_commands_on_slash(self):
        assert completions_for("/") == SLASH_COMMANDS

    def test_filters_by_prefix(self):
        assert completions_for("/de") == ["/delete"]

    def test_case_insensitive(self):
        assert completions_for("/NE") == ["/new"]

    def test_stops_after_argument_starts(self):
        assert completions_for("/open c-1") == []

    def test_completion_replaces_typed_prefix(self):
        completer = SlashCompleter(["/list"])
        document = MagicMock()
        document.text_before_cursor = "/li"
        completion = next(completer.get_completions(document, None))
        assert completion.start_position == -3


class TestCommands:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_init_writes_config(self, tmp_path):
        path = tmp_path / "agriassist" / "config.toml"

        result = runner.invoke(app, ["init", "--path", str(path)])

        assert result.exit_code == 0
        data = tomllib.loads(path.read_text())
        assert data["ws_base_url"] == "ws://localhost:8001/ws"
        assert data["reconnect"]["max_attempts"] == 5

    def test_init_refuses_to_overwrite(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("log_level = 'debug'\n")

        result = runner.invoke(app, ["init", "--path", str(path)])

        assert result.exit_code == 1
        assert path.read_text() == "log_level = 'debug'\n"

    def test_missing_token(self, tmp_path, monkeypatch):
        monkeypatch.delenv(ENV_TOKEN, raising=False)
        monkeypatch.setattr("agriassist.cli.configure_logging", lambda config: None)

        result = runner.invoke(app, ["conversations", "--config", str(tmp_path / "none.toml")])

        assert result.exit_code == 1
        assert ENV_TOKEN in result.output

    def test_invalid_language(self):
        result = runner.invoke(app, ["ask", "hello", "--language", "fr"])
        assert result.exit_code != 0

    def test_ask_rejects_empty_stdin(self):
        result = runner.invoke(app, ["ask"], input="  \n")
        assert result.exit_code == 1


class TestSlashCommandHandling:
    @pytest.mark.parametrize("text", ["/quit", "/exit", "quit"])
    def test_quit_commands_stop_loop(self, text):
        assert asyncio.run(_handle_command(text, MagicMock(), "en")) is False

    def test_open_requires_argument(self):
        controller = MagicMock()
        assert asyncio.run(_handle_command("/open", controller, "en")) is True
        controller.select.assert_not_called()
