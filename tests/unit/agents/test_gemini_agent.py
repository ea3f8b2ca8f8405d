"""Unit tests for the Gemini backend."""

import json
from pathlib import Path

import pytest

from ticketpilot.agents import GeminiAgent
from ticketpilot.agents.gemini import TOOL_USAGE_INSTRUCTIONS
from ticketpilot.config import GeminiConfig


@pytest.mark.unit
class TestGeminiAgent:
    """Tests for GeminiAgent."""

    def test_command_runs_in_yolo_mode(self) -> None:
        """The prompt is prefixed with tool usage instructions."""
        cmd = GeminiAgent(GeminiConfig(sandbox=True)).build_command("fix it")

        assert cmd[:4] == ["gemini", "--y", "-m", "gemini-2.5-pro"]
        assert "-s" in cmd
        assert "-a" not in cmd
        assert cmd[-2] == "-p"
        assert cmd[-1] == TOOL_USAGE_INSTRUCTIONS + "fix it"

    def test_model_can_be_left_to_cli(self) -> None:
        """An empty model omits -m."""
        cmd = GeminiAgent(GeminiConfig(model="", all_files=True)).build_command("p")

        assert "-m" not in cmd
        assert "-a" in cmd

    def test_api_key_in_environment(self) -> None:
        """A configured API key is exported to the CLI."""
        env = GeminiAgent(GeminiConfig(api_key="g-key")).build_env()

        assert env["GEMINI_API_KEY"] == "g-key"

    def test_prepare_writes_settings_and_excludes_them(self, tmp_path: Path) -> None:
        """Settings enable the shell tool and stay out of commits."""
        (tmp_path / ".git").mkdir()

        GeminiAgent(GeminiConfig()).prepare(tmp_path)

        settings = json.loads((tmp_path / ".gemini" / "settings.json").read_text())
        assert settings == {"tools": {"allowed": ["run_shell_command"]}}
        exclude = (tmp_path / ".git" / "info" / "exclude").read_text()
        assert ".gemini/" in exclude.splitlines()

    def test_parse_output_strips_log_noise(self) -> None:
        """Telemetry lines and blank lines are dropped."""
        output = "Flushing log events to Clearcut.\n\nCOMMENT_1_RESPONSE: Done\n"

        assert GeminiAgent(GeminiConfig()).parse_output(output) == "COMMENT_1_RESPONSE: Done"
