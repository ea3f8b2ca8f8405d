"""Gemini CLI backend."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from ticketpilot.agents.base import AgentAdapter, add_to_git_exclude

if TYPE_CHECKING:
    from ticketpilot.config import GeminiConfig

SETTINGS = {"tools": {"allowed": ["run_shell_command"]}}
LOG_NOISE = "Flushing log events to Clearcut."

TOOL_USAGE_INSTRUCTIONS = """CRITICAL INSTRUCTIONS - READ FIRST:

**EXECUTION REQUIREMENTS:**
1. You MUST actually execute commands using the run_shell_command tool - DO NOT just describe what you would do
2. DO NOT create any files named "response.txt" or similar - your responses should be text output, not files
3. ACTUALLY run the commands - this is not a simulation or planning exercise

**FORBIDDEN GIT OPERATIONS - DO NOT EXECUTE:**
- DO NOT run: git push
- DO NOT run: git pull
- DO NOT run: git fetch
These operations are handled by the system. You may use OTHER git commands (merge, add, commit, status, etc.) but NEVER push/pull/fetch.

**Tool Usage:**
When using run_shell_command:
- ONLY provide the 'command' argument
- Do NOT provide a 'description' argument

**Response Format:**
After executing the commands, provide your response as text output in the required format.

---

"""


class GeminiAgent(AgentAdapter):
    """Runs ``gemini --y -p`` in YOLO mode.

    Plain text output is the summary. The shell tool is allowed through
    ``.gemini/settings.json``, which is kept out of commits.
    """

    name = "gemini"
    documentation_file = "GEMINI.md"

    def __init__(self, config: GeminiConfig, logger: logging.Logger | None = None) -> None:
        super().__init__(config.cli_path, config.timeout, logger)
        self.config = config

    def build_command(self, prompt: str) -> list[str]:
        cmd = [self.cli_path, "--y"]
        if self.config.model:
            cmd += ["-m", self.config.model]
        if self.config.all_files:
            cmd.append("-a")
        if self.config.sandbox:
            cmd.append("-s")
        cmd += ["-p", TOOL_USAGE_INSTRUCTIONS + prompt]
        return cmd

    def build_env(self) -> dict[str, str]:
        env = super().build_env()
        if self.config.api_key:
            env["GEMINI_API_KEY"] = self.config.api_key
        return env

    def prepare(self, working_dir: Path) -> None:
        settings_dir = working_dir / ".gemini"
        settings_dir.mkdir(parents=True, exist_ok=True)
        (settings_dir / "settings.json").write_text(json.dumps(SETTINGS, indent=2) + "\n")
        add_to_git_exclude(working_dir, ".gemini/")

    def parse_output(self, output: str) -> str:
        lines = [line.replace(LOG_NOISE, "").rstrip() for line in output.splitlines()]
        return "\n".join(line for line in lines if line.strip()).strip()
