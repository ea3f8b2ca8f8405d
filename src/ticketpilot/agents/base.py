"""AgentAdapter - shared subprocess handling for AI coding CLIs."""

from __future__ import annotations

import logging
import os
import re
import subprocess
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

from ticketpilot.agents.exceptions import AgentTimeoutError, ToolError
from ticketpilot.agents.models import AgentOptions, AgentResult, StreamingResult
from ticketpilot.exceptions import AIGenerationFailure, AuthenticationError
from ticketpilot.host.exceptions import HostError
from ticketpilot.host.git import GitWorkspace
from ticketpilot.logging import get_logger, truncate_output

if TYPE_CHECKING:
    from collections.abc import Callable

AUTH_FAILURE_PATTERN = re.compile(
    r"invalid api key|api key not valid|authentication[_ ]error|unauthorized"
    r"|please run /login|not logged in|credit balance is too low",
    re.IGNORECASE,
)

DOCUMENTATION_PROMPT = """Create a comprehensive {filename} file in the root of the project that serves as an index and guide to all markdown documentation in this repository.

## Requirements:
1. **File Structure**: Create a well-organized document with clear sections and subsections
2. **File Index**: List all markdown files found in the repository (including nested folders) with:
   - Proper headlines for each file
   - Brief descriptions of what each file contains
   - Links to the actual files rather than copying their content
3. **Organization**: Group files logically (e.g., by directory, by purpose)
4. **Navigation**: Include a table of contents at the top
5. **Context**: Provide context about how the files relate to each other
6. **Keep it short and concise**: Keep the file short and concise, don't include any unnecessary details

## Format:
- Use clear, descriptive headlines for each file entry
- Include a brief description (1-2 sentences) explaining what each file covers
- Use relative links to the actual markdown files
- Organize files in a logical structure

Search the entire repository for all .md files and create a comprehensive index following this structure.
IMPORTANT: Verify that you actually created and wrote {filename} at the root of the project!"""


def add_to_git_exclude(working_dir: str | Path, entry: str) -> None:
    """Ignore ``entry`` through .git/info/exclude, leaving tracked files untouched."""
    git_dir = Path(working_dir) / ".git"
    if not git_dir.is_dir():
        return
    exclude = git_dir / "info" / "exclude"
    exclude.parent.mkdir(parents=True, exist_ok=True)
    existing = exclude.read_text() if exclude.exists() else ""
    if entry in existing.splitlines():
        return
    with exclude.open("a") as f:
        if existing and not existing.endswith("\n"):
            f.write("\n")
        f.write(f"{entry}\n")


class AgentAdapter(ABC):
    """Base class for AI coding CLI backends.

    Subclasses describe the command line and how to read its output; this
    class runs the process with a timeout, classifies failures and decides
    whether the working copy changed.
    """

    name: str = "agent"
    documentation_file: str = "AGENT.md"

    def __init__(
        self,
        cli_path: str,
        timeout: int,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            cli_path: Path or name of the CLI executable.
            timeout: Default per-invocation timeout in seconds.
            logger: Logger to use. Defaults to 'ticketpilot.agents.<name>'.
        """
        self.cli_path = cli_path
        self.timeout = timeout
        self.logger = logger or get_logger(f"agents.{self.name}")
        self.log_callback: Callable[[str], None] | None = None

    @abstractmethod
    def build_command(self, prompt: str) -> list[str]:
        """Full argv for one invocation."""

    @abstractmethod
    def parse_output(self, output: str) -> str:
        """Extract the agent's summary from CLI output.

        Raises:
            ToolError: If the output reports a failure.
        """

    def build_env(self) -> dict[str, str]:
        return dict(os.environ)

    def prepare(self, working_dir: Path) -> None:
        """Hook to set up backend files in the working copy before a run."""

    def invoke(
        self,
        prompt: str,
        working_dir: str | Path,
        options: AgentOptions | None = None,
    ) -> AgentResult:
        """Run the agent once against a working copy.

        Args:
            prompt: Task description for the agent.
            working_dir: Git working copy the agent edits.
            options: Per-invocation overrides.

        Returns:
            AgentResult; ``changed`` reflects uncommitted changes or a moved HEAD.

        Raises:
            AuthenticationError: The CLI reported a credential failure.
            AgentTimeoutError: The CLI exceeded its timeout.
            ToolError: The CLI is missing, failed, or reported an error.
        """
        options = options or AgentOptions()
        working_dir = Path(working_dir)
        workspace = GitWorkspace(working_dir, logger=self.logger)
        before = self._head(workspace)

        self.prepare(working_dir)
        env = self.build_env()
        env.update(options.env)
        timeout = options.timeout or self.timeout

        self.logger.info(
            "Running %s for %s (%d char prompt)", self.name, options.label or working_dir, len(prompt)
        )
        result = self._run(self.build_command(prompt), working_dir, timeout, env)
        self.logger.debug("%s output: %s", self.name, truncate_output(result.output, 2000))

        try:
            if result.returncode != 0:
                raise ToolError(
                    f"{self.name} CLI exited with code {result.returncode}: "
                    f"{truncate_output(result.output, 500)}"
                )
            summary = self.parse_output(result.output)
        except ToolError as e:
            if AUTH_FAILURE_PATTERN.search(result.output):
                raise AuthenticationError(
                    f"{self.name} CLI authentication failed; check its API key or login"
                ) from e
            raise

        try:
            changed = workspace.has_changes(since=before)
        except HostError as e:
            raise ToolError(f"Failed to inspect working copy after {self.name}: {e}") from e
        self.logger.info("%s finished for %s (changed=%s)", self.name, options.label, changed)
        return AgentResult(changed=changed, summary=summary, output=result.output)

    def generate_documentation(self, working_dir: str | Path) -> None:
        """Ask the agent to write its documentation index file.

        Skipped when the file already exists. A freshly generated index is
        kept out of commits through .git/info/exclude.

        Raises:
            AIGenerationFailure: If the file is still missing afterwards.
        """
        working_dir = Path(working_dir)
        doc_path = working_dir / self.documentation_file
        if doc_path.exists():
            self.logger.info("%s already exists, skipping generation", self.documentation_file)
            return

        self.logger.info("%s not found, generating documentation", self.documentation_file)
        self.invoke(
            DOCUMENTATION_PROMPT.format(filename=self.documentation_file),
            working_dir,
            AgentOptions(label=f"{self.documentation_file} generation"),
        )
        if not doc_path.exists():
            raise AIGenerationFailure(f"{self.documentation_file} does not exist at path: {doc_path}")
        add_to_git_exclude(working_dir, self.documentation_file)
        self.logger.info("Generated %s", self.documentation_file)

    def _head(self, workspace: GitWorkspace) -> str | None:
        try:
            return workspace.head_sha()
        except HostError:
            return None

    def _run(
        self, cmd: list[str], working_dir: Path, timeout: int, env: dict[str, str]
    ) -> StreamingResult:
        """Run the CLI with streaming output, killing it when the timeout fires.

        Raises:
            AgentTimeoutError: If the timeout fired.
            ToolError: If the executable cannot be started.
        """
        try:
            process = subprocess.Popen(
                cmd,
                cwd=working_dir,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            )
        except FileNotFoundError as e:
            raise ToolError(f"{self.name} CLI not found: {self.cli_path}") from e
        except OSError as e:
            raise ToolError(f"Failed to start {self.name} CLI: {e}") from e

        timed_out = threading.Event()

        def kill() -> None:
            timed_out.set()
            process.kill()

        timer = threading.Timer(timeout, kill)
        timer.daemon = True
        timer.start()
        output_lines: list[str] = []
        try:
            if process.stdout:
                for raw_line in process.stdout:
                    line = raw_line.rstrip("\n")
                    output_lines.append(line)
                    if self.log_callback:
                        self.log_callback(line)
            process.wait()
        finally:
            timer.cancel()

        if timed_out.is_set():
            raise AgentTimeoutError(f"{self.name} CLI timed out after {timeout} seconds")
        return StreamingResult(returncode=process.returncode or 0, output="\n".join(output_lines))
