"""TicketProcessor - drives one ticket from todo to an open pull request."""

from __future__ import annotations

import logging
import secrets
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from ticketpilot.agents.exceptions import AgentError
from ticketpilot.agents.models import AgentOptions
from ticketpilot.agents.retry import RetryPolicy
from ticketpilot.exceptions import (
    AIGenerationEmpty,
    AIGenerationFailure,
    AuthenticationError,
    TicketPilotError,
    UnresolvedComponentMapping,
)
from ticketpilot.host.exceptions import ForkError, HostError
from ticketpilot.host.git import GitWorkspace, authenticated_url
from ticketpilot.host.models import CommitAuthor, RepoInfo
from ticketpilot.logging import get_logger
from ticketpilot.processor.models import ForkTarget, ProcessingResult, TicketState
from ticketpilot.processor.prompts import (
    build_ticket_prompt,
    commit_message,
    pr_title_and_body,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from ticketpilot.agents.base import AgentAdapter
    from ticketpilot.config import Config, ProjectConfig
    from ticketpilot.host.commit import CommitStrategy
    from ticketpilot.host.github import GitHubClient
    from ticketpilot.host.models import PR
    from ticketpilot.tracker.client import JiraClient
    from ticketpilot.tracker.models import Ticket

PR_COMMENT_PREFIX = "[AI-BOT-PR]"
FAILURE_COMMENT_PREFIX = "AI failed to process this ticket: "
FORK_READY_DELAY_SECONDS = 10.0


def branch_suffix() -> str:
    """UTC timestamp plus random hex, unique per attempt."""
    return f"{datetime.now(UTC).strftime('%Y%m%d%H%M%S')}-{secrets.token_hex(3)}"


class TicketProcessor:
    """Runs the ticket lifecycle for a single ticket.

    Resolves the repository from the ticket's first component, prepares a
    fork and working copy, has the agent implement the change, commits it
    and opens a pull request. Ticket status only moves forward
    (todo -> in_progress -> in_review); a failure after the run has started
    reverts the ticket to the project's fallback status.
    """

    def __init__(
        self,
        config: Config,
        tracker: JiraClient,
        github: GitHubClient,
        agent: AgentAdapter,
        commit_strategy: CommitStrategy,
        retry_policy: RetryPolicy | None = None,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], None] = time.sleep,
        make_suffix: Callable[[], str] = branch_suffix,
    ) -> None:
        """Initialize the processor.

        Args:
            config: Loaded configuration.
            tracker: Jira client.
            github: GitHub client.
            agent: The active AI backend.
            commit_strategy: How changes reach the fork.
            retry_policy: Agent retry policy. Defaults to the ``ai`` config.
            logger: Logger to use. Defaults to 'ticketpilot.processor'.
            sleep: Sleep function, replaceable in tests.
            make_suffix: Branch suffix generator.
        """
        self.config = config
        self.tracker = tracker
        self.github = github
        self.agent = agent
        self.commit_strategy = commit_strategy
        self.logger = logger or get_logger("processor")
        self.retry_policy = retry_policy or RetryPolicy.from_config(config.ai)
        self._sleep = sleep
        self._make_suffix = make_suffix

    def process(self, key: str) -> ProcessingResult:
        """Process a ticket end to end.

        Never raises for ticket-level failures; they are reported on the
        ticket and in the returned result.

        Args:
            key: Ticket key.

        Returns:
            ProcessingResult with the final state and PR, if one was created.
        """
        self.logger.info("Processing ticket %s", key)
        state = TicketState.NEW
        project = self.config.get_project_config_for_ticket(key)
        started = False
        workspace: GitWorkspace | None = None

        try:
            state = TicketState.RESOLVING_REPO
            ticket = self.tracker.get_ticket_with_comments(key)
            transitions = project.get_status_transitions(ticket.ticket_type)
            repo = self.resolve_repository(ticket, project)
            secure = self._has_security_level(key)

            started = True
            self._transition(key, transitions.in_progress)

            state = TicketState.FORKING
            fork = self._ensure_fork(ticket, repo)

            state = TicketState.SYNCING
            target = self.config.github.target_branch
            self.github.sync_fork_with_upstream(fork.owner, repo.name, target)
            workspace = GitWorkspace(Path(self.config.runtime.temp_dir) / key, logger=self.logger)
            token = self.github.token_for(fork.owner, repo.name)
            workspace.reset_fork(authenticated_url(fork.owner, repo.name, token))
            workspace.configure_identity(
                self.config.github.bot_username,
                self.config.github.get_bot_email(),
                self.config.github.ssh_key_path,
            )

            state = TicketState.BRANCHING
            branch = f"{key}-{self._make_suffix()}"
            workspace.create_branch(branch, target)

            state = TicketState.GENERATING
            self._generate(ticket, workspace)

            state = TicketState.COMMITTING
            co_author = None
            if ticket.assignee is not None and ticket.assignee.email:
                co_author = CommitAuthor(ticket.assignee.display_name, ticket.assignee.email)
            sha = self.commit_strategy.commit(
                workspace,
                RepoInfo(fork.owner, repo.name),
                branch,
                target,
                commit_message(ticket, secure),
                co_author,
            )
            if sha is None:
                raise AIGenerationEmpty("AI changes left nothing to commit")

            state = TicketState.PR_CREATING
            title, body = pr_title_and_body(ticket, self.config.jira.base_url, secure)
            pr = self.github.create_pull_request(
                repo.owner,
                repo.name,
                title,
                body,
                head=f"{fork.owner}:{branch}",
                base=target,
                label=self.config.github.pr_label,
            )

            state = TicketState.FINALIZING
            self._record_pr(key, project, pr)
            self._transition(key, transitions.in_review)
        except Exception as e:
            self._report_failure(key, project, state, e, revert=started)
            return ProcessingResult(key=key, state=TicketState.FAILED, failed_at=state, error=str(e))
        finally:
            if workspace is not None:
                workspace.cleanup()

        self.logger.info("Successfully processed ticket %s: %s", key, pr.url)
        return ProcessingResult(key=key, state=TicketState.DONE, pr=pr)

    def resolve_repository(self, ticket: Ticket, project: ProjectConfig) -> RepoInfo:
        """Map the ticket's first component to its repository.

        Raises:
            UnresolvedComponentMapping: No components, or no mapping for the first.
        """
        if not ticket.components:
            raise UnresolvedComponentMapping("No components found on ticket")
        component = ticket.components[0]
        repo_url = project.repo_for_component(component)
        if not repo_url:
            raise UnresolvedComponentMapping(
                f"No repository mapping found for component: {component}"
            )
        try:
            repo = RepoInfo.from_url(repo_url)
        except HostError as e:
            raise UnresolvedComponentMapping(
                f"Invalid repository URL for component {component}: {e}"
            ) from e
        self.logger.info("Resolved %s component %s to %s", ticket.key, component, repo.full_name)
        return repo

    def _has_security_level(self, key: str) -> bool:
        try:
            secure = self.tracker.has_security_level(key)
        except TicketPilotError as e:
            self.logger.warning("Failed to check security level for %s: %s", key, e)
            return False
        if secure:
            self.logger.info("Ticket %s has a security level, redacting PR content", key)
        return secure

    def _transition(self, key: str, status: str) -> None:
        try:
            self.tracker.update_ticket_status(key, status)
        except TicketPilotError as e:
            self.logger.warning("Failed to move %s to %s: %s", key, status, e)

    def _ensure_fork(self, ticket: Ticket, repo: RepoInfo) -> ForkTarget:
        """Locate or create the fork the branch is pushed to.

        With a personal access token the bot's own fork is used and created
        on demand. With a GitHub App the assignee's fork must already exist
        and have the App installed.

        Raises:
            ForkError: The fork is missing or unusable; the message tells the
                assignee what to set up.
            ForkConflict: A same-named repository is not a fork of upstream.
        """
        if not self.config.github.uses_app_auth:
            exists, _ = self.github.check_fork_exists(repo.owner, repo.name)
            if not exists:
                created = self.github.fork_repository(repo.owner, repo.name)
                self.logger.info("Fork created, waiting for it to be ready: %s", created)
                self._sleep(FORK_READY_DELAY_SECONDS)
            return ForkTarget(owner=self.config.github.bot_username)

        if ticket.assignee is None:
            raise ForkError("Ticket has no assignee (required for GitHub App workflow)")
        email = ticket.assignee.email
        fork_owner = self._github_username_for(email)
        if not fork_owner:
            raise ForkError(f"No GitHub username mapping found for assignee {email}")

        if not self.github.check_fork_exists_for_user(repo.owner, repo.name, fork_owner):
            raise ForkError(
                f"Setup Required: The assignee ({email}) needs to:\n"
                f"1. Fork the repository {repo.owner}/{repo.name} on GitHub\n"
                f"2. Install the GitHub App on their fork\n\n"
                f"Please contact your GitHub administrator if you need help with this setup."
            )
        try:
            self.github.get_installation_id_for_repo(fork_owner, repo.name)
        except HostError as e:
            raise ForkError(
                f"GitHub App Installation Required: The assignee ({email}) has forked the "
                f"repository but needs to:\n"
                f"1. Install the GitHub App on their fork {fork_owner}/{repo.name}\n\n"
                f"Installation instructions:\n"
                f"- Go to https://github.com/{fork_owner}/{repo.name}/settings/installations\n"
                f"- Install the app to enable automated code generation\n\n"
                f"Error details: {e}"
            ) from e
        self.logger.info("Using assignee's fork %s/%s", fork_owner, repo.name)
        return ForkTarget(owner=fork_owner)

    def _github_username_for(self, email: str) -> str:
        mapping = self.config.github.assignee_to_github_username
        if email in mapping:
            return mapping[email]
        lowered = email.lower()
        for known, username in mapping.items():
            if known.lower() == lowered:
                return username
        return ""

    def _generate(self, ticket: Ticket, workspace: GitWorkspace) -> None:
        if self.config.ai.generate_documentation:
            try:
                self.agent.generate_documentation(workspace.path)
            except (AIGenerationFailure, AgentError) as e:
                self.logger.warning("Failed to generate documentation for %s: %s", ticket.key, e)

        prompt = build_ticket_prompt(ticket, self.config.jira.username)
        self.logger.debug("Built prompt for %s (%d chars)", ticket.key, len(prompt))
        self.retry_policy.run(
            lambda attempt: self.agent.invoke(
                prompt, workspace.path, AgentOptions(label=f"{ticket.key} attempt {attempt}")
            ),
            label=ticket.key,
        )

    def _record_pr(self, key: str, project: ProjectConfig, pr: PR) -> None:
        if project.pr_url_field_name:
            try:
                self.tracker.update_ticket_field_by_name(key, project.pr_url_field_name, pr.url)
                self.logger.info("Stored PR URL for %s in %s", key, project.pr_url_field_name)
            except TicketPilotError as e:
                self.logger.error("Failed to update PR field for %s: %s", key, e)
        try:
            self.tracker.add_comment(key, f"{PR_COMMENT_PREFIX} {pr.url}")
        except TicketPilotError as e:
            self.logger.error("Failed to add PR comment to %s: %s", key, e)

    def _report_failure(
        self,
        key: str,
        project: ProjectConfig,
        state: TicketState,
        error: Exception,
        revert: bool,
    ) -> None:
        if isinstance(error, AuthenticationError):
            self.logger.error(
                "Authentication failed while processing %s at %s: %s. "
                "Check the Jira token, GitHub credentials and AI CLI login.",
                key,
                state,
                error,
            )
        elif isinstance(error, TicketPilotError):
            self.logger.error("Failed to process %s at %s: %s", key, state, error)
        else:
            self.logger.exception("Unexpected error processing %s at %s", key, state)

        if revert:
            try:
                self.tracker.update_ticket_status(key, project.fallback_status)
            except TicketPilotError as e:
                self.logger.error(
                    "Failed to revert %s to %s: %s", key, project.fallback_status, e
                )

        if project.disable_error_comments:
            self.logger.warning("Error comments disabled, not commenting on %s", key)
            return
        try:
            self.tracker.add_comment(key, f"{FAILURE_COMMENT_PREFIX}{error}")
        except TicketPilotError as e:
            self.logger.error("Failed to add error comment to %s: %s", key, e)
