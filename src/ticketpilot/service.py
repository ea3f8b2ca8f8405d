"""TicketPilotService - builds the components and owns their lifecycle."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ticketpilot.agents.factory import build_agent
from ticketpilot.agents.retry import RetryPolicy
from ticketpilot.feedback.reconciler import FeedbackReconciler
from ticketpilot.host.auth import AppTokenProvider, StaticTokenProvider
from ticketpilot.host.commit import build_commit_strategy
from ticketpilot.host.github import GitHubClient
from ticketpilot.logging import get_logger
from ticketpilot.processor.processor import TicketProcessor
from ticketpilot.scanner.locks import TicketLockRegistry
from ticketpilot.scanner.scanner import PRFeedbackScanner, TicketScanner
from ticketpilot.tracker.client import JiraClient

if TYPE_CHECKING:
    from ticketpilot.config import Config
    from ticketpilot.host.auth import TokenProvider
    from ticketpilot.processor.models import ProcessingResult


@dataclass
class ServiceStatus:
    """Snapshot of the running service."""

    ticket_scanner_running: bool
    feedback_scanner_running: bool
    active_tickets: list[str] = field(default_factory=list)
    max_workers: int = 0


def build_token_provider(config: Config, logger: logging.Logger | None = None) -> TokenProvider:
    """GitHub App credentials when configured, else the personal access token."""
    if config.github.uses_app_auth:
        return AppTokenProvider.from_key_file(
            config.github.app_id, config.github.private_key_path, logger=logger
        )
    return StaticTokenProvider(config.github.personal_access_token)


class TicketPilotService:
    """Wires the tracker, host, agent, processor, reconciler and scanners.

    Both scanners share one worker pool of ``runtime.max_workers`` threads
    and one lock registry, so a ticket is never worked on twice at once.
    """

    def __init__(self, config: Config, logger: logging.Logger | None = None) -> None:
        """Build every component from configuration.

        Raises:
            ConfigError: For an unknown AI provider or commit strategy.
            AuthenticationError: If GitHub credentials cannot be loaded.
        """
        self.config = config
        self.logger = logger or get_logger("service")

        self.tokens = build_token_provider(config)
        self.tracker = JiraClient(
            base_url=config.jira.base_url,
            api_token=config.jira.api_token,
            username=config.jira.username,
        )
        self.github = GitHubClient(self.tokens, bot_username=config.github.bot_username)
        self.agent = build_agent(config)
        self.commit_strategy = build_commit_strategy(config.github, self.github)
        retry_policy = RetryPolicy.from_config(config.ai)

        self.processor = TicketProcessor(
            config, self.tracker, self.github, self.agent, self.commit_strategy, retry_policy
        )
        self.reconciler = FeedbackReconciler(
            config, self.tracker, self.github, self.agent, self.commit_strategy, retry_policy
        )

        self.locks = TicketLockRegistry()
        self.pool = ThreadPoolExecutor(
            max_workers=config.runtime.max_workers, thread_name_prefix="ticketpilot-worker"
        )
        projects = config.jira.projects
        interval = config.jira.interval_seconds
        self.ticket_scanner = TicketScanner(
            self.tracker, self.processor, self.pool, self.locks, projects, interval
        )
        self.feedback_scanner = PRFeedbackScanner(
            self.tracker, self.reconciler, self.pool, self.locks, projects, interval
        )

    def start(self) -> None:
        self.logger.info(
            "Starting ticketpilot with %s agent and %d workers",
            self.agent.name,
            self.config.runtime.max_workers,
        )
        self.ticket_scanner.start()
        self.feedback_scanner.start()

    def stop(self) -> None:
        """Stop both scanners, drain the pool and close HTTP clients."""
        timeout = self.config.runtime.shutdown_timeout_seconds
        self.logger.info("Shutting down (timeout %ss)", timeout)
        deadline = time.monotonic() + timeout
        scanners = (self.ticket_scanner, self.feedback_scanner)
        for scanner in scanners:
            scanner.request_stop()
        for scanner in scanners:
            scanner.drain(deadline)
        self.pool.shutdown(wait=False, cancel_futures=True)
        self.close()
        self.logger.info("Shutdown complete")

    def close(self) -> None:
        self.tracker.close()
        self.github.close()
        if isinstance(self.tokens, AppTokenProvider):
            self.tokens.close()

    def process_ticket(self, key: str) -> ProcessingResult:
        """Run one ticket synchronously, honouring the lock registry.

        Raises:
            RuntimeError: If the ticket is already being processed.
        """
        if not self.locks.try_acquire(key):
            raise RuntimeError(f"Ticket {key} is already being processed")
        try:
            return self.processor.process(key)
        finally:
            self.locks.release(key)

    def status(self) -> ServiceStatus:
        return ServiceStatus(
            ticket_scanner_running=self.ticket_scanner.running,
            feedback_scanner_running=self.feedback_scanner.running,
            active_tickets=self.locks.active(),
            max_workers=self.config.runtime.max_workers,
        )
