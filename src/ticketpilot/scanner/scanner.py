"""Periodic scanners that feed tickets into the shared worker pool."""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING

from ticketpilot.exceptions import TicketPilotError, TransientAPIError
from ticketpilot.logging import get_logger
from ticketpilot.scanner.jql import build_feedback_jql, build_ticket_jql

if TYPE_CHECKING:
    from ticketpilot.config import ProjectConfig
    from ticketpilot.feedback.reconciler import FeedbackReconciler
    from ticketpilot.processor.processor import TicketProcessor
    from ticketpilot.scanner.locks import TicketLockRegistry
    from ticketpilot.tracker.client import JiraClient


def _remaining(deadline: float | None) -> float | None:
    if deadline is None:
        return None
    return max(0.0, deadline - time.monotonic())


class PeriodicScanner(ABC):
    """Polls the tracker on a background thread and dispatches matches.

    The first scan runs as soon as the scanner starts. Each matched ticket
    is claimed in the lock registry and submitted to the shared pool; the
    claim is released when the task ends or is cancelled.
    """

    name: str = "scanner"

    def __init__(
        self,
        tracker: JiraClient,
        pool: ThreadPoolExecutor,
        locks: TicketLockRegistry,
        projects: list[ProjectConfig],
        interval_seconds: float,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the scanner.

        Args:
            tracker: Jira client used for searches.
            pool: Worker pool shared by all scanners.
            locks: Lock registry shared by all scanners.
            projects: Configured projects to scan.
            interval_seconds: Delay between scans.
            logger: Logger to use. Defaults to 'ticketpilot.scanner.<name>'.
        """
        self.tracker = tracker
        self.pool = pool
        self.locks = locks
        self.projects = projects
        self.interval_seconds = interval_seconds
        self.logger = logger or get_logger(f"scanner.{self.name}")
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._futures: set[Future[None]] = set()
        self._futures_lock = threading.Lock()

    @abstractmethod
    def build_queries(self) -> list[str]:
        """JQL queries run on each tick."""

    @abstractmethod
    def handle(self, key: str) -> None:
        """Work on one ticket. Runs on a pool thread while the key is held."""

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            self.logger.info("%s scanner is already running", self.name)
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name=f"ticketpilot-{self.name}", daemon=True
        )
        self._thread.start()
        self.logger.info("Started %s scanner (every %ss)", self.name, self.interval_seconds)

    def stop(self, timeout: float | None = None) -> None:
        """Stop scanning and wait up to ``timeout`` seconds for dispatched work."""
        self.request_stop()
        self.drain(None if timeout is None else time.monotonic() + timeout)

    def request_stop(self) -> None:
        """Stop scheduling ticks and dispatching tickets. Does not wait."""
        self._stop.set()

    def drain(self, deadline: float | None = None) -> None:
        """Wait for the scanner thread and dispatched work after ``request_stop``.

        Queued tasks that have not started are cancelled. Running tasks are
        waited on until ``deadline`` (a ``time.monotonic`` value) and never
        interrupted.
        """
        if self._thread is not None:
            self._thread.join(_remaining(deadline))
            self._thread = None

        with self._futures_lock:
            pending = list(self._futures)
        cancelled = sum(1 for future in pending if future.cancel())
        in_flight = [future for future in pending if not future.cancelled()]
        if cancelled:
            self.logger.info("Cancelled %d queued %s tasks", cancelled, self.name)
        if in_flight:
            self.logger.info("Waiting for %d in-flight %s tasks", len(in_flight), self.name)
            _, not_done = wait(in_flight, timeout=_remaining(deadline))
            if not_done:
                self.logger.warning(
                    "%d %s tasks still running after shutdown timeout", len(not_done), self.name
                )
        self.logger.info("Stopped %s scanner", self.name)

    def scan_once(self) -> int:
        """Run one scan.

        Returns:
            Number of tickets dispatched.
        """
        keys: list[str] = []
        for jql in self.build_queries():
            self.logger.debug("Searching with JQL: %s", jql)
            try:
                tickets = self.tracker.search_tickets(jql)
            except TransientAPIError as e:
                self.logger.warning("Tracker unavailable, skipping %s scan: %s", self.name, e)
                return 0
            except TicketPilotError as e:
                self.logger.error("Search failed, skipping %s scan: %s", self.name, e)
                return 0
            keys.extend(t.key for t in tickets if t.key not in keys)

        if not keys:
            self.logger.info("No tickets found by %s scan", self.name)
            return 0

        self.logger.info("Found %d tickets in %s scan", len(keys), self.name)
        return sum(1 for key in keys if self.dispatch(key) is not None)

    def dispatch(self, key: str) -> Future[None] | None:
        """Claim ``key`` and submit it to the pool.

        Returns:
            The submitted future, or None if the key was already held or the
            scanner is stopping.
        """
        if self._stop.is_set():
            self.logger.debug("%s scanner is stopping, not dispatching %s", self.name, key)
            return None
        if not self.locks.try_acquire(key):
            self.logger.debug("%s is already being processed, skipping", key)
            return None
        try:
            future = self.pool.submit(self._run, key)
        except RuntimeError:
            self.locks.release(key)
            self.logger.warning("Worker pool is shut down, not dispatching %s", key)
            return None

        with self._futures_lock:
            self._futures.add(future)
        future.add_done_callback(lambda f: self._finished(key, f))
        return future

    def _finished(self, key: str, future: Future[None]) -> None:
        with self._futures_lock:
            self._futures.discard(future)
        if future.cancelled():
            self.locks.release(key)

    def _run(self, key: str) -> None:
        try:
            self.handle(key)
        except Exception:
            self.logger.exception("%s task for %s failed", self.name, key)
        finally:
            self.locks.release(key)

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.scan_once()
            except Exception:
                self.logger.exception("Unexpected error during %s scan", self.name)
            self._stop.wait(self.interval_seconds)


class TicketScanner(PeriodicScanner):
    """Picks up tickets waiting in a todo status."""

    name = "tickets"

    def __init__(
        self,
        tracker: JiraClient,
        processor: TicketProcessor,
        pool: ThreadPoolExecutor,
        locks: TicketLockRegistry,
        projects: list[ProjectConfig],
        interval_seconds: float,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(tracker, pool, locks, projects, interval_seconds, logger)
        self.processor = processor

    def build_queries(self) -> list[str]:
        return [build_ticket_jql(self.projects)]

    def handle(self, key: str) -> None:
        self.processor.process(key)


class PRFeedbackScanner(PeriodicScanner):
    """Checks tickets in review for new feedback on their pull requests."""

    name = "feedback"

    def __init__(
        self,
        tracker: JiraClient,
        reconciler: FeedbackReconciler,
        pool: ThreadPoolExecutor,
        locks: TicketLockRegistry,
        projects: list[ProjectConfig],
        interval_seconds: float,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(tracker, pool, locks, projects, interval_seconds, logger)
        self.reconciler = reconciler

    def build_queries(self) -> list[str]:
        return build_feedback_jql(self.projects)

    def handle(self, key: str) -> None:
        result = self.reconciler.reconcile(key)
        self.logger.info("Feedback check for %s: %s", key, result.outcome)
