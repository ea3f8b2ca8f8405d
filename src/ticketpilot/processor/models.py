"""Data models for the ticket processor."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ticketpilot.host.models import PR


class TicketState(StrEnum):
    """Steps of one ticket run, in order. FAILED is reachable from any step."""

    NEW = "new"
    RESOLVING_REPO = "resolving_repo"
    FORKING = "forking"
    SYNCING = "syncing"
    BRANCHING = "branching"
    GENERATING = "generating"
    COMMITTING = "committing"
    PR_CREATING = "pr_creating"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ForkTarget:
    """Where the ticket's branch is pushed."""

    owner: str


@dataclass
class ProcessingResult:
    """Outcome of ``TicketProcessor.process``.

    Attributes:
        key: Ticket key.
        state: DONE or FAILED.
        pr: The created pull request, on success.
        failed_at: Step that was running when the run failed.
        error: Failure message, as posted to the ticket.
    """

    key: str
    state: TicketState
    pr: PR | None = None
    failed_at: TicketState | None = None
    error: str = ""

    @property
    def succeeded(self) -> bool:
        return self.state == TicketState.DONE
