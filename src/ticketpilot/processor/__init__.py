"""Ticket processor - the per-ticket lifecycle from todo to pull request."""

from ticketpilot.processor.models import ForkTarget, ProcessingResult, TicketState
from ticketpilot.processor.processor import TicketProcessor, branch_suffix
from ticketpilot.processor.prompts import build_ticket_prompt, pr_title_and_body

__all__ = [
    "ForkTarget",
    "ProcessingResult",
    "TicketProcessor",
    "TicketState",
    "branch_suffix",
    "build_ticket_prompt",
    "pr_title_and_body",
]
