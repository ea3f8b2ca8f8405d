"""Issue tracker client - Jira ticket reads, searches and updates."""

from ticketpilot.tracker.client import JiraClient
from ticketpilot.tracker.exceptions import (
    FieldNotFoundError,
    TicketNotFoundError,
    TrackerError,
    TransitionNotFoundError,
)
from ticketpilot.tracker.models import JiraUser, SecurityLevel, Ticket, TicketComment

__all__ = [
    "FieldNotFoundError",
    "JiraClient",
    "JiraUser",
    "SecurityLevel",
    "Ticket",
    "TicketComment",
    "TicketNotFoundError",
    "TrackerError",
    "TransitionNotFoundError",
]
