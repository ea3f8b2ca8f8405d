"""Custom exceptions for the issue tracker client."""

from ticketpilot.exceptions import TicketPilotError


class TrackerError(TicketPilotError):
    """Base exception for issue tracker errors."""


class TicketNotFoundError(TrackerError):
    """Ticket does not exist or is not visible to the bot."""


class TransitionNotFoundError(TrackerError):
    """No workflow transition leads to the requested status."""


class FieldNotFoundError(TrackerError):
    """No field with the requested name exists."""
