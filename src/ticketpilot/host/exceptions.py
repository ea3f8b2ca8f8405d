"""Custom exceptions for the code host client."""

from ticketpilot.exceptions import TicketPilotError


class HostError(TicketPilotError):
    """Base exception for code host errors."""


class CloneError(HostError):
    """Error cloning or resetting a working copy."""


class BranchError(HostError):
    """Error creating or switching branches."""


class CommitError(HostError):
    """Error creating a commit, locally or through the API."""


class PushError(HostError):
    """Error pushing to remote."""


class PRError(HostError):
    """Error creating or reading pull requests and their comments."""


class ForkError(HostError):
    """Error creating, locating or syncing a fork."""
