"""Error taxonomy shared by every ticketpilot component."""


class TicketPilotError(Exception):
    """Base exception for ticketpilot errors."""


class ConfigError(TicketPilotError):
    """Configuration is missing or invalid."""


class TransientAPIError(TicketPilotError):
    """Tracker or host was temporarily unreachable.

    Retried at the next scan tick; no ticket state is changed.
    """


class AuthenticationError(TicketPilotError):
    """Credentials are invalid or missing. Never retried."""


class UnresolvedComponentMapping(TicketPilotError):
    """No repository is mapped for the ticket's component."""


class ForkConflict(TicketPilotError):
    """A fork exists in an unexpected state."""


class AIGenerationEmpty(TicketPilotError):
    """The agent produced no file changes within the retry budget."""


class AIGenerationFailure(TicketPilotError):
    """The agent failed in a way that is fatal for the ticket."""
