"""ticketpilot - turns tracker tickets into AI-generated pull requests."""

__version__ = "0.1.0"
