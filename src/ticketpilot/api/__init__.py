"""REST API - health and status for the running service."""

from ticketpilot.api.app import create_app

__all__ = ["create_app"]
