"""Scanners - periodic tracker polling and dispatch to the worker pool."""

from ticketpilot.scanner.jql import build_feedback_jql, build_ticket_jql
from ticketpilot.scanner.locks import TicketLockRegistry
from ticketpilot.scanner.scanner import PeriodicScanner, PRFeedbackScanner, TicketScanner

__all__ = [
    "PRFeedbackScanner",
    "PeriodicScanner",
    "TicketLockRegistry",
    "TicketScanner",
    "build_feedback_jql",
    "build_ticket_jql",
]
