"""Pydantic models for REST API."""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    """Standard API response wrapper."""

    data: T | None = None
    error: str | None = None


class StatusResponse(BaseModel):
    """Response model for service status."""

    model_config = ConfigDict(from_attributes=True)

    ticket_scanner_running: bool
    feedback_scanner_running: bool
    active_tickets: list[str] = Field(default_factory=list)
    max_workers: int


def status_to_response(status: Any) -> StatusResponse:
    """Convert a ServiceStatus to StatusResponse."""
    return StatusResponse.model_validate(status)
