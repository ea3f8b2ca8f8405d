"""Service status endpoint."""

from fastapi import APIRouter

from ticketpilot.api.dependencies import ServiceDep
from ticketpilot.api.models import APIResponse, StatusResponse, status_to_response

router = APIRouter(tags=["status"])


@router.get("/status", response_model=APIResponse[StatusResponse])
def get_status(service: ServiceDep) -> APIResponse[StatusResponse]:
    """Scanner state, tickets in progress and worker pool size."""
    return APIResponse(data=status_to_response(service.status()))
