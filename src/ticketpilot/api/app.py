"""FastAPI application setup."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ticketpilot import __version__
from ticketpilot.api.dependencies import close_service, init_service
from ticketpilot.api.models import APIResponse
from ticketpilot.api.routes import health
from ticketpilot.api.routes import status as status_routes
from ticketpilot.exceptions import TicketPilotError
from ticketpilot.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from ticketpilot.api.dependencies import Service

logger = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Registers the service and, when the app owns it, starts the scanners on
    startup and stops them on shutdown.
    """
    service: Service | None = app.state.service
    manage = app.state.manage_service
    if service is not None:
        init_service(service)
        if manage:
            service.start()

    yield

    if service is not None and manage:
        service.stop()
    close_service()


def create_app(service: Service | None = None, manage_service: bool = True) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        service: The running service to expose.
        manage_service: Start and stop the service with the app lifespan.
    """
    app = FastAPI(
        title="ticketpilot",
        description="Health and status for the ticketpilot service",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.service = service
    app.state.manage_service = manage_service

    @app.exception_handler(TicketPilotError)
    async def ticketpilot_error_handler(_request: Request, exc: TicketPilotError) -> JSONResponse:
        logger.error("Request failed: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=APIResponse[None](data=None, error="Internal server error").model_dump(),
        )

    app.include_router(health.router)
    app.include_router(status_routes.router, prefix="/api/v1")

    return app
