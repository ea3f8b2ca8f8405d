"""FastAPI dependencies for dependency injection."""

from __future__ import annotations

from collections.abc import Generator  # noqa: TC003
from typing import TYPE_CHECKING, Annotated, Protocol

from fastapi import Depends

if TYPE_CHECKING:
    from ticketpilot.service import ServiceStatus


class Service(Protocol):
    """Interface of the service exposed over HTTP."""

    def start(self) -> None:
        """Start the scanners."""
        ...

    def stop(self) -> None:
        """Stop the scanners and drain in-flight work."""
        ...

    def status(self) -> ServiceStatus:
        """Current scanner and worker state."""
        ...


# Global service instance (initialized on app startup)
_service: Service | None = None


def init_service(service: Service) -> None:
    """Initialize the global service instance."""
    global _service  # noqa: PLW0603
    _service = service


def close_service() -> None:
    """Forget the global service instance."""
    global _service  # noqa: PLW0603
    _service = None


def get_service() -> Generator[Service, None, None]:
    """Dependency that provides the service instance."""
    if _service is None:
        raise RuntimeError("Service not initialized. Call init_service() first.")
    yield _service


# Type alias for dependency injection
ServiceDep = Annotated[Service, Depends(get_service)]
