"""FastAPI health endpoints for the serve mode."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from .models import HealthStatus, ServiceStatus

if TYPE_CHECKING:
    from .service import ArchiveService


def create_health_app(service: ArchiveService) -> FastAPI:
    """Build a minimal FastAPI app with ``/health`` and ``/ready`` routes.

    ``/health`` reports the service status, the state of the session
    coordinator and the last session report.
    """
    app = FastAPI(title=f"{service.name} health", docs_url=None, redoc_url=None)

    @app.get("/health")
    async def health() -> JSONResponse:
        coordinator = service.coordinator
        status = HealthStatus(
            service_name=service.name,
            status=service.status,
            uptime_seconds=time.monotonic() - service.start_time,
            session_state=coordinator.state,
            session_in_progress=coordinator.in_progress,
            last_report=coordinator.last_report,
        )
        code = 200 if service.status in (ServiceStatus.RUNNING, ServiceStatus.STARTING) else 503
        return JSONResponse(content=status.model_dump(mode="json"), status_code=code)

    @app.get("/ready")
    async def ready() -> JSONResponse:
        is_ready = service.status == ServiceStatus.RUNNING
        return JSONResponse(
            content={"ready": is_ready},
            status_code=200 if is_ready else 503,
        )

    return app
