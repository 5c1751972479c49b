"""
Health check endpoints.

We provide two endpoints:
- /health: Basic liveness check plus live counters (is the process running?)
- /health/ready: Readiness check (can we serve traffic?)

The distinction matters in orchestration systems like Kubernetes
where liveness and readiness have different behaviors. Neither endpoint
requires an API key.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ... import __version__
from ...core.recording.models import utcnow
from ..dependencies import RegistryDep, SettingsDep

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    """
    Health check response.

    Standardized format makes it easy for monitoring tools to parse.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: str
    timestamp: datetime
    active_streams: int
    active_sessions: int
    active_recordings: int
    server: str
    mock_mode: dict[str, bool] = {}


class ReadinessCheck(BaseModel):
    """Individual readiness check result."""
    name: str
    status: str  # "ok" or "error"
    error: Optional[str] = None


class ReadinessResponse(BaseModel):
    """Readiness check response with details."""
    status: str  # "ready" or "not_ready"
    version: str
    checks: list[ReadinessCheck]


def _mock_modes(settings) -> dict[str, bool]:
    return {
        "gcs": settings.gcs_mock_mode,
        "firebase": settings.firebase_mock_mode,
        "googleAi": settings.google_ai_mock_mode,
    }


@router.get(
    "",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
    description="Returns 200 if the service is running. Does not check dependencies.",
)
async def health_check(settings: SettingsDep, registry: RegistryDep) -> HealthResponse:
    """
    Liveness check - is the process alive?

    Reads only in-memory counters, so it stays fast and never touches
    external services.
    """
    return HealthResponse(
        status="healthy",
        timestamp=utcnow(),
        active_streams=registry.stream_count,
        active_sessions=registry.device_count,
        active_recordings=registry.active_recording_count,
        server=settings.server_name,
        mock_mode=_mock_modes(settings),
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    status_code=status.HTTP_200_OK,
    summary="Readiness check",
    description="Returns 200 if the service can handle traffic.",
    responses={
        503: {
            "description": "Service not ready",
            "model": ReadinessResponse,
        }
    },
)
async def readiness_check(request: Request, settings: SettingsDep) -> Any:
    """
    Readiness check - can we serve traffic?

    Checks that configuration is complete for the active mock modes and
    that startup finished building the services. Returns 503 if any check
    fails, which tells load balancers not to route traffic here.
    """
    checks: list[ReadinessCheck] = []

    missing_fields = settings.validate_required_fields()
    if missing_fields:
        checks.append(ReadinessCheck(
            name="configuration",
            status="error",
            error=f"Missing required fields: {', '.join(missing_fields)}"
        ))
    else:
        checks.append(ReadinessCheck(name="configuration", status="ok"))

    if getattr(request.app.state, "services", None) is None:
        checks.append(ReadinessCheck(name="services", status="error", error="not initialized"))
    else:
        checks.append(ReadinessCheck(name="services", status="ok"))

    for name, enabled in _mock_modes(settings).items():
        if enabled:
            checks.append(ReadinessCheck(name=name, status="ok", error="mock mode"))

    maps_ok = bool(settings.google_maps_api_key)
    checks.append(ReadinessCheck(
        name="maps",
        status="ok",
        error=None if maps_ok else "API key not configured, using fallback ETAs"
    ))

    all_ok = all(c.status == "ok" for c in checks)

    response = ReadinessResponse(
        status="ready" if all_ok else "not_ready",
        version=__version__,
        checks=checks
    )

    if not all_ok:
        logger.warning(
            "Readiness check failed",
            extra={
                "checks": [
                    {"name": c.name, "status": c.status, "error": c.error}
                    for c in checks
                ]
            }
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump()
        )

    return response
