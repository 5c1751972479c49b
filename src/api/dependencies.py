"""
FastAPI dependency injection.

Dependencies provide services, clients and configuration to route
handlers. Everything except settings is built once at startup and kept on
app.state.services, so mock-mode state (stored chunks, incidents,
registered devices) persists across requests.

Each dependency is a function that FastAPI calls when needed.
"""

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from ..config.settings import Settings
from ..core.analysis.chunks import ChunkAnalysisService
from ..core.analysis.security import SecurityAnalysisService
from ..core.dispatch.service import EmergencyDispatchService
from ..core.recording.registry import SessionRegistry
from ..infrastructure.firebase.repositories import DetectionRepository
from ..infrastructure.google.video_intelligence import VideoAnnotator
from ..infrastructure.storage import ChunkStore, StorageClient
from ..services import Services

logger = logging.getLogger(__name__)

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_app_settings(request: Request) -> Settings:
    """Settings the app was created with, which tests may pass explicitly."""
    return request.app.state.settings


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

async def verify_api_key(
    settings: Annotated[Settings, Depends(get_app_settings)],
    api_key: str = Security(api_key_header),
) -> str:
    """
    Validate API key from request header.

    Capture clients and dashboards share the same key list; rotating a key
    means adding the new one, rolling clients, then removing the old one.

    Raises 403 if key is invalid or missing.
    """
    if not api_key:
        logger.warning("Request missing API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="API key required. Provide X-API-Key header.",
        )

    if api_key not in settings.api_keys_list:
        logger.warning(
            "Invalid API key attempt",
            extra={"key_prefix": api_key[:8] if api_key else ""}
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    return api_key


# ---------------------------------------------------------------------------
# Service Dependencies
# ---------------------------------------------------------------------------

def get_services(request: Request) -> Services:
    """
    Provide the services built at startup.

    They only exist once the lifespan hook has run, i.e. under uvicorn or
    inside a `with TestClient(app)` block.
    """
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up",
        )
    return services


def get_registry(request: Request) -> SessionRegistry:
    # created with the app, available before startup completes
    return request.app.state.registry


ServicesDep = Annotated[Services, Depends(get_services)]


def get_storage_client(services: ServicesDep) -> StorageClient:
    return services.storage


def get_chunk_store(services: ServicesDep) -> ChunkStore:
    return services.chunk_store


def get_video_intelligence(services: ServicesDep) -> VideoAnnotator:
    return services.video_intelligence


def get_security_service(services: ServicesDep) -> SecurityAnalysisService:
    return services.security


def get_dispatch_service(services: ServicesDep) -> EmergencyDispatchService:
    return services.dispatch


def get_detection_repository(services: ServicesDep) -> DetectionRepository:
    return services.detections


def get_chunk_analysis(services: ServicesDep) -> ChunkAnalysisService:
    return services.chunk_analysis


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

# These type aliases make route signatures cleaner
AuthenticatedUser = Annotated[str, Depends(verify_api_key)]
SettingsDep = Annotated[Settings, Depends(get_app_settings)]
RegistryDep = Annotated[SessionRegistry, Depends(get_registry)]
StorageClientDep = Annotated[StorageClient, Depends(get_storage_client)]
ChunkStoreDep = Annotated[ChunkStore, Depends(get_chunk_store)]
VideoIntelligenceDep = Annotated[VideoAnnotator, Depends(get_video_intelligence)]
SecurityServiceDep = Annotated[SecurityAnalysisService, Depends(get_security_service)]
DispatchServiceDep = Annotated[EmergencyDispatchService, Depends(get_dispatch_service)]
DetectionRepositoryDep = Annotated[DetectionRepository, Depends(get_detection_repository)]
ChunkAnalysisDep = Annotated[ChunkAnalysisService, Depends(get_chunk_analysis)]
