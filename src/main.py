"""
FastAPI application entry point.

This module creates and configures the FastAPI application and wraps it
in the Socket.IO ASGI app, so HTTP and realtime traffic share one port.
Using an application factory pattern (create_app function) because:
- Easier to test with different configurations
- Explicit about initialization order
- Can create multiple app instances if needed (e.g., for testing)

For local development:
    uvicorn src.main:app --reload --port 3001
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.routes import detections, dispatch, health, recording, security, video_intelligence
from .config.settings import Settings, get_settings
from .core.recording.registry import SessionRegistry
from .realtime import RealtimeRelay, create_socket_server
from .services import build_services

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup builds every client and service (mock or real, per settings)
    and clears temp files left by an interrupted upload. Shutdown cancels
    dispatch monitors and closes HTTP clients.
    """
    # Startup
    settings: Settings = app.state.settings
    logging.getLogger().setLevel(settings.log_level.upper())

    logger.info(
        "Heimdall backend starting",
        extra={
            "version": settings.api_version,
            "mock_mode": {
                "gcs": settings.gcs_mock_mode,
                "firebase": settings.firebase_mock_mode,
                "google_ai": settings.google_ai_mock_mode,
            }
        }
    )

    # Validate configuration
    missing_fields = settings.validate_required_fields()
    if missing_fields:
        logger.error(
            "Missing required configuration",
            extra={"missing_fields": missing_fields}
        )

    services = build_services(settings, app.state.sio, app.state.relay, app.state.registry)
    removed = services.chunk_store.clear_temp()
    if removed:
        logger.info("Removed leftover temp uploads", extra={"count": removed})
    app.state.services = services

    yield

    # Shutdown
    logger.info("Heimdall backend shutting down")
    await services.aclose()
    app.state.services = None


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory.

    Creates and configures the FastAPI application. The session registry,
    Socket.IO server and relay live on app.state from the start; the
    remaining services are built by the lifespan hook.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="""
        Chunked video capture relay with AI security analysis and emergency dispatch.

        ## Features

        - Record in fixed-length chunks and upload each one while the next records
        - Chunks stored locally and in Google Cloud Storage
        - Video Intelligence analysis streamed back over Socket.IO
        - Crowd, threat, anomaly and sentiment heuristics on images and clips
        - Emergency dispatch to the nearest qualified responders

        ## Authentication

        All endpoints except /health require an API key in the `X-API-Key` header.

        ## Workflow

        1. **Start**: `POST /start-recording` returns a session ID
        2. **Upload**: `POST /upload-chunk` for every recorded segment
        3. **Analyze**: emit `chunk-uploaded` on the socket, or enable
           automatic analysis, and listen for `analysis-result`
        4. **Stop**: `POST /stop-recording`
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.services = None
    app.state.registry = SessionRegistry()
    app.state.sio = create_socket_server(settings.cors_origins_list)
    app.state.relay = RealtimeRelay(app.state.sio, app.state.registry)

    # Mobile clients send no Origin header, so "*" is the default
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=settings.cors_origins_list != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"],
    )

    app.include_router(
        recording.router,
        tags=["Recording"],
    )

    app.include_router(
        video_intelligence.router,
        prefix="/api/video-intelligence",
        tags=["Video Intelligence"],
    )

    app.include_router(
        security.router,
        prefix="/api/ai",
        tags=["AI Security"],
    )

    app.include_router(
        dispatch.router,
        prefix="/api/emergency",
        tags=["Emergency Dispatch"],
    )

    app.include_router(
        detections.router,
        prefix="/api",
        tags=["Detections"],
    )

    # Root endpoint
    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "message": settings.server_name,
            "version": settings.api_version,
            "docs": "/docs",
            "health": "/health",
        }

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        """
        Catch-all exception handler.

        We log the full error server-side but return a generic message.
        """
        logger.error(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error": str(exc),
            },
            exc_info=exc,
        )

        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error. Please contact support if this persists."
            }
        )

    logger.info(
        "FastAPI application created",
        extra={
            "title": settings.api_title,
            "version": settings.api_version,
        }
    )

    return app


def create_asgi_app(settings: Optional[Settings] = None) -> socketio.ASGIApp:
    """FastAPI app behind the Socket.IO server, which also forwards lifespan events."""
    fastapi_app = create_app(settings)
    return socketio.ASGIApp(fastapi_app.state.sio, other_asgi_app=fastapi_app)


# Create the application instance
# This is what uvicorn imports
app = create_asgi_app()


# For debugging/development
if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
