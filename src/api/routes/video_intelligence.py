"""
Video Intelligence endpoints.

Two ways to analyze a video that is already in the bucket:
- /analyze-video-complete starts the annotation and waits for it
- /start-video-annotation returns the operation name immediately; clients
  then use /check-operation-status or /get-operation-results

Annotation failures from Google come back as 502, timeouts as 504.
"""

import logging
import time
from datetime import timedelta
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import Field

from ...core.recording.models import utcnow
from ...infrastructure.google.video_intelligence import (
    AnnotationTimeoutError,
    PERSON_DETECTION_CONTEXT,
    VideoIntelligenceError,
    first_annotation_result,
    validate_gcs_uri,
)
from ..dependencies import AuthenticatedUser, SettingsDep, VideoIntelligenceDep
from .recording import CamelModel

logger = logging.getLogger(__name__)

router = APIRouter()

# Whole-video analysis asks for people only
PERSON_DETECTION_FEATURES = ["PERSON_DETECTION"]

ESTIMATED_COMPLETION = timedelta(minutes=5)


# ---------------------------------------------------------------------------
# Request Models
# ---------------------------------------------------------------------------

class AnnotateRequest(CamelModel):
    gcs_uri: Optional[str] = Field(default=None, description="gs://bucket/path/to/video.mp4")
    max_wait_time: Optional[int] = Field(
        default=None,
        ge=1,
        description="Milliseconds to wait for completion, defaults to the configured maximum",
    )


class OperationRequest(CamelModel):
    operation_name: Optional[str] = None
    poll: bool = False
    max_wait_time: Optional[int] = Field(default=None, ge=1, description="Milliseconds")


def _gcs_uri(request: AnnotateRequest) -> str:
    try:
        return validate_gcs_uri(request.gcs_uri)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _operation_name(request: OperationRequest) -> str:
    if not request.operation_name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="operationName is required")
    return request.operation_name


def _max_wait_seconds(max_wait_ms: Optional[int]) -> Optional[float]:
    return max_wait_ms / 1000 if max_wait_ms else None


def _upstream_error(e: VideoIntelligenceError) -> HTTPException:
    if isinstance(e, AnnotationTimeoutError):
        return HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(e))
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/analyze-video-complete", summary="Annotate a video and wait for the result")
async def analyze_video_complete(
    request: AnnotateRequest,
    client: VideoIntelligenceDep,
    _api_key: AuthenticatedUser,
) -> dict[str, Any]:
    gcs_uri = _gcs_uri(request)
    started = time.monotonic()

    try:
        operation_name, results = await client.annotate_and_wait(
            gcs_uri=gcs_uri,
            features=PERSON_DETECTION_FEATURES,
            video_context=PERSON_DETECTION_CONTEXT,
            max_wait_seconds=_max_wait_seconds(request.max_wait_time),
        )
    except VideoIntelligenceError as e:
        logger.error(
            "Complete video analysis failed",
            extra={"gcs_uri": gcs_uri, "error": str(e), "elapsed_ms": int((time.monotonic() - started) * 1000)}
        )
        raise _upstream_error(e)

    processing_ms = int((time.monotonic() - started) * 1000)
    first = first_annotation_result(results)
    persons = first.get("personDetectionAnnotations") or []

    logger.info("Complete video analysis finished", extra={"gcs_uri": gcs_uri, "processing_ms": processing_ms})

    return {
        "success": True,
        "gcsUri": gcs_uri,
        "operationName": operation_name,
        "analysisResults": results,
        "processingTime": processing_ms,
        "completedAt": utcnow().isoformat(),
        "summary": {
            "videoSegments": len(results.get("annotationResults") or []),
            "personDetections": len(persons),
            "totalTracks": len(persons[0].get("tracks") or []) if persons else 0,
        },
    }


@router.post("/start-video-annotation", summary="Start an annotation without waiting")
async def start_video_annotation(
    request: AnnotateRequest,
    client: VideoIntelligenceDep,
    _api_key: AuthenticatedUser,
) -> dict[str, Any]:
    gcs_uri = _gcs_uri(request)

    try:
        operation = await client.start_annotation(
            gcs_uri=gcs_uri,
            features=PERSON_DETECTION_FEATURES,
            video_context=PERSON_DETECTION_CONTEXT,
        )
    except VideoIntelligenceError as e:
        raise _upstream_error(e)

    now = utcnow()
    return {
        "success": True,
        "gcsUri": gcs_uri,
        "operationName": operation.get("name"),
        "message": "Video annotation started. Use the operation name to check status.",
        "startedAt": now.isoformat(),
        "checkStatusUrl": "/api/video-intelligence/check-operation-status",
        "estimatedCompletion": (now + ESTIMATED_COMPLETION).isoformat(),
    }


@router.post("/check-operation-status", summary="Current state of an annotation operation")
async def check_operation_status(
    request: OperationRequest,
    client: VideoIntelligenceDep,
    _api_key: AuthenticatedUser,
) -> dict[str, Any]:
    name = _operation_name(request)

    try:
        operation = await client.get_operation(name)
    except VideoIntelligenceError as e:
        raise _upstream_error(e)

    return {
        "success": True,
        "operationName": name,
        "done": bool(operation.get("done")),
        "metadata": operation.get("metadata"),
        "response": operation.get("response"),
        "error": operation.get("error"),
        "checkedAt": utcnow().isoformat(),
    }


@router.post("/get-operation-results", summary="Results of a finished operation, optionally polling")
async def get_operation_results(
    request: OperationRequest,
    client: VideoIntelligenceDep,
    _api_key: AuthenticatedUser,
) -> dict[str, Any]:
    """
    Without poll, an unfinished operation answers success=false and done=false
    rather than an error, so clients can simply retry later.
    """
    name = _operation_name(request)

    try:
        if request.poll:
            results = await client.poll_operation(name, _max_wait_seconds(request.max_wait_time))
        else:
            operation = await client.get_operation(name)
            if not operation.get("done"):
                return {
                    "success": False,
                    "message": "Operation not yet complete",
                    "operationName": name,
                    "done": False,
                    "metadata": operation.get("metadata"),
                    "checkedAt": utcnow().isoformat(),
                }
            if operation.get("error"):
                message = operation["error"].get("message", "unknown error")
                raise HTTPException(
                    status_code=status.HTTP_502_BAD_GATEWAY,
                    detail=f"Operation failed: {message}",
                )
            results = operation.get("response") or {}
    except VideoIntelligenceError as e:
        raise _upstream_error(e)

    return {
        "success": True,
        "operationName": name,
        "results": results,
        "completedAt": utcnow().isoformat(),
    }


@router.get("/health", summary="Video Intelligence module status")
async def video_intelligence_health(settings: SettingsDep) -> dict[str, Any]:
    return {
        "success": True,
        "module": "Video Intelligence API",
        "timestamp": utcnow().isoformat(),
        "endpoints": [
            "POST /analyze-video-complete - Complete analysis with polling",
            "POST /start-video-annotation - Start annotation (async)",
            "POST /check-operation-status - Check operation status",
            "POST /get-operation-results - Get results (with optional polling)",
            "GET /health - This endpoint",
        ],
        "configuration": {
            "projectId": settings.gcloud_project_id,
            "locationId": settings.video_intelligence_location,
            "defaultTimeout": f"{settings.video_intelligence_max_wait_seconds:.0f} seconds",
            "mockMode": settings.google_ai_mock_mode,
        },
    }
