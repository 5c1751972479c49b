"""
Recording and chunk upload endpoints.

The capture flow:
1. Client calls /start-recording and gets a session id
2. Every segment is POSTed to /upload-chunk while the next one records
3. The chunk lands in uploads/tmp, moves to uploads/<device>/<session>/
   and is pushed to the bucket with retries
4. Client calls /stop-recording when done

A failed cloud upload does not fail the request: the chunk is kept
locally and gcsPath comes back null.
"""

import json
import logging
import time
from datetime import datetime
from typing import Annotated, Any, Optional

from fastapi import APIRouter, BackgroundTasks, File, Form, HTTPException, UploadFile, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ...core.recording.models import ChunkRef, utcnow
from ...core.recording.registry import SessionNotFoundError
from ...infrastructure.storage import ChunkTooLargeError, StorageError
from ...infrastructure.video import InspectionError
from ..dependencies import (
    AuthenticatedUser,
    RegistryDep,
    ServicesDep,
    SettingsDep,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class CamelModel(BaseModel):
    """Wire models use camelCase, matching the capture and dashboard clients."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StartRecordingRequest(CamelModel):
    device_id: Optional[str] = Field(default=None, description="Device starting the recording")


class StartRecordingResponse(CamelModel):
    session_id: str
    device_id: Optional[str] = None
    started_at: datetime


class StopRecordingRequest(CamelModel):
    session_id: Optional[str] = Field(default=None, description="Session returned by /start-recording")


class StopRecordingResponse(CamelModel):
    success: bool
    session_id: str
    chunk_count: int
    stopped_at: Optional[datetime] = None


class UploadChunkResponse(CamelModel):
    success: bool
    chunk_id: str
    gcs_path: Optional[str] = Field(description="Object name in the bucket, null if kept local only")
    local_path: Optional[str] = None
    file_size: int
    processing_time: int = Field(description="Milliseconds spent handling the upload")
    timestamp: datetime


class ChunkUrlResponse(CamelModel):
    url: str
    gcs_path: str
    expires_in: int


# ---------------------------------------------------------------------------
# Recording sessions
# ---------------------------------------------------------------------------

@router.post(
    "/start-recording",
    response_model=StartRecordingResponse,
    summary="Start a recording session",
)
async def start_recording(
    registry: RegistryDep,
    _api_key: AuthenticatedUser,
    request: Optional[StartRecordingRequest] = None,
) -> StartRecordingResponse:
    device_id = request.device_id if request else None
    session = registry.start_recording(device_id)
    return StartRecordingResponse(
        session_id=session.session_id,
        device_id=session.device_id,
        started_at=session.started_at,
    )


@router.post(
    "/stop-recording",
    response_model=StopRecordingResponse,
    summary="Stop a recording session",
    responses={
        400: {"description": "sessionId missing"},
        404: {"description": "Session not found"},
    },
)
async def stop_recording(
    registry: RegistryDep,
    _api_key: AuthenticatedUser,
    request: Optional[StopRecordingRequest] = None,
) -> StopRecordingResponse:
    if request is None or not request.session_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="sessionId is required",
        )

    try:
        session = registry.stop_recording(request.session_id)
    except SessionNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Recording session not found: {request.session_id}",
        )

    return StopRecordingResponse(
        success=True,
        session_id=session.session_id,
        chunk_count=session.chunk_count,
        stopped_at=session.stopped_at,
    )


# ---------------------------------------------------------------------------
# Chunk upload
# ---------------------------------------------------------------------------

def _parse_metadata(raw: Optional[str]) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        metadata = json.loads(raw)
    except json.JSONDecodeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="metadata must be a JSON object",
        )
    if not isinstance(metadata, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="metadata must be a JSON object",
        )
    return metadata


@router.post(
    "/upload-chunk",
    response_model=UploadChunkResponse,
    summary="Upload one recorded segment",
    responses={
        400: {"description": "Missing fields, bad ids or non-video file"},
        413: {"description": "Chunk exceeds the size limit"},
    },
)
async def upload_chunk(
    services: ServicesDep,
    settings: SettingsDep,
    background_tasks: BackgroundTasks,
    _api_key: AuthenticatedUser,
    video: Annotated[Optional[UploadFile], File(description="MP4 segment")] = None,
    session_id: Annotated[Optional[str], Form(alias="sessionId")] = None,
    device_id: Annotated[Optional[str], Form(alias="deviceId")] = None,
    chunk_id: Annotated[Optional[str], Form(alias="chunkId")] = None,
    metadata: Annotated[Optional[str], Form(description="JSON object")] = None,
):
    """
    Receive a chunk, store it and push it to cloud storage.

    Missing fields return 400 listing what was required and what arrived,
    so a misbehaving client can be debugged from its own logs.
    """
    started = time.monotonic()

    received = {"sessionId": session_id, "deviceId": device_id, "chunkId": chunk_id}
    if not all(received.values()):
        logger.warning("Upload missing required fields", extra={"received": received})
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "Missing required fields",
                "required": ["sessionId", "deviceId", "chunkId"],
                "received": received,
            },
        )

    if video is None:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "No video file provided"},
        )

    if not (video.content_type or "").startswith("video/"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Only video files are allowed, got {video.content_type}",
        )

    try:
        ref = ChunkRef(device_id=device_id, session_id=session_id, chunk_id=chunk_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    chunk_metadata = _parse_metadata(metadata)

    try:
        chunk = await services.chunk_store.save_upload(video, ref, chunk_metadata)
    except ChunkTooLargeError as e:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail=str(e))
    finally:
        await video.close()

    if services.inspector is not None:
        try:
            info = await services.inspector.inspect(chunk.local_path)
            chunk.metadata.setdefault("video", {
                "duration": info.duration_seconds,
                "resolution": info.resolution,
                "fps": info.fps,
                "codec": info.codec,
            })
        except InspectionError as e:
            logger.warning("Chunk inspection failed", extra={"chunk_id": chunk_id, "error": str(e)})

    # local_path is cleared when the local copy is dropped after upload
    local_path = str(chunk.local_path) if chunk.local_path else None
    gcs_path = await services.chunk_store.push_to_cloud(chunk)
    services.registry.record_chunk(chunk)

    if gcs_path and settings.auto_analyze_chunks:
        background_tasks.add_task(services.chunk_analysis.analyze, ref, None)

    processing_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "Chunk upload completed",
        extra={
            "chunk_id": chunk_id,
            "session_id": session_id,
            "size_bytes": chunk.size_bytes,
            "gcs_path": gcs_path,
            "processing_ms": processing_ms,
        }
    )

    return UploadChunkResponse(
        success=True,
        chunk_id=chunk_id,
        gcs_path=gcs_path,
        local_path=local_path,
        file_size=chunk.size_bytes,
        processing_time=processing_ms,
        timestamp=utcnow(),
    )


# ---------------------------------------------------------------------------
# Chunk lookup
# ---------------------------------------------------------------------------

def _chunk_ref(device_id: str, session_id: str, chunk_id: str) -> ChunkRef:
    try:
        return ChunkRef(device_id=device_id, session_id=session_id, chunk_id=chunk_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get(
    "/api/chunks/{device_id}/{session_id}/{chunk_id}/url",
    response_model=ChunkUrlResponse,
    summary="Time-limited download URL for a chunk",
)
async def get_chunk_url(
    device_id: str,
    session_id: str,
    chunk_id: str,
    services: ServicesDep,
    settings: SettingsDep,
    _api_key: AuthenticatedUser,
) -> ChunkUrlResponse:
    ref = _chunk_ref(device_id, session_id, chunk_id)
    cloud_path = services.chunk_store.cloud_path_for(ref)

    try:
        # GCS signs URLs for missing objects too
        if not await services.storage.exists(cloud_path):
            raise StorageError(f"Object not found: {cloud_path}")
        url = await services.storage.get_presigned_url(cloud_path, settings.presigned_url_expiry_seconds)
    except StorageError as e:
        logger.warning("Presigned URL unavailable", extra={"gcs_path": cloud_path, "error": str(e)})
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Chunk not available in cloud storage: {chunk_id}",
        )

    return ChunkUrlResponse(url=url, gcs_path=cloud_path, expires_in=settings.presigned_url_expiry_seconds)


@router.get(
    "/api/chunks/{device_id}/{session_id}/{chunk_id}/analysis",
    summary="Stored analysis for a chunk",
)
async def get_chunk_analysis(
    device_id: str,
    session_id: str,
    chunk_id: str,
    services: ServicesDep,
    _api_key: AuthenticatedUser,
) -> dict[str, Any]:
    analysis = services.chunk_store.load_analysis(_chunk_ref(device_id, session_id, chunk_id))
    if analysis is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No analysis for chunk {chunk_id}",
        )
    return analysis


# ---------------------------------------------------------------------------
# Devices and streams
# ---------------------------------------------------------------------------

@router.get("/api/device-info/{device_id}", summary="Registered device details")
async def get_device_info(
    device_id: str,
    registry: RegistryDep,
    _api_key: AuthenticatedUser,
) -> dict[str, Any]:
    info = registry.device_info(device_id)
    if info is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Device not found")
    return info


@router.get("/api/streams", summary="Active live preview streams")
async def list_streams(registry: RegistryDep, _api_key: AuthenticatedUser) -> dict[str, Any]:
    return {"streams": registry.active_streams()}
