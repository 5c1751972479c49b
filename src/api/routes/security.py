"""
AI security analysis endpoints.

Images and videos arrive as multipart uploads alongside an optional
metadata JSON object (location, zone, event details). Each endpoint
stores its analysis in the realtime database and raises alerts when the
heuristics cross their thresholds.
"""

import logging
from typing import Annotated, Any, Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile, status
from pydantic import ConfigDict, Field

from ...infrastructure.firebase import FirebaseError
from ...infrastructure.google.video_intelligence import VideoIntelligenceError
from ...infrastructure.google.vision import VisionError
from ..dependencies import AuthenticatedUser, SecurityServiceDep, SettingsDep
from .recording import CamelModel, _parse_metadata

logger = logging.getLogger(__name__)

router = APIRouter()


class CurrentConditions(CamelModel):
    model_config = ConfigDict(extra="allow")

    density: Optional[float] = Field(default=None, ge=0, description="People count in the monitored area")
    event_type: Optional[str] = Field(default=None, description="concert, sports, general ...")


class BottleneckRequest(CamelModel):
    current_conditions: CurrentConditions = Field(default_factory=CurrentConditions)
    historical_data: list[dict[str, Any]] = Field(default_factory=list)


async def _read_media(upload: UploadFile, max_size_bytes: int) -> bytes:
    try:
        data = await upload.read(max_size_bytes + 1)
    finally:
        await upload.close()

    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded file is empty")
    if len(data) > max_size_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {max_size_bytes} bytes",
        )
    return data


def _analysis_failed(kind: str, e: Exception) -> HTTPException:
    logger.error("AI analysis failed", extra={"analysis": kind, "error": str(e)})
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"{kind} failed: {e}")


ImageFile = Annotated[UploadFile, File(description="JPEG or PNG frame")]
MetadataForm = Annotated[Optional[str], Form(description="JSON object")]


@router.post("/crowd-density", summary="Count people and their zone distribution in an image")
async def crowd_density(
    image: ImageFile,
    service: SecurityServiceDep,
    settings: SettingsDep,
    _api_key: AuthenticatedUser,
    metadata: MetadataForm = None,
) -> dict[str, Any]:
    data = await _read_media(image, settings.max_upload_size_bytes)
    try:
        return await service.analyze_crowd_density(data, _parse_metadata(metadata))
    except (VisionError, FirebaseError) as e:
        raise _analysis_failed("Crowd density analysis", e)


@router.post("/bottleneck-prediction", summary="Bottleneck risk for the next 15 minutes")
async def bottleneck_prediction(
    request: BottleneckRequest,
    service: SecurityServiceDep,
    _api_key: AuthenticatedUser,
) -> dict[str, Any]:
    try:
        return await service.predict_bottlenecks(
            request.current_conditions.model_dump(by_alias=True, exclude_none=True),
            request.historical_data,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except FirebaseError as e:
        raise _analysis_failed("Bottleneck prediction", e)


@router.post("/anomalies", summary="Movement and object anomalies in a short video")
async def anomalies(
    video: Annotated[UploadFile, File(description="Short MP4 clip")],
    service: SecurityServiceDep,
    settings: SettingsDep,
    _api_key: AuthenticatedUser,
    metadata: MetadataForm = None,
) -> dict[str, Any]:
    data = await _read_media(video, settings.max_upload_size_bytes)
    try:
        return await service.detect_anomalies(data, _parse_metadata(metadata))
    except (VideoIntelligenceError, FirebaseError) as e:
        raise _analysis_failed("Anomaly detection", e)


@router.post("/threats", summary="Weapons, hazards and threatening text in an image")
async def threats(
    media: Annotated[UploadFile, File(description="Image or video")],
    service: SecurityServiceDep,
    settings: SettingsDep,
    _api_key: AuthenticatedUser,
    media_type: Annotated[str, Form(alias="mediaType")] = "image",
    metadata: MetadataForm = None,
) -> dict[str, Any]:
    data = await _read_media(media, settings.max_upload_size_bytes)
    try:
        return await service.recognize_threats(data, media_type, _parse_metadata(metadata))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except (VisionError, FirebaseError) as e:
        raise _analysis_failed("Threat recognition", e)


@router.post("/sentiment", summary="Crowd mood and stress from facial expressions")
async def sentiment(
    image: ImageFile,
    service: SecurityServiceDep,
    settings: SettingsDep,
    _api_key: AuthenticatedUser,
    metadata: MetadataForm = None,
) -> dict[str, Any]:
    data = await _read_media(image, settings.max_upload_size_bytes)
    try:
        return await service.analyze_sentiment(data, _parse_metadata(metadata))
    except (VisionError, FirebaseError) as e:
        raise _analysis_failed("Sentiment analysis", e)
