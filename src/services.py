"""
Application service wiring.

Builds every client, repository and service from Settings once, at
startup. Mock modes swap in the in-memory implementations so the whole
API runs without Google Cloud or Firebase credentials.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import socketio

from .config.settings import Settings
from .core.analysis.chunks import ChunkAnalysisService
from .core.analysis.models import CrowdThresholds
from .core.analysis.security import SecurityAnalysisService
from .core.dispatch.models import InvalidIncidentError
from .core.dispatch.service import EmergencyDispatchService
from .core.recording.registry import SessionRegistry
from .infrastructure.firebase import create_realtime_database, initialize_firebase
from .infrastructure.firebase.client import RealtimeDatabase
from .infrastructure.firebase.repositories import (
    AlertRepository,
    DetectionRepository,
    FirestoreDetectionSource,
    IncidentRepository,
    MockDetectionSource,
    ResponderRepository,
)
from .infrastructure.google import create_video_intelligence_client, create_vision_client
from .infrastructure.google.maps import MapsClient
from .infrastructure.google.video_intelligence import CHUNK_VIDEO_CONTEXT, VideoAnnotator
from .infrastructure.google.vision import VisionClient
from .infrastructure.notifications import NotificationChannels, create_notification_channels
from .infrastructure.storage import ChunkStore, StorageClient, StorageConfig, create_storage_client
from .infrastructure.video import ChunkInspector, FFprobeChunkInspector
from .realtime.events import RealtimeRelay

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the routes and socket handlers need, built once per app."""
    settings: Settings
    registry: SessionRegistry
    sio: socketio.AsyncServer
    relay: RealtimeRelay
    storage: StorageClient
    chunk_store: ChunkStore
    inspector: Optional[ChunkInspector]
    video_intelligence: VideoAnnotator
    vision: VisionClient
    maps: MapsClient
    database: RealtimeDatabase
    incidents: IncidentRepository
    responders: ResponderRepository
    alerts: AlertRepository
    detections: DetectionRepository
    channels: NotificationChannels
    dispatch: EmergencyDispatchService
    security: SecurityAnalysisService
    chunk_analysis: ChunkAnalysisService

    async def aclose(self) -> None:
        await self.dispatch.shutdown()
        await self.maps.aclose()
        close = getattr(self.video_intelligence, "aclose", None)
        if close is not None:
            await close()


def _threat_dispatcher(dispatch: EmergencyDispatchService):
    """Opens a SECURITY_THREAT incident for critical threats that carry a location."""

    async def on_critical_threat(analysis: dict[str, Any]) -> None:
        location = (analysis.get("metadata") or {}).get("location")
        if not location:
            logger.warning("Critical threat without location, not dispatching")
            return

        try:
            result = await dispatch.dispatch({
                "type": "SECURITY_THREAT",
                "location": location,
                "description": "; ".join(t["description"] for t in analysis["threats"]),
                "reportedBy": "AI_SYSTEM",
                "metadata": {"threatLevel": analysis["threatLevel"]},
            })
        except InvalidIncidentError as e:
            logger.error("Automatic threat dispatch rejected", extra={"error": str(e)})
            return

        logger.warning("Automatic threat dispatch", extra={"incident_id": result.get("incidentId")})

    return on_critical_threat


def build_services(
    settings: Settings,
    sio: socketio.AsyncServer,
    relay: RealtimeRelay,
    registry: SessionRegistry,
) -> Services:
    storage = create_storage_client(
        config=StorageConfig(
            bucket_name=settings.gcs_bucket_name,
            project_id=settings.gcloud_project_id or None,
            keyfile=settings.gcloud_keyfile,
        ),
        mock_mode=settings.gcs_mock_mode,
    )
    chunk_store = ChunkStore(
        storage=storage,
        uploads_dir=settings.uploads_dir,
        max_size_bytes=settings.max_upload_size_bytes,
        upload_attempts=settings.gcs_upload_max_attempts,
        backoff_seconds=settings.gcs_upload_backoff_seconds,
        backoff_max_seconds=settings.gcs_upload_backoff_max_seconds,
        keep_local=settings.keep_local_chunks,
    )
    inspector = FFprobeChunkInspector(settings.ffprobe_path) if settings.inspect_chunks else None

    video_intelligence = create_video_intelligence_client(settings)
    vision = create_vision_client(settings.gcloud_keyfile, mock_mode=settings.google_ai_mock_mode)

    firebase_app = None if settings.firebase_mock_mode else initialize_firebase(settings)
    database = create_realtime_database(settings, firebase_app)
    if settings.firebase_mock_mode:
        detection_source = MockDetectionSource()
    else:
        detection_source = FirestoreDetectionSource(firebase_app)

    incidents = IncidentRepository(database)
    responders = ResponderRepository(database)
    alerts = AlertRepository(database)
    channels = create_notification_channels(settings, firebase_app)
    maps = MapsClient(
        api_key=settings.google_maps_api_key or None,
        travel_mode=settings.maps_travel_mode,
        fallback_minutes=settings.maps_fallback_minutes,
    )

    dispatch = EmergencyDispatchService(
        incidents=incidents,
        responders=responders,
        maps=maps,
        channels=channels,
        max_responders=settings.dispatch_max_responders,
        assign_count=settings.dispatch_assign_count,
        monitor_interval_seconds=settings.dispatch_monitor_interval_seconds,
        monitor_timeout_seconds=settings.dispatch_monitor_timeout_seconds,
        command_center_email=settings.command_center_email or None,
    )

    security = SecurityAnalysisService(
        vision=vision,
        annotator=video_intelligence,
        alerts=alerts,
        on_critical_threat=_threat_dispatcher(dispatch) if settings.auto_dispatch_on_threat else None,
    )

    chunk_analysis = ChunkAnalysisService(
        annotator=video_intelligence,
        chunk_store=chunk_store,
        publisher=relay,
        features=settings.chunk_analysis_features_list,
        video_context=CHUNK_VIDEO_CONTEXT,
        thresholds=CrowdThresholds(
            high=settings.crowd_high_threshold,
            medium=settings.crowd_medium_threshold,
        ),
    )
    relay.attach_chunk_analysis(chunk_analysis)

    return Services(
        settings=settings,
        registry=registry,
        sio=sio,
        relay=relay,
        storage=storage,
        chunk_store=chunk_store,
        inspector=inspector,
        video_intelligence=video_intelligence,
        vision=vision,
        maps=maps,
        database=database,
        incidents=incidents,
        responders=responders,
        alerts=alerts,
        detections=DetectionRepository(detection_source),
        channels=channels,
        dispatch=dispatch,
        security=security,
        chunk_analysis=chunk_analysis,
    )
