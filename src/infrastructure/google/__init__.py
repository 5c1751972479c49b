"""
Google Cloud AI and Maps clients.

Video Intelligence is called over REST, Vision through its SDK, and Maps
through the public web services. Each has a mock for local development.
"""

from .auth import GoogleAccessTokenProvider, StaticTokenProvider, TokenProvider
from .maps import MapsClient, Route, TravelEstimate
from .video_intelligence import (
    AnnotationFailedError,
    AnnotationTimeoutError,
    MockVideoIntelligenceClient,
    VideoAnnotator,
    VideoIntelligenceClient,
    VideoIntelligenceError,
    validate_gcs_uri,
)
from .vision import (
    GoogleVisionClient,
    MockVisionClient,
    VisionClient,
    VisionError,
    create_vision_client,
)


def create_video_intelligence_client(settings) -> VideoAnnotator:
    """Build the annotator from settings; mock mode needs no credentials."""
    if settings.google_ai_mock_mode:
        return MockVideoIntelligenceClient()

    return VideoIntelligenceClient(
        token_provider=GoogleAccessTokenProvider(settings.gcloud_keyfile),
        location_id=settings.video_intelligence_location,
        poll_interval_seconds=settings.video_intelligence_poll_interval_seconds,
        max_wait_seconds=settings.video_intelligence_max_wait_seconds,
    )


__all__ = [
    "AnnotationFailedError",
    "AnnotationTimeoutError",
    "GoogleAccessTokenProvider",
    "GoogleVisionClient",
    "MapsClient",
    "MockVideoIntelligenceClient",
    "MockVisionClient",
    "Route",
    "StaticTokenProvider",
    "TokenProvider",
    "TravelEstimate",
    "VideoAnnotator",
    "VideoIntelligenceClient",
    "VideoIntelligenceError",
    "VisionClient",
    "VisionError",
    "create_video_intelligence_client",
    "create_vision_client",
    "validate_gcs_uri",
]
