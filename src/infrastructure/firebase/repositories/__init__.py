"""
Repositories over Firebase.

Repositories translate between domain dicts and Realtime Database or
Firestore paths.
"""

from .alerts import AlertRepository
from .detections import (
    DetectionRepository,
    FirestoreDetectionSource,
    MockDetectionSource,
    sort_detections,
)
from .incidents import IncidentRepository
from .responders import DEMO_RESPONDERS, ResponderRepository

__all__ = [
    "AlertRepository",
    "DEMO_RESPONDERS",
    "DetectionRepository",
    "FirestoreDetectionSource",
    "IncidentRepository",
    "MockDetectionSource",
    "ResponderRepository",
    "sort_detections",
]
