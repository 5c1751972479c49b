"""
Video and image analysis logic.

Contains chunk annotation processing, the chunk analysis pipeline and the
security heuristics.
"""

from .chunks import ChunkAnalysisService, EventPublisher
from .models import ChunkAlert, ChunkAnalysis, CrowdThresholds, Severity, highest_severity
from .results import process_annotation_results
from .security import SecurityAnalysisService

__all__ = [
    "ChunkAlert",
    "ChunkAnalysis",
    "ChunkAnalysisService",
    "CrowdThresholds",
    "EventPublisher",
    "SecurityAnalysisService",
    "Severity",
    "highest_severity",
    "process_annotation_results",
]
