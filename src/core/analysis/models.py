"""
Domain models for video and image analysis.

These models have no dependencies on the Google clients that produce the
raw annotations. Results are serialised with camelCase keys because they
go straight out over HTTP and Socket.IO to the dashboard and mobile app.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional


class Severity(Enum):
    """Severity of a single finding, ordered from least to most urgent."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)


_SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


def highest_severity(severities: Iterable[str]) -> str:
    """
    Roll a set of severities up to the worst one.

    Unknown values are ignored; an empty set is "low".
    """
    worst = Severity.LOW
    for value in severities:
        try:
            severity = Severity(value)
        except ValueError:
            continue
        if severity.rank > worst.rank:
            worst = severity
    return worst.value


@dataclass(frozen=True)
class CrowdThresholds:
    """Person counts above which a chunk is considered crowded."""
    high: int = 50
    medium: int = 20

    def __post_init__(self) -> None:
        if self.medium > self.high:
            raise ValueError("Medium crowd threshold cannot exceed the high threshold")


@dataclass
class LabelResult:
    description: str
    confidence: float
    category: str = "general"

    def to_dict(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "confidence": self.confidence,
            "category": self.category,
        }


@dataclass
class PersonResult:
    track_id: Optional[str]
    confidence: Optional[float]
    attributes: list[Any] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "trackId": self.track_id,
            "confidence": self.confidence,
            "attributes": self.attributes,
        }


@dataclass
class ChunkAlert:
    """An alert raised from a chunk's annotations."""
    type: str
    message: str
    severity: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "message": self.message, "severity": self.severity}


@dataclass
class ChunkAnalysis:
    """
    Processed Video Intelligence results for one chunk.

    This is what is saved as <chunk>-analysis.json and emitted as
    analysis-result.
    """
    labels: list[LabelResult] = field(default_factory=list)
    persons: list[PersonResult] = field(default_factory=list)
    object_tracking: list[dict[str, Any]] = field(default_factory=list)
    text_detections: list[dict[str, Any]] = field(default_factory=list)
    crowd_density: str = "low"
    crowd_risk_level: str = "normal"
    alerts: list[ChunkAlert] = field(default_factory=list)
    summary: str = ""

    @property
    def person_count(self) -> int:
        return len(self.persons)

    def to_dict(self) -> dict[str, Any]:
        return {
            "labels": [label.to_dict() for label in self.labels],
            "personDetection": {
                "detectedPersons": [person.to_dict() for person in self.persons],
                "totalCount": self.person_count,
            },
            "objectTracking": self.object_tracking,
            "textDetections": self.text_detections,
            "crowdAnalysis": {
                "density": self.crowd_density,
                "riskLevel": self.crowd_risk_level,
            },
            "alerts": [alert.to_dict() for alert in self.alerts],
            "summary": self.summary,
        }
