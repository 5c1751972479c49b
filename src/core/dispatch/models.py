"""
Domain models for emergency dispatch.

An incident has a type from EMERGENCY_TYPES, which decides its priority
and which responder skills qualify. Incidents and assignments are kept as
camelCase dicts in the Realtime Database; the dataclasses here are the
typed view used while dispatching.
"""

import random
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class InvalidIncidentError(ValueError):
    """Raised when an incident report is missing its type or location."""
    pass


class IncidentNotFoundError(Exception):
    """Raised when a requested incident doesn't exist."""
    pass


class IncidentStatus(Enum):
    DISPATCHING = "DISPATCHING"
    RESPONDING = "RESPONDING"
    RESOLVED = "RESOLVED"
    CANCELLED = "CANCELLED"

    @property
    def is_closed(self) -> bool:
        return self in (IncidentStatus.RESOLVED, IncidentStatus.CANCELLED)


class AssignmentStatus(Enum):
    DISPATCHED = "DISPATCHED"
    EN_ROUTE = "EN_ROUTE"
    ARRIVED = "ARRIVED"


@dataclass(frozen=True)
class EmergencyType:
    """
    Response profile for a kind of emergency.

    Priority 1 is most urgent. response_time_minutes is the target, not a
    guarantee.
    """
    priority: int
    response_time_minutes: int
    required_personnel: tuple[str, ...]
    equipment: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "priority": self.priority,
            "responseTime": self.response_time_minutes,
            "requiredPersonnel": list(self.required_personnel),
            "equipment": list(self.equipment),
        }


EMERGENCY_TYPES: dict[str, EmergencyType] = {
    "MEDICAL": EmergencyType(
        priority=1,
        response_time_minutes=5,
        required_personnel=("paramedic", "security"),
        equipment=("medical_kit", "defibrillator"),
    ),
    "FIRE": EmergencyType(
        priority=1,
        response_time_minutes=3,
        required_personnel=("fire_safety", "security", "evacuation_coordinator"),
        equipment=("fire_extinguisher", "evacuation_equipment"),
    ),
    "SECURITY_THREAT": EmergencyType(
        priority=1,
        response_time_minutes=2,
        required_personnel=("security", "law_enforcement"),
        equipment=("radio", "restraints"),
    ),
    "CROWD_CONTROL": EmergencyType(
        priority=2,
        response_time_minutes=7,
        required_personnel=("crowd_control", "security"),
        equipment=("barriers", "megaphone"),
    ),
    "LOST_PERSON": EmergencyType(
        priority=3,
        response_time_minutes=10,
        required_personnel=("security", "information_desk"),
        equipment=("radio", "first_aid"),
    ),
    "TECHNICAL": EmergencyType(
        priority=3,
        response_time_minutes=15,
        required_personnel=("maintenance", "security"),
        equipment=("tools", "safety_equipment"),
    ),
}

DEFAULT_PRIORITY = 3


def generate_incident_id(now_ms: Optional[int] = None, rng: Optional[random.Random] = None) -> str:
    """INC-<epoch ms>-<4 random uppercase alphanumerics>."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    rng = rng or random.Random()
    suffix = "".join(rng.choices(string.ascii_uppercase + string.digits, k=4))
    return f"INC-{now_ms}-{suffix}"


def validate_incident(report: Optional[dict[str, Any]]) -> EmergencyType:
    """
    Check an incident report and return its emergency type.

    A location needs both lat and lng; 0 is a valid coordinate.
    """
    if not report:
        raise InvalidIncidentError("Incident data is required")

    incident_type = report.get("type")
    if incident_type not in EMERGENCY_TYPES:
        raise InvalidIncidentError(f"Unknown incident type: {incident_type}")

    location = report.get("location")
    if not isinstance(location, dict) or location.get("lat") is None or location.get("lng") is None:
        raise InvalidIncidentError("Incident location with lat and lng is required")

    return EMERGENCY_TYPES[incident_type]


@dataclass
class Assignment:
    responder_id: str
    responder_name: str
    estimated_arrival: str
    route: list[str] = field(default_factory=list)
    assigned_at: str = ""
    status: AssignmentStatus = AssignmentStatus.DISPATCHED

    def to_dict(self) -> dict[str, Any]:
        return {
            "responderId": self.responder_id,
            "responderName": self.responder_name,
            "estimatedArrival": self.estimated_arrival,
            "route": self.route,
            "assignedAt": self.assigned_at,
            "status": self.status.value,
        }
