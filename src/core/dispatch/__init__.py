"""
Emergency dispatch: incident types, responder assignment and notification.
"""

from .models import (
    EMERGENCY_TYPES,
    Assignment,
    AssignmentStatus,
    EmergencyType,
    IncidentNotFoundError,
    IncidentStatus,
    InvalidIncidentError,
    generate_incident_id,
    validate_incident,
)
from .service import EmergencyDispatchService, estimated_response_minutes, parse_duration_minutes

__all__ = [
    "EMERGENCY_TYPES",
    "Assignment",
    "AssignmentStatus",
    "EmergencyDispatchService",
    "EmergencyType",
    "IncidentNotFoundError",
    "IncidentStatus",
    "InvalidIncidentError",
    "estimated_response_minutes",
    "generate_incident_id",
    "parse_duration_minutes",
    "validate_incident",
]
