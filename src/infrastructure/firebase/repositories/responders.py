"""
Realtime Database repository for responders.

Responders are stored as a map keyed by responder id. The mock database
is seeded with DEMO_RESPONDERS so dispatch has someone to assign.
"""

from typing import Any, Optional

from ....core.recording.models import utcnow

from ..client import RealtimeDatabase

DEMO_RESPONDERS: dict[str, dict[str, Any]] = {
    "resp_001": {
        "name": "Security Team Alpha",
        "skills": ["security", "crowd_control"],
        "location": {"lat": 40.7128, "lng": -74.0060},
        "phone": "+1234567890",
        "email": "security@venue.com",
        "status": "available",
    },
    "resp_002": {
        "name": "Medical Team 1",
        "skills": ["paramedic", "medical"],
        "location": {"lat": 40.7130, "lng": -74.0058},
        "phone": "+1234567891",
        "email": "medical@venue.com",
        "status": "available",
    },
    "resp_003": {
        "name": "Fire Safety Team",
        "skills": ["fire_safety", "evacuation_coordinator"],
        "location": {"lat": 40.7125, "lng": -74.0065},
        "phone": "+1234567892",
        "email": "fire@venue.com",
        "status": "available",
    },
}


class ResponderRepository:

    def __init__(self, db: RealtimeDatabase) -> None:
        self._db = db

    async def list_all(self) -> list[dict[str, Any]]:
        """All responders, each with its key copied into "id"."""
        responders = await self._db.get("responders") or {}
        return [{"id": responder_id, **data} for responder_id, data in responders.items()]

    async def update_status(
        self,
        responder_id: str,
        status: str,
        incident_id: Optional[str] = None,
    ) -> None:
        updates: dict[str, Any] = {
            "status": status,
            "lastUpdated": utcnow().isoformat(),
        }
        if incident_id:
            updates["currentIncident"] = incident_id
        await self._db.update(f"responders/{responder_id}", updates)
