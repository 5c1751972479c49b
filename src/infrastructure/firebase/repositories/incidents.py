"""
Realtime Database repository for incidents.

Incidents live under incidents/<id>. Escalations and command-center
alerts are append-only lists written with push keys.
"""

import logging
from typing import Any, Optional

from ..client import RealtimeDatabase

logger = logging.getLogger(__name__)


class IncidentRepository:
    """Persistence for dispatch incidents and their side records."""

    def __init__(self, db: RealtimeDatabase) -> None:
        self._db = db

    async def save(self, incident: dict[str, Any]) -> None:
        """Write the full incident record, replacing any previous one."""
        await self._db.set(f"incidents/{incident['id']}", incident)

    async def update(self, incident_id: str, values: dict[str, Any]) -> None:
        await self._db.update(f"incidents/{incident_id}", values)

    async def get(self, incident_id: str) -> Optional[dict[str, Any]]:
        return await self._db.get(f"incidents/{incident_id}")

    async def add_escalation(self, escalation: dict[str, Any]) -> str:
        key = await self._db.push("escalations", escalation)
        logger.warning("Incident escalated", extra={"incident_id": escalation.get("incidentId")})
        return key

    async def add_command_center_alert(self, alert: dict[str, Any]) -> str:
        return await self._db.push("command_center/alerts", alert)
