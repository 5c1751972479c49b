"""
Realtime Database repository for analysis history and alerts.

Every heuristic run is appended under analysis/<type>; alerts that need
attention are appended under alerts/<kind> for the dashboard.
"""

import logging
from typing import Any

from ..client import RealtimeDatabase

logger = logging.getLogger(__name__)


class AlertRepository:

    def __init__(self, db: RealtimeDatabase) -> None:
        self._db = db

    async def store_analysis(self, analysis_type: str, data: dict[str, Any]) -> str:
        return await self._db.push(f"analysis/{analysis_type}", data)

    async def push_alert(self, kind: str, alert: dict[str, Any]) -> str:
        key = await self._db.push(f"alerts/{kind}", alert)
        logger.warning(
            "Alert triggered",
            extra={"kind": kind, "type": alert.get("type"), "alert_message": alert.get("message")}
        )
        return key
