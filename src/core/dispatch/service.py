"""
Emergency dispatch.

Dispatching an incident:
1. Validate the report and store the incident as DISPATCHING
2. Rank available responders with a matching skill by travel time
3. Escalate if nobody is available
4. Assign the closest responders, notify each on every configured channel
5. Store the incident as RESPONDING and alert the command center
6. Watch the incident in the background and escalate if it stays open too long

Notification failures are logged per channel and never fail the dispatch.
"""

import asyncio
import logging
import re
import time
from typing import Any, Awaitable, Callable, Optional

from ...infrastructure.firebase.client import FirebaseError
from ...infrastructure.notifications.channels import NotificationChannels, NotificationError
from ..recording.models import utcnow
from .formatting import format_command_center_email, format_responder_email, format_responder_sms
from .models import (
    DEFAULT_PRIORITY,
    Assignment,
    AssignmentStatus,
    IncidentNotFoundError,
    IncidentStatus,
    generate_incident_id,
    validate_incident,
)

logger = logging.getLogger(__name__)

DEFAULT_ESTIMATED_RESPONSE_MINUTES = 15

_HOURS = re.compile(r"(\d+)\s*hour")
_MINUTES = re.compile(r"(\d+)\s*min")


def parse_duration_minutes(text: Optional[str]) -> Optional[int]:
    """Minutes from a Maps duration string like "1 hour 5 mins" or "7 mins"."""
    if not text:
        return None
    hours = _HOURS.search(text)
    minutes = _MINUTES.search(text)
    if not hours and not minutes:
        return None
    return (int(hours.group(1)) * 60 if hours else 0) + (int(minutes.group(1)) if minutes else 0)


def estimated_response_minutes(assignments: list[Assignment]) -> int:
    """Fastest ETA among assignments; unparseable ETAs count as 15 minutes."""
    if not assignments:
        return DEFAULT_ESTIMATED_RESPONSE_MINUTES
    return min(
        parse_duration_minutes(a.estimated_arrival) or DEFAULT_ESTIMATED_RESPONSE_MINUTES
        for a in assignments
    )


class EmergencyDispatchService:
    """
    Coordinates incident storage, responder selection, routing and
    notifications.

    Response monitors are asyncio tasks owned by the service; call
    shutdown() to cancel them when the application stops.
    """

    def __init__(
        self,
        incidents,
        responders,
        maps,
        channels: NotificationChannels,
        max_responders: int = 3,
        assign_count: int = 2,
        monitor_interval_seconds: float = 30.0,
        monitor_timeout_seconds: float = 20 * 60,
        command_center_email: Optional[str] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._incidents = incidents
        self._responders = responders
        self._maps = maps
        self._channels = channels
        self._max_responders = max_responders
        self._assign_count = assign_count
        self._monitor_interval = monitor_interval_seconds
        self._monitor_timeout = monitor_timeout_seconds
        self._command_center_email = command_center_email
        self._sleep = sleep
        self._monotonic = monotonic
        self._monitors: dict[str, asyncio.Task] = {}

    # -----------------------------------------------------------------------
    # Dispatch
    # -----------------------------------------------------------------------

    async def dispatch(self, report: dict[str, Any]) -> dict[str, Any]:
        """
        Dispatch responders for an incident report.

        Raises InvalidIncidentError for a bad report. Returns
        {"success": False, ...} when no responder is available.
        """
        emergency_type = validate_incident(report)
        incident_id = generate_incident_id()

        logger.warning(
            "Emergency dispatch initiated",
            extra={
                "incident_id": incident_id,
                "incident_type": report["type"],
                "location": report["location"].get("description", "Unknown"),
            }
        )

        incident: dict[str, Any] = {
            "id": incident_id,
            "type": report["type"],
            "priority": emergency_type.priority or DEFAULT_PRIORITY,
            "timestamp": utcnow().isoformat(),
            "location": report["location"],
            "description": report.get("description"),
            "reportedBy": report.get("reportedBy") or "AI_SYSTEM",
            "status": IncidentStatus.DISPATCHING.value,
            "alerts": [],
            "responses": [],
            "metadata": report.get("metadata") or {},
        }
        await self._incidents.save(incident)

        candidates = await self.find_nearest_responders(
            report["location"],
            emergency_type.required_personnel,
        )
        if not candidates:
            logger.warning("No available responders found", extra={"incident_id": incident_id})
            await self.escalate(incident, "No available responders")
            return {"success": False, "error": "No available responders", "incidentId": incident_id}

        assignments = []
        for responder in candidates[:self._assign_count]:
            route = await self._maps.route(responder["location"], report["location"])
            assignment = Assignment(
                responder_id=responder["id"],
                responder_name=responder.get("name", responder["id"]),
                estimated_arrival=route.duration or "unknown",
                route=route.steps,
                assigned_at=utcnow().isoformat(),
            )
            assignments.append(assignment)
            await self.alert_responder(responder, incident, route.to_dict())

        incident["assignments"] = [a.to_dict() for a in assignments]
        incident["status"] = IncidentStatus.RESPONDING.value
        await self._incidents.update(incident_id, {
            "assignments": incident["assignments"],
            "status": incident["status"],
        })

        await self.alert_command_center(incident)
        self.start_monitor(incident)

        logger.info(
            "Emergency dispatch completed",
            extra={"incident_id": incident_id, "assigned": len(assignments)}
        )

        return {
            "success": True,
            "incidentId": incident_id,
            "assignments": incident["assignments"],
            "estimatedResponse": estimated_response_minutes(assignments),
        }

    async def find_nearest_responders(
        self,
        location: dict[str, Any],
        required_skills: tuple[str, ...],
    ) -> list[dict[str, Any]]:
        """Available responders with a matching skill, closest first."""
        candidates = []
        for responder in await self._responders.list_all():
            if responder.get("status") != "available":
                continue
            if not set(responder.get("skills") or []) & set(required_skills):
                continue
            if not responder.get("location"):
                continue

            estimate = await self._maps.distance(responder["location"], location)
            candidates.append({**responder, "distanceToIncident": {
                "duration": estimate.duration_minutes,
                "distance": estimate.distance,
                "durationText": estimate.duration_text,
            }})

        candidates.sort(key=lambda r: r["distanceToIncident"]["duration"])
        return candidates[:self._max_responders]

    # -----------------------------------------------------------------------
    # Notifications
    # -----------------------------------------------------------------------

    async def alert_responder(
        self,
        responder: dict[str, Any],
        incident: dict[str, Any],
        route: dict[str, Any],
    ) -> None:
        """Notify a responder on every channel they can be reached on."""
        name = responder.get("name", responder["id"])
        location = (incident.get("location") or {}).get("description") or "Unknown location"

        if self._channels.push and responder.get("fcmToken"):
            try:
                await self._channels.push.send_push(
                    responder["fcmToken"],
                    "🚨 EMERGENCY DISPATCH",
                    f"{incident['type']} at {location}",
                    {
                        "incidentId": incident["id"],
                        "type": incident["type"],
                        "priority": str(incident["priority"]),
                        "estimatedArrival": route.get("duration") or "unknown",
                    },
                )
                logger.info("Push notification sent", extra={"responder": name})
            except NotificationError as e:
                logger.error("Push notification failed", extra={"responder": name, "error": str(e)})

        if self._channels.sms and responder.get("phone"):
            try:
                await self._channels.sms.send_sms(responder["phone"], format_responder_sms(incident, route))
                logger.info("SMS sent", extra={"responder": name})
            except NotificationError as e:
                logger.error("SMS failed", extra={"responder": name, "error": str(e)})

        if self._channels.email and responder.get("email"):
            try:
                await self._channels.email.send_email(
                    responder["email"],
                    f"🚨 EMERGENCY DISPATCH - {incident['type']}",
                    format_responder_email(responder, incident, route),
                )
                logger.info("Email sent", extra={"responder": name})
            except NotificationError as e:
                logger.error("Email failed", extra={"responder": name, "error": str(e)})

        try:
            await self._responders.update_status(responder["id"], "dispatched", incident["id"])
        except FirebaseError as e:
            logger.error("Failed to mark responder dispatched", extra={"responder": name, "error": str(e)})

    async def alert_command_center(self, incident: dict[str, Any]) -> None:
        alert = {
            "timestamp": utcnow().isoformat(),
            "type": "EMERGENCY_DISPATCH",
            "incident": incident,
            "message": (
                f"Emergency dispatch initiated: {incident['type']} at "
                f"{(incident.get('location') or {}).get('description')}"
            ),
            "requiresAttention": incident["priority"] <= 2,
        }

        try:
            await self._incidents.add_command_center_alert(alert)
        except FirebaseError as e:
            logger.error("Failed to store command center alert", extra={"error": str(e)})

        if self._channels.email and self._command_center_email:
            try:
                await self._channels.email.send_email(
                    self._command_center_email,
                    f"🚨 EMERGENCY DISPATCH - {incident['type']}",
                    format_command_center_email(incident),
                )
            except NotificationError as e:
                logger.error("Failed to email command center", extra={"error": str(e)})

        logger.info("Command center alerted", extra={"incident_id": incident["id"]})

    async def escalate(self, incident: dict[str, Any], reason: str) -> None:
        await self._incidents.add_escalation({
            "incidentId": incident["id"],
            "escalatedAt": utcnow().isoformat(),
            "reason": reason,
            "originalIncident": incident,
        })

    # -----------------------------------------------------------------------
    # Monitoring
    # -----------------------------------------------------------------------

    def start_monitor(self, incident: dict[str, Any]) -> asyncio.Task:
        task = asyncio.create_task(self._monitor(incident))
        self._monitors[incident["id"]] = task
        task.add_done_callback(lambda _: self._monitors.pop(incident["id"], None))
        return task

    @property
    def active_monitors(self) -> int:
        return len(self._monitors)

    async def _monitor(self, incident: dict[str, Any]) -> None:
        incident_id = incident["id"]
        started = self._monotonic()

        while True:
            await self._sleep(self._monitor_interval)

            if self._monotonic() - started > self._monitor_timeout:
                logger.warning("Response timeout", extra={"incident_id": incident_id})
                try:
                    await self.escalate(incident, "Response timeout")
                except FirebaseError as e:
                    logger.error("Escalation failed", extra={"incident_id": incident_id, "error": str(e)})
                return

            try:
                current = await self._incidents.get(incident_id)
            except FirebaseError as e:
                logger.error("Error monitoring response", extra={"incident_id": incident_id, "error": str(e)})
                continue

            if current is None:
                return

            status = current.get("status")
            if status in (IncidentStatus.RESOLVED.value, IncidentStatus.CANCELLED.value):
                logger.info("Incident closed, stopping monitoring", extra={"incident_id": incident_id})
                return

            arrived = sum(
                1 for a in current.get("assignments") or []
                if a.get("status") == AssignmentStatus.ARRIVED.value
            )
            if arrived:
                logger.info("Responders arrived", extra={"incident_id": incident_id, "arrived": arrived})

    async def shutdown(self) -> None:
        tasks = list(self._monitors.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # -----------------------------------------------------------------------
    # Queries and updates
    # -----------------------------------------------------------------------

    async def get_incident(self, incident_id: str) -> dict[str, Any]:
        incident = await self._incidents.get(incident_id)
        if incident is None:
            raise IncidentNotFoundError(f"Incident {incident_id} not found")
        return incident

    async def update_status(self, incident_id: str, status: str) -> dict[str, Any]:
        """
        Move an incident to a new status.

        Closing an incident stops its monitor and frees its responders.
        """
        new_status = IncidentStatus(status)
        incident = await self.get_incident(incident_id)

        await self._incidents.update(incident_id, {
            "status": new_status.value,
            "statusUpdatedAt": utcnow().isoformat(),
        })
        incident["status"] = new_status.value

        if new_status.is_closed:
            task = self._monitors.get(incident_id)
            if task is not None:
                task.cancel()
            for assignment in incident.get("assignments") or []:
                await self._responders.update_status(assignment["responderId"], "available")

        logger.info("Incident status updated", extra={"incident_id": incident_id, "status": new_status.value})
        return incident

    async def update_assignment_status(self, incident_id: str, responder_id: str, status: str) -> dict[str, Any]:
        """Record a responder's progress (EN_ROUTE, ARRIVED)."""
        new_status = AssignmentStatus(status)
        incident = await self.get_incident(incident_id)

        assignments = incident.get("assignments") or []
        for assignment in assignments:
            if assignment.get("responderId") == responder_id:
                assignment["status"] = new_status.value
                break
        else:
            raise IncidentNotFoundError(f"Responder {responder_id} is not assigned to {incident_id}")

        await self._incidents.update(incident_id, {"assignments": assignments})
        incident["assignments"] = assignments
        return incident
