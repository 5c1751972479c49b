"""
Message bodies for responder and command-center notifications.
"""

from datetime import datetime
from html import escape
from typing import Any, Optional


def _location(incident: dict[str, Any]) -> str:
    return (incident.get("location") or {}).get("description") or "Unknown"


def format_responder_sms(incident: dict[str, Any], route: Optional[dict[str, Any]]) -> str:
    eta = (route or {}).get("duration") or "Unknown"
    return (
        "🚨 EMERGENCY DISPATCH\n"
        f"Type: {incident['type']}\n"
        f"Location: {_location(incident)}\n"
        f"Priority: {incident['priority']}\n"
        f"ETA: {eta}\n"
        f"Incident ID: {incident['id']}\n"
        "\n"
        "Report to location immediately."
    )


def format_responder_email(
    responder: dict[str, Any],
    incident: dict[str, Any],
    route: Optional[dict[str, Any]],
) -> str:
    route = route or {}
    steps = route.get("steps") or ["Navigate to incident location"]
    items = "".join(f"<li>{escape(step)}</li>" for step in steps)
    return (
        "<h2>🚨 EMERGENCY DISPATCH</h2>"
        f"<p><strong>Responder:</strong> {escape(responder.get('name', ''))}</p>"
        f"<p><strong>Incident Type:</strong> {escape(incident['type'])}</p>"
        f"<p><strong>Priority:</strong> {incident['priority']}</p>"
        f"<p><strong>Location:</strong> {escape(_location(incident))}</p>"
        f"<p><strong>Estimated Travel Time:</strong> {escape(route.get('duration') or 'Unknown')}</p>"
        f"<p><strong>Incident ID:</strong> {escape(incident['id'])}</p>"
        "<h3>Route Instructions:</h3>"
        f"<ul>{items}</ul>"
        "<p><strong>Report to location immediately.</strong></p>"
    )


def format_command_center_email(incident: dict[str, Any]) -> str:
    assignments = incident.get("assignments") or []
    if assignments:
        items = "".join(
            f"<li>{escape(a['responderName'])} - ETA: {escape(a['estimatedArrival'])}</li>"
            for a in assignments
        )
    else:
        items = "<li>No responders assigned</li>"

    reported_at = incident.get("timestamp", "")
    try:
        reported_at = datetime.fromisoformat(reported_at).strftime("%Y-%m-%d %H:%M:%S %Z").strip()
    except (TypeError, ValueError):
        pass

    return (
        "<h2>🚨 EMERGENCY DISPATCH INITIATED</h2>"
        f"<p><strong>Incident ID:</strong> {escape(incident['id'])}</p>"
        f"<p><strong>Type:</strong> {escape(incident['type'])}</p>"
        f"<p><strong>Priority:</strong> {incident['priority']}</p>"
        f"<p><strong>Location:</strong> {escape(_location(incident))}</p>"
        f"<p><strong>Reported By:</strong> {escape(str(incident.get('reportedBy', '')))}</p>"
        f"<p><strong>Time:</strong> {escape(str(reported_at))}</p>"
        "<h3>Assigned Responders:</h3>"
        f"<ul>{items}</ul>"
        f"<p><strong>Status:</strong> {escape(incident.get('status', ''))}</p>"
    )
