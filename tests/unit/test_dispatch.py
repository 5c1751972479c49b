"""
Unit tests for emergency dispatch.

Runs against the in-memory realtime database seeded with the demo
responders, a fake Maps client with fixed travel times and the recording
notifier, so nothing leaves the process.
"""

import asyncio
import copy
import random
import re

import pytest

from src.core.dispatch.formatting import (
    format_command_center_email,
    format_responder_email,
    format_responder_sms,
)
from src.core.dispatch.models import (
    EMERGENCY_TYPES,
    Assignment,
    IncidentNotFoundError,
    InvalidIncidentError,
    generate_incident_id,
    validate_incident,
)
from src.core.dispatch.service import (
    EmergencyDispatchService,
    estimated_response_minutes,
    parse_duration_minutes,
)
from src.infrastructure.firebase import FirebaseError, MockRealtimeDatabase
from src.infrastructure.firebase.repositories import (
    DEMO_RESPONDERS,
    IncidentRepository,
    ResponderRepository,
)
from src.infrastructure.google.maps import Route, TravelEstimate
from src.infrastructure.notifications import NotificationChannels, RecordingNotifier


INCIDENT_LOCATION = {"lat": 40.7127, "lng": -74.0059, "description": "Gate A"}

# minutes from each demo responder to the incident
TRAVEL_MINUTES = {"resp_001": 4, "resp_002": 2, "resp_003": 6}


class FakeMaps:
    """Fixed travel times keyed by responder latitude."""

    def __init__(self):
        self._by_lat = {
            DEMO_RESPONDERS[rid]["location"]["lat"]: minutes
            for rid, minutes in TRAVEL_MINUTES.items()
        }

    async def distance(self, origin, destination):
        minutes = self._by_lat[origin["lat"]]
        return TravelEstimate(duration_minutes=minutes, distance="1 km", duration_text=f"{minutes} mins")

    async def route(self, origin, destination):
        minutes = self._by_lat[origin["lat"]]
        return Route(duration=f"{minutes} mins", distance="1 km", steps=["Head north", "Turn left"])


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def make_service(db, notifier=None, **kwargs):
    notifier = notifier or RecordingNotifier()
    options = {"command_center_email": "command@venue.com"}
    options.update(kwargs)
    return EmergencyDispatchService(
        incidents=IncidentRepository(db),
        responders=ResponderRepository(db),
        maps=FakeMaps(),
        channels=NotificationChannels(push=notifier, sms=notifier, email=notifier),
        **options,
    )


@pytest.fixture
def db():
    return MockRealtimeDatabase({"responders": DEMO_RESPONDERS})


def medical_report(**overrides):
    report = {
        "type": "MEDICAL",
        "location": dict(INCIDENT_LOCATION),
        "description": "Person collapsed",
        "reportedBy": "steward-7",
    }
    report.update(overrides)
    return report


async def dispatch_and_shutdown(service, report):
    try:
        return await service.dispatch(report)
    finally:
        await service.shutdown()


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class TestIncidentValidation:

    def test_known_type_returns_profile(self):
        assert validate_incident(medical_report()) is EMERGENCY_TYPES["MEDICAL"]

    def test_unknown_type_is_rejected(self):
        with pytest.raises(InvalidIncidentError, match="Unknown incident type"):
            validate_incident(medical_report(type="ALIENS"))

    @pytest.mark.parametrize("location", [None, {}, {"lat": 1.0}, {"lng": 2.0}])
    def test_location_needs_lat_and_lng(self, location):
        with pytest.raises(InvalidIncidentError, match="location"):
            validate_incident(medical_report(location=location))

    def test_zero_coordinates_are_valid(self):
        validate_incident(medical_report(location={"lat": 0, "lng": 0}))

    def test_empty_report(self):
        with pytest.raises(InvalidIncidentError):
            validate_incident(None)


class TestIncidentIds:

    def test_format(self):
        incident_id = generate_incident_id(now_ms=1700000000000, rng=random.Random(7))
        assert re.fullmatch(r"INC-1700000000000-[A-Z0-9]{4}", incident_id)

    def test_ids_differ(self):
        assert generate_incident_id(now_ms=1) != generate_incident_id(now_ms=2)


class TestDurations:

    @pytest.mark.parametrize("text, minutes", [
        ("7 mins", 7),
        ("1 min", 1),
        ("1 hour 5 mins", 65),
        ("2 hours", 120),
        ("unknown", None),
        (None, None),
    ])
    def test_parse_duration_minutes(self, text, minutes):
        assert parse_duration_minutes(text) == minutes

    def test_estimated_response_is_fastest_assignment(self):
        assignments = [
            Assignment("a", "A", "9 mins"),
            Assignment("b", "B", "3 mins"),
            Assignment("c", "C", "unknown"),
        ]
        assert estimated_response_minutes(assignments) == 3

    def test_estimated_response_defaults_to_fifteen(self):
        assert estimated_response_minutes([]) == 15
        assert estimated_response_minutes([Assignment("a", "A", "unknown")]) == 15


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

class TestDispatch:

    def test_assigns_closest_qualified_responders(self, db):
        notifier = RecordingNotifier()
        result = asyncio.run(dispatch_and_shutdown(make_service(db, notifier), medical_report()))

        assert result["success"] is True
        # resp_003 has no medical or security skill
        assert [a["responderId"] for a in result["assignments"]] == ["resp_002", "resp_001"]
        assert result["estimatedResponse"] == 2
        assert result["assignments"][0]["route"] == ["Head north", "Turn left"]
        assert result["assignments"][0]["status"] == "DISPATCHED"

    def test_incident_is_stored_as_responding(self, db):
        result = asyncio.run(dispatch_and_shutdown(make_service(db), medical_report()))

        incident = db.snapshot()["incidents"][result["incidentId"]]
        assert incident["status"] == "RESPONDING"
        assert incident["priority"] == 1
        assert incident["reportedBy"] == "steward-7"
        assert len(incident["assignments"]) == 2

    def test_responders_are_notified_and_marked_dispatched(self, db):
        notifier = RecordingNotifier()
        result = asyncio.run(dispatch_and_shutdown(make_service(db, notifier), medical_report()))

        assert sorted(sms["to"] for sms in notifier.sms) == ["+1234567890", "+1234567891"]
        # demo responders have no FCM token
        assert notifier.pushes == []
        recipients = [email["to"] for email in notifier.emails]
        assert "command@venue.com" in recipients
        assert len(recipients) == 3

        responders = db.snapshot()["responders"]
        assert responders["resp_002"]["status"] == "dispatched"
        assert responders["resp_002"]["currentIncident"] == result["incidentId"]
        assert responders["resp_003"]["status"] == "available"

    def test_command_center_alert_is_recorded(self, db):
        asyncio.run(dispatch_and_shutdown(make_service(db), medical_report()))

        alerts = list(db.snapshot()["command_center"]["alerts"].values())
        assert len(alerts) == 1
        assert alerts[0]["type"] == "EMERGENCY_DISPATCH"
        assert alerts[0]["requiresAttention"] is True

    def test_push_sent_when_responder_has_token(self, db):
        responders = copy.deepcopy(DEMO_RESPONDERS)
        responders["resp_002"]["fcmToken"] = "token-2"
        db = MockRealtimeDatabase({"responders": responders})
        notifier = RecordingNotifier()

        asyncio.run(dispatch_and_shutdown(make_service(db, notifier), medical_report()))

        assert len(notifier.pushes) == 1
        assert notifier.pushes[0]["token"] == "token-2"
        assert notifier.pushes[0]["data"]["priority"] == "1"

    def test_no_available_responders_escalates(self):
        busy = {rid: {**data, "status": "busy"} for rid, data in DEMO_RESPONDERS.items()}
        db = MockRealtimeDatabase({"responders": busy})

        result = asyncio.run(dispatch_and_shutdown(make_service(db), medical_report()))

        assert result["success"] is False
        assert result["error"] == "No available responders"
        escalations = list(db.snapshot()["escalations"].values())
        assert escalations[0]["reason"] == "No available responders"
        assert escalations[0]["incidentId"] == result["incidentId"]

    def test_invalid_report_stores_nothing(self, db):
        with pytest.raises(InvalidIncidentError):
            asyncio.run(dispatch_and_shutdown(make_service(db), medical_report(type="NOPE")))

        assert "incidents" not in db.snapshot()

    def test_missing_channels_are_skipped(self, db):
        service = EmergencyDispatchService(
            incidents=IncidentRepository(db),
            responders=ResponderRepository(db),
            maps=FakeMaps(),
            channels=NotificationChannels(),
        )

        result = asyncio.run(dispatch_and_shutdown(service, medical_report()))

        assert result["success"] is True

    def test_responder_status_failure_does_not_abort_dispatch(self, db):
        notifier = RecordingNotifier()
        service = make_service(db, notifier)

        async def failing_update(*args, **kwargs):
            raise FirebaseError("rtdb down")

        service._responders.update_status = failing_update

        result = asyncio.run(dispatch_and_shutdown(service, medical_report()))

        assert result["success"] is True
        assert len(result["assignments"]) == 2
        assert len(notifier.sms) == 2
        snapshot = db.snapshot()
        assert snapshot["incidents"][result["incidentId"]]["status"] == "RESPONDING"
        assert len(snapshot["command_center"]["alerts"]) == 1
        assert snapshot["responders"]["resp_002"]["status"] == "available"


# ---------------------------------------------------------------------------
# Status updates and monitoring
# ---------------------------------------------------------------------------

class TestIncidentUpdates:

    def test_resolving_frees_responders(self, db):
        service = make_service(db)

        async def scenario():
            result = await service.dispatch(medical_report())
            incident = await service.update_status(result["incidentId"], "RESOLVED")
            await service.shutdown()
            return incident

        incident = asyncio.run(scenario())

        assert incident["status"] == "RESOLVED"
        assert db.snapshot()["incidents"][incident["id"]]["status"] == "RESOLVED"
        responders = db.snapshot()["responders"]
        assert responders["resp_001"]["status"] == "available"
        assert responders["resp_002"]["status"] == "available"

    def test_unknown_status_is_rejected(self, db):
        service = make_service(db)

        async def scenario():
            result = await service.dispatch(medical_report())
            try:
                await service.update_status(result["incidentId"], "PAUSED")
            finally:
                await service.shutdown()

        with pytest.raises(ValueError):
            asyncio.run(scenario())

    def test_unknown_incident(self, db):
        with pytest.raises(IncidentNotFoundError):
            asyncio.run(make_service(db).get_incident("INC-0-XXXX"))

    def test_assignment_progress_is_recorded(self, db):
        service = make_service(db)

        async def scenario():
            result = await service.dispatch(medical_report())
            try:
                return await service.update_assignment_status(result["incidentId"], "resp_001", "ARRIVED")
            finally:
                await service.shutdown()

        incident = asyncio.run(scenario())

        statuses = {a["responderId"]: a["status"] for a in incident["assignments"]}
        assert statuses == {"resp_002": "DISPATCHED", "resp_001": "ARRIVED"}


class TestResponseMonitor:

    def test_escalates_after_timeout(self, db):
        sleep = RecordingSleep()
        clock = iter([0.0, 100.0])
        service = make_service(
            db,
            sleep=sleep,
            monotonic=lambda: next(clock),
            monitor_interval_seconds=30,
            monitor_timeout_seconds=60,
        )
        incident = {"id": "INC-1-AAAA", "type": "FIRE"}

        async def scenario():
            await service.start_monitor(incident)

        asyncio.run(scenario())

        assert sleep.delays == [30]
        escalations = list(db.snapshot()["escalations"].values())
        assert escalations[0]["reason"] == "Response timeout"

    def test_escalation_failure_ends_monitor_quietly(self, db):
        clock = iter([0.0, 100.0])
        service = make_service(
            db,
            sleep=RecordingSleep(),
            monotonic=lambda: next(clock),
            monitor_interval_seconds=30,
            monitor_timeout_seconds=60,
        )

        async def failing_escalation(escalation):
            raise FirebaseError("rtdb down")

        service._incidents.add_escalation = failing_escalation

        async def scenario():
            task = service.start_monitor({"id": "INC-1-CCCC", "type": "FIRE"})
            await task
            return task

        task = asyncio.run(scenario())

        assert task.done()
        assert task.exception() is None
        assert service.active_monitors == 0
        assert "escalations" not in db.snapshot()

    def test_stops_when_incident_closed(self, db):
        sleep = RecordingSleep()
        service = make_service(db, sleep=sleep, monotonic=lambda: 0.0)
        incident = {"id": "INC-1-BBBB", "type": "FIRE", "status": "CANCELLED"}

        async def scenario():
            await IncidentRepository(db).save(incident)
            await service.start_monitor(incident)

        asyncio.run(scenario())

        assert len(sleep.delays) == 1
        assert "escalations" not in db.snapshot()


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

INCIDENT = {
    "id": "INC-1-ABCD",
    "type": "FIRE",
    "priority": 1,
    "location": {"lat": 1, "lng": 2, "description": "Stage <left>"},
    "reportedBy": "AI_SYSTEM",
    "timestamp": "2024-06-01T18:30:00+00:00",
    "status": "RESPONDING",
    "assignments": [{"responderName": "Fire Safety Team", "estimatedArrival": "3 mins"}],
}


class TestFormatting:

    def test_sms(self):
        sms = format_responder_sms(INCIDENT, {"duration": "3 mins"})

        assert "Type: FIRE" in sms
        assert "ETA: 3 mins" in sms
        assert "Incident ID: INC-1-ABCD" in sms

    def test_sms_without_route(self):
        assert "ETA: Unknown" in format_responder_sms(INCIDENT, None)

    def test_responder_email_escapes_html(self):
        html = format_responder_email({"name": "Team"}, INCIDENT, {"steps": ["Go <b>north</b>"]})

        assert "<li>Go &lt;b&gt;north&lt;/b&gt;</li>" in html
        assert "Stage &lt;left&gt;" in html

    def test_responder_email_default_route(self):
        html = format_responder_email({"name": "Team"}, INCIDENT, None)
        assert "<li>Navigate to incident location</li>" in html

    def test_command_center_email(self):
        html = format_command_center_email(INCIDENT)

        assert "<li>Fire Safety Team - ETA: 3 mins</li>" in html
        assert "2024-06-01 18:30:00 UTC" in html

    def test_command_center_email_without_assignments(self):
        html = format_command_center_email({**INCIDENT, "assignments": []})
        assert "No responders assigned" in html
