"""
Unit tests for the Socket.IO relay.

The relay only needs on/emit/enter_room from the server, so a small fake
records handlers and emitted events.
"""

import asyncio

import pytest

from src.core.recording.registry import SessionRegistry
from src.realtime.events import DASHBOARD_ROOM, RealtimeRelay, device_room


class FakeSocketServer:

    def __init__(self):
        self.handlers = {}
        self.emitted = []
        self.rooms = {}

    def on(self, event, handler):
        self.handlers[event] = handler

    async def emit(self, event, data=None, to=None, room=None):
        self.emitted.append({"event": event, "data": data, "to": to, "room": room})

    async def enter_room(self, sid, room):
        self.rooms.setdefault(room, set()).add(sid)

    def events(self, name):
        return [e for e in self.emitted if e["event"] == name]


class FakeChunkAnalysis:

    def __init__(self):
        self.calls = []

    async def analyze(self, ref, sid=None):
        self.calls.append((ref, sid))


@pytest.fixture
def sio():
    return FakeSocketServer()


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def relay(sio, registry):
    return RealtimeRelay(sio, registry)


def fire(sio, event, sid, data=None):
    asyncio.run(sio.handlers[event](sid, data))


class TestRegistration:

    def test_all_handlers_registered(self, sio, relay):
        assert set(sio.handlers) == {
            "connect", "disconnect", "register-device", "register-dashboard",
            "start-stream", "video-frame", "chunk-uploaded", "stop-stream",
        }

    def test_register_device(self, sio, registry, relay):
        fire(sio, "register-device", "sid-1", {"deviceId": "cam-1", "sessionId": "s-1"})

        assert registry.get_device("cam-1").socket_id == "sid-1"
        assert "sid-1" in sio.rooms[device_room("cam-1")]
        event = sio.events("device-registered")[0]
        assert event["to"] == "sid-1"
        assert event["data"] == {"deviceId": "cam-1", "sessionId": "s-1"}

    def test_register_device_requires_id(self, sio, registry, relay):
        fire(sio, "register-device", "sid-1", {})

        assert registry.device_count == 0
        assert sio.events("error")[0]["to"] == "sid-1"

    @pytest.mark.parametrize("payload", ["cam-1", ["cam-1"], 42, {"deviceId": ["cam-1"]}])
    def test_register_device_rejects_malformed_payload(self, sio, registry, relay, payload):
        fire(sio, "register-device", "sid-1", payload)

        assert registry.device_count == 0
        assert sio.events("error")[0]["data"] == {"message": "deviceId is required"}

    def test_dashboard_receives_current_streams(self, sio, registry, relay):
        registry.start_stream("cam-1", "sid-1")
        registry.record_frame("cam-1", "frame-data", 4)

        fire(sio, "register-dashboard", "dash-1")

        assert "dash-1" in sio.rooms[DASHBOARD_ROOM]
        streams = sio.events("current-streams")[0]["data"]["streams"]
        assert streams[0]["deviceId"] == "cam-1"
        assert streams[0]["lastFrame"] == "frame-data"
        assert streams[0]["frameCount"] == 4


class TestStreaming:

    def test_stream_lifecycle_is_relayed_to_dashboard(self, sio, registry, relay):
        fire(sio, "start-stream", "sid-1", {"deviceId": "cam-1", "sessionId": "s-1"})
        fire(sio, "video-frame", "sid-1", {"deviceId": "cam-1", "frame": "jpeg", "frameNumber": 1, "timestamp": 5})
        fire(sio, "stop-stream", "sid-1", {"deviceId": "cam-1"})

        started = sio.events("stream-started")[0]
        assert started["room"] == DASHBOARD_ROOM
        assert started["data"]["sessionId"] == "s-1"

        frame = sio.events("video-frame")[0]["data"]
        assert frame["frame"] == "jpeg"
        assert "receivedAt" in frame

        assert sio.events("stream-stopped")[0]["data"] == {"deviceId": "cam-1"}
        assert registry.stream_count == 0

    def test_frames_for_unknown_streams_are_ignored(self, sio, relay):
        fire(sio, "video-frame", "sid-1", {"deviceId": "ghost", "frame": "jpeg"})

        assert sio.events("video-frame") == []

    def test_disconnect_cleans_up_and_notifies_dashboard(self, sio, registry, relay):
        fire(sio, "register-device", "sid-1", {"deviceId": "cam-1"})
        fire(sio, "start-stream", "sid-1", {"deviceId": "cam-1"})

        fire(sio, "disconnect", "sid-1")

        assert registry.device_count == 0
        assert registry.stream_count == 0
        assert sio.events("stream-stopped")[0]["data"] == {"deviceId": "cam-1"}

    @pytest.mark.parametrize("event", ["start-stream", "video-frame", "stop-stream"])
    def test_non_object_payloads_are_ignored(self, sio, registry, relay, event):
        fire(sio, event, "sid-1", "cam-1")
        fire(sio, event, "sid-1", [{"deviceId": "cam-1"}])

        assert registry.stream_count == 0
        assert sio.emitted == []

    def test_disconnect_stops_stream_started_for_other_device(self, sio, registry, relay):
        fire(sio, "register-device", "sid-1", {"deviceId": "cam-1"})
        fire(sio, "start-stream", "sid-x", {"deviceId": "cam-2"})

        fire(sio, "disconnect", "sid-x")

        assert registry.stream_count == 0
        assert registry.device_count == 1
        assert sio.events("stream-stopped")[0]["data"] == {"deviceId": "cam-2"}


class TestChunkUploaded:

    def test_counts_chunk_and_starts_analysis(self, sio, registry, relay):
        analysis = FakeChunkAnalysis()
        relay.attach_chunk_analysis(analysis)
        fire(sio, "register-device", "sid-1", {"deviceId": "cam-1"})

        fire(sio, "chunk-uploaded", "sid-1", {"deviceId": "cam-1", "sessionId": "s-1", "chunkId": "chunk_00001"})

        assert registry.get_device("cam-1").chunk_count == 1
        processing = sio.events("chunk-processing")
        assert processing[0]["to"] == "sid-1"
        assert processing[1]["room"] == DASHBOARD_ROOM
        ref, sid = analysis.calls[0]
        assert (ref.device_id, ref.session_id, ref.chunk_id) == ("cam-1", "s-1", "chunk_00001")
        assert sid == "sid-1"

    def test_bad_chunk_reference_reports_error(self, sio, relay):
        analysis = FakeChunkAnalysis()
        relay.attach_chunk_analysis(analysis)

        fire(sio, "chunk-uploaded", "sid-1", {"deviceId": "cam-1", "sessionId": "../etc", "chunkId": "c"})

        errors = sio.events("analysis-error")
        assert len(errors) == 2
        assert errors[0]["data"]["status"] == "error"
        assert analysis.calls == []

    def test_non_object_payload_reports_error(self, sio, registry, relay):
        analysis = FakeChunkAnalysis()
        relay.attach_chunk_analysis(analysis)

        fire(sio, "chunk-uploaded", "sid-1", ["cam-1", "s-1", "chunk_00001"])

        assert len(sio.events("analysis-error")) == 2
        assert analysis.calls == []
