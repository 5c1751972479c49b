"""
Socket.IO event handlers.

Devices register, stream preview frames and announce uploaded chunks;
dashboards join the "dashboard" room and receive everything devices send
plus analysis results. The relay also implements the analysis event
publisher so the chunk pipeline can reach the uploading socket.

Client -> server events:
    register-device, register-dashboard, start-stream, video-frame,
    chunk-uploaded, stop-stream

Server -> client events:
    device-registered, current-streams, stream-started, video-frame,
    chunk-processing, analysis-status, analysis-result, analysis-error,
    security-alert, stream-stopped
"""

import logging
from typing import Any, Optional

import socketio
from fastapi.encoders import jsonable_encoder

from ..core.analysis.chunks import ChunkAnalysisService
from ..core.recording.models import ChunkRef, utcnow
from ..core.recording.registry import SessionRegistry

logger = logging.getLogger(__name__)

DASHBOARD_ROOM = "dashboard"

# Video frames arrive as base64 JPEGs
MAX_HTTP_BUFFER_SIZE = 100_000_000


def create_socket_server(cors_origins: Any = "*") -> socketio.AsyncServer:
    return socketio.AsyncServer(
        async_mode="asgi",
        cors_allowed_origins=cors_origins,
        max_http_buffer_size=MAX_HTTP_BUFFER_SIZE,
    )


def device_room(device_id: str) -> str:
    return f"device-{device_id}"


def event_payload(data: Any) -> dict[str, Any]:
    """Client payloads are untrusted; anything but an object counts as empty."""
    return data if isinstance(data, dict) else {}


def payload_device_id(data: dict[str, Any]) -> Optional[str]:
    device_id = data.get("deviceId")
    return device_id if isinstance(device_id, str) and device_id else None


class RealtimeRelay:
    """
    Registers the event handlers on an AsyncServer and relays events.

    Chunk analysis is attached after construction because the analysis
    service itself publishes through this relay.
    """

    def __init__(self, sio: socketio.AsyncServer, registry: SessionRegistry) -> None:
        self.sio = sio
        self._registry = registry
        self._chunk_analysis: Optional[ChunkAnalysisService] = None
        self._register_handlers()

    def attach_chunk_analysis(self, service: ChunkAnalysisService) -> None:
        self._chunk_analysis = service

    # -----------------------------------------------------------------------
    # EventPublisher
    # -----------------------------------------------------------------------

    async def emit_to_client(self, event: str, data: dict[str, Any], sid: Optional[str]) -> None:
        if sid is None:
            return
        await self.sio.emit(event, jsonable_encoder(data), to=sid)

    async def emit_to_dashboard(self, event: str, data: dict[str, Any]) -> None:
        await self.sio.emit(event, jsonable_encoder(data), room=DASHBOARD_ROOM)

    async def broadcast(self, event: str, data: dict[str, Any]) -> None:
        await self.sio.emit(event, jsonable_encoder(data))

    # -----------------------------------------------------------------------
    # Handlers
    # -----------------------------------------------------------------------

    def _register_handlers(self) -> None:
        self.sio.on("connect", self.on_connect)
        self.sio.on("disconnect", self.on_disconnect)
        self.sio.on("register-device", self.on_register_device)
        self.sio.on("register-dashboard", self.on_register_dashboard)
        self.sio.on("start-stream", self.on_start_stream)
        self.sio.on("video-frame", self.on_video_frame)
        self.sio.on("chunk-uploaded", self.on_chunk_uploaded)
        self.sio.on("stop-stream", self.on_stop_stream)

    async def on_connect(self, sid: str, environ: dict, auth: Any = None) -> None:
        logger.info("Client connected", extra={"sid": sid})

    async def on_disconnect(self, sid: str, *args: Any) -> None:
        logger.info("Client disconnected", extra={"sid": sid})
        for device_id in self._registry.unregister_socket(sid):
            await self.emit_to_dashboard("stream-stopped", {"deviceId": device_id})

    async def on_register_device(self, sid: str, data: Any = None) -> None:
        data = event_payload(data)
        device_id = payload_device_id(data)
        if not device_id:
            await self.emit_to_client("error", {"message": "deviceId is required"}, sid)
            return

        session_id = data.get("sessionId")
        self._registry.register_device(device_id, sid, session_id)
        await self.sio.enter_room(sid, device_room(device_id))
        await self.emit_to_client("device-registered", {"deviceId": device_id, "sessionId": session_id}, sid)

    async def on_register_dashboard(self, sid: str, data: Any = None) -> None:
        await self.sio.enter_room(sid, DASHBOARD_ROOM)
        logger.info("Dashboard client registered", extra={"sid": sid})
        await self.emit_to_client(
            "current-streams",
            {"streams": self._registry.active_streams(include_last_frame=True)},
            sid,
        )

    async def on_start_stream(self, sid: str, data: Any = None) -> None:
        data = event_payload(data)
        device_id = payload_device_id(data)
        if not device_id:
            return

        stream = self._registry.start_stream(device_id, sid, data.get("sessionId"))
        logger.info("Stream started", extra={"device_id": device_id})
        await self.emit_to_dashboard("stream-started", {
            "deviceId": device_id,
            "sessionId": stream.session_id,
            "startTime": stream.start_time,
        })

    async def on_video_frame(self, sid: str, data: Any = None) -> None:
        data = event_payload(data)
        device_id = payload_device_id(data)
        frame_number = data.get("frameNumber", 0)

        if self._registry.record_frame(device_id, data.get("frame"), frame_number) is None:
            return

        logger.debug("Frame received", extra={"device_id": device_id, "frame_number": frame_number})
        await self.emit_to_dashboard("video-frame", {
            "deviceId": device_id,
            "frame": data.get("frame"),
            "timestamp": data.get("timestamp"),
            "frameNumber": frame_number,
            "receivedAt": utcnow().isoformat(),
        })

    async def on_chunk_uploaded(self, sid: str, data: Any = None) -> None:
        data = event_payload(data)
        chunk_id = data.get("chunkId")
        device_id = payload_device_id(data)

        self._registry.increment_device_chunks(device_id)
        logger.info("Processing chunk", extra={"chunk_id": chunk_id, "device_id": device_id})

        await self.emit_to_client("chunk-processing", {"chunkId": chunk_id, "status": "processing"}, sid)
        await self.emit_to_dashboard(
            "chunk-processing",
            {"deviceId": device_id, "chunkId": chunk_id, "status": "processing"},
        )

        try:
            ref = ChunkRef(device_id=device_id, session_id=data.get("sessionId"), chunk_id=chunk_id)
        except (TypeError, ValueError) as e:
            error = {"chunkId": chunk_id, "deviceId": device_id, "status": "error", "error": str(e)}
            await self.emit_to_client("analysis-error", error, sid)
            await self.emit_to_dashboard("analysis-error", error)
            return

        if self._chunk_analysis is not None:
            await self._chunk_analysis.analyze(ref, sid)

    async def on_stop_stream(self, sid: str, data: Any = None) -> None:
        data = event_payload(data)
        device_id = payload_device_id(data)
        if not device_id:
            return
        self._registry.stop_stream(device_id)
        logger.info("Stream stopped", extra={"device_id": device_id})
        await self.emit_to_dashboard("stream-stopped", {"deviceId": device_id})
