"""
In-memory bookkeeping for recording sessions, devices and live streams.

The registry is shared by the HTTP routes (start/stop recording, chunk
uploads) and the realtime relay (device registration, frame streaming).
All mutation happens on the event loop, so no locking is needed.
"""

import logging
from typing import Any, Optional
from uuid import uuid4

from .models import ChunkRecord, DeviceSession, RecordingSession, StreamState, utcnow

logger = logging.getLogger(__name__)


class SessionNotFoundError(Exception):
    """Raised when a requested recording session doesn't exist."""
    pass


class SessionRegistry:
    """
    Tracks who is recording and how many chunks each session produced.

    Three maps, mirroring the three things a client can be doing:
    - recording sessions (HTTP start/stop + chunk uploads)
    - registered devices (realtime channel)
    - active preview streams (realtime channel)
    """

    def __init__(self) -> None:
        self._recordings: dict[str, RecordingSession] = {}
        self._devices: dict[str, DeviceSession] = {}
        self._streams: dict[str, StreamState] = {}

    # -----------------------------------------------------------------------
    # Recording sessions
    # -----------------------------------------------------------------------

    def start_recording(self, device_id: Optional[str] = None) -> RecordingSession:
        """Open a new recording session with a fresh id."""
        session = RecordingSession(session_id=str(uuid4()), device_id=device_id)
        self._recordings[session.session_id] = session

        logger.info(
            "Recording session started",
            extra={"session_id": session.session_id, "device_id": device_id}
        )
        return session

    def stop_recording(self, session_id: str) -> RecordingSession:
        """Close a session. Stopping twice keeps the first stop time."""
        session = self.get_recording(session_id)
        if session.stopped_at is None:
            session.stopped_at = utcnow()

        logger.info(
            "Recording session stopped",
            extra={"session_id": session_id, "chunk_count": session.chunk_count}
        )
        return session

    def get_recording(self, session_id: str) -> RecordingSession:
        session = self._recordings.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Recording session not found: {session_id}")
        return session

    def record_chunk(self, chunk: ChunkRecord) -> RecordingSession:
        """
        Count a received chunk against its session.

        Clients that upload without calling start-recording first still get
        a session so their chunks are counted.
        """
        ref = chunk.ref
        session = self._recordings.get(ref.session_id)
        if session is None:
            session = RecordingSession(session_id=ref.session_id, device_id=ref.device_id)
            self._recordings[ref.session_id] = session
            logger.info(
                "Implicit recording session created by chunk upload",
                extra={"session_id": ref.session_id, "device_id": ref.device_id}
            )

        if session.device_id is None:
            session.device_id = ref.device_id
        session.chunk_count += 1
        session.bytes_received += chunk.size_bytes
        session.last_chunk_id = ref.chunk_id

        device = self._devices.get(ref.device_id)
        if device is not None:
            device.last_activity = chunk.received_at
            camera_info = chunk.metadata.get("cameraInfo")
            if camera_info:
                device.camera_info = camera_info

        return session

    @property
    def active_recording_count(self) -> int:
        return sum(1 for s in self._recordings.values() if s.is_active)

    # -----------------------------------------------------------------------
    # Devices
    # -----------------------------------------------------------------------

    def register_device(
        self,
        device_id: str,
        socket_id: str,
        session_id: Optional[str] = None,
    ) -> DeviceSession:
        """Register (or re-register) a device on a realtime connection."""
        device = DeviceSession(device_id=device_id, socket_id=socket_id, session_id=session_id)
        self._devices[device_id] = device

        logger.info(
            "Device registered",
            extra={"device_id": device_id, "socket_id": socket_id, "session_id": session_id}
        )
        return device

    def get_device(self, device_id: str) -> Optional[DeviceSession]:
        return self._devices.get(device_id)

    def increment_device_chunks(self, device_id: str) -> Optional[int]:
        """Bump a device's chunk counter. Returns the new count, None if unknown."""
        device = self._devices.get(device_id)
        if device is None:
            return None
        device.chunk_count += 1
        device.last_activity = utcnow()
        return device.chunk_count

    def unregister_socket(self, socket_id: str) -> list[str]:
        """
        Drop the devices and streams owned by a disconnected socket.

        Returns the affected device ids so the caller can notify dashboards.
        """
        removed = [
            device_id for device_id, device in self._devices.items()
            if device.socket_id == socket_id
        ]
        for device_id in removed:
            del self._devices[device_id]
            self._streams.pop(device_id, None)

        # streams started on this socket for a device registered elsewhere
        orphaned = [
            device_id for device_id, stream in self._streams.items()
            if stream.socket_id == socket_id
        ]
        for device_id in orphaned:
            del self._streams[device_id]
        removed.extend(orphaned)

        if removed:
            logger.info(
                "Socket disconnected, devices removed",
                extra={"socket_id": socket_id, "device_ids": removed}
            )
        return removed

    @property
    def device_count(self) -> int:
        return len(self._devices)

    def device_info(self, device_id: str) -> Optional[dict[str, Any]]:
        """Snapshot of a registered device, or None."""
        device = self._devices.get(device_id)
        if device is None:
            return None
        return {
            "deviceId": device.device_id,
            "sessionId": device.session_id,
            "startTime": device.start_time,
            "chunkCount": device.chunk_count,
            "isStreaming": device.is_streaming,
            "lastActivity": device.last_activity or device.start_time,
            "cameraInfo": device.camera_info,
        }

    # -----------------------------------------------------------------------
    # Live streams
    # -----------------------------------------------------------------------

    def start_stream(
        self,
        device_id: str,
        socket_id: str,
        session_id: Optional[str] = None,
    ) -> StreamState:
        stream = StreamState(device_id=device_id, socket_id=socket_id, session_id=session_id)
        self._streams[device_id] = stream

        device = self._devices.get(device_id)
        if device is not None:
            device.is_streaming = True
        return stream

    def record_frame(self, device_id: str, frame: Any, frame_number: int) -> Optional[StreamState]:
        """Store the latest frame. Frames for streams that never started are dropped."""
        stream = self._streams.get(device_id)
        if stream is None:
            return None

        now = utcnow()
        stream.last_frame = frame
        stream.frame_count = frame_number
        stream.last_frame_time = now

        device = self._devices.get(device_id)
        if device is not None:
            device.last_frame_time = now
        return stream

    def stop_stream(self, device_id: str) -> bool:
        """Remove an active stream. Returns False if there was none."""
        stream = self._streams.pop(device_id, None)

        device = self._devices.get(device_id)
        if device is not None:
            device.is_streaming = False
        return stream is not None

    @property
    def stream_count(self) -> int:
        return len(self._streams)

    def active_streams(self, include_last_frame: bool = False) -> list[dict[str, Any]]:
        """Summaries of active streams for dashboards and the streams endpoint."""
        streams = []
        for device_id, stream in self._streams.items():
            entry = {
                "deviceId": device_id,
                "sessionId": stream.session_id,
                "startTime": stream.start_time,
                "isActive": stream.is_active,
                "frameCount": stream.frame_count,
                "lastUpdate": stream.last_frame_time or stream.start_time,
            }
            if include_last_frame:
                entry["lastFrame"] = stream.last_frame
            streams.append(entry)
        return streams
