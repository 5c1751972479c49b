"""
Domain models for chunked recording.

A capture client records fixed-duration chunks and uploads each one while
the next is already recording. These models describe what the backend
knows about that activity: recording sessions, connected devices, live
frame streams and the chunks that arrived.

No framework imports here; the API and realtime layers translate these
into JSON.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


CHUNK_ID_PATTERN = re.compile(r"[A-Za-z0-9_-][A-Za-z0-9_.-]*")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_path_component(value: str, name: str) -> str:
    """
    Check that an identifier is safe to use as a file or object path segment.

    Device, session and chunk ids all end up in paths like
    uploads/<device>/<session>/<chunk>.mp4, so separators and '..' are
    rejected.
    """
    if not value or not CHUNK_ID_PATTERN.fullmatch(value) or ".." in value:
        raise ValueError(f"Invalid {name}: {value!r}")
    return value


@dataclass
class RecordingSession:
    """
    One continuous recording run.

    The session id groups every chunk the client uploads until it stops.
    """
    session_id: str
    device_id: Optional[str] = None
    started_at: datetime = field(default_factory=utcnow)
    stopped_at: Optional[datetime] = None
    chunk_count: int = 0
    bytes_received: int = 0
    last_chunk_id: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.stopped_at is None


@dataclass
class DeviceSession:
    """A capture device registered over the realtime channel."""
    device_id: str
    socket_id: str
    session_id: Optional[str] = None
    start_time: datetime = field(default_factory=utcnow)
    chunk_count: int = 0
    is_streaming: bool = False
    last_activity: Optional[datetime] = None
    last_frame_time: Optional[datetime] = None
    camera_info: Optional[dict[str, Any]] = None


@dataclass
class StreamState:
    """Live preview frames relayed from a device to dashboards."""
    device_id: str
    socket_id: str
    session_id: Optional[str] = None
    start_time: datetime = field(default_factory=utcnow)
    is_active: bool = True
    last_frame: Optional[str] = None
    frame_count: int = 0
    last_frame_time: Optional[datetime] = None


@dataclass(frozen=True)
class ChunkRef:
    """Identifies a chunk independent of where its bytes currently live."""
    device_id: str
    session_id: str
    chunk_id: str

    def __post_init__(self) -> None:
        validate_path_component(self.device_id, "deviceId")
        validate_path_component(self.session_id, "sessionId")
        validate_path_component(self.chunk_id, "chunkId")

    @property
    def filename(self) -> str:
        return f"{self.chunk_id}.mp4"


@dataclass
class ChunkRecord:
    """
    A chunk received by the backend.

    local_path is the permanent file under the uploads directory (None once
    removed after a cloud upload), cloud_path the object name in the bucket
    (None while the chunk only exists locally).
    """
    ref: ChunkRef
    size_bytes: int
    local_path: Optional[Path] = None
    cloud_path: Optional[str] = None
    chunk_index: Optional[int] = None
    received_at: datetime = field(default_factory=utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)
