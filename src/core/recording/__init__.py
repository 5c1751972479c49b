"""
Chunked recording bookkeeping: sessions, devices, streams and chunks.
"""

from .models import (
    ChunkRecord,
    ChunkRef,
    DeviceSession,
    RecordingSession,
    StreamState,
    validate_path_component,
)
from .registry import SessionNotFoundError, SessionRegistry

__all__ = [
    "ChunkRecord",
    "ChunkRef",
    "DeviceSession",
    "RecordingSession",
    "StreamState",
    "validate_path_component",
    "SessionNotFoundError",
    "SessionRegistry",
]
