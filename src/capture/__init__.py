"""
Capture client: records fixed-length segments and uploads each one to the
backend while the next segment is recording.
"""

from .config import CaptureConfig
from .recorder import FFmpegSegmentRecorder, RecordedSegment, RecordingError, SegmentRecorder
from .session import CaptureSession, SessionSummary
from .uploader import ChunkUploader, RetryableUploadError, UploadError

__all__ = [
    "CaptureConfig",
    "CaptureSession",
    "ChunkUploader",
    "FFmpegSegmentRecorder",
    "RecordedSegment",
    "RecordingError",
    "RetryableUploadError",
    "SegmentRecorder",
    "SessionSummary",
    "UploadError",
]
