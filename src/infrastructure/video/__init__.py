"""
Video file inspection using FFprobe.
"""

from .processor import (
    ChunkInspector,
    FFprobeChunkInspector,
    InspectionError,
    VideoInfo,
    parse_ffprobe_output,
)

__all__ = [
    "ChunkInspector",
    "FFprobeChunkInspector",
    "InspectionError",
    "VideoInfo",
    "parse_ffprobe_output",
]
