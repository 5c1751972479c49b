"""
Chunk inspection with FFprobe.

After a chunk lands on disk we can read its container metadata
(duration, resolution, frame rate) to spot truncated segments, which
happen when a capture client stops recording mid-write.
"""

import asyncio
import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class InspectionError(Exception):
    """Raised when ffprobe cannot read a chunk."""
    pass


@dataclass
class VideoInfo:
    """Video metadata extracted via FFprobe."""
    duration_seconds: float
    width: int
    height: int
    fps: float
    codec: str
    file_size_bytes: int

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


class ChunkInspector(Protocol):
    """Protocol for reading chunk metadata."""

    async def inspect(self, path: Path) -> VideoInfo:
        ...


def parse_frame_rate(value: str) -> float:
    """Parse ffprobe's r_frame_rate, which can be a fraction like '30000/1001'."""
    if "/" in value:
        num, denom = value.split("/", 1)
        if float(denom) == 0:
            return 0.0
        return float(num) / float(denom)
    return float(value)


def parse_ffprobe_output(info: dict, file_size_bytes: int) -> VideoInfo:
    """Turn ffprobe's JSON output into VideoInfo."""
    video_stream = None
    for stream in info.get("streams", []):
        if stream.get("codec_type") == "video":
            video_stream = stream
            break

    if not video_stream:
        raise InspectionError("No video stream found")

    fps = parse_frame_rate(video_stream.get("r_frame_rate", "30/1"))

    # format duration is more reliable for mp4, streams sometimes omit it
    duration = float(info.get("format", {}).get("duration", 0) or 0)
    if duration == 0:
        duration = float(video_stream.get("duration", 0) or 0)

    return VideoInfo(
        duration_seconds=duration,
        width=int(video_stream.get("width", 0)),
        height=int(video_stream.get("height", 0)),
        fps=fps,
        codec=video_stream.get("codec_name", "unknown"),
        file_size_bytes=file_size_bytes,
    )


class FFprobeChunkInspector:
    """Reads chunk metadata by running ffprobe on the permanent file."""

    def __init__(self, ffprobe_path: str = "ffprobe", timeout_seconds: float = 30.0):
        self._ffprobe = ffprobe_path
        self._timeout = timeout_seconds

    async def inspect(self, path: Path) -> VideoInfo:
        cmd = [
            self._ffprobe,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(path),
        ]

        try:
            result = await asyncio.to_thread(
                subprocess.run,
                cmd,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except FileNotFoundError:
            raise InspectionError(f"ffprobe not found at {self._ffprobe}")
        except subprocess.TimeoutExpired:
            raise InspectionError(f"ffprobe timed out on {path}")

        if result.returncode != 0:
            raise InspectionError(f"FFprobe failed: {result.stderr}")

        try:
            info = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise InspectionError(f"Unreadable ffprobe output: {e}")

        video_info = parse_ffprobe_output(info, Path(path).stat().st_size)

        logger.debug(
            "Inspected chunk",
            extra={
                "path": str(path),
                "duration": video_info.duration_seconds,
                "resolution": video_info.resolution,
                "fps": video_info.fps,
            }
        )
        return video_info
