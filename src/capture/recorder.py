"""
Segment recording with FFmpeg.

Each segment is its own ffmpeg process writing one MP4. Stopping sends
'q' on stdin so ffmpeg finalizes the container (moov atom) before exiting;
a killed process leaves an unplayable file.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from .config import CaptureConfig

logger = logging.getLogger(__name__)


class RecordingError(Exception):
    """Raised when a segment cannot be started or finalized."""
    pass


@dataclass
class RecordedSegment:
    """A finished segment on local disk."""
    path: Path
    started_at: datetime
    finished_at: datetime

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


class SegmentRecorder(Protocol):
    """Starts and stops one segment at a time."""

    @property
    def is_recording(self) -> bool:
        ...

    async def start_segment(self, path: Path) -> None:
        ...

    async def stop_segment(self) -> RecordedSegment:
        ...


def build_ffmpeg_command(config: CaptureConfig, output: Path) -> list[str]:
    """ffmpeg arguments for one segment: H.264, capped height, fixed fps and bitrate."""
    return [
        config.ffmpeg_path,
        "-hide_banner",
        "-loglevel", "error",
        "-y",
        "-f", config.input_format,
        "-framerate", str(config.fps),
        "-i", config.input_device,
        # keep aspect ratio, never upscale, even width for yuv420p
        "-vf", f"scale=-2:'min({config.max_height},ih)'",
        "-r", str(config.fps),
        "-c:v", "libx264",
        "-preset", "veryfast",
        "-pix_fmt", "yuv420p",
        "-b:v", str(config.bitrate),
        "-maxrate", str(config.bitrate),
        "-bufsize", str(config.bitrate * 2),
        "-movflags", "+faststart",
        "-an",
        str(output),
    ]


class FFmpegSegmentRecorder:
    """Records segments from a capture device through an ffmpeg subprocess."""

    def __init__(self, config: CaptureConfig, stop_timeout_seconds: float = 10.0) -> None:
        self._config = config
        self._stop_timeout = stop_timeout_seconds
        self._process: Optional[asyncio.subprocess.Process] = None
        self._path: Optional[Path] = None
        self._started_at: Optional[datetime] = None

    @property
    def is_recording(self) -> bool:
        return self._process is not None

    async def start_segment(self, path: Path) -> None:
        if self._process is not None:
            raise RecordingError("A segment is already recording")

        path.parent.mkdir(parents=True, exist_ok=True)
        command = build_ffmpeg_command(self._config, path)

        try:
            self._process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise RecordingError(f"ffmpeg not found at {self._config.ffmpeg_path}")

        self._path = path
        self._started_at = datetime.now(timezone.utc)
        logger.debug("Segment recording started", extra={"path": str(path)})

    async def stop_segment(self) -> RecordedSegment:
        process, path, started_at = self._process, self._path, self._started_at
        if process is None or path is None or started_at is None:
            raise RecordingError("No segment is recording")

        self._process = self._path = self._started_at = None

        try:
            _, stderr = await asyncio.wait_for(process.communicate(b"q"), timeout=self._stop_timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise RecordingError(f"ffmpeg did not stop within {self._stop_timeout}s, segment discarded")

        if not path.exists() or path.stat().st_size == 0:
            message = (stderr or b"").decode(errors="replace").strip()
            raise RecordingError(f"Segment {path.name} is empty: {message or 'no output'}")

        segment = RecordedSegment(path=path, started_at=started_at, finished_at=datetime.now(timezone.utc))
        logger.debug(
            "Segment recording finished",
            extra={"path": str(path), "duration_seconds": round(segment.duration_seconds, 2)}
        )
        return segment
