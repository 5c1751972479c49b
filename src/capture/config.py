"""
Capture client configuration.

Values come from command-line arguments, falling back to environment
variables (a .env file is loaded first) and then to defaults.
"""

import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
from uuid import uuid4


@dataclass
class CaptureConfig:
    """
    Everything a capture session needs.

    The recording defaults match what the backend analysis expects:
    H.264 MP4 at up to 720p, 30 fps, 2 Mbit/s, in 10 second chunks.
    """
    backend_url: str = "http://localhost:3001"
    api_key: Optional[str] = None
    device_id: str = field(default_factory=lambda: str(uuid4()))

    # Recording
    input_device: str = "/dev/video0"
    input_format: str = "v4l2"
    ffmpeg_path: str = "ffmpeg"
    output_dir: Path = Path("capture-segments")
    segment_seconds: float = 10.0
    restart_gap_seconds: float = 0.25
    max_height: int = 720
    fps: int = 30
    bitrate: int = 2_000_000
    codec: str = "h264"

    # Upload
    upload_attempts: int = 3
    upload_backoff_seconds: float = 1.0
    upload_backoff_max_seconds: float = 10.0
    upload_timeout_seconds: float = 60.0

    # Optional context sent with every chunk
    location: Optional[dict[str, float]] = None

    def __post_init__(self) -> None:
        if self.segment_seconds <= 0:
            raise ValueError("segment_seconds must be positive")
        self.backend_url = self.backend_url.rstrip("/")
        self.output_dir = Path(self.output_dir)

    @classmethod
    def from_env(cls, **overrides: Any) -> "CaptureConfig":
        """Build from HEIMDALL_* environment variables; None overrides are ignored."""
        env: dict[str, Any] = {}
        if os.getenv("HEIMDALL_BACKEND_URL"):
            env["backend_url"] = os.environ["HEIMDALL_BACKEND_URL"]
        if os.getenv("HEIMDALL_API_KEY"):
            env["api_key"] = os.environ["HEIMDALL_API_KEY"]
        if os.getenv("HEIMDALL_DEVICE_ID"):
            env["device_id"] = os.environ["HEIMDALL_DEVICE_ID"]
        if os.getenv("HEIMDALL_INPUT_DEVICE"):
            env["input_device"] = os.environ["HEIMDALL_INPUT_DEVICE"]
        if os.getenv("HEIMDALL_INPUT_FORMAT"):
            env["input_format"] = os.environ["HEIMDALL_INPUT_FORMAT"]
        if os.getenv("HEIMDALL_SEGMENT_SECONDS"):
            env["segment_seconds"] = float(os.environ["HEIMDALL_SEGMENT_SECONDS"])

        env.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**env)

    @property
    def headers(self) -> dict[str, str]:
        return {"X-API-Key": self.api_key} if self.api_key else {}

    def recording_settings(self) -> dict[str, Any]:
        return {
            "codec": self.codec,
            "quality": f"{self.max_height}p",
            "bitrate": self.bitrate,
            "fps": self.fps,
        }

    def device_info(self) -> dict[str, Any]:
        return {
            "brand": platform.system(),
            "model": platform.machine(),
            "os": platform.system(),
            "osVersion": platform.release(),
        }
