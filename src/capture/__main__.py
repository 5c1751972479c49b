"""
Record and upload chunks until interrupted.

    python -m src.capture --backend-url http://localhost:3001 --api-key dev-key-1

Settings not given on the command line are read from HEIMDALL_*
environment variables (and a .env file).
"""

import argparse
import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .config import CaptureConfig
from .recorder import FFmpegSegmentRecorder, RecordingError
from .session import CaptureSession
from .uploader import ChunkUploader, UploadError

logger = logging.getLogger("src.capture")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Record video in chunks and upload them to the backend")
    parser.add_argument("--backend-url", help="Backend base URL")
    parser.add_argument("--api-key", help="Value for the X-API-Key header")
    parser.add_argument("--device-id", help="Stable device id (random by default)")
    parser.add_argument("--input", dest="input_device", help="Capture device, e.g. /dev/video0")
    parser.add_argument("--input-format", help="ffmpeg input format, e.g. v4l2 or avfoundation")
    parser.add_argument("--ffmpeg", dest="ffmpeg_path", help="Path to the ffmpeg binary")
    parser.add_argument("--output-dir", type=Path, help="Where segments are written before upload")
    parser.add_argument("--segment-seconds", type=float, help="Chunk length in seconds")
    parser.add_argument("--duration", type=float, help="Stop after this many seconds")
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> CaptureConfig:
    return CaptureConfig.from_env(
        backend_url=args.backend_url,
        api_key=args.api_key,
        device_id=args.device_id,
        input_device=args.input_device,
        input_format=args.input_format,
        ffmpeg_path=args.ffmpeg_path,
        output_dir=args.output_dir,
        segment_seconds=args.segment_seconds,
    )


async def run(config: CaptureConfig, duration: Optional[float] = None) -> int:
    uploader = ChunkUploader(config)
    session = CaptureSession(config, FFmpegSegmentRecorder(config), uploader)

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C raises instead
            pass

    try:
        await session.start()
    except (UploadError, RecordingError) as e:
        logger.error("Could not start recording session: %s", e)
        await uploader.aclose()
        return 1

    try:
        await asyncio.wait_for(stop_requested.wait(), timeout=duration)
    except asyncio.TimeoutError:
        pass

    try:
        summary = await session.stop()
    finally:
        await uploader.aclose()

    logger.info(
        "Session %s: %d chunks recorded, %d uploaded, %d failed",
        summary.session_id,
        summary.chunks_recorded,
        summary.chunks_uploaded,
        len(summary.failed_chunk_ids),
    )
    return 0 if not summary.failed_chunk_ids else 2


def main(argv=None) -> int:
    load_dotenv()
    args = parse_args(argv)
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=args.log_level.upper(),
    )
    return asyncio.run(run(build_config(args), args.duration))


if __name__ == "__main__":
    raise SystemExit(main())
