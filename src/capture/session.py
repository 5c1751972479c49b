"""
Chunked recording session.

A timer restarts recording every segment_seconds. Each restart finishes
the current segment, hands it to the uploader as a background task and,
after a short gap, starts the next segment, so uploads run while the
next chunk records.

Chunk indices are assigned when a segment finishes, so two uploads in
flight at the same time never share an index.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from .config import CaptureConfig
from .recorder import RecordedSegment, RecordingError, SegmentRecorder
from .uploader import ChunkUploader, UploadError

logger = logging.getLogger(__name__)


@dataclass
class SessionSummary:
    session_id: str
    chunks_recorded: int
    chunks_uploaded: int
    failed_chunk_ids: list[str] = field(default_factory=list)
    skipped_restarts: int = 0


class CaptureSession:
    """Drives a SegmentRecorder on a timer and uploads every finished segment."""

    def __init__(
        self,
        config: CaptureConfig,
        recorder: SegmentRecorder,
        uploader: ChunkUploader,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._recorder = recorder
        self._uploader = uploader
        self._sleep = sleep

        self.session_id: Optional[str] = None
        self._segment_number = 0
        self._next_chunk_index = 0
        self._segment_metadata: dict[str, Any] = {}
        self._timer: Optional[asyncio.Task] = None
        self._restart_task: Optional[asyncio.Task] = None
        self._pending: set[asyncio.Task] = set()
        self._stopping = False
        self._restarting = False

        self.uploaded: list[str] = []
        self.failed: list[str] = []
        self.skipped_restarts = 0

    @property
    def is_running(self) -> bool:
        return self.session_id is not None and not self._stopping

    @property
    def pending_uploads(self) -> int:
        return len(self._pending)

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    async def start(self) -> str:
        if self.session_id is not None:
            raise RuntimeError("Capture session already started")

        self.session_id = await self._uploader.start_recording()
        self._config.output_dir.mkdir(parents=True, exist_ok=True)
        await self._start_segment()
        self._timer = asyncio.create_task(self._run_timer())

        logger.info(
            "Capture started",
            extra={"session_id": self.session_id, "segment_seconds": self._config.segment_seconds}
        )
        return self.session_id

    async def stop(self) -> SessionSummary:
        """Finish the last segment, wait for every upload, close the session."""
        if self.session_id is None:
            raise RuntimeError("Capture session was never started")

        self._stopping = True

        if self._timer is not None:
            self._timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer
            self._timer = None

        if self._restart_task is not None and not self._restart_task.done():
            await self._restart_task

        if self._recorder.is_recording:
            try:
                self._hand_off(await self._recorder.stop_segment())
            except RecordingError as e:
                logger.error("Final segment lost", extra={"error": str(e)})

        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

        try:
            await self._uploader.stop_recording(self.session_id)
        except UploadError as e:
            logger.error("Failed to close session on backend", extra={"error": str(e)})

        summary = SessionSummary(
            session_id=self.session_id,
            chunks_recorded=self._next_chunk_index,
            chunks_uploaded=len(self.uploaded),
            failed_chunk_ids=list(self.failed),
            skipped_restarts=self.skipped_restarts,
        )
        logger.info(
            "Capture stopped",
            extra={
                "session_id": summary.session_id,
                "chunks_recorded": summary.chunks_recorded,
                "chunks_uploaded": summary.chunks_uploaded,
                "chunks_failed": len(summary.failed_chunk_ids),
            }
        )
        return summary

    # -----------------------------------------------------------------------
    # Segments
    # -----------------------------------------------------------------------

    async def _run_timer(self) -> None:
        while True:
            await self._sleep(self._config.segment_seconds)
            self._restart_task = asyncio.ensure_future(self.restart_segment())
            # shielded so stop() cancelling the timer never interrupts a restart
            await asyncio.shield(self._restart_task)

    async def restart_segment(self) -> bool:
        """
        Finish the current segment and start the next one.

        Returns False when skipped because a restart is already running
        or the session is stopping.
        """
        if self._restarting:
            self.skipped_restarts += 1
            logger.debug("Restart skipped, previous restart still running")
            return False
        if self._stopping or not self._recorder.is_recording:
            return False

        self._restarting = True
        try:
            try:
                self._hand_off(await self._recorder.stop_segment())
            except RecordingError as e:
                logger.error("Segment could not be finalized", extra={"error": str(e)})

            await self._sleep(self._config.restart_gap_seconds)
            if self._stopping:
                return True

            try:
                await self._start_segment()
            except RecordingError as e:
                logger.error("Next segment could not start", extra={"error": str(e)})
            return True
        finally:
            self._restarting = False

    async def _start_segment(self) -> None:
        self._segment_number += 1
        path = self._config.output_dir / f"{self.session_id}_{self._segment_number:05d}.mp4"
        # captured at start, like the device state it describes
        self._segment_metadata = self._metadata()
        await self._recorder.start_segment(path)

    def _metadata(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "deviceId": self._config.device_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "deviceInfo": self._config.device_info(),
            "cameraInfo": {
                "id": self._config.input_device,
                "position": "external",
            },
            "recordingSettings": self._config.recording_settings(),
        }
        if self._config.location:
            metadata["location"] = self._config.location
        return metadata

    def _hand_off(self, segment: RecordedSegment) -> None:
        """Assign the next chunk index and upload the segment in the background."""
        index = self._next_chunk_index
        self._next_chunk_index += 1

        chunk_id = f"chunk_{index:05d}_{int(segment.finished_at.timestamp() * 1000)}"
        metadata = {
            **self._segment_metadata,
            "chunkIndex": index,
            "chunkTimestamp": segment.finished_at.isoformat(),
            "durationSeconds": round(segment.duration_seconds, 3),
        }

        task = asyncio.create_task(self._upload(segment, chunk_id, metadata))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _upload(self, segment: RecordedSegment, chunk_id: str, metadata: dict[str, Any]) -> None:
        try:
            await self._uploader.upload_chunk(segment.path, self.session_id, chunk_id, metadata)
        except Exception as e:
            # the file stays on disk for a later retry
            logger.error(
                "Chunk upload failed",
                extra={"chunk_id": chunk_id, "path": str(segment.path), "error": str(e)}
            )
            self.failed.append(chunk_id)
            return
        self.uploaded.append(chunk_id)
