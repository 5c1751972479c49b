"""
Local file lifecycle for uploaded chunks.

A chunk moves through three places:
1. temp: uploads/tmp/<uuid>.part while the multipart body streams in
2. permanent: uploads/<device>/<session>/<chunk>.mp4 once fully received
3. cloud: streams/<device>/<session>/<chunk>.mp4 in the bucket

Cloud upload is retried with exponential backoff. If every attempt fails
the chunk stays local and the upload is still reported as received.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Protocol
from uuid import uuid4

from ...core.recording.models import ChunkRecord, ChunkRef
from ...core.retry import retry_async
from .client import StorageClient, StorageError

logger = logging.getLogger(__name__)

READ_BLOCK_SIZE = 1024 * 1024


class ChunkTooLargeError(Exception):
    """Raised when an uploaded chunk exceeds the configured size limit."""

    def __init__(self, limit_bytes: int) -> None:
        super().__init__(f"Chunk exceeds {limit_bytes} bytes")
        self.limit_bytes = limit_bytes


class AsyncReadable(Protocol):
    """Anything with an async read(size), e.g. a FastAPI UploadFile."""

    async def read(self, size: int = -1) -> bytes: ...


class ChunkStore:
    """
    Moves chunk files from temp to permanent storage and on to the bucket.

    Stateless apart from its configuration; the session registry does the
    counting.
    """

    def __init__(
        self,
        storage: StorageClient,
        uploads_dir: Path,
        max_size_bytes: int,
        upload_attempts: int = 3,
        backoff_seconds: float = 1.0,
        backoff_max_seconds: float = 30.0,
        keep_local: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._storage = storage
        self._uploads_dir = Path(uploads_dir)
        self._tmp_dir = self._uploads_dir / "tmp"
        self._max_size_bytes = max_size_bytes
        self._upload_attempts = upload_attempts
        self._backoff_seconds = backoff_seconds
        self._backoff_max_seconds = backoff_max_seconds
        self._keep_local = keep_local
        self._sleep = sleep

    @property
    def uploads_dir(self) -> Path:
        return self._uploads_dir

    # -----------------------------------------------------------------------
    # Paths
    # -----------------------------------------------------------------------

    def session_dir(self, ref: ChunkRef) -> Path:
        return self._uploads_dir / ref.device_id / ref.session_id

    def local_path_for(self, ref: ChunkRef) -> Path:
        return self.session_dir(ref) / ref.filename

    def analysis_path_for(self, ref: ChunkRef) -> Path:
        return self.session_dir(ref) / f"{ref.chunk_id}-analysis.json"

    @staticmethod
    def cloud_path_for(ref: ChunkRef) -> str:
        return f"streams/{ref.device_id}/{ref.session_id}/{ref.filename}"

    def gcs_uri_for(self, ref: ChunkRef) -> str:
        return self._storage.gcs_uri(self.cloud_path_for(ref))

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    async def save_upload(
        self,
        upload: AsyncReadable,
        ref: ChunkRef,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ChunkRecord:
        """
        Stream an upload to a temp file, then move it to its permanent path.

        The size limit is enforced while reading so an oversized body never
        fully lands on disk.
        """
        self._tmp_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self._tmp_dir / f"{uuid4().hex}.part"

        size = 0
        try:
            with open(tmp_path, "wb") as tmp:
                while True:
                    block = await upload.read(READ_BLOCK_SIZE)
                    if not block:
                        break
                    size += len(block)
                    if size > self._max_size_bytes:
                        raise ChunkTooLargeError(self._max_size_bytes)
                    tmp.write(block)

            final_path = self.local_path_for(ref)
            final_path.parent.mkdir(parents=True, exist_ok=True)
            os.replace(tmp_path, final_path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

        logger.info(
            "Chunk saved locally",
            extra={
                "device_id": ref.device_id,
                "session_id": ref.session_id,
                "chunk_id": ref.chunk_id,
                "size_bytes": size,
                "path": str(final_path),
            }
        )

        metadata = metadata or {}
        return ChunkRecord(
            ref=ref,
            size_bytes=final_path.stat().st_size,
            local_path=final_path,
            chunk_index=metadata.get("chunkIndex"),
            metadata=metadata,
        )

    async def push_to_cloud(self, chunk: ChunkRecord) -> Optional[str]:
        """
        Upload a saved chunk to the bucket with retries.

        Returns the object name, or None when every attempt failed (the
        chunk then stays local only).
        """
        if chunk.local_path is None:
            raise ValueError("Chunk has no local file to upload")

        destination = self.cloud_path_for(chunk.ref)

        async def attempt() -> str:
            return await self._storage.upload_file(chunk.local_path, destination, "video/mp4")

        try:
            chunk.cloud_path = await retry_async(
                attempt,
                attempts=self._upload_attempts,
                base_delay=self._backoff_seconds,
                max_delay=self._backoff_max_seconds,
                retry_on=(StorageError,),
                description=f"GCS upload of {destination}",
                sleep=self._sleep,
            )
        except StorageError as e:
            logger.error(
                "Chunk kept local only, cloud upload gave up",
                extra={"destination": destination, "error": str(e)}
            )
            return None

        logger.info("Chunk uploaded to cloud", extra={"destination": destination})

        if not self._keep_local:
            chunk.local_path.unlink(missing_ok=True)
            chunk.local_path = None

        return chunk.cloud_path

    def save_analysis(self, ref: ChunkRef, analysis: dict[str, Any]) -> Path:
        """Write processed analysis JSON next to the chunk."""
        path = self.analysis_path_for(ref)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(analysis, indent=2, default=str), encoding="utf-8")
        return path

    def load_analysis(self, ref: ChunkRef) -> Optional[dict[str, Any]]:
        path = self.analysis_path_for(ref)
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def clear_temp(self) -> int:
        """Remove leftover .part files (e.g. after a crash). Returns count removed."""
        if not self._tmp_dir.exists():
            return 0
        count = 0
        for part in self._tmp_dir.glob("*.part"):
            part.unlink(missing_ok=True)
            count += 1
        return count
