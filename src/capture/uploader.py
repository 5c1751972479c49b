"""
HTTP client for the backend's recording endpoints.

Chunk uploads are retried with exponential backoff on network errors and
5xx responses. A 4xx means the request itself is wrong, so it fails at
once. The local segment is deleted only after the backend accepted it.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

import httpx

from ..core.retry import retry_async
from .config import CaptureConfig

logger = logging.getLogger(__name__)


class UploadError(Exception):
    """Raised when the backend rejects a request or cannot be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RetryableUploadError(UploadError):
    """Network failure or 5xx, worth another attempt."""
    pass


class ChunkUploader:
    """
    Talks to /start-recording, /upload-chunk and /stop-recording.

    The httpx client can be injected, which is how tests plug in an
    httpx.MockTransport.
    """

    def __init__(
        self,
        config: CaptureConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep=None,
    ) -> None:
        self._config = config
        self._http = http_client or httpx.AsyncClient(timeout=config.upload_timeout_seconds)
        self._sleep = sleep

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _post(self, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self._config.backend_url}{path}"
        try:
            response = await self._http.post(url, headers=self._config.headers, **kwargs)
        except httpx.HTTPError as e:
            raise RetryableUploadError(f"POST {path} failed: {e}")

        if response.status_code >= 400:
            error_cls = RetryableUploadError if response.status_code >= 500 else UploadError
            raise error_cls(
                f"POST {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            result = response.json()
        except ValueError as e:
            raise UploadError(f"POST {path} returned invalid JSON: {e}", status_code=response.status_code)
        if not isinstance(result, dict):
            raise UploadError(f"POST {path} returned a non-object body", status_code=response.status_code)
        return result

    async def start_recording(self) -> str:
        """Open a session on the backend and return its id."""
        result = await self._post("/start-recording", json={"deviceId": self._config.device_id})
        session_id = result.get("sessionId")
        if not session_id:
            raise UploadError("Backend did not return a sessionId")
        logger.info("Recording session opened", extra={"session_id": session_id})
        return session_id

    async def stop_recording(self, session_id: str) -> dict[str, Any]:
        result = await self._post("/stop-recording", json={"sessionId": session_id})
        logger.info(
            "Recording session closed",
            extra={"session_id": session_id, "chunk_count": result.get("chunkCount")}
        )
        return result

    async def upload_chunk(
        self,
        path: Path,
        session_id: str,
        chunk_id: str,
        metadata: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Upload one segment, retrying transient failures.

        Deletes the local file once the backend answered with success.
        """
        form = {
            "sessionId": session_id,
            "deviceId": self._config.device_id,
            "chunkId": chunk_id,
            "metadata": json.dumps(metadata),
        }

        async def attempt() -> dict[str, Any]:
            # reopen per attempt, a failed request may have consumed the stream
            with open(path, "rb") as video:
                return await self._post(
                    "/upload-chunk",
                    data=form,
                    files={"video": (path.name, video, "video/mp4")},
                )

        retry_kwargs = {"sleep": self._sleep} if self._sleep is not None else {}
        result = await retry_async(
            attempt,
            attempts=self._config.upload_attempts,
            base_delay=self._config.upload_backoff_seconds,
            max_delay=self._config.upload_backoff_max_seconds,
            retry_on=(RetryableUploadError,),
            description=f"Upload of chunk {chunk_id}",
            **retry_kwargs,
        )

        path.unlink(missing_ok=True)
        logger.info(
            "Chunk uploaded",
            extra={
                "chunk_id": chunk_id,
                "gcs_path": result.get("gcsPath"),
                "file_size": result.get("fileSize"),
            }
        )
        return result
