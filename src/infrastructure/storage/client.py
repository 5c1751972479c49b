"""
Object storage client for recorded chunks.

Chunks end up in Google Cloud Storage because the Video Intelligence API
reads its input straight from a gs:// URI. Mock mode keeps objects in
memory, enabling API testing without provisioning a bucket.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when storage operations fail."""
    pass


@dataclass
class StorageConfig:
    """Configuration for the Google Cloud Storage bucket."""
    bucket_name: str
    project_id: Optional[str] = None
    keyfile: Optional[str] = None
    cache_control: str = "public, max-age=31536000"


class StorageClient(Protocol):
    """
    Protocol for object storage operations.

    Using a protocol means tests can provide mocks and we can
    swap storage backends without changing dependent code.
    """

    @property
    def bucket_name(self) -> str: ...

    async def upload_file(
        self,
        local_path: Path,
        destination: str,
        content_type: str = "video/mp4",
    ) -> str:
        """Upload a local file and return its object name."""
        ...

    async def exists(self, storage_path: str) -> bool:
        ...

    async def get_presigned_url(
        self,
        storage_path: str,
        expiry_seconds: int = 3600,
    ) -> str:
        """Generate temporary download URL."""
        ...

    def gcs_uri(self, storage_path: str) -> str:
        """gs:// URI for an object, as consumed by Video Intelligence."""
        ...


class GCSStorageClient:
    """
    Google Cloud Storage client.

    The google-cloud-storage library is synchronous, so every call runs in
    a worker thread to keep the event loop free while chunks upload.
    """

    def __init__(self, config: StorageConfig) -> None:
        """
        Initialize the bucket handle.

        We import google.cloud.storage here (not at module level) because
        mock mode doesn't need it.
        """
        try:
            from google.cloud import storage
        except ImportError:
            raise ImportError(
                "google-cloud-storage is required for GCS storage. "
                "Install with: pip install google-cloud-storage"
            )

        self._config = config

        if config.keyfile:
            self._client = storage.Client.from_service_account_json(
                config.keyfile,
                project=config.project_id or None,
            )
        else:
            self._client = storage.Client(project=config.project_id or None)

        self._bucket = self._client.bucket(config.bucket_name)

        logger.info(
            "Initialized GCS storage client",
            extra={"bucket": config.bucket_name, "project": config.project_id}
        )

    @property
    def bucket_name(self) -> str:
        return self._config.bucket_name

    def gcs_uri(self, storage_path: str) -> str:
        return f"gs://{self._config.bucket_name}/{storage_path}"

    async def upload_file(
        self,
        local_path: Path,
        destination: str,
        content_type: str = "video/mp4",
    ) -> str:
        """
        Upload a chunk file.

        Object names follow streams/{device_id}/{session_id}/{chunk_id}.mp4
        so a whole session can be listed or cleaned up by prefix.
        """
        blob = self._bucket.blob(destination)
        blob.cache_control = self._config.cache_control

        try:
            await asyncio.to_thread(
                blob.upload_from_filename,
                str(local_path),
                content_type=content_type,
            )
        except Exception as e:
            logger.error(
                "Failed to upload file",
                extra={"destination": destination, "error": str(e)}
            )
            raise StorageError(f"Upload failed: {e}")

        logger.debug(
            "Uploaded file",
            extra={"destination": destination, "local_path": str(local_path)}
        )
        return destination

    async def exists(self, storage_path: str) -> bool:
        blob = self._bucket.blob(storage_path)
        try:
            return await asyncio.to_thread(blob.exists)
        except Exception as e:
            raise StorageError(f"Existence check failed: {e}")

    async def get_presigned_url(
        self,
        storage_path: str,
        expiry_seconds: int = 3600,
    ) -> str:
        """
        Generate a V4 signed download URL.

        Signing needs service account credentials; with user credentials
        the library raises and we surface a StorageError.
        """
        blob = self._bucket.blob(storage_path)
        try:
            return await asyncio.to_thread(
                blob.generate_signed_url,
                version="v4",
                expiration=timedelta(seconds=expiry_seconds),
                method="GET",
            )
        except Exception as e:
            logger.error(
                "Failed to generate presigned URL",
                extra={"storage_path": storage_path, "error": str(e)}
            )
            raise StorageError(f"Presigned URL generation failed: {e}")


# ---------------------------------------------------------------------------
# Mock Storage for Local Development
# ---------------------------------------------------------------------------

class MockStorageClient:
    """
    In-memory storage for local development.

    Objects live in a dictionary and "URLs" are mock URIs. Tests can set
    fail_next_uploads to exercise the retry path.
    """

    def __init__(self, bucket_name: str = "mock-bucket") -> None:
        self._bucket_name = bucket_name
        self._objects: dict[str, bytes] = {}
        self.fail_next_uploads = 0
        self.upload_attempts = 0
        logger.info("Initialized mock storage client (in-memory)")

    @property
    def bucket_name(self) -> str:
        return self._bucket_name

    def gcs_uri(self, storage_path: str) -> str:
        return f"gs://{self._bucket_name}/{storage_path}"

    def _maybe_fail(self) -> None:
        self.upload_attempts += 1
        if self.fail_next_uploads > 0:
            self.fail_next_uploads -= 1
            raise StorageError("Simulated upload failure")

    async def upload_file(
        self,
        local_path: Path,
        destination: str,
        content_type: str = "video/mp4",
    ) -> str:
        self._maybe_fail()
        self._objects[destination] = Path(local_path).read_bytes()
        logger.debug(
            "Stored file in mock storage",
            extra={"destination": destination, "size_bytes": len(self._objects[destination])}
        )
        return destination

    async def exists(self, storage_path: str) -> bool:
        return storage_path in self._objects

    async def get_presigned_url(
        self,
        storage_path: str,
        expiry_seconds: int = 3600,
    ) -> str:
        if storage_path not in self._objects:
            raise StorageError(f"Object not found: {storage_path}")
        return f"mock://storage/{self._bucket_name}/{storage_path}?expires={expiry_seconds}"


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_storage_client(
    config: Optional[StorageConfig] = None,
    mock_mode: bool = False,
) -> StorageClient:
    """
    Create storage client based on configuration.

    Args:
        config: Storage configuration (required if not mock_mode)
        mock_mode: If True, return mock client for testing

    Returns:
        StorageClient implementation (GCS or Mock)
    """
    if mock_mode:
        return MockStorageClient(config.bucket_name if config else "mock-bucket")

    if config is None:
        raise ValueError("config is required when not in mock mode")

    return GCSStorageClient(config)
