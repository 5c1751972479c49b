"""
Chunk storage: Google Cloud Storage client plus the local temp/permanent
file lifecycle. Includes mock mode for local development without credentials.
"""

from .chunks import ChunkStore, ChunkTooLargeError
from .client import (
    GCSStorageClient,
    MockStorageClient,
    StorageClient,
    StorageConfig,
    StorageError,
    create_storage_client,
)

__all__ = [
    "ChunkStore",
    "ChunkTooLargeError",
    "GCSStorageClient",
    "MockStorageClient",
    "StorageClient",
    "StorageConfig",
    "StorageError",
    "create_storage_client",
]
