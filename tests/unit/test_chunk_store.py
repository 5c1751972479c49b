"""
Unit tests for the chunk file lifecycle: temp -> permanent -> cloud.

Uses the in-memory storage client and pytest's tmp_path, so nothing
leaves the test machine.
"""

import asyncio

import pytest

from src.core.recording.models import ChunkRef
from src.infrastructure.storage import ChunkStore, ChunkTooLargeError, MockStorageClient


class BytesUpload:
    """Minimal async reader standing in for UploadFile."""

    def __init__(self, data: bytes):
        self._data = data
        self._pos = 0

    async def read(self, size: int = -1) -> bytes:
        if size < 0:
            size = len(self._data) - self._pos
        block = self._data[self._pos:self._pos + size]
        self._pos += len(block)
        return block


async def no_sleep(delay):
    pass


@pytest.fixture
def storage():
    return MockStorageClient("test-bucket")


@pytest.fixture
def ref():
    return ChunkRef(device_id="device-1", session_id="session-1", chunk_id="chunk_00001")


def make_store(storage, tmp_path, **kwargs):
    options = {"max_size_bytes": 1024, "upload_attempts": 3, "sleep": no_sleep}
    options.update(kwargs)
    return ChunkStore(storage=storage, uploads_dir=tmp_path / "uploads", **options)


class TestSaveUpload:

    def test_moves_upload_to_permanent_path(self, storage, tmp_path, ref):
        store = make_store(storage, tmp_path)

        chunk = asyncio.run(store.save_upload(BytesUpload(b"video-bytes"), ref, {"chunkIndex": 4}))

        expected = tmp_path / "uploads" / "device-1" / "session-1" / "chunk_00001.mp4"
        assert chunk.local_path == expected
        assert expected.read_bytes() == b"video-bytes"
        assert chunk.size_bytes == len(b"video-bytes")
        assert chunk.chunk_index == 4
        assert list((tmp_path / "uploads" / "tmp").iterdir()) == []

    def test_oversized_upload_is_rejected_and_cleaned_up(self, storage, tmp_path, ref):
        store = make_store(storage, tmp_path, max_size_bytes=10)

        with pytest.raises(ChunkTooLargeError):
            asyncio.run(store.save_upload(BytesUpload(b"x" * 11), ref))

        assert list((tmp_path / "uploads" / "tmp").iterdir()) == []
        assert not store.local_path_for(ref).exists()

    def test_clear_temp_removes_leftover_parts(self, storage, tmp_path):
        store = make_store(storage, tmp_path)
        tmp_dir = tmp_path / "uploads" / "tmp"
        tmp_dir.mkdir(parents=True)
        (tmp_dir / "a.part").write_bytes(b"1")
        (tmp_dir / "b.part").write_bytes(b"2")

        assert store.clear_temp() == 2
        assert list(tmp_dir.iterdir()) == []


class TestPushToCloud:

    def test_uploads_under_streams_prefix(self, storage, tmp_path, ref):
        store = make_store(storage, tmp_path)
        chunk = asyncio.run(store.save_upload(BytesUpload(b"data"), ref))

        cloud_path = asyncio.run(store.push_to_cloud(chunk))

        assert cloud_path == "streams/device-1/session-1/chunk_00001.mp4"
        assert asyncio.run(storage.exists(cloud_path))
        assert store.gcs_uri_for(ref) == "gs://test-bucket/streams/device-1/session-1/chunk_00001.mp4"

    def test_retries_transient_failures(self, storage, tmp_path, ref):
        store = make_store(storage, tmp_path)
        chunk = asyncio.run(store.save_upload(BytesUpload(b"data"), ref))
        storage.fail_next_uploads = 2

        cloud_path = asyncio.run(store.push_to_cloud(chunk))

        assert cloud_path is not None
        assert storage.upload_attempts == 3

    def test_gives_up_and_keeps_local_copy(self, storage, tmp_path, ref):
        """After the last failed attempt the chunk is still on disk and has no cloud path."""
        store = make_store(storage, tmp_path)
        chunk = asyncio.run(store.save_upload(BytesUpload(b"data"), ref))
        storage.fail_next_uploads = 5

        assert asyncio.run(store.push_to_cloud(chunk)) is None
        assert chunk.cloud_path is None
        assert chunk.local_path.exists()
        assert storage.upload_attempts == 3

    def test_local_copy_removed_when_not_kept(self, storage, tmp_path, ref):
        store = make_store(storage, tmp_path, keep_local=False)
        chunk = asyncio.run(store.save_upload(BytesUpload(b"data"), ref))
        path = chunk.local_path

        asyncio.run(store.push_to_cloud(chunk))

        assert not path.exists()
        assert chunk.local_path is None


class TestAnalysisFiles:

    def test_save_and_load_analysis(self, storage, tmp_path, ref):
        store = make_store(storage, tmp_path)

        path = store.save_analysis(ref, {"summary": "People: 2"})

        assert path.name == "chunk_00001-analysis.json"
        assert store.load_analysis(ref) == {"summary": "People: 2"}

    def test_missing_analysis_is_none(self, storage, tmp_path, ref):
        assert make_store(storage, tmp_path).load_analysis(ref) is None
