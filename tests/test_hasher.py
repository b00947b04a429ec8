"""Tests for the streaming hasher and file sources."""
import asyncio
import base64
import hashlib
from pathlib import Path

import pytest
from blake3 import blake3

from multipart_uploader.errors import ValidationError
from multipart_uploader.services.file_source import BytesFileSource, LocalFileSource
from multipart_uploader.services.hasher import StreamingHasher, hash_file


def _b64(digest: bytes) -> str:
    return base64.b64encode(digest).decode("ascii")


CONTENT = bytes(range(256)) * 97  # 24832 bytes, not a multiple of the buffer sizes


class TrackingSource(BytesFileSource):
    """In-memory source that records whether its chunk iterator was closed."""

    def __init__(self, name, data):
        super().__init__(name, data)
        self.chunks_read = 0
        self.closed = False

    async def iter_chunks(self, buffer_size):
        try:
            async for chunk in super().iter_chunks(buffer_size):
                self.chunks_read += 1
                yield chunk
        finally:
            self.closed = True


class TestStreamingHasher:
    @pytest.mark.asyncio
    async def test_sha256_matches_hashlib(self):
        source = BytesFileSource("data.bin", CONTENT)
        checksum = await StreamingHasher("sha256", buffer_size=1000).hash_source(source)
        assert checksum == _b64(hashlib.sha256(CONTENT).digest())

    @pytest.mark.asyncio
    async def test_blake3(self):
        source = BytesFileSource("data.bin", CONTENT)
        checksum = await StreamingHasher("blake3", buffer_size=4096).hash_source(source)
        assert checksum == _b64(blake3(CONTENT).digest())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("buffer_size", [1, 7, 1024, 100_000])
    async def test_independent_of_buffer_size(self, buffer_size):
        source = BytesFileSource("data.bin", CONTENT[:5000])
        checksum = await StreamingHasher(buffer_size=buffer_size).hash_source(source)
        assert checksum == _b64(hashlib.sha256(CONTENT[:5000]).digest())

    @pytest.mark.asyncio
    async def test_deterministic_and_restartable(self):
        hasher = StreamingHasher(buffer_size=512)
        source = BytesFileSource("data.bin", CONTENT)

        first = await hasher.hash_source(source)
        second = await hasher.hash_source(source)

        assert first == second
        assert hasher.consumed == len(CONTENT)

    @pytest.mark.asyncio
    async def test_empty_source(self):
        checksum = await StreamingHasher().hash_source(BytesFileSource("empty", b""))
        assert checksum == _b64(hashlib.sha256(b"").digest())

    @pytest.mark.asyncio
    async def test_progress_reaches_total(self):
        events = []
        source = BytesFileSource("data.bin", CONTENT)

        await StreamingHasher(buffer_size=4096).hash_source(
            source, lambda consumed, total: events.append((consumed, total))
        )

        consumed = [c for c, _ in events]
        assert consumed == sorted(consumed)
        assert events[-1] == (len(CONTENT), len(CONTENT))
        assert all(total == len(CONTENT) for _, total in events)

    def test_reset_and_update(self):
        hasher = StreamingHasher()
        hasher.update(b"abc")
        hasher.reset()
        hasher.update(b"hello")
        assert hasher.hexdigest() == hashlib.sha256(b"hello").hexdigest()
        assert hasher.consumed == 5

    @pytest.mark.parametrize("algorithm", ["sha257", "shake_128", ""])
    def test_unsupported_algorithm(self, algorithm):
        with pytest.raises(ValidationError, match="Unsupported checksum algorithm"):
            StreamingHasher(algorithm)

    @pytest.mark.asyncio
    async def test_completed_hash_closes_iterator(self):
        source = TrackingSource("data.bin", CONTENT)
        await StreamingHasher(buffer_size=4096).hash_source(source)
        assert source.closed is True

    @pytest.mark.asyncio
    async def test_cancel_closes_iterator(self):
        source = TrackingSource("data.bin", CONTENT)
        hasher = StreamingHasher(buffer_size=100, yield_every=1)

        task = asyncio.create_task(hasher.hash_source(source))
        while source.chunks_read == 0:
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert source.chunks_read < len(CONTENT) // 100
        assert source.closed is True


class TestLocalFileSource:
    @pytest.mark.asyncio
    async def test_read_range_and_hash_file(self, tmp_path: Path):
        path = tmp_path / "file.bin"
        path.write_bytes(CONTENT)
        source = LocalFileSource(path)

        assert source.name == "file.bin"
        assert source.size == len(CONTENT)
        assert await source.read_range(100, 356) == CONTENT[100:356]
        assert await hash_file(path) == _b64(hashlib.sha256(CONTENT).digest())

    @pytest.mark.asyncio
    async def test_iter_chunks_restarts(self, tmp_path: Path):
        path = tmp_path / "file.bin"
        path.write_bytes(CONTENT)
        source = LocalFileSource(path)

        first = b"".join([c async for c in source.iter_chunks(3000)])
        second = b"".join([c async for c in source.iter_chunks(10_000)])
        assert first == second == CONTENT

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(OSError):
            LocalFileSource(tmp_path / "missing.bin")
