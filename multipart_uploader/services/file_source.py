"""
File sources - the bytes being uploaded.

Reads go through a thread so the event loop keeps driving transfers.
"""
import asyncio
from pathlib import Path
from typing import AsyncIterator, Optional

from ..protocols import IFileSource


class LocalFileSource(IFileSource):
    """File on local disk."""

    def __init__(self, path: Path, name: Optional[str] = None):
        self._path = Path(path)
        self._name = name or self._path.name
        self._size = self._path.stat().st_size

    @property
    def path(self) -> Path:
        return self._path

    @property
    def name(self) -> str:
        return self._name

    @property
    def size(self) -> int:
        return self._size

    async def iter_chunks(self, buffer_size: int) -> AsyncIterator[bytes]:
        f = await asyncio.to_thread(open, self._path, "rb")
        try:
            while True:
                chunk = await asyncio.to_thread(f.read, buffer_size)
                if not chunk:
                    break
                yield chunk
        finally:
            f.close()

    async def read_range(self, start: int, end: int) -> bytes:
        def _read() -> bytes:
            with open(self._path, "rb") as f:
                f.seek(start)
                return f.read(end - start)

        return await asyncio.to_thread(_read)

    def __repr__(self) -> str:
        return f"LocalFileSource({str(self._path)!r}, size={self._size})"


class BytesFileSource(IFileSource):
    """In-memory content (generated data, tests)."""

    def __init__(self, name: str, data: bytes):
        self._name = name
        self._data = bytes(data)

    @property
    def name(self) -> str:
        return self._name

    @property
    def size(self) -> int:
        return len(self._data)

    async def iter_chunks(self, buffer_size: int) -> AsyncIterator[bytes]:
        view = memoryview(self._data)
        for offset in range(0, len(view), buffer_size):
            yield bytes(view[offset:offset + buffer_size])

    async def read_range(self, start: int, end: int) -> bytes:
        return self._data[start:end]

    def __repr__(self) -> str:
        return f"BytesFileSource({self._name!r}, size={len(self._data)})"
