"""
Streaming Hasher - whole-file checksum without loading the file in memory.

Consumes a file source buffer by buffer, ceding control to the event loop
every few buffers so part transfers keep moving while the digest runs.
"""
import asyncio
import base64
import contextlib
import hashlib
import logging
from pathlib import Path
from typing import Callable, Optional

from blake3 import blake3

from ..errors import ValidationError
from ..protocols import IFileSource
from .file_source import LocalFileSource

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 1024 * 1024
DEFAULT_YIELD_EVERY = 8

HashProgressCallback = Callable[[int, int], None]


def _new_digest(algorithm: str):
    if algorithm == "blake3":
        return blake3()
    try:
        digest = hashlib.new(algorithm)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Unsupported checksum algorithm: {algorithm}") from exc
    # Variable-length digests (shake_*) report a zero digest size
    if not digest.digest_size:
        raise ValidationError(f"Unsupported checksum algorithm: {algorithm}")
    return digest


class StreamingHasher:
    """
    Incremental digest over a sequence of byte buffers.

    Restartable: ``reset()`` (or ``hash_source``) reinitializes the state,
    so one instance can hash many files.
    """

    def __init__(
        self,
        algorithm: str = "sha256",
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        yield_every: int = DEFAULT_YIELD_EVERY,
    ):
        self._algorithm = algorithm
        self._buffer_size = buffer_size
        self._yield_every = max(1, yield_every)
        self._digest = _new_digest(algorithm)
        self._consumed = 0

    @property
    def algorithm(self) -> str:
        return self._algorithm

    @property
    def consumed(self) -> int:
        """Bytes fed since the last reset."""
        return self._consumed

    def reset(self) -> None:
        self._digest = _new_digest(self._algorithm)
        self._consumed = 0

    def update(self, buffer: bytes) -> None:
        self._digest.update(buffer)
        self._consumed += len(buffer)

    def digest(self) -> bytes:
        return self._digest.digest()

    def hexdigest(self) -> str:
        return self._digest.hexdigest()

    def digest_b64(self) -> str:
        """Base64 of the raw digest bytes (e.g. for x-amz-checksum-sha256)."""
        return base64.b64encode(self.digest()).decode("ascii")

    async def hash_source(
        self,
        source: IFileSource,
        on_progress: Optional[HashProgressCallback] = None,
    ) -> str:
        """
        Hash a whole file source.

        Args:
            source: File source providing ``iter_chunks``
            on_progress: Optional callback ``(bytes_consumed, total_bytes)``

        Returns:
            Base64-encoded digest
        """
        self.reset()
        total = source.size
        buffers = 0

        logger.debug("Hashing %s (%d bytes, %s)", source.name, total, self._algorithm)
        async with contextlib.aclosing(source.iter_chunks(self._buffer_size)) as chunks:
            async for chunk in chunks:
                self.update(chunk)
                buffers += 1
                if on_progress:
                    on_progress(self._consumed, total)
                if buffers % self._yield_every == 0:
                    await asyncio.sleep(0)

        if on_progress:
            on_progress(total, total)

        checksum = self.digest_b64()
        logger.debug("Hashed %s: %s", source.name, checksum)
        return checksum


async def hash_file(path: Path, algorithm: str = "sha256") -> str:
    """Base64 checksum of a local file."""
    return await StreamingHasher(algorithm).hash_source(LocalFileSource(path))
