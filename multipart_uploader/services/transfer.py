"""
Part Transfer Client - one PUT of one part to a presigned URL.

Streams the body so byte progress can be reported while the request is in
flight, and enforces an overall deadline so a stalled PUT fails instead of
hanging.
"""
import asyncio
import logging
import time
from typing import AsyncIterator, Callable, Optional

import httpx

from ..errors import ProtocolError, TransientError
from ..protocols import IPartTransfer

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = (200, 204)
DEFAULT_STREAM_CHUNK = 256 * 1024
DEFAULT_PROGRESS_INTERVAL = 0.12
DEFAULT_TIMEOUT_FLOOR = 15 * 60.0
DEFAULT_MIN_THROUGHPUT = 64 * 1024  # bytes/s used to scale the deadline

ProgressCallback = Callable[[float], None]


class PartTransferClient(IPartTransfer):
    """
    Uploads part bytes with httpx.

    Implements IPartTransfer protocol. The client passed in must not add
    auth headers: presigned URLs carry their own authorization.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        progress_interval: float = DEFAULT_PROGRESS_INTERVAL,
        stream_chunk_size: int = DEFAULT_STREAM_CHUNK,
        timeout_floor: float = DEFAULT_TIMEOUT_FLOOR,
        min_throughput: int = DEFAULT_MIN_THROUGHPUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client = client
        self._progress_interval = progress_interval
        self._stream_chunk_size = stream_chunk_size
        self._timeout_floor = timeout_floor
        self._min_throughput = min_throughput
        self._clock = clock

    def deadline_for(self, size: int) -> float:
        """Overall time budget for one PUT of ``size`` bytes."""
        return max(self._timeout_floor, size / self._min_throughput)

    async def _body(self, data: bytes, on_progress: Optional[ProgressCallback]) -> AsyncIterator[bytes]:
        total = len(data)
        view = memoryview(data)
        sent = 0
        last_emit = self._clock()
        for offset in range(0, total, self._stream_chunk_size):
            chunk = view[offset:offset + self._stream_chunk_size]
            yield bytes(chunk)
            sent += len(chunk)
            if on_progress is None:
                continue
            now = self._clock()
            if now - last_emit >= self._progress_interval:
                last_emit = now
                on_progress(sent / total)

    async def _put(self, url: str, data: bytes, on_progress: Optional[ProgressCallback]) -> httpx.Response:
        return await self._client.put(
            url,
            content=self._body(data, on_progress),
            headers={"Content-Length": str(len(data))},
        )

    async def transfer(
        self,
        url: str,
        data: bytes,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """
        PUT ``data`` to ``url``.

        Args:
            url: Presigned URL
            data: Part bytes
            on_progress: Optional callback receiving the fraction sent (0..1)

        Returns:
            Entity tag with surrounding quotes stripped

        Raises:
            TransientError: non-2xx status or deadline exceeded (retryable)
            ProtocolError: success status without an ETag header (fatal)
            httpx.RequestError: network failure (retryable)
        """
        deadline = self.deadline_for(len(data))
        try:
            response = await asyncio.wait_for(self._put(url, data, on_progress), timeout=deadline)
        except asyncio.TimeoutError as exc:
            raise TransientError(f"PUT timeout after {deadline:.0f}s") from exc

        if response.status_code not in SUCCESS_STATUSES:
            raise TransientError(
                f"PUT failed status={response.status_code}",
                status_code=response.status_code,
            )

        etag = (response.headers.get("ETag") or "").replace('"', "").strip()
        if not etag:
            raise ProtocolError("Missing ETag (check bucket CORS ExposeHeaders: ETag)")

        if on_progress:
            on_progress(1.0)
        logger.debug("PUT %d bytes -> etag %s", len(data), etag)
        return etag
