"""
Adaptive Worker Pool - uploads parts concurrently with a moving target.

Workers are launched once, clamp(total_parts, min, max) of them, and pull
part numbers from a shared cursor until it runs out. The target concurrency
ramps up by one after each success (while unclaimed parts outnumber active
workers) and backs off by one after a failure. Raising the target never adds
workers; a worker above the target exits after its current part. A failure
also stops all further claims; parts already in flight are allowed to finish.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

from ..errors import PartUploadError, ProtocolError
from ..models import FilePart, PartResult, PartStatus
from ..services.chunking import count_parts, part_range

logger = logging.getLogger(__name__)

ProcessPart = Callable[[FilePart], Awaitable[str]]
PartCallback = Callable[[FilePart], Awaitable[None]]
PartFailureCallback = Callable[[FilePart, BaseException], Awaitable[None]]


@dataclass
class ConcurrencyState:
    """Shared counters; only mutated while holding the pool lock."""
    total_parts: int
    min_concurrency: int
    max_concurrency: int
    target: int = 0
    active: int = 0
    next_part: int = 1
    failed: bool = False

    @property
    def remaining(self) -> int:
        """Parts not yet claimed."""
        return max(0, self.total_parts - self.next_part + 1)

    def ramp_up(self) -> bool:
        if self.target < self.max_concurrency and self.remaining > self.active:
            self.target += 1
            return True
        return False

    def back_off(self) -> None:
        self.target = max(self.min_concurrency, self.target - 1)


def initial_concurrency(total_parts: int, min_concurrency: int, max_concurrency: int) -> int:
    return max(min_concurrency, min(total_parts, max_concurrency))


class AdaptiveWorkerPool:
    """
    Runs ``process_part`` for every part of a file.

    Args:
        total_size: File size in bytes
        part_size: Part size in bytes
        process_part: Coroutine uploading one part and returning its ETag
        min_concurrency: Lower bound for the target worker count
        max_concurrency: Upper bound for the target worker count
        on_part_done: Optional coroutine called after a part succeeds
        on_part_failed: Optional coroutine called after a part fails
    """

    def __init__(
        self,
        total_size: int,
        part_size: int,
        process_part: ProcessPart,
        min_concurrency: int = 2,
        max_concurrency: int = 8,
        on_part_done: Optional[PartCallback] = None,
        on_part_failed: Optional[PartFailureCallback] = None,
    ):
        self._total_size = total_size
        self._part_size = part_size
        self._process_part = process_part
        self._on_part_done = on_part_done
        self._on_part_failed = on_part_failed

        total_parts = count_parts(total_size, part_size)
        self.state = ConcurrencyState(
            total_parts=total_parts,
            min_concurrency=min_concurrency,
            max_concurrency=max_concurrency,
            target=initial_concurrency(total_parts, min_concurrency, max_concurrency),
        )

        self._lock = asyncio.Lock()
        self._results: Dict[int, PartResult] = {}
        self._claimed: List[int] = []
        self._tasks: List[asyncio.Task] = []
        self._error: Optional[PartUploadError] = None
        self._peak_active = 0

    @property
    def claimed(self) -> List[int]:
        """Part numbers in claim order."""
        return list(self._claimed)

    @property
    def peak_active(self) -> int:
        return self._peak_active

    @property
    def workers_started(self) -> int:
        return len(self._tasks)

    async def claim(self) -> Optional[FilePart]:
        """Take the next unclaimed part, or None when done or failed."""
        async with self._lock:
            if self.state.failed or self.state.remaining == 0:
                return None
            number = self.state.next_part
            self.state.next_part += 1
            self._claimed.append(number)

        r = part_range(number, self._total_size, self._part_size)
        return FilePart(part_number=r.part_number, start=r.start, end=r.end)

    def _spawn_locked(self) -> None:
        self.state.active += 1
        self._peak_active = max(self._peak_active, self.state.active)
        worker_id = len(self._tasks) + 1
        self._tasks.append(asyncio.create_task(self._worker(worker_id), name=f"part-worker-{worker_id}"))

    async def _record_success(self, part: FilePart) -> None:
        async with self._lock:
            if part.part_number in self._results:
                raise ProtocolError(f"Part {part.part_number} recorded twice")
            self._results[part.part_number] = PartResult(part.part_number, part.etag)

            if not self.state.failed and self.state.ramp_up():
                logger.debug("Concurrency target raised to %d", self.state.target)

    async def _record_failure(self, part: FilePart, exc: BaseException) -> None:
        async with self._lock:
            self.state.failed = True
            self.state.back_off()
            if self._error is None:
                self._error = PartUploadError(part.part_number, exc)
        logger.error(f"Part {part.part_number} failed: {exc} (target now {self.state.target})")

    async def _should_exit(self) -> bool:
        async with self._lock:
            return self.state.active > self.state.target

    async def _worker(self, worker_id: int) -> None:
        try:
            while True:
                part = await self.claim()
                if part is None:
                    return

                part.status = PartStatus.IN_FLIGHT
                logger.debug(f"[worker {worker_id}] part {part.part_number} ({part.size} bytes)")
                try:
                    part.etag = await self._process_part(part)
                except Exception as exc:
                    part.status = PartStatus.FAILED
                    await self._record_failure(part, exc)
                    if self._on_part_failed:
                        await self._on_part_failed(part, exc)
                    return

                part.status = PartStatus.DONE
                await self._record_success(part)
                if self._on_part_done:
                    await self._on_part_done(part)

                if await self._should_exit():
                    logger.debug(f"[worker {worker_id}] exiting, above target {self.state.target}")
                    return
        finally:
            async with self._lock:
                self.state.active -= 1

    async def run(self) -> List[PartResult]:
        """
        Upload every part.

        Returns:
            Part results sorted by part number

        Raises:
            PartUploadError: the first part that failed
        """
        async with self._lock:
            for _ in range(self.state.target):
                self._spawn_locked()

        logger.info(
            "Uploading %d part(s) with %d worker(s) (max %d)",
            self.state.total_parts, self.state.target, self.state.max_concurrency,
        )

        try:
            while True:
                pending = [t for t in self._tasks if not t.done()]
                if not pending:
                    break
                await asyncio.wait(pending)
        except asyncio.CancelledError:
            for task in self._tasks:
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            raise

        if self._error is not None:
            raise self._error

        for task in self._tasks:
            if task.exception() is not None:
                raise task.exception()

        if len(self._results) != self.state.total_parts:
            raise ProtocolError(
                f"Only {len(self._results)} of {self.state.total_parts} parts uploaded"
            )

        return sorted(self._results.values(), key=lambda r: r.part_number)
