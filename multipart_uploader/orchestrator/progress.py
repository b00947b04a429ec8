"""
Progress Aggregator - folds per-part byte counts into one monotonic percent.

Workers never touch shared totals: they drop events on a queue and a single
consumer task applies them, computes percent/ETA and emits throttled
snapshots to the caller's sink.
"""
import asyncio
import inspect
import logging
import time
from typing import Callable, Dict, Optional, Set

from ..models import ProgressSnapshot

logger = logging.getLogger(__name__)

PHASE_CHECKSUM = "checksum"
PHASE_UPLOAD = "upload"

DEFAULT_THROTTLE = 0.15
DEFAULT_SMOOTHING = 0.25
ETA_WARMUP_SECONDS = 1.0

ProgressSink = Callable[[ProgressSnapshot], None]

_CLOSE = object()


class ProgressAggregator:
    """
    Aggregates part progress for one upload.

    Usage:
        aggregator = ProgressAggregator(total_size, sink, checksum_band=20)
        aggregator.start()
        aggregator.report_checksum(consumed, total)   # from the hasher
        aggregator.begin_upload()
        aggregator.report_part(3, 1_048_576)          # from workers
        await aggregator.aclose()                      # flush final snapshot
    """

    def __init__(
        self,
        total_size: int,
        sink: Optional[ProgressSink] = None,
        throttle: float = DEFAULT_THROTTLE,
        smoothing: float = DEFAULT_SMOOTHING,
        checksum_band: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._total = total_size
        self._sink = sink
        self._throttle = throttle
        self._smoothing = smoothing
        self._band = checksum_band
        self._clock = clock

        self._part_bytes: Dict[int, int] = {}
        self._uploaded = 0
        self._phase = PHASE_CHECKSUM if checksum_band else PHASE_UPLOAD
        self._checksum_percent = 0
        self._last_percent = 0
        self._last_emit: Optional[float] = None
        self._upload_started: Optional[float] = None
        self._avg_speed: Optional[float] = None
        self._eta: Optional[int] = None
        self._last_snapshot: Optional[ProgressSnapshot] = None

        self._queue: "asyncio.Queue" = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._sink_tasks: Set[asyncio.Task] = set()

    @property
    def uploaded_bytes(self) -> int:
        return self._uploaded

    @property
    def percent(self) -> int:
        """Last percent emitted to the sink."""
        return self._last_percent

    @property
    def running(self) -> bool:
        return self._task is not None

    @property
    def last_snapshot(self) -> Optional[ProgressSnapshot]:
        return self._last_snapshot

    # -- producer side -------------------------------------------------

    def start(self) -> None:
        """Start the consumer task."""
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    def report_part(self, part_number: int, uploaded_bytes: int) -> None:
        """Queue a part's current byte count (never blocks)."""
        self._queue.put_nowait((PHASE_UPLOAD, part_number, uploaded_bytes))

    def report_checksum(self, consumed: int, total: int) -> None:
        """Queue hashing progress (never blocks)."""
        self._queue.put_nowait((PHASE_CHECKSUM, consumed, total))

    def begin_upload(self) -> None:
        """Mark the start of the transfer phase (ETA clock)."""
        self._phase = PHASE_UPLOAD
        if self._upload_started is None:
            self._upload_started = self._clock()

    async def aclose(self) -> Optional[ProgressSnapshot]:
        """Drain pending events, stop the consumer and emit a final snapshot."""
        if self._task is not None:
            self._queue.put_nowait(_CLOSE)
            await self._task
            self._task = None
        else:
            self._drain()
        return self._emit(force=True)

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            if item is _CLOSE:
                return
            self._apply(item)

    def _drain(self) -> None:
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is not _CLOSE:
                self._apply(item)

    def _apply(self, item) -> None:
        phase, a, b = item
        if phase == PHASE_UPLOAD:
            self.update_part(a, b)
        else:
            self.update_checksum(a, b)

    # -- consumer side -------------------------------------------------

    def update_part(self, part_number: int, uploaded_bytes: int) -> Optional[ProgressSnapshot]:
        """
        Apply a part's byte count.

        The count may drop (retry reset); the running total follows, but the
        emitted percent does not.
        """
        if self._upload_started is None:
            self.begin_upload()
        self._phase = PHASE_UPLOAD
        previous = self._part_bytes.get(part_number, 0)
        self._part_bytes[part_number] = uploaded_bytes
        self._uploaded += uploaded_bytes - previous
        return self._emit()

    def update_checksum(self, consumed: int, total: int) -> Optional[ProgressSnapshot]:
        """Apply hashing progress; ignored once uploading or without a band."""
        if not self._band or self._phase != PHASE_CHECKSUM:
            return None
        fraction = consumed / total if total > 0 else 1.0
        self._checksum_percent = round(min(1.0, fraction) * self._band)
        return self._emit()

    def _compute_percent(self) -> int:
        if self._phase == PHASE_CHECKSUM:
            return self._checksum_percent
        if self._total <= 0:
            fraction = 1.0 if self._part_bytes else 0.0
        else:
            fraction = max(0.0, min(1.0, self._uploaded / self._total))
        return round(self._band + fraction * (100 - self._band))

    def _update_eta(self, now: float) -> None:
        if self._upload_started is None or self._phase != PHASE_UPLOAD:
            self._eta = None
            return
        elapsed = now - self._upload_started
        if elapsed <= ETA_WARMUP_SECONDS or self._uploaded <= 0:
            return
        speed = self._uploaded / elapsed
        if self._avg_speed is None:
            self._avg_speed = speed
        else:
            self._avg_speed = self._avg_speed * (1 - self._smoothing) + speed * self._smoothing
        remaining = max(0, self._total - self._uploaded)
        self._eta = round(remaining / self._avg_speed) if self._avg_speed > 0 else None

    def _emit(self, force: bool = False) -> Optional[ProgressSnapshot]:
        now = self._clock()
        if not force and self._last_emit is not None and now - self._last_emit < self._throttle:
            return None
        self._last_emit = now

        self._update_eta(now)
        percent = max(self._last_percent, self._compute_percent())
        self._last_percent = percent

        snapshot = ProgressSnapshot(
            percent=percent,
            phase=self._phase,
            uploaded_bytes=max(0, self._uploaded),
            total_bytes=self._total,
            eta_seconds=self._eta if self._phase == PHASE_UPLOAD else None,
        )
        self._last_snapshot = snapshot
        self._dispatch(snapshot)
        return snapshot

    def _dispatch(self, snapshot: ProgressSnapshot) -> None:
        if self._sink is None:
            return
        try:
            result = self._sink(snapshot)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._sink_tasks.add(task)
                task.add_done_callback(self._sink_done)
        except Exception as e:
            logger.error(f"Error in progress sink: {e}")

    def _sink_done(self, task: asyncio.Task) -> None:
        self._sink_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Error in progress sink: {task.exception()}")
