"""Lifecycle events for upload sessions."""
from typing import Dict, List, Callable
import asyncio
import logging
logger = logging.getLogger(__name__)

EVENT_STATE = "state"              # (session)
EVENT_PART_DONE = "part_done"      # (session, part)
EVENT_PART_FAILED = "part_failed"  # (session, part, error)


class EventEmitter:
    """Minimal async event emitter; listeners may be sync or async."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = {}
        self._lock = asyncio.Lock()

    def on(self, event_name: str, callback: Callable):
        """Subscribe to an event (idempotent)."""
        listeners = self._listeners.setdefault(event_name, [])
        if callback not in listeners:
            listeners.append(callback)

    def off(self, event_name: str, callback: Callable):
        """Unsubscribe from an event."""
        listeners = self._listeners.get(event_name, [])
        if callback in listeners:
            listeners.remove(callback)

    def listener_count(self, event_name: str) -> int:
        return len(self._listeners.get(event_name, []))

    async def emit(self, event_name: str, *args, **kwargs):
        """Deliver an event in subscription order; listener errors are logged, never raised."""
        listeners = list(self._listeners.get(event_name, []))
        if not listeners:
            return

        async with self._lock:
            for callback in listeners:
                try:
                    result = callback(*args, **kwargs)
                    if asyncio.iscoroutine(result):
                        await result
                except Exception as e:
                    logger.error(f"Error in event listener for {event_name}: {e}")


class UploadEvents(EventEmitter):
    """
    Event hub exposed by the orchestrator.

    Usage:
        orchestrator.events.on_state(lambda s: print(s.state))
        orchestrator.events.on_part_done(lambda s, part: ...)
    """

    def on_state(self, callback: Callable):
        self.on(EVENT_STATE, callback)

    def on_part_done(self, callback: Callable):
        self.on(EVENT_PART_DONE, callback)

    def on_part_failed(self, callback: Callable):
        self.on(EVENT_PART_FAILED, callback)
