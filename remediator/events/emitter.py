"""Event emitter for remediation events.

The EventEmitter fans events out to registered callbacks and, optionally,
appends them to a JSON lines event log. Emission never raises: a failing
callback or log write is logged and ignored.
"""

import asyncio
import inspect
import json
import logging
from collections import deque
from collections.abc import Callable
from pathlib import Path
from typing import Any, Optional

from .types import EventPriority, EventType, RemediationEvent

logger = logging.getLogger(__name__)

_PRIORITY_ORDER = {
    EventPriority.HIGH: 0,
    EventPriority.MEDIUM: 1,
    EventPriority.LOW: 2,
}


class EventEmitter:
    """Emits remediation events.

    Features:
    - Non-blocking emission (callback failures don't stop remediation)
    - Sync and async callbacks
    - Optional JSON lines event log
    - Priority-based filtering
    - Bounded buffer of recent events for status queries
    """

    def __init__(
        self,
        event_log: Optional[str | Path] = None,
        enabled: bool = True,
        min_priority: EventPriority = EventPriority.LOW,
        history_size: int = 200,
    ):
        """Initialize event emitter.

        Args:
            event_log: Path of a JSON lines file to append events to
            enabled: Whether event emission is enabled
            min_priority: Minimum priority level to emit
            history_size: Number of recent events kept in memory
        """
        self.event_log = Path(event_log) if event_log else None
        self.enabled = enabled
        self.min_priority = min_priority

        self._callbacks: list[Callable[[RemediationEvent], Any]] = []
        self._recent: deque[RemediationEvent] = deque(maxlen=history_size)
        self._log_lock = asyncio.Lock()

        # Statistics
        self._events_emitted = 0
        self._events_failed = 0

    def add_callback(self, callback: Callable[[RemediationEvent], Any]) -> None:
        """Add a callback to be called on each event.

        Args:
            callback: Function or coroutine function called with each event
        """
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[RemediationEvent], Any]) -> None:
        """Remove a previously added callback."""
        try:
            self._callbacks.remove(callback)
        except ValueError:
            pass

    async def emit(self, event: RemediationEvent) -> None:
        """Emit a single event.

        Args:
            event: Event to emit
        """
        if not self.enabled:
            return

        if _PRIORITY_ORDER.get(event.priority, 2) > _PRIORITY_ORDER.get(self.min_priority, 2):
            return

        self._recent.append(event)
        self._events_emitted += 1

        for callback in list(self._callbacks):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._events_failed += 1
                logger.debug(f"Event callback failed: {e}")

        if self.event_log:
            await self._append_to_log(event)

    async def emit_type(
        self,
        event_type: EventType,
        data: Optional[dict[str, Any]] = None,
        error_id: Optional[str] = None,
        priority: EventPriority = EventPriority.MEDIUM,
    ) -> None:
        """Emit an event by type with data.

        Args:
            event_type: Type of event
            data: Event data payload
            error_id: Associated error id
            priority: Event priority
        """
        await self.emit(
            RemediationEvent(
                event_type=event_type,
                data=data or {},
                error_id=error_id,
                priority=priority,
            )
        )

    async def _append_to_log(self, event: RemediationEvent) -> None:
        line = json.dumps(event.to_dict(), default=str)
        async with self._log_lock:
            try:
                await asyncio.to_thread(self._write_line, line)
            except OSError as e:
                self._events_failed += 1
                logger.warning(f"Failed to write event log {self.event_log}: {e}")

    def _write_line(self, line: str) -> None:
        self.event_log.parent.mkdir(parents=True, exist_ok=True)
        with open(self.event_log, "a", encoding="utf-8") as f:
            f.write(line + "\n")

    def recent(self, event_type: Optional[EventType] = None) -> list[RemediationEvent]:
        """Return recently emitted events, oldest first."""
        if event_type is None:
            return list(self._recent)
        return [e for e in self._recent if e.event_type == event_type]

    def get_stats(self) -> dict[str, Any]:
        """Get emitter statistics."""
        return {
            "events_emitted": self._events_emitted,
            "events_failed": self._events_failed,
            "callbacks": len(self._callbacks),
            "enabled": self.enabled,
        }
