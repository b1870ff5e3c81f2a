"""Deduplication of detected errors."""

import hashlib
import threading
from collections import OrderedDict
from typing import Optional, Protocol

from ..models import ErrorType, SourceRef


class SeenStore(Protocol):
    """Remembers which error ids were already emitted."""

    def add_if_absent(self, error_id: str) -> bool:
        """Record an id; return True if it was not seen before."""
        ...

    def __contains__(self, error_id: str) -> bool:
        ...


class InMemorySeenStore:
    """Bounded, thread-safe set of seen error ids.

    The oldest ids are forgotten once ``capacity`` is exceeded.
    """

    def __init__(self, capacity: int = 10_000):
        self.capacity = capacity
        self._ids: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()

    def add_if_absent(self, error_id: str) -> bool:
        with self._lock:
            if error_id in self._ids:
                return False
            self._ids[error_id] = None
            while len(self._ids) > self.capacity:
                self._ids.popitem(last=False)
            return True

    def __contains__(self, error_id: str) -> bool:
        with self._lock:
            return error_id in self._ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)

    def clear(self) -> None:
        with self._lock:
            self._ids.clear()


def make_error_id(
    error_type: ErrorType,
    source_ref: SourceRef,
    timestamp: float,
    bucket_seconds: int = 60,
    message: Optional[str] = None,
) -> str:
    """Derive a deterministic error id.

    The id hashes the error type, the source (workflow and node) and the
    time bucket the timestamp falls in. When the source is unknown the
    message is hashed too, so unrelated anonymous errors stay distinct.
    """
    bucket = int(timestamp // bucket_seconds)
    parts = [
        error_type.value,
        source_ref.workflow_id or "",
        source_ref.node_id or "",
        str(bucket),
    ]
    if not source_ref.workflow_id and not source_ref.node_id and message:
        parts.append(message)
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:16]
