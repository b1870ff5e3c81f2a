"""Error detector.

Turns raw signals (log lines and workflow definition files) into
structured, deduplicated ErrorRecords and publishes them to the
remediation channel.
"""

import asyncio
import json
import logging
import threading
from collections import Counter, deque
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from ..clock import Clock, SystemClock
from ..events import EventEmitter, error_detected_event
from ..models import ErrorRecord, ErrorType, Severity, SourceRef
from . import rules
from .dedup import InMemorySeenStore, SeenStore, make_error_id
from .structure import validate_definition

logger = logging.getLogger(__name__)

_MESSAGE_KEYS = ("message", "msg", "error", "errorMessage")
_WORKFLOW_KEYS = ("workflowId", "workflow_id", "workflow")
_NODE_KEYS = ("nodeId", "node_id", "nodeName", "node")
_NODE_TYPE_KEYS = ("nodeType", "node_type")
_TIME_KEYS = ("timestamp", "time", "ts", "startedAt")
_ERROR_LEVELS = {"error", "fatal", "critical"}


@dataclass
class LogSignal:
    """One line of execution output."""

    line: str
    source: Optional[str] = None


@dataclass
class DefinitionSignal:
    """A workflow definition file that changed.

    ``content`` is read from ``path`` when not given.
    """

    path: str | Path
    content: Optional[str] = None


@dataclass
class DetectionEvent:
    """What the detector publishes for each new record."""

    record: ErrorRecord
    needs_fixing: bool


class ErrorDetector:
    """Extracts ErrorRecords from log lines and definition files.

    Example:
        queue: asyncio.Queue = asyncio.Queue()
        detector = ErrorDetector(queue=queue)
        record = await detector.observe(LogSignal("ERROR workflowId=wf-1 ..."))
    """

    RECENT_LIMIT = 10

    def __init__(
        self,
        queue: Optional[asyncio.Queue] = None,
        emitter: Optional[EventEmitter] = None,
        seen_store: Optional[SeenStore] = None,
        clock: Optional[Clock] = None,
        bucket_seconds: int = 60,
        node_binary: Optional[str] = None,
    ):
        """Initialize the detector.

        Args:
            queue: Channel receiving a DetectionEvent per new record
            emitter: Event sink for error_detected events
            seen_store: Store of already emitted ids
            clock: Time source for signals without a timestamp
            bucket_seconds: Width of the deduplication time bucket
            node_binary: Node.js executable for JavaScript syntax checks
        """
        self.queue = queue
        self.emitter = emitter
        self.seen_store = seen_store if seen_store is not None else InMemorySeenStore()
        self.clock = clock or SystemClock()
        self.bucket_seconds = bucket_seconds
        self.node_binary = node_binary

        self._by_type: Counter = Counter()
        self._by_severity: Counter = Counter()
        self._recent: deque[ErrorRecord] = deque(maxlen=self.RECENT_LIMIT)
        self._suppressed = 0
        self._unclassified = 0
        self._stats_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def observe(self, signal: LogSignal | DefinitionSignal) -> Optional[ErrorRecord]:
        """Observe a signal and publish any new error it contains.

        Returns:
            The first new ErrorRecord, or None if the signal held no new error
        """
        records = await self.observe_all(signal)
        return records[0] if records else None

    async def observe_all(self, signal: LogSignal | DefinitionSignal) -> list[ErrorRecord]:
        """Observe a signal and publish every new error it contains."""
        records = await asyncio.to_thread(self.detect, signal)
        for record in records:
            await self._publish(record)
        return records

    def detect(self, signal: LogSignal | DefinitionSignal) -> list[ErrorRecord]:
        """Extract new (not yet seen) records from a signal without publishing."""
        if isinstance(signal, LogSignal):
            candidates = self._from_log(signal)
        elif isinstance(signal, DefinitionSignal):
            candidates = self._from_definition(signal)
        else:
            raise TypeError(f"Unsupported signal: {type(signal).__name__}")

        new_records = []
        for record in candidates:
            if not self.seen_store.add_if_absent(record.id):
                with self._stats_lock:
                    self._suppressed += 1
                logger.debug(f"Suppressed duplicate error {record.id}")
                continue
            with self._stats_lock:
                self._by_type[record.type.value] += 1
                self._by_severity[record.severity.value] += 1
                self._recent.append(record)
            new_records.append(record)
        return new_records

    def get_stats(self) -> dict[str, Any]:
        """Get detection statistics."""
        return {
            "total_errors": sum(self._by_type.values()),
            "by_type": dict(self._by_type),
            "by_severity": dict(self._by_severity),
            "suppressed_duplicates": self._suppressed,
            "unclassified": self._unclassified,
            "recent": [r.to_dict() for r in self._recent],
        }

    # ------------------------------------------------------------------
    # Log signals
    # ------------------------------------------------------------------

    def _from_log(self, signal: LogSignal) -> list[ErrorRecord]:
        line = signal.line.strip()
        if not line:
            return []

        fields = self._parse_json_line(line)
        if fields is not None:
            message, ref, timestamp = fields
            if message is None:
                return []
        else:
            if not rules.has_error_indicator(line):
                return []
            message = line
            ref = SourceRef(
                workflow_id=rules.extract_workflow_id(line),
                node_id=rules.extract_node_id(line),
                node_type=rules.extract_node_type(line),
            )
            timestamp = rules.extract_timestamp(line)

        classification = rules.classify(message)
        if classification is None:
            with self._stats_lock:
                self._unclassified += 1
            logger.debug(f"Could not classify error line: {message[:100]}")
            return []
        error_type, severity = classification

        if timestamp is None:
            timestamp = self.clock.now()

        context: dict[str, Any] = {"line": signal.line}
        if signal.source:
            context["source"] = signal.source

        return [self._build(error_type, severity, message, ref, timestamp, context)]

    def _parse_json_line(self, line: str):
        """Read a JSON log line.

        Returns:
            None if the line is not a JSON object; otherwise
            (message or None if not an error, SourceRef, timestamp)
        """
        if not line.startswith("{"):
            return None
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            return None
        if not isinstance(entry, dict):
            return None

        message = _pick(entry, _MESSAGE_KEYS)
        if isinstance(message, dict):
            message = message.get("message") or json.dumps(message)
        level = str(entry.get("level", "")).lower()
        is_error = (
            level in _ERROR_LEVELS
            or "error" in entry
            or "stack" in entry
            or (message is not None and rules.has_error_indicator(str(message)))
        )
        if not is_error or message is None:
            return (None, SourceRef(), None)

        message = str(message)
        error_name = entry.get("name") or entry.get("errorType")
        if error_name and str(error_name) not in message:
            message = f"{error_name}: {message}"

        ref = SourceRef(
            workflow_id=_str_or_none(_pick(entry, _WORKFLOW_KEYS)) or rules.extract_workflow_id(message),
            node_id=_str_or_none(_pick(entry, _NODE_KEYS)) or rules.extract_node_id(message),
            node_type=_str_or_none(_pick(entry, _NODE_TYPE_KEYS)) or rules.extract_node_type(message),
        )
        timestamp = rules.parse_timestamp(_pick(entry, _TIME_KEYS))
        return message, ref, timestamp

    # ------------------------------------------------------------------
    # Definition signals
    # ------------------------------------------------------------------

    def _from_definition(self, signal: DefinitionSignal) -> list[ErrorRecord]:
        path = Path(signal.path)
        content = signal.content
        timestamp = self.clock.now()
        if content is None:
            try:
                content = path.read_text(encoding="utf-8")
                timestamp = path.stat().st_mtime
            except OSError as e:
                logger.warning(f"Could not read definition {path}: {e}")
                return []

        report = validate_definition(content, self.node_binary, fallback_workflow_id=path.stem)
        records = []
        for issue in report.issues:
            ref = SourceRef(
                workflow_id=report.workflow_id,
                node_id=issue.node_id,
                node_type=issue.node_type,
            )
            context: dict[str, Any] = {"path": str(path)}
            if issue.field:
                context["field"] = issue.field
            node_warnings = [w for w in report.warnings if w["node_id"] == issue.node_id]
            if node_warnings:
                context["warnings"] = node_warnings
            records.append(
                self._build(issue.error_type, issue.severity, issue.message, ref, timestamp, context)
            )

        if report.warnings and not report.issues:
            logger.info(f"{path.name}: {len(report.warnings)} code warning(s), no errors")
        return records

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _build(
        self,
        error_type: ErrorType,
        severity: Severity,
        message: str,
        ref: SourceRef,
        timestamp: float,
        context: dict,
    ) -> ErrorRecord:
        error_id = make_error_id(error_type, ref, timestamp, self.bucket_seconds, message)
        return ErrorRecord(
            id=error_id,
            type=error_type,
            message=message,
            severity=severity,
            source_ref=ref,
            timestamp=timestamp,
            raw_context=context,
        )

    async def _publish(self, record: ErrorRecord) -> None:
        needs_fixing = record.needs_fixing
        logger.info(
            f"Detected {record.type.value} ({record.severity.value}) "
            f"in {record.source_ref.workflow_id or '?'}/{record.source_ref.node_id or '?'}: "
            f"{record.message[:80]}"
        )
        if self.queue is not None:
            await self.queue.put(DetectionEvent(record=record, needs_fixing=needs_fixing))
        if self.emitter is not None:
            await self.emitter.emit(error_detected_event(record, needs_fixing))


def _pick(entry: dict, keys: tuple[str, ...]):
    for key in keys:
        value = entry.get(key)
        if value not in (None, ""):
            return value
    return None


def _str_or_none(value) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    return str(value)
