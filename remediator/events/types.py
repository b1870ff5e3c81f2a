"""Event type definitions for remediation events.

Events flow from the detector and the iteration controller to whatever
is listening: the CLI console, an event log file, tests.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..models import ErrorRecord, IterationState, IterationStatus


class EventType(str, Enum):
    """Types of remediation events."""

    # Detection
    ERROR_DETECTED = "error_detected"

    # Iteration lifecycle
    ITERATION_STARTED = "iteration_started"
    ITERATION_ATTEMPT = "iteration_attempt"
    ITERATION_COMPLETED = "iteration_completed"
    ITERATION_FAILED = "iteration_failed"


class EventPriority(str, Enum):
    """Event priority levels for filtering."""

    HIGH = "high"  # Terminal outcomes
    MEDIUM = "medium"  # Detections, loop starts
    LOW = "low"  # Per-attempt progress


@dataclass
class RemediationEvent:
    """A remediation event.

    Attributes:
        event_type: Type of event
        data: Event-specific payload
        timestamp: When the event occurred
        priority: Event priority for filtering
        error_id: Id of the ErrorRecord the event concerns
        workflow_id: Workflow the event concerns
        node_id: Node the event concerns
    """

    event_type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    priority: EventPriority = EventPriority.MEDIUM
    error_id: Optional[str] = None
    workflow_id: Optional[str] = None
    node_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage/serialization."""
        return {
            "event_type": self.event_type.value,
            "data": self.data,
            "timestamp": self.timestamp,
            "priority": self.priority.value,
            "error_id": self.error_id,
            "workflow_id": self.workflow_id,
            "node_id": self.node_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RemediationEvent":
        """Create from dictionary."""
        return cls(
            event_type=EventType(data["event_type"]),
            data=data.get("data", {}),
            timestamp=data.get("timestamp", datetime.now().isoformat()),
            priority=EventPriority(data.get("priority", "medium")),
            error_id=data.get("error_id"),
            workflow_id=data.get("workflow_id"),
            node_id=data.get("node_id"),
        )


# Event factory functions


def error_detected_event(record: ErrorRecord, needs_fixing: bool) -> RemediationEvent:
    """Create an error detected event."""
    return RemediationEvent(
        event_type=EventType.ERROR_DETECTED,
        error_id=record.id,
        workflow_id=record.source_ref.workflow_id,
        node_id=record.source_ref.node_id,
        priority=EventPriority.MEDIUM,
        data={"record": record.to_dict(), "needs_fixing": needs_fixing},
    )


def iteration_started_event(state: IterationState) -> RemediationEvent:
    """Create an iteration started event."""
    workflow_id, node_id, error_type = state.key
    return RemediationEvent(
        event_type=EventType.ITERATION_STARTED,
        error_id=state.record.id,
        workflow_id=workflow_id,
        node_id=node_id,
        priority=EventPriority.MEDIUM,
        data={
            "error_type": error_type.value,
            "message": state.record.message,
            "deadline_at": state.deadline_at,
        },
    )


def iteration_attempt_event(state: IterationState) -> RemediationEvent:
    """Create a per-attempt progress event."""
    workflow_id, node_id, _ = state.key
    attempt = state.last_attempt
    return RemediationEvent(
        event_type=EventType.ITERATION_ATTEMPT,
        error_id=state.record.id,
        workflow_id=workflow_id,
        node_id=node_id,
        priority=EventPriority.LOW,
        data={
            "attempt_count": state.attempt_count,
            "attempt": attempt.to_dict() if attempt else None,
        },
    )


def iteration_terminal_event(state: IterationState) -> RemediationEvent:
    """Create the terminal event for a finished loop.

    Completed loops produce ``iteration_completed``; failed and stopped
    loops produce ``iteration_failed`` carrying the full attempt history.
    """
    workflow_id, node_id, _ = state.key
    succeeded = state.status == IterationStatus.COMPLETED
    return RemediationEvent(
        event_type=EventType.ITERATION_COMPLETED if succeeded else EventType.ITERATION_FAILED,
        error_id=state.record.id,
        workflow_id=workflow_id,
        node_id=node_id,
        priority=EventPriority.HIGH,
        data={
            "status": state.status.value,
            "attempt_count": state.attempt_count,
            "history": [a.to_dict() for a in state.history],
            "duration_seconds": (state.finished_at or state.started_at) - state.started_at,
        },
    )
