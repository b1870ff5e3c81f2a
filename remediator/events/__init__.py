"""Remediation events.

Events are emitted by the detector and the iteration controller and
delivered to registered callbacks (console output, event log, tests).
"""

from .emitter import EventEmitter
from .types import (
    EventPriority,
    EventType,
    RemediationEvent,
    error_detected_event,
    iteration_attempt_event,
    iteration_started_event,
    iteration_terminal_event,
)

__all__ = [
    "EventEmitter",
    "EventPriority",
    "EventType",
    "RemediationEvent",
    "error_detected_event",
    "iteration_started_event",
    "iteration_attempt_event",
    "iteration_terminal_event",
]
