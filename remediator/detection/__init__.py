"""Error detection from execution logs and workflow definitions.

Key Components:
- ErrorDetector: Classifies signals into deduplicated ErrorRecords
- SourceWatcher: Polls log and workflow directories for new signals
- InMemorySeenStore: Thread-safe record of emitted error ids

Usage:
    from remediator.detection import ErrorDetector, LogSignal

    detector = ErrorDetector(queue=queue, emitter=emitter)
    await detector.observe(LogSignal(line))
"""

from .dedup import InMemorySeenStore, SeenStore, make_error_id
from .detector import DefinitionSignal, DetectionEvent, ErrorDetector, LogSignal
from .rules import CLASSIFICATION_RULES, ClassificationRule, classify, is_critical
from .structure import StructureIssue, StructureReport, validate_definition
from .watcher import SourceWatcher

__all__ = [
    # Detector
    "ErrorDetector",
    "LogSignal",
    "DefinitionSignal",
    "DetectionEvent",
    # Dedup
    "SeenStore",
    "InMemorySeenStore",
    "make_error_id",
    # Rules
    "ClassificationRule",
    "CLASSIFICATION_RULES",
    "classify",
    "is_critical",
    # Structure
    "StructureIssue",
    "StructureReport",
    "validate_definition",
    # Watcher
    "SourceWatcher",
]
