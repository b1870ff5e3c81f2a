"""Shared data model for the remediation loop.

Every component exchanges these types: the detector emits ErrorRecords,
the analyzer returns Analysis objects, the fixer produces Fix/FixOutcome
pairs, the controller tracks IterationState and the knowledge store keeps
Patterns, FixTemplates and LearningRecords.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class ErrorType(str, Enum):
    """Closed set of error types the detector can produce."""

    JAVASCRIPT_ERROR = "javascript_error"
    PYTHON_ERROR = "python_error"
    SYNTAX_ERROR = "syntax_error"
    JSON_ERROR = "json_error"
    DATA_ERROR = "data_error"
    CONFIG_ERROR = "config_error"
    API_ERROR = "api_error"
    EXECUTION_ERROR = "execution_error"


class Severity(str, Enum):
    """Error severity levels, ordered from least to most severe."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)


_SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


class Complexity(str, Enum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


class FixKind(str, Enum):
    """Where a fix came from."""

    TEMPLATE = "template"
    GENERATED = "generated"


class TestPhase(str, Enum):
    """Phases of post-fix testing, run in this order."""

    __test__ = False

    SYNTAX = "syntax"
    EXECUTION = "execution"
    SEMANTICS = "semantics"


class AttemptPhase(str, Enum):
    """Step of an iteration attempt at which it ended."""

    ANALYSIS = "analysis"
    FIXING = "fixing"
    TESTING = "testing"


class IterationStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


# Error types the loop will try to remediate at all
REMEDIABLE_TYPES = frozenset(
    {
        ErrorType.JAVASCRIPT_ERROR,
        ErrorType.PYTHON_ERROR,
        ErrorType.SYNTAX_ERROR,
        ErrorType.JSON_ERROR,
        ErrorType.DATA_ERROR,
        ErrorType.CONFIG_ERROR,
    }
)

# Error types an analysis may mark as automatically fixable
AUTO_FIXABLE_TYPES = frozenset(
    {
        ErrorType.JAVASCRIPT_ERROR,
        ErrorType.PYTHON_ERROR,
        ErrorType.SYNTAX_ERROR,
        ErrorType.CONFIG_ERROR,
    }
)

# Failure signatures that end an iteration loop immediately
CRITICAL_SIGNATURES = [
    r"ENOENT",
    r"no such file or directory",
    r"permission denied",
    r"EACCES",
    r"out of memory",
    r"heap out of memory",
    r"MemoryError",
    r"maximum call stack",
    r"RecursionError",
    r"stack overflow",
]

NODE_TYPE_PREFIX = "n8n-nodes-base."


def normalize_node_type(node_type: Optional[str]) -> Optional[str]:
    """Strip the vendor prefix so ``code`` and ``n8n-nodes-base.code`` compare equal."""
    if not node_type:
        return None
    node_type = node_type.strip().lower()
    if node_type.startswith(NODE_TYPE_PREFIX):
        node_type = node_type[len(NODE_TYPE_PREFIX):]
    return node_type


def needs_fixing(error_type: ErrorType, severity: Severity) -> bool:
    """Whether an error of this type and severity should enter the loop."""
    return error_type in REMEDIABLE_TYPES and severity != Severity.CRITICAL


@dataclass(frozen=True)
class SourceRef:
    """Where an error came from."""

    workflow_id: Optional[str] = None
    node_id: Optional[str] = None
    node_type: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "workflow_id": self.workflow_id,
            "node_id": self.node_id,
            "node_type": self.node_type,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SourceRef":
        return cls(
            workflow_id=data.get("workflow_id"),
            node_id=data.get("node_id"),
            node_type=data.get("node_type"),
        )


@dataclass(frozen=True)
class ErrorRecord:
    """A structured, immutable error extracted from a signal.

    Attributes:
        id: Deterministic id derived from type, source and time bucket
        type: Classified error type
        message: Error message as observed
        severity: Assessed severity
        source_ref: Workflow/node the error belongs to
        timestamp: Epoch seconds at which the error occurred
        raw_context: Unparsed context (raw line, path, warnings)
    """

    id: str
    type: ErrorType
    message: str
    severity: Severity
    source_ref: SourceRef = field(default_factory=SourceRef)
    timestamp: float = field(default_factory=time.time)
    raw_context: dict = field(default_factory=dict)

    @property
    def needs_fixing(self) -> bool:
        return needs_fixing(self.type, self.severity)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "message": self.message,
            "severity": self.severity.value,
            "source_ref": self.source_ref.to_dict(),
            "timestamp": self.timestamp,
            "raw_context": dict(self.raw_context),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ErrorRecord":
        return cls(
            id=data["id"],
            type=ErrorType(data["type"]),
            message=data.get("message", ""),
            severity=Severity(data.get("severity", "medium")),
            source_ref=SourceRef.from_dict(data.get("source_ref", {})),
            timestamp=data.get("timestamp", time.time()),
            raw_context=data.get("raw_context", {}),
        )


@dataclass
class MatchRule:
    """Rule used to decide whether a pattern applies to an error.

    Attributes:
        message_pattern: Case-insensitive regex searched in the message
        node_type: Node type the error must come from, if set
        conditions: Extra checks, each ``{"type": ..., "value": ...}``
            with type one of ``contains``, ``severity``, ``node_type``
    """

    message_pattern: Optional[str] = None
    node_type: Optional[str] = None
    conditions: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "message_pattern": self.message_pattern,
            "node_type": self.node_type,
            "conditions": list(self.conditions),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MatchRule":
        return cls(
            message_pattern=data.get("message_pattern"),
            node_type=data.get("node_type"),
            conditions=data.get("conditions", []),
        )


@dataclass
class Pattern:
    """A known error signature."""

    id: str
    error_type: ErrorType
    match_rule: MatchRule
    name: str = ""
    description: str = ""
    common_causes: list[str] = field(default_factory=list)
    quick_fix_hint: Optional[str] = None
    confidence: float = 0.5
    learned: bool = False
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "error_type": self.error_type.value,
            "match_rule": self.match_rule.to_dict(),
            "name": self.name,
            "description": self.description,
            "common_causes": list(self.common_causes),
            "quick_fix_hint": self.quick_fix_hint,
            "confidence": self.confidence,
            "learned": self.learned,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Pattern":
        return cls(
            id=data["id"],
            error_type=ErrorType(data["error_type"]),
            match_rule=MatchRule.from_dict(data.get("match_rule", {})),
            name=data.get("name", ""),
            description=data.get("description", ""),
            common_causes=data.get("common_causes", []),
            quick_fix_hint=data.get("quick_fix_hint"),
            confidence=data.get("confidence", 0.5),
            learned=data.get("learned", False),
            created_at=data.get("created_at", datetime.now().isoformat()),
        )


@dataclass
class PatternMatch:
    """A pattern together with how well it matched a specific error."""

    pattern: Pattern
    match_confidence: float

    def to_dict(self) -> dict:
        return {
            "pattern_id": self.pattern.id,
            "pattern_name": self.pattern.name,
            "match_confidence": self.match_confidence,
            "common_causes": list(self.pattern.common_causes),
            "quick_fix_hint": self.pattern.quick_fix_hint,
        }


@dataclass
class Recommendation:
    """A concrete code replacement proposed by the analysis step."""

    description: str
    new_code: str
    reasoning: str = ""

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "new_code": self.new_code,
            "reasoning": self.reasoning,
        }


@dataclass
class Analysis:
    """Diagnosis of an error record.

    Attributes:
        error_id: Id of the analyzed ErrorRecord
        root_cause: Short statement of the root cause
        severity: Severity as judged by the analysis
        complexity: Estimated fix complexity
        confidence: Confidence in the diagnosis, 0.0-1.0
        can_auto_fix: Whether the loop may attempt an automatic fix
        pattern_match: Best matching known pattern, if any
        problem_description: Longer explanation
        recommendation: Optional code replacement to try first
        fallback: True when produced without a model judgment
    """

    error_id: str
    root_cause: str
    severity: Severity
    complexity: Complexity
    confidence: float
    can_auto_fix: bool
    pattern_match: Optional[PatternMatch] = None
    problem_description: str = ""
    recommendation: Optional[Recommendation] = None
    fallback: bool = False

    def to_dict(self) -> dict:
        return {
            "error_id": self.error_id,
            "root_cause": self.root_cause,
            "severity": self.severity.value,
            "complexity": self.complexity.value,
            "confidence": self.confidence,
            "can_auto_fix": self.can_auto_fix,
            "pattern_match": self.pattern_match.to_dict() if self.pattern_match else None,
            "problem_description": self.problem_description,
            "recommendation": self.recommendation.to_dict() if self.recommendation else None,
            "fallback": self.fallback,
        }


@dataclass
class FixTemplate:
    """A reusable code fix."""

    id: str
    name: str
    code: str
    applicable_error_types: list[str] = field(default_factory=list)
    node_types: list[str] = field(default_factory=list)
    confidence: float = 0.5
    description: str = ""
    language: str = "javascript"
    promoted: bool = False
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def applies_to(
        self,
        error_type: ErrorType,
        node_type: Optional[str] = None,
        pattern_id: Optional[str] = None,
    ) -> bool:
        """Check whether this template can address the error.

        ``applicable_error_types`` may name error types or pattern ids.
        """
        keys = set(self.applicable_error_types)
        if error_type.value not in keys and (pattern_id is None or pattern_id not in keys):
            return False
        if node_type and self.node_types:
            wanted = normalize_node_type(node_type)
            return wanted in {normalize_node_type(t) for t in self.node_types}
        return True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "applicable_error_types": list(self.applicable_error_types),
            "node_types": list(self.node_types),
            "confidence": self.confidence,
            "description": self.description,
            "language": self.language,
            "promoted": self.promoted,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FixTemplate":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            code=data.get("code", ""),
            applicable_error_types=data.get("applicable_error_types", []),
            node_types=data.get("node_types", []),
            confidence=data.get("confidence", 0.5),
            description=data.get("description", ""),
            language=data.get("language", "javascript"),
            promoted=data.get("promoted", False),
            created_at=data.get("created_at", datetime.now().isoformat()),
        )


@dataclass(frozen=True)
class TargetRef:
    """Addresses one field of one node in one workflow definition."""

    workflow_id: str
    node_id: str
    field: str = "jsCode"

    def to_dict(self) -> dict:
        return {"workflow_id": self.workflow_id, "node_id": self.node_id, "field": self.field}


@dataclass
class Fix:
    """A concrete change to a node's code."""

    id: str
    kind: FixKind
    description: str
    code: str
    target_ref: TargetRef
    reasoning: str = ""
    template_id: Optional[str] = None
    pattern_id: Optional[str] = None
    risk_level: str = "medium"
    test_cases: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "description": self.description,
            "code": self.code,
            "target_ref": self.target_ref.to_dict(),
            "reasoning": self.reasoning,
            "template_id": self.template_id,
            "pattern_id": self.pattern_id,
            "risk_level": self.risk_level,
            "test_cases": list(self.test_cases),
        }


@dataclass
class FixOutcome:
    """Result of trying to apply a fix."""

    success: bool
    fix: Optional[Fix] = None
    reason: Optional[str] = None
    attempts: int = 0
    updated_definition: Optional[dict] = field(default=None, repr=False)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "fix": self.fix.to_dict() if self.fix else None,
            "reason": self.reason,
            "attempts": self.attempts,
        }


@dataclass
class TestResult:
    """Outcome of testing a fixed definition."""

    __test__ = False

    success: bool
    phase: TestPhase
    error: Optional[str] = None
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "phase": self.phase.value,
            "error": self.error,
            "details": dict(self.details),
        }


@dataclass
class Attempt:
    """One pass through analyze -> fix -> test."""

    number: int
    phase: AttemptPhase
    success: bool
    error: Optional[str] = None
    analysis: Optional[Analysis] = None
    fix: Optional[Fix] = None
    test_result: Optional[TestResult] = None
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "number": self.number,
            "phase": self.phase.value,
            "success": self.success,
            "error": self.error,
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "fix": self.fix.to_dict() if self.fix else None,
            "test_result": self.test_result.to_dict() if self.test_result else None,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


IterationKey = tuple[str, str, ErrorType]


@dataclass
class IterationState:
    """Live state of one remediation loop."""

    key: IterationKey
    record: ErrorRecord
    started_at: float
    deadline_at: float
    status: IterationStatus = IterationStatus.RUNNING
    attempt_count: int = 0
    history: list[Attempt] = field(default_factory=list)
    finished_at: Optional[float] = None

    @property
    def last_attempt(self) -> Optional[Attempt]:
        return self.history[-1] if self.history else None

    @property
    def is_terminal(self) -> bool:
        return self.status != IterationStatus.RUNNING

    def to_dict(self) -> dict:
        workflow_id, node_id, error_type = self.key
        return {
            "key": {"workflow_id": workflow_id, "node_id": node_id, "error_type": error_type.value},
            "error_id": self.record.id,
            "status": self.status.value,
            "attempt_count": self.attempt_count,
            "history": [a.to_dict() for a in self.history],
            "started_at": self.started_at,
            "deadline_at": self.deadline_at,
            "finished_at": self.finished_at,
        }


@dataclass
class LearningRecord:
    """Aggregated success counts for a template or pattern against an error type."""

    subject: str
    error_type: str
    successes: int = 0
    total: int = 0

    @property
    def success_rate(self) -> float:
        return self.successes / self.total if self.total > 0 else 0.0

    def to_dict(self) -> dict:
        return {
            "subject": self.subject,
            "error_type": self.error_type,
            "successes": self.successes,
            "total": self.total,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LearningRecord":
        return cls(
            subject=data["subject"],
            error_type=data["error_type"],
            successes=data.get("successes", 0),
            total=data.get("total", 0),
        )


def iteration_key(record: ErrorRecord) -> IterationKey:
    """Build the exclusivity key for an error record."""
    ref = record.source_ref
    return (ref.workflow_id or "unknown", ref.node_id or "unknown", record.type)


def serialize(value: Any) -> Any:
    """Convert a model object (or container of them) to plain JSON data."""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    return value
