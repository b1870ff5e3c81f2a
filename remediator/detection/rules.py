"""Classification and extraction rules for log signals.

Classification rules are ranked: the first rule whose regex matches a
line decides the error type and base severity. Extraction rules pull the
workflow id, node id, node type and timestamp out of the same line.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from ..models import CRITICAL_SIGNATURES, ErrorType, Severity


@dataclass(frozen=True)
class ClassificationRule:
    """Maps a message regex to an error type and severity."""

    name: str
    pattern: str
    error_type: ErrorType
    severity: Severity

    def matches(self, text: str) -> bool:
        return bool(re.search(self.pattern, text, re.IGNORECASE))


# Ranked: earlier rules win
CLASSIFICATION_RULES = [
    ClassificationRule(
        name="json_parse",
        pattern=r"JSONDecodeError|Unexpected token .* in JSON|JSON\.parse|invalid json|Unexpected end of JSON",
        error_type=ErrorType.JSON_ERROR,
        severity=Severity.MEDIUM,
    ),
    ClassificationRule(
        name="syntax",
        pattern=r"SyntaxError|IndentationError|Unexpected (token|identifier|end of input)|Unterminated string",
        error_type=ErrorType.SYNTAX_ERROR,
        severity=Severity.HIGH,
    ),
    ClassificationRule(
        name="python",
        pattern=r"Traceback \(most recent call last\)|File \"[^\"]+\", line \d+|'NoneType' object|"
        r"(NameError|KeyError|AttributeError|IndexError|ZeroDivisionError|ValueError):",
        error_type=ErrorType.PYTHON_ERROR,
        severity=Severity.HIGH,
    ),
    ClassificationRule(
        name="javascript",
        pattern=r"ReferenceError|TypeError|RangeError|is not defined|Cannot read propert|is not a function|is not iterable",
        error_type=ErrorType.JAVASCRIPT_ERROR,
        severity=Severity.HIGH,
    ),
    ClassificationRule(
        name="config",
        pattern=r"invalid (url|endpoint|credentials?|configuration|parameter)|missing (required )?(parameter|credentials?|url)|"
        r"ECONNREFUSED|ENOTFOUND|getaddrinfo",
        error_type=ErrorType.CONFIG_ERROR,
        severity=Severity.HIGH,
    ),
    ClassificationRule(
        name="api",
        pattern=r"status code [45]\d\d|request failed|ETIMEDOUT|ECONNRESET|timed? ?out|unauthori[sz]ed|forbidden|rate limit|\b(401|403|429|500|502|503)\b",
        error_type=ErrorType.API_ERROR,
        severity=Severity.MEDIUM,
    ),
    ClassificationRule(
        name="data",
        pattern=r"invalid (data|input|item)|validation failed|missing field|expected .* but (got|received)|schema",
        error_type=ErrorType.DATA_ERROR,
        severity=Severity.MEDIUM,
    ),
    ClassificationRule(
        name="execution",
        pattern=r"execution (failed|error|stopped|crashed)|node .* failed|workflow .* failed|\berror\b",
        error_type=ErrorType.EXECUTION_ERROR,
        severity=Severity.MEDIUM,
    ),
]

# A line must contain one of these to be considered at all
ERROR_INDICATOR = re.compile(r"error|exception|fail|fatal|traceback|crash", re.IGNORECASE)

_CRITICAL = re.compile("|".join(CRITICAL_SIGNATURES), re.IGNORECASE)

TIMESTAMP_RE = re.compile(
    r"(\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:?\d{2})?)"
)

WORKFLOW_RULES = [
    re.compile(r"workflow[_ -]?id[\"']?\s*[=:]\s*[\"']?([\w-]+)", re.IGNORECASE),
    re.compile(r"workflow[^\w]*([a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12})", re.IGNORECASE),
    re.compile(r"workflow\s+[\"']([^\"']+)[\"']", re.IGNORECASE),
]

NODE_RULES = [
    re.compile(r"node[_ -]?id[\"']?\s*[=:]\s*[\"']?([\w-]+)", re.IGNORECASE),
    re.compile(r"node[^\w]*([a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12})", re.IGNORECASE),
    re.compile(r"node\s+[\"']([^\"']+)[\"']", re.IGNORECASE),
]

NODE_TYPE_RULES = [
    re.compile(r"node[_ -]?type[\"']?\s*[=:]\s*[\"']?([\w.-]+)", re.IGNORECASE),
    re.compile(r"(n8n-nodes-base\.\w+)"),
]


def has_error_indicator(text: str) -> bool:
    return bool(ERROR_INDICATOR.search(text))


def classify(text: str) -> Optional[tuple[ErrorType, Severity]]:
    """Classify an error message.

    The first matching rule decides; a critical failure signature raises
    the severity to critical.

    Returns:
        (error type, severity), or None if no rule matches
    """
    for rule in CLASSIFICATION_RULES:
        if rule.matches(text):
            severity = Severity.CRITICAL if _CRITICAL.search(text) else rule.severity
            return rule.error_type, severity
    return None


def is_critical(text: Optional[str]) -> bool:
    """Whether text contains a critical failure signature."""
    return bool(text) and bool(_CRITICAL.search(text))


def _first(rules: list[re.Pattern], text: str) -> Optional[str]:
    for rule in rules:
        match = rule.search(text)
        if match:
            return match.group(1)
    return None


def extract_workflow_id(text: str) -> Optional[str]:
    return _first(WORKFLOW_RULES, text)


def extract_node_id(text: str) -> Optional[str]:
    return _first(NODE_RULES, text)


def extract_node_type(text: str) -> Optional[str]:
    return _first(NODE_TYPE_RULES, text)


def parse_timestamp(value) -> Optional[float]:
    """Parse an ISO timestamp or epoch number into epoch seconds.

    Naive timestamps are taken as UTC; epoch values above 1e12 are
    treated as milliseconds.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value) / 1000.0 if value > 1e12 else float(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text.replace(" ", "T", 1))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def extract_timestamp(text: str) -> Optional[float]:
    match = TIMESTAMP_RE.search(text)
    return parse_timestamp(match.group(1)) if match else None
