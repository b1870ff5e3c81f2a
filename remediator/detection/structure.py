"""Structural validation of workflow definition files."""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from ..engine.syntax import check_code
from ..models import ErrorType, Severity
from ..workflow import code_field, is_code_node, is_http_node, language_for_field, url_problem

logger = logging.getLogger(__name__)

# Lint hints recorded as warnings; they never raise a record on their own
LINT_RULES = [
    (re.compile(r"console\.log\("), "console.log left in code node"),
    (re.compile(r"(?<![\w.])JSON\.parse\("), "JSON.parse without error handling"),
    (re.compile(r"\$input\(\)"), "$input called directly; use $input.all() or $input.first()"),
]


@dataclass
class StructureIssue:
    """A structural problem found in a definition."""

    error_type: ErrorType
    severity: Severity
    message: str
    node_id: Optional[str] = None
    node_type: Optional[str] = None
    field: Optional[str] = None


@dataclass
class StructureReport:
    """Result of validating one definition."""

    workflow_id: Optional[str] = None
    issues: list[StructureIssue] = field(default_factory=list)
    warnings: list[dict] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.issues


def lint_code(code: str) -> list[str]:
    hints = []
    for regex, hint in LINT_RULES:
        if regex.search(code):
            if hint.startswith("JSON.parse") and re.search(r"\btry\s*\{", code):
                continue
            hints.append(hint)
    return hints


def validate_definition(
    content: str,
    node_binary: Optional[str] = None,
    fallback_workflow_id: Optional[str] = None,
) -> StructureReport:
    """Validate the structure of a workflow definition.

    Args:
        content: Raw file content
        node_binary: Node.js executable for JavaScript syntax checks
        fallback_workflow_id: Id to use when the definition has none

    Returns:
        StructureReport listing issues and lint warnings
    """
    report = StructureReport(workflow_id=fallback_workflow_id)
    try:
        definition = json.loads(content)
    except json.JSONDecodeError as e:
        report.issues.append(
            StructureIssue(ErrorType.JSON_ERROR, Severity.CRITICAL, f"Invalid JSON: {e}")
        )
        return report

    if not isinstance(definition, dict):
        report.issues.append(
            StructureIssue(ErrorType.JSON_ERROR, Severity.CRITICAL, "Definition is not a JSON object")
        )
        return report

    report.workflow_id = str(definition.get("id") or fallback_workflow_id or "") or None

    nodes = definition.get("nodes")
    if not isinstance(nodes, list):
        report.issues.append(
            StructureIssue(ErrorType.SYNTAX_ERROR, Severity.HIGH, "Missing or invalid nodes array")
        )
        return report

    for index, node in enumerate(nodes):
        if not isinstance(node, dict):
            report.issues.append(
                StructureIssue(ErrorType.SYNTAX_ERROR, Severity.HIGH, f"Node {index} is not an object")
            )
            continue
        node_id = node.get("id") or node.get("name")
        node_type = node.get("type")
        if not node.get("id") or not node_type:
            report.issues.append(
                StructureIssue(
                    ErrorType.SYNTAX_ERROR,
                    Severity.HIGH,
                    f"Node {node_id or index} missing required id or type",
                    node_id=node_id,
                    node_type=node_type,
                )
            )
            continue

        if is_code_node(node):
            _check_code_node(node, node_id, node_type, node_binary, report)
        elif is_http_node(node):
            problem = url_problem(node)
            if problem:
                report.issues.append(
                    StructureIssue(
                        ErrorType.CONFIG_ERROR,
                        Severity.HIGH,
                        f"HTTP node {node_id}: {problem}",
                        node_id=node_id,
                        node_type=node_type,
                        field="url",
                    )
                )
    return report


def _check_code_node(node, node_id, node_type, node_binary, report: StructureReport) -> None:
    field_name = code_field(node)
    code = (node.get("parameters") or {}).get(field_name)
    if not code or not str(code).strip():
        report.issues.append(
            StructureIssue(
                ErrorType.SYNTAX_ERROR,
                Severity.HIGH,
                f"Code node {node_id} has empty code",
                node_id=node_id,
                node_type=node_type,
                field=field_name,
            )
        )
        return

    error = check_code(str(code), language_for_field(field_name), node_binary)
    if error:
        report.issues.append(
            StructureIssue(
                ErrorType.SYNTAX_ERROR,
                Severity.HIGH,
                f"Code node {node_id}: {error}",
                node_id=node_id,
                node_type=node_type,
                field=field_name,
            )
        )

    for hint in lint_code(str(code)):
        report.warnings.append({"node_id": node_id, "warning": hint})
