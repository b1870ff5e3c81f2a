"""Execution engine and fix verification.

Key Components:
- LocalExecutionEngine: Syntax checks and subprocess dry runs of code nodes
- verify_fix: Syntax, dry-run and guard phases with short-circuit
- check_guards: Rejects code using disallowed primitives

Usage:
    from remediator.engine import LocalExecutionEngine, verify_fix

    engine = LocalExecutionEngine()
    result = await verify_fix(engine, definition, target_ref)
"""

from .guards import check_guards, strip_comments
from .local import (
    SYNTHETIC_INPUT,
    ExecutionEngine,
    LocalExecutionEngine,
    is_well_formed,
)
from .syntax import (
    check_code,
    check_javascript,
    check_python,
    find_node_binary,
    scan_delimiters,
)
from .verify import verify_fix

__all__ = [
    "ExecutionEngine",
    "LocalExecutionEngine",
    "SYNTHETIC_INPUT",
    "is_well_formed",
    "verify_fix",
    "check_guards",
    "strip_comments",
    "check_code",
    "check_javascript",
    "check_python",
    "find_node_binary",
    "scan_delimiters",
]
