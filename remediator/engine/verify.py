"""Three-phase verification of an applied fix."""

import logging
from typing import Optional

from ..models import TargetRef, TestPhase, TestResult
from ..workflow import CODE_FIELDS, find_node, language_for_field
from .guards import check_guards
from .local import ExecutionEngine

logger = logging.getLogger(__name__)


async def verify_fix(
    engine: ExecutionEngine,
    definition: dict,
    target_ref: TargetRef,
    synthetic_input: Optional[list[dict]] = None,
) -> TestResult:
    """Verify a fixed definition: syntax, dry run, then guards.

    Phases run in order and stop at the first failure. The guard phase
    applies only when the changed field holds code.

    Args:
        engine: Engine used for the syntax and dry-run phases
        definition: The fixed workflow definition
        target_ref: Node and field the fix changed
        synthetic_input: Input items for the dry run

    Returns:
        TestResult of the failing phase, or of the last phase on success
    """
    result = await engine.validate_syntax(definition, target_ref)
    if not result.success:
        return result

    result = await engine.run_dry_execution(definition, target_ref, synthetic_input)
    if not result.success:
        return result

    if target_ref.field not in CODE_FIELDS:
        return TestResult(success=True, phase=TestPhase.SEMANTICS, details={"guarded": False})

    node = find_node(definition, target_ref.node_id)
    code = (node or {}).get("parameters", {}).get(target_ref.field)
    if not isinstance(code, str):
        return TestResult(
            success=False,
            phase=TestPhase.SEMANTICS,
            error=f"No {target_ref.field} found on node {target_ref.node_id}",
        )

    violation = check_guards(code, language_for_field(target_ref.field))
    if violation:
        logger.info(f"Fix for {target_ref.workflow_id}/{target_ref.node_id} rejected: {violation}")
        return TestResult(success=False, phase=TestPhase.SEMANTICS, error=violation)
    return TestResult(success=True, phase=TestPhase.SEMANTICS, details={"guarded": True})
