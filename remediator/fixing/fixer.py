"""Code fixer.

Selects a fix for an analyzed error and applies it to the failing node.
Candidates are tried in order: the analysis recommendation, knowledge
store templates, then a fix generated by the model service. A candidate
identical to one already tried for the same node is skipped.
"""

import copy
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from ..analysis.prompts import build_fix_prompt
from ..definitions import DefinitionStore
from ..errors import DefinitionStoreError, ModelServiceError
from ..knowledge import KnowledgeStore
from ..llm import FixResponse, ModelPrompt, ModelService
from ..models import (
    Analysis,
    Attempt,
    AttemptPhase,
    ErrorRecord,
    Fix,
    FixKind,
    FixOutcome,
    FixTemplate,
    TargetRef,
)
from ..workflow import CODE_FIELDS, code_field, find_node, language_for_field

logger = logging.getLogger(__name__)

MAX_ATTEMPTS_REASON = "max attempts exceeded"
NO_FIX_REASON = "Could not generate fix"
FIX_METADATA_KEY = "_fixMetadata"

_MISSING = object()


@dataclass
class _TargetHistory:
    """Fix history for one (workflow, node) pair."""

    attempts: int = 0
    tried: list[Fix] = field(default_factory=list)
    original_value: Any = _MISSING
    original_field: Optional[str] = None

    def has_tried(self, code: str, description: str) -> bool:
        return any(f.code == code or f.description == description for f in self.tried)


def _escape(value: str, limit: int = 200) -> str:
    value = value[:limit]
    for old, new in (("\\", "\\\\"), ("'", "\\'"), ('"', '\\"'), ("`", "\\`"), ("\n", " "), ("\r", " ")):
        value = value.replace(old, new)
    return value


def customize_template(template: FixTemplate, record: ErrorRecord) -> str:
    """Fill a template's placeholders for a specific error."""
    ref = record.source_ref
    return (
        template.code.replace("{{nodeId}}", _escape(ref.node_id or "unknown"))
        .replace("{{workflowId}}", _escape(ref.workflow_id or "unknown"))
        .replace("{{errorMessage}}", _escape(record.message))
    )


class CodeFixer:
    """Selects and applies fixes to workflow nodes.

    Example:
        fixer = CodeFixer(knowledge, definitions, model_service)
        outcome = await fixer.apply_fix(record, analysis)
        if not outcome.success:
            print(outcome.reason)
    """

    def __init__(
        self,
        knowledge: KnowledgeStore,
        definitions: DefinitionStore,
        model_service: Optional[ModelService] = None,
        max_attempts: int = 5,
        default_field: str = "jsCode",
    ):
        """Initialize the fixer.

        Args:
            knowledge: Store providing fix templates
            definitions: Store the target definitions are read from and written to
            model_service: External model for generated fixes
            max_attempts: Fix attempts allowed per (workflow, node)
            default_field: Code field used when a node has none yet
        """
        self.knowledge = knowledge
        self.definitions = definitions
        self.model_service = model_service
        self.max_attempts = max_attempts
        self.default_field = default_field

        self._history: dict[tuple[str, str], _TargetHistory] = {}
        self._applied_by_kind: dict[str, int] = {k.value: 0 for k in FixKind}
        self._failures = 0

    @classmethod
    def from_config(cls, config, knowledge, definitions, model_service=None) -> "CodeFixer":
        """Create a fixer from a RemediationConfig."""
        return cls(
            knowledge=knowledge,
            definitions=definitions,
            model_service=model_service,
            max_attempts=config.fixer.max_fix_attempts,
            default_field=config.fixer.default_code_field,
        )

    def get_attempts(self, workflow_id: str, node_id: str) -> int:
        hist = self._history.get((workflow_id, node_id))
        return hist.attempts if hist else 0

    def tried_fixes(self, workflow_id: str, node_id: str) -> list[Fix]:
        hist = self._history.get((workflow_id, node_id))
        return list(hist.tried) if hist else []

    async def apply_fix(
        self,
        record: ErrorRecord,
        analysis: Analysis,
        history: Optional[list[Attempt]] = None,
    ) -> FixOutcome:
        """Select a fix for the error and apply it to a copy of the definition.

        Args:
            record: Error being fixed
            analysis: Analysis of the error
            history: Attempts so far, summarized for generated fixes

        Returns:
            FixOutcome; ``success`` means the fix was written, not that it works
        """
        ref = record.source_ref
        if not ref.workflow_id or not ref.node_id:
            return FixOutcome(success=False, reason="Error has no target workflow node")

        key = (ref.workflow_id, ref.node_id)
        hist = self._history.setdefault(key, _TargetHistory())
        if hist.attempts >= self.max_attempts:
            logger.info(f"Fix attempts exhausted for {key}")
            return FixOutcome(success=False, reason=MAX_ATTEMPTS_REASON, attempts=hist.attempts)

        hist.attempts += 1
        try:
            return await self._apply(record, analysis, hist, history)
        except (DefinitionStoreError, ModelServiceError, OSError) as e:
            self._failures += 1
            logger.warning(f"Fix attempt {hist.attempts} for {key} failed: {e}")
            return FixOutcome(success=False, reason=str(e), attempts=hist.attempts)

    async def _apply(
        self,
        record: ErrorRecord,
        analysis: Analysis,
        hist: _TargetHistory,
        history: Optional[list[Attempt]],
    ) -> FixOutcome:
        ref = record.source_ref
        definition = await self.definitions.read(ref.workflow_id)
        node = find_node(definition, ref.node_id)
        if node is None:
            self._failures += 1
            return FixOutcome(
                success=False,
                reason=f"Node {ref.node_id} not found in workflow {ref.workflow_id}",
                attempts=hist.attempts,
            )

        field_name = record.raw_context.get("field") or code_field(node, self.default_field)
        target = TargetRef(workflow_id=ref.workflow_id, node_id=ref.node_id, field=field_name)
        current = (node.get("parameters") or {}).get(field_name)

        fix = await self._select_fix(record, analysis, hist, target, current, history)
        if fix is None:
            self._failures += 1
            return FixOutcome(success=False, reason=NO_FIX_REASON, attempts=hist.attempts)
        hist.tried.append(fix)

        updated = copy.deepcopy(definition)
        updated_node = find_node(updated, ref.node_id)
        params = updated_node.setdefault("parameters", {})
        if hist.original_value is _MISSING:
            hist.original_value = copy.deepcopy(params.get(field_name))
            hist.original_field = field_name
        params[field_name] = fix.code
        updated_node[FIX_METADATA_KEY] = {
            "fix_id": fix.id,
            "kind": fix.kind.value,
            "description": fix.description,
            "template_id": fix.template_id,
            "error_id": record.id,
            "attempt": hist.attempts,
            "applied_at": time.time(),
        }

        await self.definitions.write(ref.workflow_id, updated)
        self._applied_by_kind[fix.kind.value] += 1
        logger.info(
            f"Applied {fix.kind.value} fix '{fix.description}' to "
            f"{ref.workflow_id}/{ref.node_id} (attempt {hist.attempts})"
        )
        return FixOutcome(
            success=True, fix=fix, attempts=hist.attempts, updated_definition=updated
        )

    async def _select_fix(
        self,
        record: ErrorRecord,
        analysis: Analysis,
        hist: _TargetHistory,
        target: TargetRef,
        current: Any,
        history: Optional[list[Attempt]],
    ) -> Optional[Fix]:
        pattern_id = analysis.pattern_match.pattern.id if analysis.pattern_match else None

        rec = analysis.recommendation
        if rec and rec.new_code.strip() and not hist.has_tried(rec.new_code, rec.description):
            return Fix(
                id=_fix_id(),
                kind=FixKind.GENERATED,
                description=rec.description or "Recommended code replacement",
                code=rec.new_code,
                target_ref=target,
                reasoning=rec.reasoning,
                pattern_id=pattern_id,
            )

        if target.field in CODE_FIELDS:
            language = language_for_field(target.field)
            templates = self.knowledge.find_templates(
                record.type, record.source_ref.node_type, pattern_id
            )
            for template in templates:
                if template.language != language:
                    continue
                code = customize_template(template, record)
                description = f"Apply template: {template.name}"
                if hist.has_tried(code, description):
                    continue
                return Fix(
                    id=_fix_id(),
                    kind=FixKind.TEMPLATE,
                    description=description,
                    code=code,
                    target_ref=target,
                    reasoning=template.description,
                    template_id=template.id,
                    pattern_id=pattern_id,
                )

        return await self._generate_fix(record, analysis, hist, target, current, history, pattern_id)

    async def _generate_fix(
        self,
        record: ErrorRecord,
        analysis: Analysis,
        hist: _TargetHistory,
        target: TargetRef,
        current: Any,
        history: Optional[list[Attempt]],
        pattern_id: Optional[str],
    ) -> Optional[Fix]:
        if self.model_service is None:
            return None

        if history is None:
            history = [
                Attempt(number=i + 1, phase=AttemptPhase.TESTING, success=False, fix=f)
                for i, f in enumerate(hist.tried)
            ]
        failed = [a for a in history if not a.success]
        prompt = ModelPrompt(
            prompt=build_fix_prompt(
                record,
                analysis,
                target.field,
                current if isinstance(current, str) else None,
                failed,
            ),
            response_schema=FixResponse,
            purpose="fix",
        )
        try:
            result = await self.model_service.request(prompt)
        except Exception as e:
            logger.warning(f"Model service failed while generating fix for {record.id}: {e}")
            return None

        if not result.success or not result.parsed_output:
            logger.warning(f"No usable fix generated for {record.id}: {result.error}")
            return None

        data = result.parsed_output
        code = data.get("fixed_code", "")
        description = data.get("description", "")
        if not code.strip():
            return None
        if hist.has_tried(code, description):
            logger.info(f"Generated fix for {record.id} repeats an earlier attempt, skipping")
            return None

        return Fix(
            id=_fix_id(),
            kind=FixKind.GENERATED,
            description=description or "Generated fix",
            code=code,
            target_ref=target,
            reasoning=data.get("reasoning", ""),
            pattern_id=pattern_id,
            risk_level=data.get("risk_level", "medium"),
            test_cases=list(data.get("test_cases") or []),
        )

    async def rollback(self, workflow_id: str, node_id: str) -> bool:
        """Restore the value the node had before its first fix.

        Returns:
            True if a backed-up value was restored
        """
        hist = self._history.get((workflow_id, node_id))
        if hist is None or hist.original_value is _MISSING:
            return False

        definition = await self.definitions.read(workflow_id)
        node = find_node(definition, node_id)
        if node is None:
            return False
        params = node.setdefault("parameters", {})
        if hist.original_value is None:
            params.pop(hist.original_field, None)
        else:
            params[hist.original_field] = copy.deepcopy(hist.original_value)
        node.pop(FIX_METADATA_KEY, None)
        await self.definitions.write(workflow_id, definition)
        logger.info(f"Rolled back {workflow_id}/{node_id} to its original {hist.original_field}")
        return True

    def reset_attempts(self, workflow_id: str, node_id: str) -> None:
        """Forget the fix history of a node."""
        self._history.pop((workflow_id, node_id), None)

    def get_stats(self) -> dict[str, Any]:
        """Get fixer statistics."""
        return {
            "tracked_targets": len(self._history),
            "total_attempts": sum(h.attempts for h in self._history.values()),
            "applied_by_kind": dict(self._applied_by_kind),
            "failures": self._failures,
            "exhausted_targets": sum(
                1 for h in self._history.values() if h.attempts >= self.max_attempts
            ),
        }


def _fix_id() -> str:
    return f"fix-{uuid.uuid4().hex[:12]}"
