"""Problem analyzer.

Analysis runs in four steps: cache lookup, pattern matching against the
knowledge store, a structured judgment from the model service, and the
auto-fix decision. When the model call fails or its answer does not
validate, a conservative fallback analysis is returned instead.
"""

import json
import logging
from typing import Any, Optional

from ..definitions import DefinitionStore
from ..errors import DefinitionStoreError
from ..knowledge import KnowledgeStore
from ..llm import AnalysisResponse, ModelPrompt, ModelService
from ..models import (
    AUTO_FIXABLE_TYPES,
    Analysis,
    Complexity,
    ErrorRecord,
    PatternMatch,
    Recommendation,
    Severity,
)
from ..workflow import find_node
from .cache import AnalysisCache, InMemoryAnalysisCache, cache_key
from .prompts import build_analysis_prompt

logger = logging.getLogger(__name__)

AUTO_FIX_MIN_CONFIDENCE = 0.7
FALLBACK_CONFIDENCE = 0.3
MAX_EXCERPT_CHARS = 4000


def can_auto_fix(record: ErrorRecord, complexity: Complexity, confidence: float) -> bool:
    """Whether an analysis allows an automatic fix."""
    return (
        record.type in AUTO_FIXABLE_TYPES
        and complexity != Complexity.COMPLEX
        and confidence >= AUTO_FIX_MIN_CONFIDENCE
    )


class ProblemAnalyzer:
    """Diagnoses error records.

    Example:
        analyzer = ProblemAnalyzer(knowledge, model_service, definitions)
        analysis = await analyzer.analyze(record)
        if analysis.can_auto_fix:
            ...
    """

    def __init__(
        self,
        knowledge: KnowledgeStore,
        model_service: Optional[ModelService] = None,
        definitions: Optional[DefinitionStore] = None,
        cache: Optional[AnalysisCache] = None,
    ):
        """Initialize the analyzer.

        Args:
            knowledge: Store consulted for known patterns
            model_service: External model; None always yields fallback analyses
            definitions: Store used to read the failing node for context
            cache: Analysis cache, one per analyzer by default
        """
        self.knowledge = knowledge
        self.model_service = model_service
        self.definitions = definitions
        self.cache = cache if cache is not None else InMemoryAnalysisCache()

        self._analyses = 0
        self._model_analyses = 0
        self._fallbacks = 0

    async def analyze(self, record: ErrorRecord) -> Analysis:
        """Analyze an error record.

        Args:
            record: The error to analyze

        Returns:
            Analysis, possibly cached or a fallback
        """
        key = cache_key(record)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Analysis cache hit for {record.id}")
            return cached

        self._analyses += 1
        matches = self.knowledge.match_patterns(record.type, record)
        best = matches[0] if matches else None
        if best:
            logger.info(
                f"Error {record.id} matches pattern {best.pattern.id} "
                f"({best.match_confidence:.2f})"
            )

        analysis = await self._model_analysis(record, best)
        if analysis is None:
            analysis = self.fallback_analysis(record, best)
            self._fallbacks += 1
        else:
            self._model_analyses += 1

        self.cache.set(key, analysis)
        return analysis

    async def _model_analysis(
        self, record: ErrorRecord, best: Optional[PatternMatch]
    ) -> Optional[Analysis]:
        if self.model_service is None:
            return None

        excerpt = await self._definition_excerpt(record)
        prompt = ModelPrompt(
            prompt=build_analysis_prompt(record, best, excerpt),
            response_schema=AnalysisResponse,
            purpose="analysis",
        )
        try:
            result = await self.model_service.request(prompt)
        except Exception as e:
            logger.warning(f"Model service failed during analysis of {record.id}: {e}")
            return None

        if not result.success or not result.parsed_output:
            logger.warning(f"Unusable analysis for {record.id}: {result.error}")
            return None

        try:
            return self._to_analysis(record, best, result.parsed_output)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Malformed analysis for {record.id}: {e}")
            return None

    def _to_analysis(
        self, record: ErrorRecord, best: Optional[PatternMatch], data: dict[str, Any]
    ) -> Analysis:
        complexity = Complexity(data["complexity"])
        confidence = float(data["confidence"])
        recommendation = None
        rec = data.get("recommendation")
        if rec and rec.get("new_code", "").strip():
            recommendation = Recommendation(
                description=rec.get("description", ""),
                new_code=rec["new_code"],
                reasoning=rec.get("reasoning", ""),
            )
        return Analysis(
            error_id=record.id,
            root_cause=data["root_cause"],
            severity=Severity(data.get("severity", record.severity.value)),
            complexity=complexity,
            confidence=confidence,
            can_auto_fix=can_auto_fix(record, complexity, confidence),
            pattern_match=best,
            problem_description=data.get("problem_description", ""),
            recommendation=recommendation,
        )

    def fallback_analysis(
        self, record: ErrorRecord, best: Optional[PatternMatch] = None
    ) -> Analysis:
        """Conservative analysis used when no model judgment is available."""
        root_cause = "Unknown; automatic analysis unavailable"
        if best:
            root_cause = best.pattern.description or best.pattern.name or root_cause
        return Analysis(
            error_id=record.id,
            root_cause=root_cause,
            severity=record.severity,
            complexity=Complexity.MEDIUM,
            confidence=FALLBACK_CONFIDENCE,
            can_auto_fix=False,
            pattern_match=best,
            problem_description=record.message,
            fallback=True,
        )

    async def _definition_excerpt(self, record: ErrorRecord) -> Optional[str]:
        ref = record.source_ref
        if self.definitions is None or not ref.workflow_id:
            return None
        try:
            definition = await self.definitions.read(ref.workflow_id)
        except (DefinitionStoreError, OSError) as e:
            logger.debug(f"No definition excerpt for {ref.workflow_id}: {e}")
            return None

        node = find_node(definition, ref.node_id) if ref.node_id else None
        excerpt = json.dumps(node if node is not None else definition, indent=2)
        return excerpt[:MAX_EXCERPT_CHARS]

    def clear_cache(self) -> None:
        self.cache.clear()

    def get_stats(self) -> dict[str, Any]:
        """Get analyzer statistics."""
        stats: dict[str, Any] = {
            "analyses": self._analyses,
            "model_analyses": self._model_analyses,
            "fallbacks": self._fallbacks,
        }
        cache_stats = getattr(self.cache, "stats", None)
        if cache_stats is not None:
            stats["cache"] = cache_stats.to_dict()
        return stats
