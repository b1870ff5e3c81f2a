"""Knowledge store for error patterns, fix templates and learning data.

The store keeps one document per error type (patterns, learning counters,
recent successes, outcome totals) plus one templates document, all as JSON
files under the knowledge directory. Reads are served from memory without
locking; writes to an error type's document are serialized with an
``asyncio.Lock`` for that type, and template writes with their own lock.
"""

import asyncio
import copy
import hashlib
import json
import logging
import re
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from ..models import (
    ErrorRecord,
    ErrorType,
    Fix,
    FixKind,
    FixTemplate,
    LearningRecord,
    MatchRule,
    Pattern,
    PatternMatch,
    TestResult,
    normalize_node_type,
)
from .seeds import DEFAULT_PATTERNS, DEFAULT_TEMPLATES

logger = logging.getLogger(__name__)

# Matches above this confidence are returned by find_patterns
MATCH_THRESHOLD = 0.5

GENERATED_SUBJECT = "generated"
UNFIXED_SUBJECT = "unfixed"

# Markers of reasonable node code; at least one is required for promotion
GOOD_PRACTICE_MARKERS = [
    r"\btry\s*[{:]",
    r"\$input\.all\(\)",
    r"_input\.all\(\)",
    r"return[\s\S]*json",
]


class _TypeDocument:
    """In-memory state for one error type."""

    def __init__(self, error_type: ErrorType):
        self.error_type = error_type
        self.patterns: dict[str, Pattern] = {}
        self.learning: dict[str, LearningRecord] = {}
        self.recent_successes: list[dict] = []
        self.successes = 0
        self.total = 0

    def to_dict(self) -> dict:
        return {
            "error_type": self.error_type.value,
            "patterns": [p.to_dict() for p in self.patterns.values()],
            "learning": [r.to_dict() for r in self.learning.values()],
            "recent_successes": list(self.recent_successes),
            "outcomes": {"successes": self.successes, "total": self.total},
            "updated_at": datetime.now().isoformat(),
        }

    @classmethod
    def from_dict(cls, error_type: ErrorType, data: dict) -> "_TypeDocument":
        doc = cls(error_type)
        for item in data.get("patterns", []):
            pattern = Pattern.from_dict(item)
            doc.patterns[pattern.id] = pattern
        for item in data.get("learning", []):
            record = LearningRecord.from_dict(item)
            doc.learning[record.subject] = record
        doc.recent_successes = data.get("recent_successes", [])
        outcomes = data.get("outcomes", {})
        doc.successes = outcomes.get("successes", 0)
        doc.total = outcomes.get("total", 0)
        return doc


class KnowledgeStore:
    """Persistent store of error patterns, fix templates and outcomes.

    Example:
        store = KnowledgeStore(Path(".remediator/knowledge"))
        patterns = store.find_patterns(record.type, record)
        templates = store.find_templates(record.type, pattern_id=patterns[0].id)
        await store.record_outcome(record, fix, test_result)
    """

    TEMPLATES_FILE = "templates.json"

    def __init__(
        self,
        knowledge_dir: Optional[str | Path] = None,
        recent_success_cap: int = 1000,
        promotion_min_code_length: int = 100,
        promotion_confidence: float = 0.6,
        pattern_confidence_step: float = 0.05,
        learned_pattern_confidence: float = 0.6,
        seed: bool = True,
    ):
        """Initialize the knowledge store.

        Args:
            knowledge_dir: Directory for JSON documents; None keeps everything in memory
            recent_success_cap: Maximum recent successes kept per error type
            promotion_min_code_length: Minimum code length for promoting a generated fix
            promotion_confidence: Confidence given to promoted templates
            pattern_confidence_step: Confidence added to a pattern after a success
            learned_pattern_confidence: Confidence of patterns created from successes
            seed: Load the default patterns and templates into empty documents
        """
        self.knowledge_dir = Path(knowledge_dir) if knowledge_dir else None
        self.recent_success_cap = recent_success_cap
        self.promotion_min_code_length = promotion_min_code_length
        self.promotion_confidence = promotion_confidence
        self.pattern_confidence_step = pattern_confidence_step
        self.learned_pattern_confidence = learned_pattern_confidence
        self.seed = seed

        self._docs: dict[ErrorType, _TypeDocument] = {}
        self._templates: dict[str, FixTemplate] = {}
        self._type_locks: dict[ErrorType, asyncio.Lock] = {t: asyncio.Lock() for t in ErrorType}
        self._templates_lock = asyncio.Lock()
        self._load_database()

    @classmethod
    def from_config(cls, config) -> "KnowledgeStore":
        """Create a store from a RemediationConfig."""
        k = config.knowledge
        return cls(
            knowledge_dir=config.knowledge_dir,
            recent_success_cap=k.recent_success_cap,
            promotion_min_code_length=k.promotion_min_code_length,
            promotion_confidence=k.promotion_confidence,
            pattern_confidence_step=k.pattern_confidence_step,
            learned_pattern_confidence=k.learned_pattern_confidence,
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _type_file(self, error_type: ErrorType) -> Path:
        return self.knowledge_dir / f"{error_type.value}.json"

    def _load_database(self) -> None:
        """Load documents from disk, seeding any that do not exist."""
        for error_type in ErrorType:
            data = self._read_json(self._type_file(error_type)) if self.knowledge_dir else None
            if data is not None:
                self._docs[error_type] = _TypeDocument.from_dict(error_type, data)
            else:
                doc = _TypeDocument(error_type)
                if self.seed:
                    for pattern in DEFAULT_PATTERNS:
                        if pattern.error_type == error_type:
                            doc.patterns[pattern.id] = copy.deepcopy(pattern)
                self._docs[error_type] = doc

        data = self._read_json(self.knowledge_dir / self.TEMPLATES_FILE) if self.knowledge_dir else None
        if data is not None:
            for item in data.get("templates", []):
                template = FixTemplate.from_dict(item)
                self._templates[template.id] = template
        elif self.seed:
            for template in DEFAULT_TEMPLATES:
                self._templates[template.id] = copy.deepcopy(template)

    def _read_json(self, path: Path) -> Optional[dict]:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load knowledge document {path}: {e}")
            return None

    def _write_json(self, path: Path, data: dict) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2))
        tmp.replace(path)

    async def _save_type(self, error_type: ErrorType) -> None:
        if not self.knowledge_dir:
            return
        snapshot = self._docs[error_type].to_dict()
        try:
            await asyncio.to_thread(self._write_json, self._type_file(error_type), snapshot)
        except OSError as e:
            logger.error(f"Failed to save knowledge document for {error_type.value}: {e}")

    async def _save_templates(self) -> None:
        if not self.knowledge_dir:
            return
        snapshot = {
            "templates": [t.to_dict() for t in self._templates.values()],
            "updated_at": datetime.now().isoformat(),
        }
        try:
            await asyncio.to_thread(
                self._write_json, self.knowledge_dir / self.TEMPLATES_FILE, snapshot
            )
        except OSError as e:
            logger.error(f"Failed to save templates: {e}")

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_pattern(self, pattern_id: str) -> Optional[Pattern]:
        for doc in self._docs.values():
            if pattern_id in doc.patterns:
                return doc.patterns[pattern_id]
        return None

    def get_template(self, template_id: str) -> Optional[FixTemplate]:
        return self._templates.get(template_id)

    def find_patterns(
        self, error_type: ErrorType, record: Optional[ErrorRecord] = None
    ) -> list[Pattern]:
        """Return patterns for an error type, best match first.

        Without a record every pattern of the type is returned, ordered by
        its own confidence.

        Args:
            error_type: Error type to look up
            record: Error to score the patterns against

        Returns:
            Patterns whose match confidence exceeds the threshold
        """
        return [m.pattern for m in self.match_patterns(error_type, record)]

    def match_patterns(
        self, error_type: ErrorType, record: Optional[ErrorRecord] = None
    ) -> list[PatternMatch]:
        """Like find_patterns but keeps the computed match confidence."""
        patterns = list(self._docs[error_type].patterns.values())
        if record is None:
            matches = [PatternMatch(p, p.confidence) for p in patterns]
        else:
            matches = []
            for pattern in patterns:
                score = self.calculate_match_confidence(pattern, record)
                if score > MATCH_THRESHOLD:
                    matches.append(PatternMatch(pattern, score))
        matches.sort(key=lambda m: (m.match_confidence, m.pattern.confidence), reverse=True)
        return matches

    def calculate_match_confidence(self, pattern: Pattern, record: ErrorRecord) -> float:
        """Score how well a pattern's match rule fits an error.

        Starts at 0.5; a matching message regex adds 0.3, a matching node
        type 0.2 and met conditions up to 0.2 in proportion. An invalid
        regex scores 0.
        """
        rule = pattern.match_rule
        score = 0.5

        if rule.message_pattern:
            try:
                if re.search(rule.message_pattern, record.message, re.IGNORECASE):
                    score += 0.3
            except re.error as e:
                logger.warning(f"Invalid pattern regex in {pattern.id}: {e}")
                return 0.0

        if rule.node_type and normalize_node_type(rule.node_type) == normalize_node_type(
            record.source_ref.node_type
        ):
            score += 0.2

        if rule.conditions:
            met = sum(1 for c in rule.conditions if self._condition_met(c, record))
            score += 0.2 * (met / len(rule.conditions))

        return min(score, 1.0)

    def _condition_met(self, condition: dict, record: ErrorRecord) -> bool:
        kind = condition.get("type")
        value = condition.get("value")
        if kind == "contains":
            return bool(value) and str(value).lower() in record.message.lower()
        if kind == "severity":
            return value == record.severity.value
        if kind == "node_type":
            return normalize_node_type(value) == normalize_node_type(record.source_ref.node_type)
        return False

    def find_templates(
        self,
        error_type: ErrorType,
        node_type: Optional[str] = None,
        pattern_id: Optional[str] = None,
    ) -> list[FixTemplate]:
        """Return templates applicable to an error, best first.

        Ranking uses the template confidence plus its learned success rate
        for this error type.

        Args:
            error_type: Error type to fix
            node_type: Type of the failing node
            pattern_id: Matched pattern id, if any

        Returns:
            Applicable templates ordered by confidence + success rate
        """
        candidates = [
            t for t in self._templates.values() if t.applies_to(error_type, node_type, pattern_id)
        ]
        candidates.sort(
            key=lambda t: t.confidence + self.success_rate(t.id, error_type),
            reverse=True,
        )
        return candidates

    def success_rate(self, subject: str, error_type: ErrorType) -> float:
        record = self._docs[error_type].learning.get(subject)
        return record.success_rate if record else 0.0

    def learning_record(self, subject: str, error_type: ErrorType) -> Optional[LearningRecord]:
        return self._docs[error_type].learning.get(subject)

    def search_similar(self, record: ErrorRecord, limit: int = 5) -> list[tuple[Pattern, float]]:
        """Find patterns of any type whose text resembles the error message.

        Similarity is the word overlap (Jaccard) between the message and
        the pattern's name, description and common causes.
        """
        words = _words(record.message)
        if not words:
            return []
        scored = []
        for doc in self._docs.values():
            for pattern in doc.patterns.values():
                text = " ".join([pattern.name, pattern.description, *pattern.common_causes])
                other = _words(text) | _words(pattern.match_rule.message_pattern or "")
                if not other:
                    continue
                similarity = len(words & other) / len(words | other)
                if similarity > 0:
                    scored.append((pattern, similarity))
        scored.sort(key=lambda x: x[1], reverse=True)
        return scored[:limit]

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    async def record_outcome(
        self,
        record: ErrorRecord,
        fix: Optional[Fix],
        test_result: Optional[TestResult],
    ) -> None:
        """Record the final outcome of a remediation loop.

        Successful outcomes update success counters, nudge or create a
        pattern, log the fix and may promote a generated fix to a template.
        Failed outcomes only increment totals. Nothing is ever removed.

        Args:
            record: The error that was being remediated
            fix: The last fix tried, if any
            test_result: The test result for that fix, if any
        """
        success = bool(fix and test_result and test_result.success)
        error_type = record.type
        subject = _subject_for(fix)
        promote: Optional[FixTemplate] = None

        async with self._type_locks[error_type]:
            doc = self._docs[error_type]
            doc.total += 1
            self._count(doc, subject, success)
            if fix and fix.pattern_id:
                self._count(doc, fix.pattern_id, success)

            if success:
                doc.successes += 1
                doc.recent_successes.append(
                    {
                        "error_id": record.id,
                        "message": record.message[:500],
                        "node_type": record.source_ref.node_type,
                        "fix_kind": fix.kind.value,
                        "template_id": fix.template_id,
                        "pattern_id": fix.pattern_id,
                        "description": fix.description,
                        "timestamp": time.time(),
                    }
                )
                if len(doc.recent_successes) > self.recent_success_cap:
                    doc.recent_successes = doc.recent_successes[-self.recent_success_cap:]

                if fix.pattern_id and fix.pattern_id in doc.patterns:
                    pattern = doc.patterns[fix.pattern_id]
                    pattern.confidence = min(0.99, pattern.confidence + self.pattern_confidence_step)
                elif not fix.pattern_id:
                    self._learn_pattern(doc, record, fix)

                if fix.kind == FixKind.GENERATED and self.should_promote(fix.code):
                    promote = self._build_promoted_template(record, fix)

            await self._save_type(error_type)

        if promote is not None:
            async with self._templates_lock:
                if not any(t.code == promote.code for t in self._templates.values()):
                    self._templates[promote.id] = promote
                    logger.info(f"Promoted generated fix to template {promote.id}")
                    await self._save_templates()

        logger.debug(
            f"Recorded {'success' if success else 'failure'} for {subject} on {error_type.value}"
        )

    def _count(self, doc: _TypeDocument, subject: str, success: bool) -> None:
        entry = doc.learning.get(subject)
        if entry is None:
            entry = LearningRecord(subject=subject, error_type=doc.error_type.value)
            doc.learning[subject] = entry
        entry.total += 1
        if success:
            entry.successes += 1

    def _learn_pattern(self, doc: _TypeDocument, record: ErrorRecord, fix: Fix) -> None:
        message_pattern = extract_message_pattern(record.message)
        for pattern in doc.patterns.values():
            if pattern.match_rule.message_pattern == message_pattern:
                return
        pattern_id = "learned_" + hashlib.md5(
            f"{doc.error_type.value}:{message_pattern}".encode()
        ).hexdigest()[:12]
        doc.patterns[pattern_id] = Pattern(
            id=pattern_id,
            error_type=doc.error_type,
            match_rule=MatchRule(
                message_pattern=message_pattern,
                node_type=normalize_node_type(record.source_ref.node_type),
            ),
            name=f"Learned: {record.message[:60]}",
            description=f"Learned from successful fix: {fix.description}",
            quick_fix_hint=fix.description,
            confidence=self.learned_pattern_confidence,
            learned=True,
        )
        logger.info(f"Learned new pattern {pattern_id} for {doc.error_type.value}")

    def should_promote(self, code: str) -> bool:
        """Whether generated code is substantial and well-formed enough to become a template."""
        if not code or len(code) < self.promotion_min_code_length:
            return False
        return any(re.search(marker, code) for marker in GOOD_PRACTICE_MARKERS)

    def _build_promoted_template(self, record: ErrorRecord, fix: Fix) -> FixTemplate:
        template_id = "promoted_" + hashlib.md5(fix.code.encode()).hexdigest()[:12]
        applicable = [record.type.value]
        if fix.pattern_id:
            applicable.append(fix.pattern_id)
        node_type = normalize_node_type(record.source_ref.node_type)
        language = "python" if fix.target_ref.field == "pythonCode" else "javascript"
        return FixTemplate(
            id=template_id,
            name=f"Promoted: {fix.description[:60]}",
            code=fix.code,
            applicable_error_types=applicable,
            node_types=[node_type] if node_type else [],
            confidence=self.promotion_confidence,
            description=fix.description,
            language=language,
            promoted=True,
        )

    async def add_template(self, template: FixTemplate) -> None:
        """Add or replace a template."""
        async with self._templates_lock:
            self._templates[template.id] = template
            await self._save_templates()

    async def add_pattern(self, pattern: Pattern) -> None:
        """Add or replace a pattern."""
        async with self._type_locks[pattern.error_type]:
            self._docs[pattern.error_type].patterns[pattern.id] = pattern
            await self._save_type(pattern.error_type)

    # ------------------------------------------------------------------
    # Export / statistics
    # ------------------------------------------------------------------

    def export(self) -> dict[str, Any]:
        """Export all knowledge as plain data."""
        return {
            "exported_at": datetime.now().isoformat(),
            "types": {t.value: doc.to_dict() for t, doc in self._docs.items()},
            "templates": [t.to_dict() for t in self._templates.values()],
        }

    async def import_data(self, data: dict[str, Any]) -> dict[str, int]:
        """Merge exported knowledge into this store.

        Patterns and templates are added or replaced by id; counters are
        added to the existing ones.

        Returns:
            Counts of imported patterns and templates
        """
        imported = {"patterns": 0, "templates": 0}
        for type_value, doc_data in data.get("types", {}).items():
            try:
                error_type = ErrorType(type_value)
            except ValueError:
                logger.warning(f"Skipping unknown error type in import: {type_value}")
                continue
            incoming = _TypeDocument.from_dict(error_type, doc_data)
            async with self._type_locks[error_type]:
                doc = self._docs[error_type]
                doc.patterns.update(incoming.patterns)
                imported["patterns"] += len(incoming.patterns)
                for subject, entry in incoming.learning.items():
                    current = doc.learning.setdefault(
                        subject, LearningRecord(subject=subject, error_type=type_value)
                    )
                    current.successes += entry.successes
                    current.total += entry.total
                doc.successes += incoming.successes
                doc.total += incoming.total
                await self._save_type(error_type)

        templates = [FixTemplate.from_dict(t) for t in data.get("templates", [])]
        if templates:
            async with self._templates_lock:
                for template in templates:
                    self._templates[template.id] = template
                imported["templates"] = len(templates)
                await self._save_templates()
        return imported

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics."""
        total = sum(doc.total for doc in self._docs.values())
        successes = sum(doc.successes for doc in self._docs.values())
        patterns = [p for doc in self._docs.values() for p in doc.patterns.values()]
        return {
            "total_patterns": len(patterns),
            "learned_patterns": sum(1 for p in patterns if p.learned),
            "total_templates": len(self._templates),
            "promoted_templates": sum(1 for t in self._templates.values() if t.promoted),
            "total_outcomes": total,
            "successful_outcomes": successes,
            "success_rate": successes / total if total > 0 else 0.0,
            "by_type": {
                t.value: {
                    "patterns": len(doc.patterns),
                    "successes": doc.successes,
                    "total": doc.total,
                }
                for t, doc in self._docs.items()
                if doc.total > 0 or doc.patterns
            },
        }


def extract_message_pattern(message: str) -> str:
    """Turn a concrete error message into a reusable regex.

    Literal text is escaped and runs of digits become ``\\d+``.
    """
    message = message.strip()[:200]
    escaped = re.escape(message)
    return re.sub(r"\d+", r"\\d+", escaped)


def _subject_for(fix: Optional[Fix]) -> str:
    if fix is None:
        return UNFIXED_SUBJECT
    if fix.template_id:
        return fix.template_id
    return GENERATED_SUBJECT


def _words(text: str) -> set[str]:
    return {w for w in re.findall(r"[a-z]{3,}", text.lower())}
