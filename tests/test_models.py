"""Tests for the shared data model."""

import pytest

from remediator.models import (
    Analysis,
    Attempt,
    AttemptPhase,
    Complexity,
    ErrorRecord,
    ErrorType,
    FixTemplate,
    IterationState,
    IterationStatus,
    LearningRecord,
    Severity,
    iteration_key,
    needs_fixing,
    normalize_node_type,
    serialize,
)

from tests.helpers.fakes import make_record


class TestNeedsFixing:
    """Tests for the remediation allow-list."""

    @pytest.mark.parametrize(
        "error_type",
        [
            ErrorType.JAVASCRIPT_ERROR,
            ErrorType.PYTHON_ERROR,
            ErrorType.SYNTAX_ERROR,
            ErrorType.JSON_ERROR,
            ErrorType.DATA_ERROR,
            ErrorType.CONFIG_ERROR,
        ],
    )
    def test_remediable_types(self, error_type):
        assert needs_fixing(error_type, Severity.HIGH) is True

    @pytest.mark.parametrize("error_type", [ErrorType.API_ERROR, ErrorType.EXECUTION_ERROR])
    def test_non_remediable_types(self, error_type):
        assert needs_fixing(error_type, Severity.HIGH) is False

    def test_critical_severity_is_never_fixed(self):
        assert needs_fixing(ErrorType.JAVASCRIPT_ERROR, Severity.CRITICAL) is False

    def test_record_property(self):
        assert make_record().needs_fixing is True
        assert make_record(severity=Severity.CRITICAL).needs_fixing is False


class TestSeverity:
    """Tests for severity ordering."""

    def test_rank_order(self):
        assert Severity.LOW.rank < Severity.MEDIUM.rank < Severity.HIGH.rank < Severity.CRITICAL.rank


class TestNodeTypes:
    """Tests for node type normalization."""

    def test_strips_vendor_prefix(self):
        assert normalize_node_type("n8n-nodes-base.code") == "code"
        assert normalize_node_type("n8n-nodes-base.httpRequest") == "httprequest"

    def test_empty(self):
        assert normalize_node_type(None) is None
        assert normalize_node_type("") is None


class TestErrorRecord:
    """Tests for ErrorRecord serialization."""

    def test_to_dict_from_dict(self):
        record = make_record(raw_context={"line": "ERROR boom"})
        restored = ErrorRecord.from_dict(record.to_dict())
        assert restored == record

    def test_is_immutable(self):
        record = make_record()
        with pytest.raises(AttributeError):
            record.message = "changed"

    def test_iteration_key(self):
        record = make_record()
        assert iteration_key(record) == ("wf-1", "code-1", ErrorType.JAVASCRIPT_ERROR)

    def test_iteration_key_without_source(self):
        record = make_record(workflow_id=None, node_id=None)
        assert iteration_key(record) == ("unknown", "unknown", ErrorType.JAVASCRIPT_ERROR)


class TestFixTemplate:
    """Tests for template applicability."""

    def test_applies_by_error_type(self):
        template = FixTemplate(id="t", name="t", code="", applicable_error_types=["javascript_error"])
        assert template.applies_to(ErrorType.JAVASCRIPT_ERROR)
        assert not template.applies_to(ErrorType.PYTHON_ERROR)

    def test_applies_by_pattern_id(self):
        template = FixTemplate(id="t", name="t", code="", applicable_error_types=["js_null_reference"])
        assert template.applies_to(ErrorType.JAVASCRIPT_ERROR, pattern_id="js_null_reference")
        assert not template.applies_to(ErrorType.JAVASCRIPT_ERROR)

    def test_node_type_filter(self):
        template = FixTemplate(
            id="t",
            name="t",
            code="",
            applicable_error_types=["javascript_error"],
            node_types=["code"],
        )
        assert template.applies_to(ErrorType.JAVASCRIPT_ERROR, "n8n-nodes-base.code")
        assert not template.applies_to(ErrorType.JAVASCRIPT_ERROR, "n8n-nodes-base.set")

    def test_round_trip_keeps_language(self):
        template = FixTemplate(id="t", name="t", code="return items", language="python")
        assert FixTemplate.from_dict(template.to_dict()).language == "python"


class TestIterationState:
    """Tests for iteration state helpers."""

    def test_last_attempt_and_terminal(self):
        record = make_record()
        state = IterationState(key=iteration_key(record), record=record, started_at=0.0, deadline_at=300.0)
        assert state.last_attempt is None
        assert not state.is_terminal

        state.history.append(Attempt(number=1, phase=AttemptPhase.FIXING, success=False))
        state.status = IterationStatus.FAILED
        assert state.last_attempt.number == 1
        assert state.is_terminal

    def test_to_dict(self):
        record = make_record()
        state = IterationState(key=iteration_key(record), record=record, started_at=0.0, deadline_at=300.0)
        data = state.to_dict()
        assert data["key"] == {"workflow_id": "wf-1", "node_id": "code-1", "error_type": "javascript_error"}
        assert data["status"] == "running"


class TestLearningRecord:
    """Tests for success rate computation."""

    def test_success_rate(self):
        assert LearningRecord("t", "javascript_error").success_rate == 0.0
        assert LearningRecord("t", "javascript_error", successes=3, total=4).success_rate == 0.75


def test_serialize_nested():
    """Test serialize converts enums and model objects."""
    analysis = Analysis(
        error_id="e",
        root_cause="x",
        severity=Severity.LOW,
        complexity=Complexity.SIMPLE,
        confidence=0.5,
        can_auto_fix=False,
    )
    data = serialize({"analysis": analysis, "types": [ErrorType.JSON_ERROR]})
    assert data["analysis"]["complexity"] == "simple"
    assert data["types"] == ["json_error"]
