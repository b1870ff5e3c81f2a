"""Tests for error detection from log lines and workflow definitions."""

import asyncio
import json
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import pytest

from remediator.detection import (
    DefinitionSignal,
    ErrorDetector,
    InMemorySeenStore,
    LogSignal,
    classify,
    is_critical,
    make_error_id,
    validate_definition,
)
from remediator.detection.rules import extract_node_type, parse_timestamp
from remediator.events import EventEmitter, EventType
from remediator.models import ErrorType, Severity, SourceRef

from tests.helpers.fakes import BASE_TIME, FakeClock, make_definition

TS_LINE = (
    "2024-01-15T10:30:00Z ERROR workflowId=wf-1 nodeId=code-1 "
    "TypeError: Cannot read properties of undefined (reading 'name')"
)


@pytest.fixture
def detector(clock):
    return ErrorDetector(clock=clock)


class TestClassification:
    """Tests for the ranked classification rules."""

    @pytest.mark.parametrize(
        "message,expected",
        [
            ("SyntaxError: Unexpected token } in JSON at position 12", ErrorType.JSON_ERROR),
            ("SyntaxError: Unexpected identifier", ErrorType.SYNTAX_ERROR),
            ("KeyError: 'user'", ErrorType.PYTHON_ERROR),
            ("ReferenceError: items is not defined", ErrorType.JAVASCRIPT_ERROR),
            ("getaddrinfo ENOTFOUND api.example.invalid", ErrorType.CONFIG_ERROR),
            ("Request failed with status code 503", ErrorType.API_ERROR),
            ("validation failed: missing field email", ErrorType.DATA_ERROR),
            ("Workflow execution failed", ErrorType.EXECUTION_ERROR),
        ],
    )
    def test_first_matching_rule_wins(self, message, expected):
        error_type, _ = classify(message)
        assert error_type == expected

    def test_unmatched_message(self):
        assert classify("Process crashed unexpectedly") is None

    def test_critical_signature_escalates_severity(self):
        error_type, severity = classify("RangeError: Maximum call stack size exceeded")
        assert error_type == ErrorType.JAVASCRIPT_ERROR
        assert severity == Severity.CRITICAL

    def test_is_critical(self):
        assert is_critical("ENOENT: no such file or directory, open 'x'")
        assert not is_critical("TypeError: x is undefined")
        assert not is_critical(None)

    def test_parse_timestamp(self):
        expected = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc).timestamp()
        assert parse_timestamp("2024-01-15T10:30:00Z") == expected
        assert parse_timestamp("2024-01-15 10:30:00") == expected
        assert parse_timestamp(expected * 1000) == expected
        assert parse_timestamp("yesterday") is None

    def test_extract_node_type(self):
        assert extract_node_type("failed in n8n-nodes-base.httpRequest") == "n8n-nodes-base.httpRequest"


class TestLogSignals:
    """Tests for plain and JSON log lines."""

    def test_plain_line(self, detector):
        [record] = detector.detect(LogSignal(TS_LINE, source="n8n.log"))
        assert record.type == ErrorType.JAVASCRIPT_ERROR
        assert record.severity == Severity.HIGH
        assert record.source_ref == SourceRef(workflow_id="wf-1", node_id="code-1")
        assert record.timestamp == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc).timestamp()
        assert record.raw_context == {"line": TS_LINE, "source": "n8n.log"}
        assert record.needs_fixing

    def test_line_without_error_indicator_is_ignored(self, detector):
        assert detector.detect(LogSignal("INFO workflow wf-1 started")) == []
        assert detector.get_stats()["unclassified"] == 0

    def test_unclassified_line_is_counted(self, detector):
        assert detector.detect(LogSignal("Process crashed unexpectedly")) == []
        assert detector.get_stats()["unclassified"] == 1

    def test_blank_line(self, detector):
        assert detector.detect(LogSignal("   ")) == []

    def test_missing_timestamp_uses_clock(self, detector):
        [record] = detector.detect(LogSignal("ERROR nodeId=code-1 ReferenceError: x is not defined"))
        assert record.timestamp == BASE_TIME

    def test_critical_error_does_not_need_fixing(self, detector):
        [record] = detector.detect(
            LogSignal("ERROR workflowId=wf-1 nodeId=code-1 RangeError: Maximum call stack size exceeded")
        )
        assert record.severity == Severity.CRITICAL
        assert not record.needs_fixing

    def test_api_errors_are_not_remediated(self, detector):
        [record] = detector.detect(LogSignal("ERROR workflowId=wf-1 Request failed with status code 502"))
        assert record.type == ErrorType.API_ERROR
        assert not record.needs_fixing

    def test_json_line(self, detector):
        line = json.dumps(
            {
                "level": "error",
                "message": "Cannot read properties of undefined (reading 'id')",
                "workflowId": "wf-2",
                "nodeId": "n-7",
                "nodeType": "n8n-nodes-base.code",
                "timestamp": "2024-01-15T10:30:00.000Z",
            }
        )
        [record] = detector.detect(LogSignal(line))
        assert record.type == ErrorType.JAVASCRIPT_ERROR
        assert record.source_ref == SourceRef("wf-2", "n-7", "n8n-nodes-base.code")
        assert record.timestamp == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc).timestamp()

    def test_json_line_prefixes_error_name(self, detector):
        line = json.dumps({"level": "error", "name": "ReferenceError", "message": "foo is not defined"})
        [record] = detector.detect(LogSignal(line))
        assert record.message == "ReferenceError: foo is not defined"

    def test_json_info_line_is_ignored(self, detector):
        line = json.dumps({"level": "info", "message": "Workflow executed", "workflowId": "wf-1"})
        assert detector.detect(LogSignal(line)) == []


class TestDeduplication:
    """Tests for deterministic ids and duplicate suppression."""

    def test_repeated_line_is_suppressed(self, detector):
        assert len(detector.detect(LogSignal(TS_LINE))) == 1
        assert detector.detect(LogSignal(TS_LINE)) == []
        assert detector.get_stats()["suppressed_duplicates"] == 1

    def test_new_time_bucket_is_a_new_error(self, clock):
        detector = ErrorDetector(clock=clock, bucket_seconds=60)
        line = "ERROR workflowId=wf-1 nodeId=code-1 ReferenceError: x is not defined"
        first = detector.detect(LogSignal(line))
        clock.advance(120)
        second = detector.detect(LogSignal(line))
        assert first[0].id != second[0].id

    def test_anonymous_errors_stay_distinct(self, detector):
        a = detector.detect(LogSignal("TypeError: a is not a function"))
        b = detector.detect(LogSignal("TypeError: b is not a function"))
        assert a and b
        assert a[0].id != b[0].id

    def test_id_is_deterministic(self):
        ref = SourceRef("wf-1", "code-1")
        first = make_error_id(ErrorType.JAVASCRIPT_ERROR, ref, BASE_TIME + 5)
        second = make_error_id(ErrorType.JAVASCRIPT_ERROR, ref, BASE_TIME + 10)
        assert first == second
        assert first != make_error_id(ErrorType.SYNTAX_ERROR, ref, BASE_TIME + 5)

    def test_seen_store_capacity(self):
        store = InMemorySeenStore(capacity=2)
        assert store.add_if_absent("a")
        assert store.add_if_absent("b")
        assert not store.add_if_absent("a")
        assert store.add_if_absent("c")
        assert "a" not in store
        assert len(store) == 2

    def test_detect_from_many_threads(self, detector):
        barrier = threading.Barrier(8)

        def detect_after_barrier(_):
            barrier.wait()
            return detector.detect(LogSignal(TS_LINE))

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(detect_after_barrier, range(8)))

        assert sum(len(r) for r in results) == 1
        assert detector.get_stats()["suppressed_duplicates"] == 7

    @pytest.mark.asyncio
    async def test_concurrent_observers_publish_once(self, clock):
        queue: asyncio.Queue = asyncio.Queue()
        detector = ErrorDetector(queue=queue, clock=clock)
        signal = LogSignal(TS_LINE)

        results = await asyncio.gather(*(detector.observe(signal) for _ in range(16)))

        assert len([r for r in results if r is not None]) == 1
        assert queue.qsize() == 1
        assert detector.get_stats()["total_errors"] == 1


class TestDefinitionSignals:
    """Tests for structural validation of workflow definitions."""

    def test_invalid_json(self, detector):
        [record] = detector.detect(DefinitionSignal(path="wf-broken.json", content="{not json"))
        assert record.type == ErrorType.JSON_ERROR
        assert record.severity == Severity.CRITICAL
        assert record.source_ref.workflow_id == "wf-broken"
        assert not record.needs_fixing

    def test_broken_code_node(self, detector):
        content = json.dumps(make_definition())
        [record] = detector.detect(DefinitionSignal(path="wf-1.json", content=content))
        assert record.type == ErrorType.SYNTAX_ERROR
        assert record.severity == Severity.HIGH
        assert record.source_ref == SourceRef("wf-1", "code-1", "n8n-nodes-base.code")
        assert record.raw_context["field"] == "jsCode"
        assert "unclosed '('" in record.message
        assert record.needs_fixing

    def test_valid_definition(self, detector):
        content = json.dumps(make_definition(code="return $input.all();"))
        assert detector.detect(DefinitionSignal(path="wf-1.json", content=content)) == []

    def test_one_record_per_issue(self, detector):
        definition = make_definition()
        definition["nodes"].append(
            {
                "id": "http-1",
                "name": "Fetch",
                "type": "n8n-nodes-base.httpRequest",
                "parameters": {"url": "not a url"},
            }
        )
        records = detector.detect(DefinitionSignal(path="wf-1.json", content=json.dumps(definition)))
        assert [(r.type, r.source_ref.node_id) for r in records] == [
            (ErrorType.SYNTAX_ERROR, "code-1"),
            (ErrorType.CONFIG_ERROR, "http-1"),
        ]
        assert records[1].raw_context["field"] == "url"
        assert "invalid url" in records[1].message

    def test_lint_warnings_attach_to_node_record(self, detector):
        content = json.dumps(make_definition(code="console.log('x');\nreturn $input.all("))
        [record] = detector.detect(DefinitionSignal(path="wf-1.json", content=content))
        assert record.raw_context["warnings"] == [
            {"node_id": "code-1", "warning": "console.log left in code node"}
        ]

    def test_lint_warnings_alone_raise_nothing(self):
        report = validate_definition(json.dumps(make_definition(code="console.log(1);\nreturn [];")))
        assert report.valid
        assert len(report.warnings) == 1

    def test_missing_nodes(self):
        report = validate_definition(json.dumps({"id": "wf-1"}))
        assert [i.error_type for i in report.issues] == [ErrorType.SYNTAX_ERROR]

    def test_reads_file_and_uses_mtime(self, detector, tmp_path):
        path = tmp_path / "wf-1.json"
        path.write_text(json.dumps(make_definition()))
        [record] = detector.detect(DefinitionSignal(path=path))
        assert record.timestamp == path.stat().st_mtime
        assert record.raw_context["path"] == str(path)

    def test_unreadable_file(self, detector, tmp_path):
        assert detector.detect(DefinitionSignal(path=tmp_path / "missing.json")) == []


class TestPublishing:
    """Tests for the detection channel and events."""

    @pytest.mark.asyncio
    async def test_observe_publishes_to_queue_and_emitter(self, clock):
        queue: asyncio.Queue = asyncio.Queue()
        emitter = EventEmitter()
        detector = ErrorDetector(queue=queue, emitter=emitter, clock=clock)

        record = await detector.observe(LogSignal(TS_LINE))

        event = queue.get_nowait()
        assert event.record == record
        assert event.needs_fixing is True
        [emitted] = emitter.recent(EventType.ERROR_DETECTED)
        assert emitted.error_id == record.id

    @pytest.mark.asyncio
    async def test_duplicates_are_not_published(self, clock):
        queue: asyncio.Queue = asyncio.Queue()
        detector = ErrorDetector(queue=queue, clock=clock)
        await detector.observe(LogSignal(TS_LINE))
        assert await detector.observe(LogSignal(TS_LINE)) is None
        assert queue.qsize() == 1

    def test_stats(self, detector):
        detector.detect(LogSignal(TS_LINE))
        detector.detect(LogSignal("ERROR workflowId=wf-1 Request failed with status code 502"))
        stats = detector.get_stats()
        assert stats["total_errors"] == 2
        assert stats["by_type"] == {"javascript_error": 1, "api_error": 1}
        assert stats["by_severity"] == {"high": 1, "medium": 1}
        assert len(stats["recent"]) == 2
