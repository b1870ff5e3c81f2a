"""Tests for remediation events and the event emitter."""

import json

import pytest

from remediator.events import (
    EventEmitter,
    EventPriority,
    EventType,
    RemediationEvent,
    error_detected_event,
    iteration_terminal_event,
)
from remediator.models import Attempt, AttemptPhase, IterationState, IterationStatus, iteration_key

from tests.helpers.fakes import make_record


def make_state(status=IterationStatus.FAILED):
    record = make_record()
    state = IterationState(key=iteration_key(record), record=record, started_at=100.0, deadline_at=400.0)
    state.history = [
        Attempt(number=1, phase=AttemptPhase.TESTING, success=False, error="SyntaxError"),
        Attempt(number=2, phase=AttemptPhase.FIXING, success=False, error="max attempts exceeded"),
    ]
    state.attempt_count = 2
    state.status = status
    state.finished_at = 130.0
    return state


class TestEventFactories:
    """Tests for event factory functions."""

    def test_error_detected(self):
        record = make_record()
        event = error_detected_event(record, needs_fixing=True)
        assert event.event_type == EventType.ERROR_DETECTED
        assert event.error_id == record.id
        assert event.workflow_id == "wf-1"
        assert event.data["needs_fixing"] is True
        assert event.data["record"]["message"] == record.message

    def test_failed_terminal_event_carries_history(self):
        event = iteration_terminal_event(make_state(IterationStatus.FAILED))
        assert event.event_type == EventType.ITERATION_FAILED
        assert event.priority == EventPriority.HIGH
        assert [a["number"] for a in event.data["history"]] == [1, 2]
        assert event.data["duration_seconds"] == 30.0

    def test_stopped_is_a_failure(self):
        event = iteration_terminal_event(make_state(IterationStatus.STOPPED))
        assert event.event_type == EventType.ITERATION_FAILED
        assert event.data["status"] == "stopped"

    def test_completed(self):
        event = iteration_terminal_event(make_state(IterationStatus.COMPLETED))
        assert event.event_type == EventType.ITERATION_COMPLETED

    def test_dict_round_trip(self):
        event = error_detected_event(make_record(), needs_fixing=False)
        restored = RemediationEvent.from_dict(json.loads(json.dumps(event.to_dict())))
        assert restored.event_type == event.event_type
        assert restored.data == event.data


class TestEventEmitter:
    """Tests for EventEmitter."""

    @pytest.mark.asyncio
    async def test_sync_and_async_callbacks(self):
        emitter = EventEmitter()
        seen = []

        async def async_callback(event):
            seen.append(("async", event.event_type))

        emitter.add_callback(lambda e: seen.append(("sync", e.event_type)))
        emitter.add_callback(async_callback)
        await emitter.emit_type(EventType.ITERATION_STARTED)

        assert seen == [("sync", EventType.ITERATION_STARTED), ("async", EventType.ITERATION_STARTED)]

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_raise(self):
        emitter = EventEmitter()
        delivered = []

        def broken(event):
            raise RuntimeError("boom")

        emitter.add_callback(broken)
        emitter.add_callback(delivered.append)
        await emitter.emit_type(EventType.ERROR_DETECTED)

        assert len(delivered) == 1
        assert emitter.get_stats()["events_failed"] == 1

    @pytest.mark.asyncio
    async def test_priority_filter(self):
        emitter = EventEmitter(min_priority=EventPriority.HIGH)
        await emitter.emit_type(EventType.ITERATION_ATTEMPT, priority=EventPriority.LOW)
        await emitter.emit_type(EventType.ITERATION_FAILED, priority=EventPriority.HIGH)
        assert [e.event_type for e in emitter.recent()] == [EventType.ITERATION_FAILED]

    @pytest.mark.asyncio
    async def test_disabled(self):
        emitter = EventEmitter(enabled=False)
        await emitter.emit_type(EventType.ERROR_DETECTED)
        assert emitter.recent() == []

    @pytest.mark.asyncio
    async def test_event_log(self, tmp_path):
        log = tmp_path / "state" / "events.jsonl"
        emitter = EventEmitter(event_log=log)
        await emitter.emit(error_detected_event(make_record(), needs_fixing=True))
        await emitter.emit(iteration_terminal_event(make_state()))

        lines = log.read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[1])["event_type"] == "iteration_failed"

    @pytest.mark.asyncio
    async def test_recent_filter_and_remove_callback(self):
        emitter = EventEmitter()
        delivered = []
        emitter.add_callback(delivered.append)
        await emitter.emit_type(EventType.ERROR_DETECTED)
        emitter.remove_callback(delivered.append)
        emitter.remove_callback(delivered.append)
        await emitter.emit_type(EventType.ITERATION_STARTED)

        assert len(delivered) == 1
        assert len(emitter.recent(EventType.ITERATION_STARTED)) == 1
