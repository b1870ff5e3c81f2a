"""Tests for the iteration controller."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from remediator.config import IterationSettings
from remediator.errors import IterationConflictError
from remediator.events import EventType
from remediator.fixing import MAX_ATTEMPTS_REASON, NO_FIX_REASON, CodeFixer
from remediator.models import ErrorType, TestPhase, iteration_key
from remediator.workflow import find_node

from tests.helpers.fakes import BROKEN_JS, FakeClock, dry_failure, make_record, syntax_failure


async def settle(rounds: int = 20):
    """Let scheduled tasks run until they block."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def terminal_events(emitter):
    return emitter.recent(EventType.ITERATION_COMPLETED) + emitter.recent(EventType.ITERATION_FAILED)


async def stored_code(definitions):
    definition = await definitions.read("wf-1")
    return find_node(definition, "code-1")["parameters"]["jsCode"]


class TestSuccessfulLoops:
    """Tests for loops ending in a verified fix."""

    @pytest.mark.asyncio
    async def test_template_fix_completes(
        self, make_controller, record, emitter, knowledge, definitions
    ):
        controller = make_controller()

        await controller.start(record)

        [event] = terminal_events(emitter)
        assert event.event_type == EventType.ITERATION_COMPLETED
        assert event.data["status"] == "completed"
        assert event.data["attempt_count"] == 1
        [attempt] = event.data["history"]
        assert attempt["success"]
        assert attempt["fix"]["template_id"] == "null_safety"

        learned = knowledge.learning_record("null_safety", ErrorType.JAVASCRIPT_ERROR)
        assert (learned.successes, learned.total) == (1, 1)
        assert "Null-safe processing" in await stored_code(definitions)
        assert controller.get_stats()["completed"] == 1
        assert not controller.is_running(iteration_key(record))

    @pytest.mark.asyncio
    async def test_success_after_failed_attempt(self, make_controller, record, engine, emitter, clock):
        engine.syntax_results = [syntax_failure()]
        controller = make_controller()

        await controller.start(record)

        [event] = terminal_events(emitter)
        assert event.event_type == EventType.ITERATION_COMPLETED
        history = event.data["history"]
        assert [a["success"] for a in history] == [False, True]
        assert history[0]["test_result"]["phase"] == TestPhase.SYNTAX.value
        assert history[1]["fix"]["template_id"] == "error_handling"
        assert clock.short_sleeps == [2.0]
        assert controller.fixer.get_attempts("wf-1", "code-1") == 0

    @pytest.mark.asyncio
    async def test_outcome_is_learned_once(self, make_controller, record, knowledge, emitter, clock):
        controller = make_controller()
        knowledge.record_outcome = AsyncMock(wraps=knowledge.record_outcome)

        await controller.start(record)
        clock.advance(600)
        await settle()

        knowledge.record_outcome.assert_awaited_once()
        assert len(terminal_events(emitter)) == 1


class TestExclusivity:
    """Tests for one loop per (workflow, node, error type)."""

    @pytest.mark.asyncio
    async def test_second_start_is_rejected(self, make_controller, record):
        controller = make_controller()
        task = controller.start(record)

        with pytest.raises(IterationConflictError):
            controller.start(make_record(record_id="err-2"))
        assert not controller.submit(make_record(record_id="err-3"))

        await task
        assert controller.get_stats()["rejected"] == 2
        assert controller.get_stats()["started"] == 1

    @pytest.mark.asyncio
    async def test_different_error_type_runs_alongside(self, make_controller, record, engine):
        engine.block = asyncio.Event()
        controller = make_controller()

        assert controller.submit(record)
        assert controller.submit(make_record(error_type=ErrorType.SYNTAX_ERROR, record_id="err-2"))
        assert len(controller.active_keys()) == 2

        engine.block.set()
        await controller.wait_idle()
        assert controller.active_keys() == []

    @pytest.mark.asyncio
    async def test_new_loop_after_previous_ended(self, make_controller, record):
        controller = make_controller()
        await controller.start(record)
        assert controller.submit(make_record(record_id="err-2"))
        await controller.wait_idle()
        assert controller.get_stats()["started"] == 2


class TestTermination:
    """Tests for the ways a loop ends without a verified fix."""

    @pytest.mark.asyncio
    async def test_attempt_budget(self, make_controller, record, engine, emitter, clock, definitions):
        engine.syntax_results = [syntax_failure() for _ in range(10)]
        controller = make_controller(settings=IterationSettings(max_iterations=3))

        await controller.start(record)

        [event] = terminal_events(emitter)
        assert event.event_type == EventType.ITERATION_FAILED
        assert event.data["status"] == "failed"
        assert event.data["attempt_count"] == 3
        assert event.data["history"][2]["error"] == NO_FIX_REASON
        assert clock.short_sleeps == [2.0, 2.0]
        # Failed loops restore the node
        assert await stored_code(definitions) == BROKEN_JS

    @pytest.mark.asyncio
    async def test_fixer_exhaustion_uses_remaining_attempts(
        self, make_controller, record, engine, emitter, knowledge, definitions, clock
    ):
        engine.syntax_results = [syntax_failure() for _ in range(10)]
        fixer = CodeFixer(knowledge, definitions, max_attempts=2)
        controller = make_controller(fixer=fixer, settings=IterationSettings(max_iterations=4))

        await controller.start(record)

        [event] = terminal_events(emitter)
        assert event.data["status"] == "failed"
        assert event.data["attempt_count"] == 4
        errors = [a["error"] for a in event.data["history"]]
        assert errors[2:] == [MAX_ATTEMPTS_REASON, MAX_ATTEMPTS_REASON]
        assert clock.short_sleeps == [2.0, 2.0, 2.0]

    @pytest.mark.asyncio
    async def test_default_settings_spend_every_iteration(self, make_controller, record, engine, emitter):
        engine.syntax_results = [syntax_failure() for _ in range(30)]
        controller = make_controller()

        await controller.start(record)

        [event] = terminal_events(emitter)
        assert event.data["status"] == "failed"
        assert event.data["attempt_count"] == IterationSettings().max_iterations

    @pytest.mark.asyncio
    async def test_critical_test_failure(self, make_controller, record, engine, emitter):
        engine.dry_results = [dry_failure("RangeError: Maximum call stack size exceeded")]
        controller = make_controller()

        await controller.start(record)

        [event] = terminal_events(emitter)
        assert event.data["status"] == "failed"
        assert event.data["attempt_count"] == 1

    @pytest.mark.asyncio
    async def test_critical_original_error(self, make_controller, engine, emitter):
        engine.syntax_results = [syntax_failure()]
        record = make_record(message="FATAL ERROR: JavaScript heap out of memory")
        controller = make_controller()

        await controller.start(record)

        [event] = terminal_events(emitter)
        assert event.data["status"] == "failed"
        assert event.data["attempt_count"] == 1

    @pytest.mark.asyncio
    async def test_unexpected_errors_use_retry_delay(
        self, make_controller, record, engine, emitter, clock
    ):
        engine.validate_syntax = AsyncMock(side_effect=RuntimeError("engine down"))
        settings = IterationSettings(
            max_iterations=3, inter_attempt_delay_ms=1_000, error_retry_delay_ms=5_000
        )
        controller = make_controller(settings=settings)

        await controller.start(record)

        [event] = terminal_events(emitter)
        errors = [a["error"] for a in event.data["history"]]
        assert errors == ["engine down", "engine down", NO_FIX_REASON]
        assert clock.short_sleeps == [5.0, 5.0]

    @pytest.mark.asyncio
    async def test_deadline_stops_a_blocked_attempt(
        self, make_controller, record, engine, emitter, clock, knowledge
    ):
        engine.block = asyncio.Event()
        knowledge.record_outcome = AsyncMock(wraps=knowledge.record_outcome)
        controller = make_controller()

        controller.start(record)
        await settle()
        assert len(engine.dry_calls) == 1

        clock.advance(301)
        await controller.wait_idle()

        [event] = terminal_events(emitter)
        assert event.event_type == EventType.ITERATION_FAILED
        assert event.data["status"] == "stopped"
        assert event.data["history"] == []
        knowledge.record_outcome.assert_awaited_once_with(record, None, None)
        assert controller.get_stats()["stopped"] == 1

    @pytest.mark.asyncio
    async def test_deadline_checked_after_each_attempt(self, make_controller, record, engine, emitter):
        engine.syntax_results = [syntax_failure() for _ in range(10)]
        clock = FakeClock(long_sleep=25)
        settings = IterationSettings(iteration_timeout_ms=30_000, inter_attempt_delay_ms=20_000)
        controller = make_controller(clock=clock, settings=settings)

        await controller.start(record)

        [event] = terminal_events(emitter)
        assert event.data["status"] == "stopped"
        assert event.data["attempt_count"] == 2


class TestShutdownAndRestart:
    """Tests for shutdown and forced restarts."""

    @pytest.mark.asyncio
    async def test_shutdown_stops_without_learning(
        self, make_controller, record, engine, emitter, knowledge, definitions
    ):
        engine.block = asyncio.Event()
        knowledge.record_outcome = AsyncMock(wraps=knowledge.record_outcome)
        controller = make_controller()

        controller.start(record)
        await settle()
        await controller.shutdown()

        [event] = terminal_events(emitter)
        assert event.data["status"] == "stopped"
        knowledge.record_outcome.assert_not_awaited()
        # No rollback either: the fix under test stays in place
        assert await stored_code(definitions) != BROKEN_JS
        assert controller.active_keys() == []

    @pytest.mark.asyncio
    async def test_force_restart(self, make_controller, record, engine, emitter):
        engine.block = asyncio.Event()
        controller = make_controller()

        controller.start(record)
        await settle()
        terminated = await controller.force_restart("wf-1", "code-1")

        assert terminated == 1
        [event] = terminal_events(emitter)
        assert event.data["status"] == "failed"
        assert controller.fixer.get_attempts("wf-1", "code-1") == 0
        assert not controller.is_running(iteration_key(record))

        engine.block.set()
        assert controller.submit(make_record(record_id="err-2"))
        await controller.wait_idle()
        assert controller.get_stats()["completed"] == 1

    @pytest.mark.asyncio
    async def test_force_restart_without_loops(self, make_controller):
        assert await make_controller().force_restart("wf-1", "code-1") == 0


class TestEvents:
    """Tests for lifecycle events."""

    @pytest.mark.asyncio
    async def test_event_sequence(self, make_controller, record, engine, emitter):
        engine.syntax_results = [syntax_failure()]
        controller = make_controller()

        await controller.start(record)

        types = [e.event_type for e in emitter.recent()]
        assert types == [
            EventType.ITERATION_STARTED,
            EventType.ITERATION_ATTEMPT,
            EventType.ITERATION_ATTEMPT,
            EventType.ITERATION_COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_failing_emitter_does_not_break_loop(self, make_controller, record, emitter):
        emitter.emit = AsyncMock(side_effect=RuntimeError("sink down"))
        controller = make_controller()

        await controller.start(record)

        assert controller.get_stats()["completed"] == 1
