"""Iteration controller.

Runs one bounded remediation loop per (workflow, node, error type):

    Idle -> Running -> Completed (success or failure) | Stopped

Each attempt analyzes the error, applies a fix and verifies it. The loop
ends on the first verified fix, when the attempt budget is spent, when a
critical failure signature appears, or when the deadline passes. A finished
loop is reported to the knowledge store exactly once, emits one terminal
event with its full history and is then forgotten.
"""

import asyncio
import logging
from typing import Any, Optional

from ..analysis import ProblemAnalyzer
from ..clock import Clock, SystemClock
from ..config import IterationSettings
from ..detection.rules import is_critical
from ..engine import ExecutionEngine, verify_fix
from ..errors import IterationConflictError
from ..events import (
    EventEmitter,
    RemediationEvent,
    iteration_attempt_event,
    iteration_started_event,
    iteration_terminal_event,
)
from ..fixing import CodeFixer
from ..knowledge import KnowledgeStore
from ..models import (
    Attempt,
    AttemptPhase,
    ErrorRecord,
    IterationKey,
    IterationState,
    IterationStatus,
    iteration_key,
)

logger = logging.getLogger(__name__)


class IterationController:
    """Drives remediation loops, one asyncio task per key.

    Example:
        controller = IterationController(analyzer, fixer, engine, knowledge, emitter)
        controller.start(record)
        ...
        await controller.shutdown()
    """

    def __init__(
        self,
        analyzer: ProblemAnalyzer,
        fixer: CodeFixer,
        engine: ExecutionEngine,
        knowledge: KnowledgeStore,
        emitter: Optional[EventEmitter] = None,
        settings: Optional[IterationSettings] = None,
        clock: Optional[Clock] = None,
        synthetic_input: Optional[list[dict]] = None,
        rollback_on_failure: bool = True,
    ):
        """Initialize the controller.

        Args:
            analyzer: Diagnoses each error
            fixer: Selects and applies fixes
            engine: Verifies fixed definitions
            knowledge: Receives the final outcome of every loop
            emitter: Receives lifecycle events
            settings: Attempt budget, deadline and delays
            clock: Time source for deadlines and delays
            synthetic_input: Input items for dry runs
            rollback_on_failure: Restore the original node value when a loop fails
        """
        self.analyzer = analyzer
        self.fixer = fixer
        self.engine = engine
        self.knowledge = knowledge
        self.emitter = emitter
        self.settings = settings or IterationSettings()
        self.clock = clock or SystemClock()
        self.synthetic_input = synthetic_input
        self.rollback_on_failure = rollback_on_failure

        self._states: dict[IterationKey, IterationState] = {}
        self._tasks: dict[IterationKey, asyncio.Task] = {}
        self._timers: dict[IterationKey, asyncio.Task] = {}

        # Statistics
        self._started = 0
        self._rejected = 0
        self._finished: dict[str, int] = {
            s.value: 0 for s in IterationStatus if s != IterationStatus.RUNNING
        }
        self._finished_attempts = 0

    def is_running(self, key: IterationKey) -> bool:
        return key in self._states

    def get_state(self, key: IterationKey) -> Optional[IterationState]:
        return self._states.get(key)

    def active_keys(self) -> list[IterationKey]:
        return list(self._states)

    def start(self, record: ErrorRecord) -> asyncio.Task:
        """Start a remediation loop for an error record.

        Args:
            record: Error to remediate

        Returns:
            The task running the loop

        Raises:
            IterationConflictError: If a loop for the same key is running
        """
        key = iteration_key(record)
        if key in self._states:
            self._rejected += 1
            raise IterationConflictError(
                f"Remediation already running for {key[0]}/{key[1]} ({key[2].value})"
            )

        now = self.clock.now()
        state = IterationState(
            key=key,
            record=record,
            started_at=now,
            deadline_at=now + self.settings.iteration_timeout,
        )
        self._states[key] = state
        self._started += 1

        name = f"remediate-{key[0]}-{key[1]}-{key[2].value}"
        self._tasks[key] = asyncio.create_task(self._run(state), name=name)
        self._timers[key] = asyncio.create_task(self._deadline(state), name=f"{name}-deadline")
        logger.info(f"Started remediation of {record.id} for {key[0]}/{key[1]} ({key[2].value})")
        return self._tasks[key]

    def submit(self, record: ErrorRecord) -> bool:
        """Start a loop unless one is already running for the record's key.

        Returns:
            True if a loop was started
        """
        try:
            self.start(record)
        except IterationConflictError as e:
            logger.info(f"Ignoring {record.id}: {e}")
            return False
        return True

    async def _run(self, state: IterationState) -> None:
        await self._emit(iteration_started_event(state))
        try:
            while not state.is_terminal:
                if self.clock.now() >= state.deadline_at:
                    await self._finish(state, IterationStatus.STOPPED)
                    return
                attempt, raised = await self._attempt(state)
                if state.is_terminal:
                    return
                state.history.append(attempt)
                state.attempt_count += 1
                await self._emit(iteration_attempt_event(state))

                if attempt.success:
                    await self._finish(state, IterationStatus.COMPLETED)
                    return
                if self.clock.now() >= state.deadline_at:
                    await self._finish(state, IterationStatus.STOPPED)
                    return
                if state.attempt_count >= self.settings.max_iterations:
                    logger.info(f"Attempt budget spent for {state.record.id}")
                    await self._finish(state, IterationStatus.FAILED)
                    return
                if is_critical(attempt.error) or is_critical(state.record.message):
                    logger.warning(
                        f"Critical failure while remediating {state.record.id}: {attempt.error}"
                    )
                    await self._finish(state, IterationStatus.FAILED)
                    return

                delay = self.settings.error_retry_delay if raised else self.settings.inter_attempt_delay
                await self.clock.sleep(delay)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Remediation loop for {state.record.id} crashed: {e}", exc_info=True)
            await self._finish(state, IterationStatus.FAILED)

    async def _attempt(self, state: IterationState) -> tuple[Attempt, bool]:
        """Run one analyze -> fix -> verify pass.

        Returns:
            The attempt, and whether it ended in an unexpected exception
        """
        record = state.record
        attempt = Attempt(
            number=state.attempt_count + 1,
            phase=AttemptPhase.ANALYSIS,
            success=False,
            started_at=self.clock.now(),
        )
        try:
            attempt.analysis = await self.analyzer.analyze(record)

            attempt.phase = AttemptPhase.FIXING
            outcome = await self.fixer.apply_fix(record, attempt.analysis, state.history)
            if not outcome.success:
                attempt.error = outcome.reason
                return self._close(attempt), False
            attempt.fix = outcome.fix

            attempt.phase = AttemptPhase.TESTING
            result = await verify_fix(
                self.engine,
                outcome.updated_definition,
                outcome.fix.target_ref,
                self.synthetic_input,
            )
            attempt.test_result = result
            attempt.success = result.success
            attempt.error = result.error
            return self._close(attempt), False
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                f"Attempt {attempt.number} for {record.id} failed during {attempt.phase.value}: {e}",
                exc_info=True,
            )
            attempt.error = str(e) or type(e).__name__
            return self._close(attempt), True

    def _close(self, attempt: Attempt) -> Attempt:
        attempt.finished_at = self.clock.now()
        return attempt

    async def _deadline(self, state: IterationState) -> None:
        while not state.is_terminal:
            remaining = state.deadline_at - self.clock.now()
            if remaining <= 0:
                break
            await self.clock.sleep(remaining)
        if state.is_terminal:
            return

        logger.warning(
            f"Remediation of {state.record.id} hit its deadline "
            f"after {state.attempt_count} attempts"
        )
        task = self._tasks.get(state.key)
        if task is not None and not task.done():
            task.cancel()
        await self._finish(state, IterationStatus.STOPPED)

    async def _finish(
        self, state: IterationState, status: IterationStatus, learn: bool = True
    ) -> None:
        if state.is_terminal:
            return
        state.status = status
        state.finished_at = self.clock.now()

        timer = self._timers.pop(state.key, None)
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

        self._finished[status.value] += 1
        self._finished_attempts += state.attempt_count
        workflow_id, node_id, _ = state.key

        if learn:
            last = state.last_attempt
            try:
                await self.knowledge.record_outcome(
                    state.record,
                    last.fix if last else None,
                    last.test_result if last else None,
                )
            except Exception as e:
                logger.error(f"Could not record outcome of {state.record.id}: {e}", exc_info=True)

            if status == IterationStatus.COMPLETED:
                self.fixer.reset_attempts(workflow_id, node_id)
            elif self.rollback_on_failure:
                await self._rollback(workflow_id, node_id)

        await self._emit(iteration_terminal_event(state))
        self._states.pop(state.key, None)
        self._tasks.pop(state.key, None)
        logger.info(
            f"Remediation of {state.record.id} ended {status.value} after {state.attempt_count} attempts"
        )

    async def _rollback(self, workflow_id: str, node_id: str) -> None:
        try:
            await self.fixer.rollback(workflow_id, node_id)
        except Exception as e:
            logger.warning(f"Rollback of {workflow_id}/{node_id} failed: {e}")

    async def _emit(self, event: RemediationEvent) -> None:
        if self.emitter is None:
            return
        try:
            await self.emitter.emit(event)
        except Exception as e:
            logger.warning(f"Failed to emit {event.event_type.value}: {e}")

    async def force_restart(self, workflow_id: str, node_id: str) -> int:
        """Terminate live loops for a node as failures and clear its fix history.

        A later detection of the same error starts a fresh loop.

        Returns:
            Number of loops terminated
        """
        terminated = 0
        for key, state in list(self._states.items()):
            if key[0] != workflow_id or key[1] != node_id or state.is_terminal:
                continue
            task = self._tasks.get(key)
            if task is not None and not task.done():
                task.cancel()
            await self._finish(state, IterationStatus.FAILED)
            terminated += 1
        self.fixer.reset_attempts(workflow_id, node_id)
        return terminated

    async def wait_idle(self) -> None:
        """Wait until every running loop has ended."""
        while self._tasks:
            # Timers end when their loop finishes, or finish a loop they cancel
            pending = list(self._tasks.values()) + list(self._timers.values())
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel every loop and timer; live loops end stopped without learning."""
        live = [s for s in self._states.values() if not s.is_terminal]
        pending = list(self._tasks.values()) + list(self._timers.values())
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._timers.clear()

        for state in live:
            await self._finish(state, IterationStatus.STOPPED, learn=False)
        self._states.clear()
        self._tasks.clear()
        logger.info(f"Iteration controller shut down, {len(live)} loops stopped")

    def get_stats(self) -> dict[str, Any]:
        """Get controller statistics."""
        finished = sum(self._finished.values())
        return {
            "active": len(self._states),
            "started": self._started,
            "rejected": self._rejected,
            "completed": self._finished[IterationStatus.COMPLETED.value],
            "failed": self._finished[IterationStatus.FAILED.value],
            "stopped": self._finished[IterationStatus.STOPPED.value],
            "average_attempts": self._finished_attempts / finished if finished else 0.0,
        }
