"""ScenarioPipeline — sequences convergence steps with guaranteed cleanup.

State machine over the step list:

    IDLE -> RUNNING(step_index) -> COMPLETED | ABORTED(step_index, reason)

Per step: run the action (through RetryExecutor), register the cleanups
it implies, then wait for convergence (PollLoop, EventWatcher or
WorkerRace). The first step that does not end SUCCEEDED aborts the
scenario; later steps are SKIPPED. Registered cleanups always run,
whichever state was reached.
"""

import asyncio
import time
from datetime import datetime, timezone
from functools import partial
from typing import Any, Optional, Sequence
from uuid import uuid4

import structlog

from converge.engine.cleanup import CleanupRegistry
from converge.engine.deadline import Clock, Deadline
from converge.engine.models import (
    Outcome,
    OutcomeKind,
    PipelineState,
    ScenarioRun,
    StepResult,
    StepStatus,
)
from converge.engine.poll import PollLoop, Sleep
from converge.engine.race import WorkerRace, run_blocking
from converge.engine.retry import RetryExecutor, RetryPolicy, RetryResult
from converge.engine.step import Poll, Race, ScenarioContext, Step, Watch
from converge.engine.watch import EventWatcher
from converge.exceptions import ConfigurationError

logger = structlog.get_logger()

_SINGLE_ATTEMPT = RetryPolicy(max_attempts=1, delay_seconds=0.0)

_STATUS_BY_OUTCOME = {
    OutcomeKind.SATISFIED: StepStatus.SUCCEEDED,
    OutcomeKind.FAILED: StepStatus.FAILED,
    OutcomeKind.TIMED_OUT: StepStatus.TIMED_OUT,
}


class ScenarioPipeline:
    """Runs one scenario: an ordered list of Steps under a scenario deadline.

    Owns its CleanupRegistry exclusively. Never raises for a failing
    step; the returned ScenarioRun carries the aborted step's label,
    outcome kind and reason.
    """

    def __init__(
        self,
        name: str,
        steps: Sequence[Step],
        context: ScenarioContext | None = None,
        deadline_seconds: Optional[float] = None,
        cleanup_timeout: Optional[float] = None,
        resubscribe_delay: Optional[float] = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        labels = [s.label for s in steps]
        duplicates = sorted({label for label in labels if labels.count(label) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate step labels in scenario '{name}': {duplicates}")

        self._name = name
        self._steps = list(steps)
        self._context = context or ScenarioContext(scenario=name)
        self._deadline_seconds = deadline_seconds
        self._clock = clock
        self._sleep = sleep

        settings = self._context.settings
        self._cleanups = CleanupRegistry(
            timeout_seconds=cleanup_timeout if cleanup_timeout is not None else settings.cleanup_timeout,
        )
        self._poll_loop = PollLoop(sleep=sleep)
        self._race = WorkerRace()
        self._watcher: Optional[EventWatcher] = None
        if self._context.event_source is not None:
            self._watcher = EventWatcher(
                self._context.event_source,
                resubscribe_delay=(
                    resubscribe_delay if resubscribe_delay is not None else settings.resubscribe_delay
                ),
                sleep=sleep,
            )

        self._state = PipelineState.IDLE
        self._current_index: Optional[int] = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def current_index(self) -> Optional[int]:
        return self._current_index

    @property
    def context(self) -> ScenarioContext:
        return self._context

    @property
    def steps(self) -> list[Step]:
        return list(self._steps)

    async def run(self) -> ScenarioRun:
        """Execute every step in order, then run all cleanups.

        Returns:
            ScenarioRun with state COMPLETED or ABORTED.

        Raises:
            ConfigurationError: The pipeline has already run.
        """
        if self._state != PipelineState.IDLE:
            raise ConfigurationError(f"Scenario '{self._name}' has already run")

        run_id = uuid4()
        started_at = datetime.now(timezone.utc)
        scenario_deadline: Optional[Deadline] = None
        if self._deadline_seconds is not None:
            scenario_deadline = Deadline(duration_seconds=self._deadline_seconds, clock=self._clock)

        structlog.contextvars.bind_contextvars(scenario=self._name, run_id=str(run_id))
        log = logger.bind(steps=len(self._steps), deadline=self._deadline_seconds)
        log.info("Scenario starting")

        step_results: list[StepResult] = []
        aborted: Optional[StepResult] = None
        self._state = PipelineState.RUNNING

        try:
            for index, step in enumerate(self._steps):
                self._current_index = index
                result = await self._execute_step(index, step, scenario_deadline)
                step_results.append(result)
                if not result.succeeded:
                    aborted = result
                    self._state = PipelineState.ABORTED
                    break
            else:
                self._state = PipelineState.COMPLETED
        finally:
            if self._state == PipelineState.RUNNING:
                self._state = PipelineState.ABORTED
            cleanup_errors = await self._cleanups.run_all()
            if cleanup_errors:
                log.error(
                    "Cleanup reported errors",
                    count=len(cleanup_errors),
                    errors=[str(e) for e in cleanup_errors],
                )
            structlog.contextvars.unbind_contextvars("scenario", "run_id")

        if aborted is not None:
            for index in range(aborted.index + 1, len(self._steps)):
                step_results.append(
                    self.make_skipped(
                        self._steps[index].label,
                        index,
                        f"not reached: scenario aborted at '{aborted.label}'",
                    )
                )

        run = ScenarioRun(
            run_id=run_id,
            scenario=self._name,
            state=self._state,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            deadline_seconds=self._deadline_seconds,
            step_results=step_results,
            aborted_index=aborted.index if aborted else None,
            aborted_step=aborted.label if aborted else None,
            aborted_outcome=aborted.outcome if aborted else None,
            reason=aborted.reason if aborted else None,
            cleanup_errors=[str(e) for e in cleanup_errors],
        )

        if aborted is not None:
            logger.error(
                "Scenario aborted",
                scenario=self._name,
                step=aborted.label,
                outcome=aborted.outcome.value if aborted.outcome else None,
                reason=aborted.reason,
            )
        else:
            logger.info("Scenario completed", scenario=self._name, steps=len(step_results))
        return run

    async def _execute_step(
        self,
        index: int,
        step: Step,
        scenario_deadline: Optional[Deadline],
    ) -> StepResult:
        """Run one step. Never raises; every error becomes a result."""
        log = logger.bind(step=step.label, index=index)
        started_at = datetime.now(timezone.utc)
        start_time = time.monotonic()
        attempts = 0

        def finish(
            status: StepStatus,
            outcome: Optional[OutcomeKind] = None,
            reason: Optional[str] = None,
            deadline_seconds: Optional[float] = None,
        ) -> StepResult:
            return StepResult(
                label=step.label,
                index=index,
                status=status,
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
                duration_ms=round((time.monotonic() - start_time) * 1000.0, 2),
                attempts=attempts,
                outcome=outcome,
                deadline_seconds=deadline_seconds,
                reason=reason,
            )

        if scenario_deadline is not None and scenario_deadline.expired():
            reason = f"scenario deadline of {scenario_deadline.duration_seconds:g}s exhausted before step started"
            log.error("Step timed out", reason=reason)
            return finish(
                StepStatus.TIMED_OUT,
                OutcomeKind.TIMED_OUT,
                reason,
                scenario_deadline.duration_seconds,
            )

        log.info("Step starting")
        try:
            value: Any = None
            if step.action is not None:
                try:
                    retry = await self._run_action(step, scenario_deadline)
                except asyncio.TimeoutError:
                    reason = (
                        f"action did not finish within the scenario deadline "
                        f"of {scenario_deadline.duration_seconds:g}s"
                    )
                    log.error("Step timed out", reason=reason)
                    return finish(
                        StepStatus.TIMED_OUT,
                        OutcomeKind.TIMED_OUT,
                        reason,
                        scenario_deadline.duration_seconds,
                    )
                attempts = retry.attempts
                if not retry.ok:
                    reason = f"action failed: {retry.error}"
                    log.error("Step failed (action)", error=str(retry.error), attempts=attempts)
                    return finish(StepStatus.FAILED, OutcomeKind.FAILED, reason)
                value = retry.value
                self._context.results[step.label] = value

            for cleanup in step.cleanups:
                self._cleanups.register(
                    cleanup.label,
                    partial(cleanup.action, self._context, value),
                    step=step.label,
                )

            if step.convergence is None:
                log.info("Step succeeded", attempts=attempts)
                return finish(StepStatus.SUCCEEDED)

            settings = self._context.settings
            configured = step.timeout_for(settings)
            deadline = step.deadline_for(scenario_deadline, clock=self._clock, settings=settings)
            outcome = await self._converge(step, deadline)
            status = _STATUS_BY_OUTCOME[outcome.kind]
            reason = outcome.reason
            if outcome.kind == OutcomeKind.TIMED_OUT and deadline.duration_seconds < configured:
                reason = (
                    f"{reason} ({configured:g}s step timeout, clipped to "
                    f"{deadline.duration_seconds:g}s by the scenario deadline)"
                )
            if status == StepStatus.SUCCEEDED:
                log.info("Step succeeded", observations=outcome.observations)
            else:
                log.error("Step did not converge", outcome=outcome.kind.value, reason=reason)
            return finish(status, outcome.kind, reason, configured)

        except Exception as e:
            log.error("Step failed (unexpected)", error=str(e), exc_info=True)
            return finish(StepStatus.FAILED, OutcomeKind.FAILED, f"Unexpected error: {e}")

    async def _run_action(self, step: Step, scenario_deadline: Optional[Deadline]) -> RetryResult:
        executor = RetryExecutor.from_policy(
            step.retry or _SINGLE_ATTEMPT,
            settings=self._context.settings,
            sleep=self._sleep,
        )
        if step.blocking:
            action = partial(run_blocking, step.action, self._context, timeout=None)
            attempt = executor.run(action)
        else:
            attempt = executor.run(step.action, self._context)

        if scenario_deadline is None:
            return await attempt
        return await asyncio.wait_for(attempt, timeout=scenario_deadline.remaining())

    async def _converge(self, step: Step, deadline: Deadline) -> Outcome:
        convergence = step.convergence
        if isinstance(convergence, Poll):
            return await self._poll_loop.run(convergence.build(self._context, deadline))
        if isinstance(convergence, Watch):
            spec = convergence.build(self._context, deadline)
            if self._watcher is None:
                return Outcome(
                    kind=OutcomeKind.FAILED,
                    reason=f"no event source configured to watch {spec.resource.describe()}",
                    deadline_seconds=deadline.duration_seconds,
                )
            return await self._watcher.run(spec)
        if isinstance(convergence, Race):
            return await self._race.run(convergence.build(self._context, deadline))
        raise ConfigurationError(f"Unknown convergence declaration: {type(convergence).__name__}")

    @staticmethod
    def make_skipped(label: str, index: int, reason: str) -> StepResult:
        """Create a SKIPPED result for a step that was not executed."""
        now = datetime.now(timezone.utc)
        return StepResult(
            label=label,
            index=index,
            status=StepStatus.SKIPPED,
            started_at=now,
            finished_at=now,
            duration_ms=0.0,
            reason=reason,
        )
