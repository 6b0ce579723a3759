"""Engine models — observations, outcomes, and scenario run records.

Immutable records passed between the convergence engine and the
scenario pipeline: a single look at remote state (Observation), the
terminal result of one convergence attempt (Outcome), per-step
results, and the aggregate record of a scenario run.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class ObservationStatus(str, Enum):
    """What one look at remote state reported."""
    PENDING = "PENDING"
    SATISFIED = "SATISFIED"
    FAILED = "FAILED"


class OutcomeKind(str, Enum):
    """Terminal result of a single convergence attempt."""
    SATISFIED = "SATISFIED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"


class StepStatus(str, Enum):
    """Execution status for a single scenario step."""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    SKIPPED = "SKIPPED"


class PipelineState(str, Enum):
    """Scenario pipeline state machine."""
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    ABORTED = "ABORTED"


class Observation(BaseModel):
    """Result of evaluating a probe or condition once."""

    model_config = ConfigDict(frozen=True)

    status: ObservationStatus = Field(...)
    reason: Optional[str] = Field(default=None)
    value: Any = Field(
        default=None,
        description="Snapshot or extracted value that produced this observation",
    )

    @classmethod
    def pending(cls, reason: str | None = None, value: Any = None) -> "Observation":
        return cls(status=ObservationStatus.PENDING, reason=reason, value=value)

    @classmethod
    def satisfied(cls, value: Any = None, reason: str | None = None) -> "Observation":
        return cls(status=ObservationStatus.SATISFIED, reason=reason, value=value)

    @classmethod
    def failed(cls, reason: str, value: Any = None) -> "Observation":
        return cls(status=ObservationStatus.FAILED, reason=reason, value=value)

    @property
    def is_terminal(self) -> bool:
        return self.status != ObservationStatus.PENDING


class Outcome(BaseModel):
    """Terminal result of one convergence attempt.

    Never re-evaluated once produced. A new attempt builds a fresh
    spec with a fresh Deadline and yields a new Outcome.
    """

    model_config = ConfigDict(frozen=True)

    kind: OutcomeKind = Field(...)
    reason: Optional[str] = Field(default=None)
    deadline_seconds: float = Field(default=0.0, ge=0.0)
    elapsed_seconds: float = Field(default=0.0, ge=0.0)
    observations: int = Field(
        default=0,
        ge=0,
        description="Number of probe invocations or events evaluated",
    )
    value: Any = Field(default=None)

    @property
    def satisfied(self) -> bool:
        return self.kind == OutcomeKind.SATISFIED

    @classmethod
    def from_observation(
        cls,
        observation: Observation,
        deadline_seconds: float,
        elapsed_seconds: float,
        observations: int,
    ) -> "Outcome":
        """Convert a terminal Observation into an Outcome."""
        if observation.status == ObservationStatus.SATISFIED:
            kind = OutcomeKind.SATISFIED
        elif observation.status == ObservationStatus.FAILED:
            kind = OutcomeKind.FAILED
        else:
            raise ValueError("Pending observation is not terminal")
        return cls(
            kind=kind,
            reason=observation.reason,
            deadline_seconds=deadline_seconds,
            elapsed_seconds=elapsed_seconds,
            observations=observations,
            value=observation.value,
        )

    @classmethod
    def timed_out(
        cls,
        deadline_seconds: float,
        elapsed_seconds: float,
        observations: int,
        detail: str | None = None,
    ) -> "Outcome":
        reason = f"deadline of {deadline_seconds:g}s elapsed after {observations} observation(s)"
        if detail:
            reason = f"{reason}; last seen: {detail}"
        return cls(
            kind=OutcomeKind.TIMED_OUT,
            reason=reason,
            deadline_seconds=deadline_seconds,
            elapsed_seconds=elapsed_seconds,
            observations=observations,
        )


class StepResult(BaseModel):
    """Result of executing a single scenario step.

    Immutable after creation. Captures timing, status, attempts, and
    the convergence outcome kind when a wait ran.
    """

    model_config = ConfigDict(frozen=True)

    label: str = Field(...)
    index: int = Field(..., ge=0)
    status: StepStatus = Field(...)
    started_at: datetime = Field(...)
    finished_at: datetime = Field(...)
    duration_ms: float = Field(default=0.0, ge=0.0)
    attempts: int = Field(default=0, ge=0, description="Action invocations")
    outcome: Optional[OutcomeKind] = Field(default=None)
    deadline_seconds: Optional[float] = Field(default=None)
    reason: Optional[str] = Field(default=None)

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCEEDED

    def describe(self) -> str:
        """One line of the failure trail for this step."""
        kind = self.outcome.value if self.outcome else self.status.value
        line = f"[{self.index}] {self.label}: {kind}"
        if self.reason:
            line += f" ({self.reason})"
        return line


class ScenarioRun(BaseModel):
    """Complete record of a scenario execution.

    Tracks every step result, the terminal pipeline state, and the
    errors collected while tearing down.
    """

    model_config = ConfigDict(frozen=True)

    run_id: UUID = Field(default_factory=uuid4)
    scenario: str = Field(...)
    state: PipelineState = Field(...)
    started_at: datetime = Field(...)
    finished_at: Optional[datetime] = Field(default=None)
    deadline_seconds: Optional[float] = Field(default=None)
    step_results: list[StepResult] = Field(default_factory=list)
    aborted_index: Optional[int] = Field(default=None)
    aborted_step: Optional[str] = Field(default=None)
    aborted_outcome: Optional[OutcomeKind] = Field(default=None)
    reason: Optional[str] = Field(default=None)
    cleanup_errors: list[str] = Field(default_factory=list)

    @property
    def completed(self) -> bool:
        return self.state == PipelineState.COMPLETED

    @property
    def succeeded_count(self) -> int:
        return sum(1 for s in self.step_results if s.status == StepStatus.SUCCEEDED)

    @property
    def skipped_count(self) -> int:
        return sum(1 for s in self.step_results if s.status == StepStatus.SKIPPED)

    @property
    def total_duration_ms(self) -> float:
        return sum(s.duration_ms for s in self.step_results)

    def failure_trail(self) -> list[str]:
        """Human-readable lines naming the failing step and why."""
        lines: list[str] = []
        if not self.completed:
            lines.append(
                f"Scenario '{self.scenario}' aborted at step "
                f"{self.aborted_index} '{self.aborted_step}'"
            )
            for result in self.step_results:
                if result.status != StepStatus.SKIPPED:
                    lines.append("  " + result.describe())
        for error in self.cleanup_errors:
            lines.append(f"  cleanup: {error}")
        return lines
