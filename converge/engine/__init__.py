"""converge engine — convergence waits, retries, cleanup and pipelines.

Bottom-up: Deadline and Observation/Outcome records, then the three
wait strategies (PollLoop, EventWatcher, WorkerRace), RetryExecutor for
actions, CleanupRegistry for teardown, and ScenarioPipeline tying them
together.
"""

from converge.engine.cleanup import CleanupRegistry
from converge.engine.deadline import Deadline
from converge.engine.models import (
    Observation,
    ObservationStatus,
    Outcome,
    OutcomeKind,
    PipelineState,
    ScenarioRun,
    StepResult,
    StepStatus,
)
from converge.engine.pipeline import ScenarioPipeline
from converge.engine.poll import PollLoop, PollSpec
from converge.engine.probe import Condition, make_probe, observe
from converge.engine.race import RaceSpec, WorkerRace, run_blocking
from converge.engine.retry import RetryExecutor, RetryPolicy, RetryResult
from converge.engine.step import Poll, Race, ScenarioContext, Step, StepCleanup, Watch, defer
from converge.engine.watch import (
    AWAIT_DELETION,
    EventType,
    EventWatcher,
    ResourceRef,
    WatchEvent,
    WatchSpec,
)

__all__ = [
    "AWAIT_DELETION",
    "CleanupRegistry",
    "Condition",
    "Deadline",
    "EventType",
    "EventWatcher",
    "Observation",
    "ObservationStatus",
    "Outcome",
    "OutcomeKind",
    "PipelineState",
    "Poll",
    "PollLoop",
    "PollSpec",
    "Race",
    "RaceSpec",
    "ResourceRef",
    "RetryExecutor",
    "RetryPolicy",
    "RetryResult",
    "ScenarioContext",
    "ScenarioPipeline",
    "ScenarioRun",
    "Step",
    "StepCleanup",
    "StepResult",
    "StepStatus",
    "Watch",
    "WatchEvent",
    "WatchSpec",
    "WorkerRace",
    "defer",
    "make_probe",
    "observe",
    "run_blocking",
]
