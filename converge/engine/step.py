"""Scenario definition surface — steps, convergence declarations, context.

A test author declares an ordered list of Steps. Each Step may carry a
remote-mutating action, the cleanups that action implies, and one
convergence declaration (Poll, Watch or Race). Declarations are turned
into fresh specs with fresh Deadlines every time a step is entered.
"""

import time
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from converge.config.settings import HarnessSettings
from converge.engine.deadline import Clock, Deadline
from converge.engine.poll import PollSpec
from converge.engine.probe import Condition
from converge.engine.race import RaceSpec
from converge.engine.retry import RetryPolicy
from converge.engine.watch import AWAIT_DELETION, EventSource, ResourceRef, WatchSpec
from converge.exceptions import ConfigurationError

if TYPE_CHECKING:
    from converge.config.profiles import ConvergenceProfile, ProfileRegistry


@dataclass
class ScenarioContext:
    """Shared handles for one scenario, passed by reference to every
    action, probe, worker and cleanup.

    Read-mostly after setup. ``results`` is written only by the
    pipeline, once per step, with the value the step's action returned.
    """

    scenario: str = "scenario"
    session: Any = None
    event_source: Optional[EventSource] = None
    settings: HarnessSettings = field(default_factory=HarnessSettings)
    profiles: Optional["ProfileRegistry"] = None
    values: dict[str, Any] = field(default_factory=dict)
    results: dict[str, Any] = field(default_factory=dict)

    def result(self, label: str) -> Any:
        """Value returned by the action of an earlier step."""
        if label not in self.results:
            raise KeyError(f"No action result recorded for step: {label}")
        return self.results[label]

    def profile(self, name: str) -> "ConvergenceProfile":
        if self.profiles is None:
            raise ConfigurationError("No convergence profiles loaded for this scenario")
        return self.profiles.get_or_raise(name)


class _Declaration:
    """Timeout lookup shared by the convergence declarations.

    An unset ``timeout_seconds`` falls back to the harness-wide
    ``convergence_timeout``.
    """

    timeout_seconds: Optional[float]

    def timeout_for(self, settings: HarnessSettings) -> float:
        if self.timeout_seconds is not None:
            return self.timeout_seconds
        return settings.convergence_timeout


@dataclass(frozen=True)
class Poll(_Declaration):
    """Converge by calling ``probe(context)`` every ``interval_seconds``.

    Unset timings come from the context's settings (``poll_interval``,
    ``convergence_timeout``).
    """

    probe: Callable[[ScenarioContext], Any]
    interval_seconds: Optional[float] = None
    timeout_seconds: Optional[float] = None

    def build(self, context: ScenarioContext, deadline: Deadline) -> PollSpec:
        interval = self.interval_seconds
        if interval is None:
            interval = context.settings.poll_interval
        return PollSpec(
            probe=partial(self.probe, context),
            interval_seconds=interval,
            deadline=deadline,
            description=getattr(self.probe, "__name__", "poll"),
        )


@dataclass(frozen=True)
class Watch(_Declaration):
    """Converge by watching one resource until ``condition`` settles.

    ``resource`` may be a ResourceRef or a callable building one from
    the context (e.g. a name returned by an earlier action).
    """

    resource: Union[ResourceRef, Callable[[ScenarioContext], ResourceRef]]
    condition: Condition = AWAIT_DELETION
    timeout_seconds: Optional[float] = None
    deletion_is_success: bool = False

    def build(self, context: ScenarioContext, deadline: Deadline) -> WatchSpec:
        resource = self.resource if isinstance(self.resource, ResourceRef) else self.resource(context)
        return WatchSpec(
            resource=resource,
            condition=self.condition,
            deadline=deadline,
            deletion_is_success=self.deletion_is_success,
        )


@dataclass(frozen=True)
class Race(_Declaration):
    """Converge by racing ``worker(context)`` against the deadline."""

    worker: Callable[[ScenarioContext], Any]
    timeout_seconds: Optional[float] = None
    blocking: bool = True

    def build(self, context: ScenarioContext, deadline: Deadline) -> RaceSpec:
        return RaceSpec(
            worker=partial(self.worker, context),
            deadline=deadline,
            blocking=self.blocking,
            description=getattr(self.worker, "__name__", "worker"),
        )


Convergence = Union[Poll, Watch, Race]


@dataclass(frozen=True)
class StepCleanup:
    """Teardown implied by a step's action.

    ``action(context, value)`` receives the value the step's action
    returned, so it can delete exactly what was created.
    """

    label: str
    action: Callable[[ScenarioContext, Any], Any]


@dataclass(frozen=True)
class Step:
    """A named unit: optional action, its cleanups, optional convergence wait.

    ``blocking=True`` runs a plain-function action on a worker thread so
    it can be abandoned when the scenario deadline runs out.
    """

    label: str
    action: Optional[Callable[[ScenarioContext], Any]] = None
    convergence: Optional[Convergence] = None
    cleanups: tuple[StepCleanup, ...] = ()
    retry: Optional[RetryPolicy] = None
    blocking: bool = False

    def __post_init__(self) -> None:
        if not self.label:
            raise ValueError("Step label must not be empty")
        if self.action is None and self.convergence is None:
            raise ValueError(f"Step '{self.label}' needs an action, a convergence wait, or both")
        if self.retry is not None and self.action is None:
            raise ValueError(f"Step '{self.label}' declares a retry policy but no action")

    def timeout_for(self, settings: HarnessSettings) -> float:
        """Configured timeout of this step's wait, before any clipping."""
        if self.convergence is None:
            raise ValueError(f"Step '{self.label}' has no convergence wait")
        return self.convergence.timeout_for(settings)

    def deadline_for(
        self,
        scenario_deadline: Optional[Deadline],
        clock: Clock = time.monotonic,
        settings: Optional[HarnessSettings] = None,
    ) -> Deadline:
        """Fresh Deadline for this step's wait, clipped to the scenario's."""
        timeout = self.timeout_for(settings or HarnessSettings())
        if scenario_deadline is not None:
            return scenario_deadline.bounded(timeout)
        return Deadline(duration_seconds=timeout, clock=clock)


def defer(label: str, action: Callable[[ScenarioContext, Any], Any]) -> StepCleanup:
    """Shorthand for ``StepCleanup(label, action)``."""
    return StepCleanup(label=label, action=action)
