"""PollLoop — fixed-interval convergence by repeated probing.

Used when the observed quantity has no event stream (raw command
output, object-storage keys, list endpoints). Only re-observes; never
re-issues a mutating action.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

import structlog

from converge.engine.deadline import Deadline
from converge.engine.models import Observation, ObservationStatus, Outcome
from converge.engine.probe import Probe, observe

logger = structlog.get_logger()

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class PollSpec:
    """A probe, the cadence to call it at, and the deadline to stop by."""

    probe: Probe
    interval_seconds: float
    deadline: Deadline
    description: str = "poll"

    def __post_init__(self) -> None:
        if self.interval_seconds <= 0:
            raise ValueError(f"Poll interval must be > 0, got {self.interval_seconds}")


class PollLoop:
    """Invoke a probe on a fixed interval until it settles or time runs out.

    The deadline is checked before every sleep and each sleep is capped
    at the remaining time, so a run never overshoots the deadline by
    more than one interval.
    """

    def __init__(self, sleep: Sleep = asyncio.sleep) -> None:
        self._sleep = sleep

    async def run(self, spec: PollSpec) -> Outcome:
        log = logger.bind(
            wait=spec.description,
            interval=spec.interval_seconds,
            deadline=spec.deadline.duration_seconds,
        )
        observations = 0
        last: Observation | None = None

        while True:
            last = await observe(spec.probe)
            observations += 1

            if last.status != ObservationStatus.PENDING:
                outcome = Outcome.from_observation(
                    last,
                    deadline_seconds=spec.deadline.duration_seconds,
                    elapsed_seconds=spec.deadline.elapsed(),
                    observations=observations,
                )
                if last.status == ObservationStatus.SATISFIED:
                    log.info("Poll satisfied", observations=observations)
                else:
                    log.warning("Poll failed", reason=last.reason, observations=observations)
                return outcome

            remaining = spec.deadline.remaining()
            if remaining <= 0:
                log.warning("Poll timed out", observations=observations, last_reason=last.reason)
                return Outcome.timed_out(
                    deadline_seconds=spec.deadline.duration_seconds,
                    elapsed_seconds=spec.deadline.elapsed(),
                    observations=observations,
                    detail=last.reason,
                )

            log.debug("Poll pending", reason=last.reason, remaining=round(remaining, 2))
            await self._sleep(min(spec.interval_seconds, remaining))
