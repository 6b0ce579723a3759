"""EventWatcher — convergence driven by a resource change-event stream.

Subscribes to a watch on one remote resource (Kubernetes-style events
ADDED / MODIFIED / DELETED / ERROR / BOOKMARK) and evaluates every
event against a Condition until it settles or the deadline elapses.

Preferred over polling where a stream exists: short-lived intermediate
states are not missed and the API server sees one request instead of
one per interval.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator

from converge.engine.deadline import Deadline
from converge.engine.invoke import invoke
from converge.engine.models import Observation, ObservationStatus, Outcome
from converge.engine.poll import Sleep
from converge.engine.probe import Condition
from converge.exceptions import TerminalObservationError, TransientObservationError

logger = structlog.get_logger()

DEFAULT_RESUBSCRIBE_DELAY = 2.0


class EventType(str, Enum):
    """Change-event types on a watch stream."""
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    ERROR = "ERROR"
    BOOKMARK = "BOOKMARK"


class WatchEvent(BaseModel):
    """One event from a watch stream."""

    model_config = ConfigDict(frozen=True)

    type: EventType = Field(...)
    payload: Any = Field(default=None)


class ResourceRef(BaseModel):
    """Identifies the watched remote resource.

    Exactly one of ``name`` or ``label_selector`` narrows the watch.
    """

    model_config = ConfigDict(frozen=True)

    api_version: str = Field(..., description='e.g. "v1" or "catalog.cattle.io/v1"')
    plural: str = Field(..., description='Resource collection, e.g. "apps"')
    namespace: Optional[str] = Field(default=None)
    name: Optional[str] = Field(default=None)
    label_selector: Optional[str] = Field(default=None)

    @model_validator(mode="after")
    def _one_selector(self) -> "ResourceRef":
        if bool(self.name) == bool(self.label_selector):
            raise ValueError("ResourceRef needs exactly one of name or label_selector")
        return self

    @property
    def field_selector(self) -> Optional[str]:
        return f"metadata.name={self.name}" if self.name else None

    def describe(self) -> str:
        target = self.name or f"[{self.label_selector}]"
        scope = f"{self.namespace}/" if self.namespace else ""
        return f"{self.plural}.{self.api_version} {scope}{target}"


EventSource = Callable[
    [ResourceRef],
    Union[AsyncIterator[WatchEvent], Awaitable[AsyncIterator[WatchEvent]]],
]

# Condition for watches whose only success criterion is the DELETED event.
AWAIT_DELETION = Condition("deleted", lambda _snapshot: False)


@dataclass(frozen=True)
class WatchSpec:
    """The resource to watch, what to wait for, and the deadline."""

    resource: ResourceRef
    condition: Condition
    deadline: Deadline
    deletion_is_success: bool = False


class _Resubscribe(Exception):
    """Internal: the stream broke transiently and should be reopened."""


@dataclass
class _Progress:
    """Events evaluated across every subscription of one watch run."""

    events: int = 0


class EventWatcher:
    """Evaluate watch events against a Condition until settled.

    Returns immediately on a satisfied or failed condition and on ERROR
    events, regardless of how much of the deadline is left. The
    subscription is always closed before returning.
    """

    def __init__(
        self,
        source: EventSource,
        resubscribe_delay: float = DEFAULT_RESUBSCRIBE_DELAY,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._source = source
        self._resubscribe_delay = resubscribe_delay
        self._sleep = sleep

    async def run(self, spec: WatchSpec) -> Outcome:
        log = logger.bind(
            resource=spec.resource.describe(),
            condition=spec.condition.name,
            deadline=spec.deadline.duration_seconds,
        )
        progress = _Progress()
        last_reason: Optional[str] = None

        while True:
            remaining = spec.deadline.remaining()
            if remaining <= 0:
                return self._timed_out(spec, progress.events, last_reason, log)

            try:
                stream = await asyncio.wait_for(
                    invoke(self._source, spec.resource),
                    timeout=remaining,
                )
            except asyncio.TimeoutError:
                return self._timed_out(spec, progress.events, "watch never opened", log)
            except TransientObservationError as e:
                last_reason = f"subscribe failed: {e}"
                log.info("Watch subscribe pending", reason=str(e))
                await self._sleep(min(self._resubscribe_delay, spec.deadline.remaining()))
                continue
            except TerminalObservationError as e:
                return self._failed(spec, progress.events, f"subscribe failed: {e}", log)
            except Exception as e:
                return self._failed(spec, progress.events, f"could not open watch: {e}", log)

            try:
                return await self._consume(stream, spec, progress, log)
            except _Resubscribe as e:
                last_reason = str(e)
                log.info("Watch stream interrupted, resubscribing", reason=last_reason)
                await self._sleep(min(self._resubscribe_delay, spec.deadline.remaining()))
            finally:
                await self._close(stream, log)

    async def _consume(
        self,
        stream: AsyncIterator[WatchEvent],
        spec: WatchSpec,
        progress: "_Progress",
        log: Any,
    ) -> Outcome:
        iterator = stream.__aiter__()
        last_reason: Optional[str] = None

        while True:
            remaining = spec.deadline.remaining()
            if remaining <= 0:
                return self._timed_out(spec, progress.events, last_reason, log)
            try:
                event = await asyncio.wait_for(iterator.__anext__(), timeout=remaining)
            except StopAsyncIteration:
                detail = f"watch stream closed after {last_reason}" if last_reason else "watch stream closed"
                return self._timed_out(spec, progress.events, detail, log)
            except asyncio.TimeoutError:
                return self._timed_out(spec, progress.events, last_reason, log)
            except TransientObservationError as e:
                raise _Resubscribe(str(e)) from e
            except Exception as e:
                return self._failed(spec, progress.events, f"watch stream error: {e}", log)

            progress.events += 1
            try:
                observation = self._evaluate(event, spec)
            except Exception as e:
                log.warning("Condition raised unclassified error", error=str(e), exc_info=True)
                return self._failed(
                    spec,
                    progress.events,
                    f"Unexpected error evaluating '{spec.condition.name}': {e!r}",
                    log,
                )
            log.debug("Watch event", type=event.type.value, status=observation.status.value)

            if observation.status == ObservationStatus.PENDING:
                last_reason = observation.reason
                continue

            outcome = Outcome.from_observation(
                observation,
                deadline_seconds=spec.deadline.duration_seconds,
                elapsed_seconds=spec.deadline.elapsed(),
                observations=progress.events,
            )
            if outcome.satisfied:
                log.info("Watch satisfied", events=progress.events)
            else:
                log.warning("Watch failed", reason=outcome.reason, events=progress.events)
            return outcome

    @staticmethod
    def _evaluate(event: WatchEvent, spec: WatchSpec) -> Observation:
        if event.type == EventType.BOOKMARK:
            return Observation.pending(reason="bookmark")
        if event.type == EventType.ERROR:
            return Observation.failed(reason=f"watch error event: {_error_message(event.payload)}")

        observation = spec.condition.evaluate(event.payload)
        if event.type == EventType.DELETED and not observation.is_terminal:
            if spec.deletion_is_success:
                return Observation.satisfied(reason="resource deleted", value=event.payload)
            return Observation.failed(
                reason=f"{spec.resource.describe()} deleted before '{spec.condition.name}' was met",
            )
        return observation

    @staticmethod
    def _timed_out(spec: WatchSpec, events: int, detail: Optional[str], log: Any) -> Outcome:
        log.warning("Watch timed out", events=events, last_reason=detail)
        return Outcome.timed_out(
            deadline_seconds=spec.deadline.duration_seconds,
            elapsed_seconds=spec.deadline.elapsed(),
            observations=events,
            detail=detail,
        )

    @staticmethod
    def _failed(spec: WatchSpec, events: int, reason: str, log: Any) -> Outcome:
        log.warning("Watch failed", reason=reason)
        return Outcome.from_observation(
            Observation.failed(reason=reason),
            deadline_seconds=spec.deadline.duration_seconds,
            elapsed_seconds=spec.deadline.elapsed(),
            observations=events,
        )

    @staticmethod
    async def _close(stream: Any, log: Any) -> None:
        aclose = getattr(stream, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception as e:
            log.warning("Failed to close watch stream", error=str(e))


def _error_message(payload: Any) -> str:
    """Pull the message out of a Status-like error payload."""
    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("reason")
        if message:
            return str(message)
    return str(payload)
