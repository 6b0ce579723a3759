"""Deadline races — a worker against a timer.

Some waits are opaque blocking calls ("wait until every deployment in
the namespace rolled out") that cannot observe a deadline themselves.
They run on a daemon thread that reports into a single-slot future;
the caller waits on that future with the remaining time. When the
timer wins, the worker is detached, never joined, so the pipeline is
not held past its deadline.
"""

import asyncio
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog

from converge.engine.deadline import Deadline
from converge.engine.invoke import invoke
from converge.engine.models import Observation, Outcome
from converge.exceptions import TerminalObservationError

logger = structlog.get_logger()


async def run_blocking(fn: Callable[..., Any], *args: Any, timeout: Optional[float]) -> Any:
    """Run a blocking callable on a detached daemon thread.

    Raises:
        asyncio.TimeoutError: The timeout elapsed first. The thread is
            left running and its eventual result is discarded.
        Exception: Whatever ``fn`` raised, re-raised in the caller.
    """
    loop = asyncio.get_running_loop()
    result: asyncio.Future = loop.create_future()

    def _deliver(value: Any = None, error: Optional[BaseException] = None) -> None:
        if result.done():
            return
        if error is not None:
            result.set_exception(error)
        else:
            result.set_result(value)

    def _worker() -> None:
        value: Any = None
        error: Optional[BaseException] = None
        try:
            value = fn(*args)
        except BaseException as e:
            error = e
        try:
            loop.call_soon_threadsafe(_deliver, value, error)
        except RuntimeError:
            # loop already closed; nobody is waiting for this result
            logger.debug("Detached worker finished after loop shutdown")

    name = f"converge-worker-{getattr(fn, '__name__', 'fn')}"
    thread = threading.Thread(target=_worker, name=name, daemon=True)
    thread.start()
    try:
        return await asyncio.wait_for(result, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Worker detached after timeout", worker=thread.name, timeout=timeout)
        raise


@dataclass(frozen=True)
class RaceSpec:
    """A worker that returns once the awaited state holds, and its deadline.

    ``blocking=True`` runs the worker on a detached thread; otherwise it
    is called on the event loop and must be a coroutine function.
    """

    worker: Callable[[], Any]
    deadline: Deadline
    blocking: bool = True
    description: str = "worker"


class WorkerRace:
    """Race a worker against a deadline and report an Outcome.

    Worker returns -> SATISFIED; worker raises -> FAILED; timer fires
    first -> TIMED_OUT.
    """

    async def run(self, spec: RaceSpec) -> Outcome:
        log = logger.bind(wait=spec.description, deadline=spec.deadline.duration_seconds)
        remaining = spec.deadline.remaining()
        try:
            if spec.blocking:
                value = await run_blocking(spec.worker, timeout=remaining)
            else:
                value = await asyncio.wait_for(invoke(spec.worker), timeout=remaining)
        except asyncio.TimeoutError:
            log.warning("Worker lost race against deadline")
            return Outcome.timed_out(
                deadline_seconds=spec.deadline.duration_seconds,
                elapsed_seconds=spec.deadline.elapsed(),
                observations=1,
                detail=f"{spec.description} still running",
            )
        except TerminalObservationError as e:
            observation = Observation.failed(reason=str(e))
        except Exception as e:
            log.warning("Worker failed", error=str(e))
            observation = Observation.failed(reason=f"{spec.description} failed: {e}")
        else:
            log.info("Worker finished within deadline")
            observation = Observation.satisfied(value=value)

        return Outcome.from_observation(
            observation,
            deadline_seconds=spec.deadline.duration_seconds,
            elapsed_seconds=spec.deadline.elapsed(),
            observations=1,
        )
