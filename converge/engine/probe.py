"""Probes and conditions — single read-only looks at remote state.

A Condition is a named predicate over a snapshot. A Probe is a
no-argument callable (plain or async) that fetches a snapshot and
reports an Observation. Both classify errors the same way:

  - TransientObservationError (or a caller-named transient type) -> PENDING
  - TerminalObservationError -> FAILED

Getting this split right matters: a transient fetch error reported as
FAILED aborts convergence early, and a genuine failure reported as
PENDING spins until the deadline.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

import structlog

from converge.engine.invoke import invoke
from converge.engine.models import Observation
from converge.exceptions import TerminalObservationError, TransientObservationError

logger = structlog.get_logger()

Probe = Callable[[], Union[Observation, Awaitable[Observation]]]
Evaluator = Callable[[Any], Union[Observation, bool]]


@dataclass(frozen=True)
class Condition:
    """Named predicate over an observed snapshot.

    The evaluator may return an Observation, or a bool where True means
    SATISFIED and False means PENDING.
    """

    name: str
    evaluator: Evaluator

    def evaluate(self, snapshot: Any) -> Observation:
        try:
            result = self.evaluator(snapshot)
        except TransientObservationError as e:
            return Observation.pending(reason=str(e))
        except TerminalObservationError as e:
            return Observation.failed(reason=f"{self.name}: {e}")

        if isinstance(result, bool):
            if result:
                return Observation.satisfied(value=snapshot)
            return Observation.pending(reason=f"{self.name} not met yet")
        if not isinstance(result, Observation):
            return _unexpected_result(f"condition '{self.name}'", result)
        return result


async def observe(probe: Probe) -> Observation:
    """Invoke a probe once and classify whatever it raises.

    Unclassified exceptions are FAILED: a probe that wants an error
    retried must say so by raising TransientObservationError.
    """
    try:
        result = await invoke(probe)
    except TransientObservationError as e:
        return Observation.pending(reason=str(e))
    except TerminalObservationError as e:
        return Observation.failed(reason=str(e))
    except Exception as e:
        logger.warning("Probe raised unclassified error", error=str(e), exc_info=True)
        return Observation.failed(reason=f"Unexpected probe error: {e}")

    if isinstance(result, bool):
        return Observation.satisfied() if result else Observation.pending()
    if not isinstance(result, Observation):
        return _unexpected_result("probe", result)
    return result


def _unexpected_result(source: str, result: Any) -> Observation:
    logger.warning("Unexpected observation result", source=source, result_type=type(result).__name__)
    return Observation.failed(
        reason=f"{source} returned {type(result).__name__}, expected an Observation or bool",
    )


def make_probe(
    fetch: Callable[[], Any],
    condition: Condition,
    transient: tuple[type[BaseException], ...] = (),
) -> Probe:
    """Build a Probe from a snapshot fetch and a Condition.

    Args:
        fetch: Plain or async callable returning the current snapshot.
        condition: Evaluated against every fetched snapshot.
        transient: Extra exception types that mean "not there yet"
            (e.g. a client's not-found or connection errors).

    Returns:
        An async no-argument probe.
    """

    async def probe() -> Observation:
        try:
            snapshot = await invoke(fetch)
        except TransientObservationError as e:
            return Observation.pending(reason=str(e))
        except transient as e:
            return Observation.pending(reason=f"{type(e).__name__}: {e}")
        return condition.evaluate(snapshot)

    return probe
