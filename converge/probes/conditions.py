"""Ready-made Conditions over plain JSON-like snapshots.

Each factory returns a Condition that reads a dotted path out of a dict
(e.g. ``status.summary.state``) and decides whether the awaited state
holds. Missing fields read as "not there yet", never as failure.
"""

from typing import Any, Iterable, Optional

from converge.engine.models import Observation
from converge.engine.probe import Condition

_MISSING = object()


def dig(snapshot: Any, path: str, default: Any = None) -> Any:
    """Follow a dotted path through nested dicts.

    >>> dig({"status": {"summary": {"state": "deployed"}}}, "status.summary.state")
    'deployed'
    """
    current = snapshot
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def summary_state(
    deployed: str = "deployed",
    failed: str = "failed",
    path: str = "status.summary.state",
) -> Condition:
    """App release state: ``deployed`` satisfies, ``failed`` fails."""

    def evaluate(snapshot: Any) -> Observation:
        state = dig(snapshot, path)
        if state == deployed:
            return Observation.satisfied(value=snapshot, reason=f"{path}={state}")
        if state == failed:
            return Observation.failed(reason=f"{path}={state}", value=snapshot)
        return Observation.pending(reason=f"{path}={state}")

    return Condition(f"summary state {deployed}", evaluate)


def ready_condition(
    type: str = "Ready",
    fail_on_error: bool = False,
) -> Condition:
    """Kubernetes-style ``status.conditions`` entry of ``type`` is True.

    With ``fail_on_error`` an entry whose status is False and whose
    reason is ``Error`` fails the wait instead of waiting it out.
    """

    def evaluate(snapshot: Any) -> Observation:
        conditions = dig(snapshot, "status.conditions") or []
        for entry in conditions:
            if not isinstance(entry, dict) or entry.get("type") != type:
                continue
            status = str(entry.get("status", ""))
            if status == "True":
                return Observation.satisfied(value=snapshot, reason=f"{type}=True")
            message = entry.get("message") or entry.get("reason") or ""
            if fail_on_error and status == "False" and entry.get("reason") == "Error":
                return Observation.failed(reason=f"{type}=False: {message}", value=snapshot)
            return Observation.pending(reason=f"{type}={status or 'Unknown'} {message}".strip())
        return Observation.pending(reason=f"no {type} condition reported")

    return Condition(f"{type} condition", evaluate)


def field_equals(
    path: str,
    expected: Any,
    failed: Iterable[Any] = (),
) -> Condition:
    """Value at ``path`` equals ``expected``; any value in ``failed`` fails."""
    failed_values = tuple(failed)

    def evaluate(snapshot: Any) -> Observation:
        value = dig(snapshot, path, _MISSING)
        if value is _MISSING:
            return Observation.pending(reason=f"{path} not set")
        if value == expected:
            return Observation.satisfied(value=snapshot, reason=f"{path}={value}")
        if value in failed_values:
            return Observation.failed(reason=f"{path}={value}", value=snapshot)
        return Observation.pending(reason=f"{path}={value}, want {expected}")

    return Condition(f"{path} == {expected}", evaluate)


def collection_empty(path: str = "items") -> Condition:
    """List at ``path`` is empty (e.g. no deployments left)."""

    def evaluate(snapshot: Any) -> Observation:
        items = dig(snapshot, path, _MISSING)
        if items is _MISSING:
            return Observation.pending(reason=f"{path} not set")
        if not items:
            return Observation.satisfied(value=snapshot)
        return Observation.pending(reason=f"{len(items)} item(s) left in {path}")

    return Condition(f"{path} empty", evaluate)


def named_item_state(
    name: str,
    expected: str,
    path: str = "data",
    state_field: str = "state",
    name_field: str = "name",
    failed: Iterable[str] = (),
) -> Condition:
    """Find the item called ``name`` in a list response and check its state."""
    failed_states = tuple(failed)

    def evaluate(snapshot: Any) -> Observation:
        item: Optional[dict] = None
        for candidate in dig(snapshot, path) or []:
            if isinstance(candidate, dict) and dig(candidate, name_field) == name:
                item = candidate
                break
        if item is None:
            return Observation.pending(reason=f"{name} not listed yet")

        state = dig(item, state_field)
        if state == expected:
            return Observation.satisfied(value=item, reason=f"{name} {state}")
        if state in failed_states:
            return Observation.failed(reason=f"{name} {state}", value=item)
        return Observation.pending(reason=f"{name} {state}")

    return Condition(f"{name} {expected}", evaluate)
