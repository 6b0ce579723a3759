"""CleanupRegistry — deferred teardown run in reverse registration order.

Actions are registered right after whatever created remote state, so a
scenario that fails halfway still releases everything it made. Every
action runs even when an earlier one fails; all errors are collected.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog

from converge.engine.invoke import invoke
from converge.exceptions import CleanupError

logger = structlog.get_logger()


@dataclass(frozen=True)
class CleanupAction:
    """A no-argument fallible teardown plus a human-readable label."""

    label: str
    action: Callable[[], Any]
    step: Optional[str] = None


class CleanupRegistry:
    """Ordered list of deferred teardown actions.

    ``run_all()`` drains the registry: a second call runs nothing.
    """

    def __init__(self, timeout_seconds: Optional[float] = None) -> None:
        self._actions: list[CleanupAction] = []
        self._timeout = timeout_seconds

    def __len__(self) -> int:
        return len(self._actions)

    @property
    def labels(self) -> list[str]:
        return [a.label for a in self._actions]

    def register(
        self,
        label: str,
        action: Callable[[], Any],
        step: Optional[str] = None,
    ) -> None:
        self._actions.append(CleanupAction(label=label, action=action, step=step))
        logger.debug("Cleanup registered", label=label, step=step, pending=len(self._actions))

    async def run_all(self) -> list[CleanupError]:
        """Run every registered action, last registered first.

        Returns:
            One CleanupError per failed action, in execution order.
            Never raises for a failing action.
        """
        actions, self._actions = self._actions, []
        errors: list[CleanupError] = []

        for cleanup in reversed(actions):
            log = logger.bind(cleanup=cleanup.label, step=cleanup.step)
            try:
                if self._timeout is not None:
                    await asyncio.wait_for(invoke(cleanup.action), timeout=self._timeout)
                else:
                    await invoke(cleanup.action)
                log.info("Cleanup done")
            except Exception as e:
                timed_out = self._timeout is not None and isinstance(e, asyncio.TimeoutError)
                cause = TimeoutError(f"timed out after {self._timeout}s") if timed_out else e
                log.error("Cleanup failed", error=str(cause), exc_info=not timed_out)
                error = CleanupError(cleanup.label, cause, step=cleanup.step)
                error.__cause__ = e
                errors.append(error)

        return errors
