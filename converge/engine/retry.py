"""RetryExecutor — bounded re-invocation of a remote-mutating action.

Distinct from PollLoop: this re-issues an action ("create this
resource", "install this chart") rather than re-observing state.
"""

import asyncio
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional

import structlog

from converge.config.settings import HarnessSettings
from converge.engine.invoke import invoke
from converge.engine.poll import Sleep
from converge.exceptions import RetryableActionError, RetryExhaustedError

logger = structlog.get_logger()


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to issue an action and how long to wait between.

    Fields left as None take ``retry_attempts`` and ``retry_delay`` from
    HarnessSettings when the policy is resolved.
    """

    max_attempts: Optional[int] = None
    delay_seconds: Optional[float] = None
    retry_on: tuple[type[BaseException], ...] = ()

    def __post_init__(self) -> None:
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.delay_seconds is not None and self.delay_seconds < 0:
            raise ValueError(f"delay_seconds must be >= 0, got {self.delay_seconds}")

    def resolve(self, settings: HarnessSettings) -> "RetryPolicy":
        """Copy of this policy with unset fields filled from settings."""
        return replace(
            self,
            max_attempts=self.max_attempts if self.max_attempts is not None else settings.retry_attempts,
            delay_seconds=self.delay_seconds if self.delay_seconds is not None else settings.retry_delay,
        )


@dataclass(frozen=True)
class RetryResult:
    """Value of the successful attempt, or the error that ended the run."""

    value: Any = None
    error: Optional[BaseException] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


class RetryExecutor:
    """Issue an action up to ``max_attempts`` times with a fixed delay.

    Classification:
      - RetryableActionError, or any type in ``retry_on`` -> sleep, retry
      - anything else (TerminalActionError included) -> return at once

    Exhausting attempts returns RetryExhaustedError wrapping the last
    error object unchanged.
    """

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        delay_seconds: Optional[float] = None,
        retry_on: tuple[type[BaseException], ...] = (),
        sleep: Sleep = asyncio.sleep,
        settings: Optional[HarnessSettings] = None,
    ) -> None:
        policy = RetryPolicy(max_attempts, delay_seconds, retry_on)
        self._policy = policy.resolve(settings or HarnessSettings())
        self._sleep = sleep

    @classmethod
    def from_policy(
        cls,
        policy: RetryPolicy,
        settings: Optional[HarnessSettings] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> "RetryExecutor":
        return cls(policy.max_attempts, policy.delay_seconds, policy.retry_on, sleep=sleep, settings=settings)

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def is_retryable(self, error: BaseException) -> bool:
        return isinstance(error, (RetryableActionError, *self._policy.retry_on))

    async def run(self, action: Callable[..., Any], *args: Any) -> RetryResult:
        max_attempts = self._policy.max_attempts
        last_error: Optional[BaseException] = None

        for attempt in range(1, max_attempts + 1):
            try:
                value = await invoke(action, *args)
                if attempt > 1:
                    logger.info("Action succeeded after retry", attempt=attempt)
                return RetryResult(value=value, attempts=attempt)
            except Exception as e:
                if not self.is_retryable(e):
                    logger.warning(
                        "Action failed (terminal)",
                        attempt=attempt,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    return RetryResult(error=e, attempts=attempt)
                last_error = e
                logger.info(
                    "Action failed (retryable)",
                    attempt=attempt,
                    max_attempts=max_attempts,
                    error=str(e),
                )

            if attempt < max_attempts:
                await self._sleep(self._policy.delay_seconds)

        exhausted = RetryExhaustedError(attempts=max_attempts, last_error=last_error)
        exhausted.__cause__ = last_error
        logger.warning("Action retries exhausted", attempts=max_attempts, error=str(last_error))
        return RetryResult(error=exhausted, attempts=max_attempts)
