"""Deadline — wall-clock bound for a convergence attempt."""

import time
from dataclasses import dataclass, field
from typing import Callable, Optional

Clock = Callable[[], float]


@dataclass(frozen=True)
class Deadline:
    """A (duration, start-time) pair on a monotonic clock.

    Created once per convergence attempt. ``remaining()`` only ever
    decreases; once it reaches zero the attempt is timed out.
    """

    duration_seconds: float
    clock: Clock = field(default=time.monotonic, repr=False, compare=False)
    started_at: Optional[float] = None

    def __post_init__(self) -> None:
        if self.duration_seconds < 0:
            raise ValueError(f"Deadline duration must be >= 0, got {self.duration_seconds}")
        if self.started_at is None:
            object.__setattr__(self, "started_at", self.clock())

    @classmethod
    def after(cls, seconds: float, clock: Clock = time.monotonic) -> "Deadline":
        return cls(duration_seconds=seconds, clock=clock)

    def elapsed(self) -> float:
        return max(0.0, self.clock() - self.started_at)

    def remaining(self) -> float:
        return max(0.0, self.duration_seconds - self.elapsed())

    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def bounded(self, seconds: float) -> "Deadline":
        """Return a fresh Deadline no longer than what is left of this one."""
        return Deadline(duration_seconds=min(seconds, self.remaining()), clock=self.clock)
