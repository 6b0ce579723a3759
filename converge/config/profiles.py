"""Convergence profiles — named timings for recurring waits.

Each profile fixes how one kind of wait is observed (poll, watch or
race), how often, and for how long, plus how often its action may be
re-issued. Built-in defaults carry the timings the cluster e2e flows
have settled on; a YAML file can override or extend them.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional, Union

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from converge.engine.probe import Condition
from converge.engine.retry import RetryPolicy
from converge.engine.step import Poll, Race, ScenarioContext, Watch
from converge.engine.watch import AWAIT_DELETION, ResourceRef
from converge.exceptions import ConfigurationError

logger = structlog.get_logger()


class Strategy(str, Enum):
    """How a profile observes convergence."""
    POLL = "poll"
    WATCH = "watch"
    RACE = "race"


class ConvergenceProfile(BaseModel):
    """Timing for one kind of wait."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(...)
    strategy: Strategy = Field(...)
    timeout_seconds: float = Field(..., gt=0)
    interval_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Poll cadence; required for the poll strategy",
    )
    retry_attempts: int = Field(default=1, ge=1)
    retry_delay_seconds: float = Field(default=0.0, ge=0.0)
    description: str = Field(default="")

    @model_validator(mode="after")
    def _poll_needs_interval(self) -> "ConvergenceProfile":
        if self.strategy == Strategy.POLL and self.interval_seconds is None:
            raise ValueError(f"Poll profile '{self.name}' needs interval_seconds")
        return self

    def _require(self, strategy: Strategy) -> None:
        if self.strategy != strategy:
            raise ConfigurationError(
                f"Profile '{self.name}' is a {self.strategy.value} profile, not {strategy.value}"
            )

    def poll(self, probe: Callable[[ScenarioContext], Any]) -> Poll:
        self._require(Strategy.POLL)
        return Poll(
            probe=probe,
            interval_seconds=self.interval_seconds,
            timeout_seconds=self.timeout_seconds,
        )

    def watch(
        self,
        resource: Union[ResourceRef, Callable[[ScenarioContext], ResourceRef]],
        condition: Condition = AWAIT_DELETION,
        deletion_is_success: bool = False,
    ) -> Watch:
        self._require(Strategy.WATCH)
        return Watch(
            resource=resource,
            condition=condition,
            timeout_seconds=self.timeout_seconds,
            deletion_is_success=deletion_is_success,
        )

    def race(self, worker: Callable[[ScenarioContext], Any], blocking: bool = True) -> Race:
        self._require(Strategy.RACE)
        return Race(worker=worker, timeout_seconds=self.timeout_seconds, blocking=blocking)

    def retry_policy(
        self,
        retry_on: tuple[type[BaseException], ...] = (),
    ) -> Optional[RetryPolicy]:
        """RetryPolicy for the action behind this wait, or None for one attempt."""
        if self.retry_attempts <= 1:
            return None
        return RetryPolicy(
            max_attempts=self.retry_attempts,
            delay_seconds=self.retry_delay_seconds,
            retry_on=retry_on,
        )


DEFAULT_PROFILES: dict[str, dict[str, Any]] = {
    "chart-install": {
        "strategy": "watch",
        "timeout_seconds": 300,
        "retry_attempts": 3,
        "retry_delay_seconds": 10,
        "description": "App resource reaches deployed after a chart install or upgrade",
    },
    "chart-uninstall": {
        "strategy": "watch",
        "timeout_seconds": 300,
        "description": "App resource is deleted after a chart uninstall",
    },
    "backup-ready": {
        "strategy": "poll",
        "interval_seconds": 2,
        "timeout_seconds": 180,
        "description": "Backup resource reports a Ready condition",
    },
    "restore-ready": {
        "strategy": "poll",
        "interval_seconds": 2,
        "timeout_seconds": 1200,
        "description": "Restore resource reports a Ready condition",
    },
    "object-present": {
        "strategy": "poll",
        "interval_seconds": 5,
        "timeout_seconds": 60,
        "description": "Backup artifact key shows up in object storage",
    },
    "cluster-active": {
        "strategy": "poll",
        "interval_seconds": 30,
        "timeout_seconds": 900,
        "description": "Downstream cluster state becomes active",
    },
    "deployments-cleanup": {
        "strategy": "poll",
        "interval_seconds": 5,
        "timeout_seconds": 120,
        "description": "No deployments left in a namespace",
    },
    "deployments-rollout": {
        "strategy": "race",
        "timeout_seconds": 120,
        "description": "Every deployment in a namespace finished rolling out",
    },
}


class ProfileRegistry:
    """Registry of convergence profiles.

    Provides lookup by name and validates all profiles on load.
    """

    def __init__(self, profiles: dict[str, ConvergenceProfile] | None = None) -> None:
        self._profiles: dict[str, ConvergenceProfile] = profiles or {}

    def get(self, name: str) -> ConvergenceProfile | None:
        return self._profiles.get(name)

    def get_or_raise(self, name: str) -> ConvergenceProfile:
        profile = self._profiles.get(name)
        if profile is None:
            raise ConfigurationError(f"No convergence profile named: {name}")
        return profile

    @property
    def names(self) -> list[str]:
        return sorted(self._profiles)

    def __contains__(self, name: object) -> bool:
        return name in self._profiles

    @classmethod
    def from_dict(cls, profiles: dict[str, dict[str, Any]]) -> "ProfileRegistry":
        """Create registry from a plain dictionary (useful for testing)."""
        parsed: dict[str, ConvergenceProfile] = {}
        for name, data in profiles.items():
            try:
                parsed[name] = ConvergenceProfile(name=name, **(data or {}))
            except ValidationError as e:
                raise ConfigurationError(f"Invalid convergence profile '{name}': {e}") from e
        return cls(parsed)

    @classmethod
    def defaults(cls) -> "ProfileRegistry":
        return cls.from_dict(DEFAULT_PROFILES)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "ProfileRegistry":
        """Load profiles from YAML on top of the built-in defaults.

        Expected YAML structure:
            profiles:
              backup-ready:
                strategy: poll
                interval_seconds: 2
                timeout_seconds: 180
              ...

        A missing file yields the defaults unchanged.
        """
        path = Path(path)
        merged: dict[str, dict[str, Any]] = {k: dict(v) for k, v in DEFAULT_PROFILES.items()}

        if not path.exists():
            logger.debug("Profiles file not found, using defaults", path=str(path))
            return cls.from_dict(merged)

        try:
            with open(path) as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Could not parse profiles file {path}: {e}") from e

        if not isinstance(raw, dict):
            raise ConfigurationError(f"Profiles file {path} must contain a mapping")

        overrides: dict[str, Any] = raw.get("profiles", {}) or {}
        for name, data in overrides.items():
            if not isinstance(data, dict):
                raise ConfigurationError(f"Profile '{name}' in {path} must be a mapping")
            merged.setdefault(name, {}).update(data)

        registry = cls.from_dict(merged)
        logger.info("Convergence profiles loaded", path=str(path), count=len(registry.names))
        return registry
