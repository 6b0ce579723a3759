"""Centralized environment-based settings for converge.

Reads harness-wide configuration from environment variables with
sensible defaults. Per-wait timings live in convergence profiles
(see converge.config.profiles); this module holds the fallbacks and
the process-level switches.

Usage:
    from converge.config.settings import get_settings
    settings = get_settings()
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class HarnessSettings:
    """Immutable harness settings loaded from environment."""

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False

    # Storage
    data_dir: Path = Path("data")
    persist_history: bool = True

    # Profiles
    profiles_path: Path = Path("config/profiles.yaml")

    # Convergence fallbacks
    poll_interval: float = 5.0
    convergence_timeout: float = 300.0
    resubscribe_delay: float = 2.0

    # Scenario bound (None = unbounded)
    scenario_deadline: Optional[float] = None

    # Action retries
    retry_attempts: int = 3
    retry_delay: float = 5.0

    # Teardown
    cleanup_timeout: Optional[float] = 300.0

    @property
    def history_path(self) -> Path:
        return self.data_dir / "runs.jsonl"


def get_settings() -> HarnessSettings:
    """Load settings from environment variables.

    Environment variables (all optional):
        CONVERGE_LOG_LEVEL: Logging level (default: INFO)
        CONVERGE_JSON_LOGS: Render logs as JSON (default: false)
        CONVERGE_DATA_DIR: Run history directory (default: data)
        CONVERGE_PERSIST_HISTORY: Append runs to runs.jsonl (default: true)
        CONVERGE_PROFILES_PATH: Convergence profiles YAML (default: config/profiles.yaml)
        CONVERGE_POLL_INTERVAL: Fallback poll interval seconds (default: 5)
        CONVERGE_CONVERGENCE_TIMEOUT: Fallback wait timeout seconds (default: 300)
        CONVERGE_RESUBSCRIBE_DELAY: Delay before reopening a watch (default: 2)
        CONVERGE_SCENARIO_DEADLINE: Whole-scenario bound in seconds (default: unset)
        CONVERGE_RETRY_ATTEMPTS: Fallback action attempts (default: 3)
        CONVERGE_RETRY_DELAY: Fallback delay between attempts (default: 5)
        CONVERGE_CLEANUP_TIMEOUT: Per-cleanup timeout, 0 disables (default: 300)
    """
    def _bool(key: str, default: bool = False) -> bool:
        val = os.environ.get(key, "").lower()
        if val in ("1", "true", "yes"):
            return True
        if val in ("0", "false", "no"):
            return False
        return default

    def _optional_seconds(key: str, default: Optional[float]) -> Optional[float]:
        raw = os.environ.get(key, "")
        if not raw:
            return default
        value = float(raw)
        return value if value > 0 else None

    return HarnessSettings(
        log_level=os.environ.get("CONVERGE_LOG_LEVEL", "INFO").upper(),
        json_logs=_bool("CONVERGE_JSON_LOGS", False),
        data_dir=Path(os.environ.get("CONVERGE_DATA_DIR", "data")),
        persist_history=_bool("CONVERGE_PERSIST_HISTORY", True),
        profiles_path=Path(os.environ.get("CONVERGE_PROFILES_PATH", "config/profiles.yaml")),
        poll_interval=float(os.environ.get("CONVERGE_POLL_INTERVAL", "5")),
        convergence_timeout=float(os.environ.get("CONVERGE_CONVERGENCE_TIMEOUT", "300")),
        resubscribe_delay=float(os.environ.get("CONVERGE_RESUBSCRIBE_DELAY", "2")),
        scenario_deadline=_optional_seconds("CONVERGE_SCENARIO_DEADLINE", None),
        retry_attempts=int(os.environ.get("CONVERGE_RETRY_ATTEMPTS", "3")),
        retry_delay=float(os.environ.get("CONVERGE_RETRY_DELAY", "5")),
        cleanup_timeout=_optional_seconds("CONVERGE_CLEANUP_TIMEOUT", 300.0),
    )
