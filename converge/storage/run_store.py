"""RunStore — append-only history of ScenarioRun records.

Keeps every scenario execution so repeated failures can be told apart:
a scenario that times out at the same wait again and again is broken,
one that fails at a different step each night is flaky.
"""

from __future__ import annotations

import threading
from collections import Counter
from datetime import datetime
from pathlib import Path
from uuid import UUID

import structlog
from pydantic import ValidationError

from converge.engine.models import PipelineState, ScenarioRun

logger = structlog.get_logger()


class RunStore:
    """Append-only store for ScenarioRun history.

    Thread-safe. Indexed by run_id and scenario name. When given a
    path, every appended run is written as one JSON line; persistence
    failures are logged and never raised.
    """

    def __init__(self, persist_path: Path | None = None) -> None:
        self._lock = threading.RLock()
        self._runs: dict[UUID, ScenarioRun] = {}
        self._by_scenario: dict[str, list[UUID]] = {}

        self._persist_path = persist_path
        if persist_path and persist_path.exists():
            self._load_from_disk()

    def _index(self, run: ScenarioRun) -> None:
        self._runs[run.run_id] = run
        self._by_scenario.setdefault(run.scenario, []).append(run.run_id)

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def append(self, run: ScenarioRun) -> bool:
        """Append a scenario run. Returns True if new, False if duplicate."""
        with self._lock:
            if run.run_id in self._runs:
                return False

            self._index(run)
            if self._persist_path:
                self._persist_one(run)

            logger.debug(
                "Run stored",
                run_id=str(run.run_id),
                scenario=run.scenario,
                state=run.state.value,
            )
            return True

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, run_id: UUID) -> ScenarioRun | None:
        with self._lock:
            return self._runs.get(run_id)

    def query(
        self,
        *,
        scenario: str | None = None,
        state: PipelineState | None = None,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[ScenarioRun]:
        """Query runs with filters. Returns newest-first."""
        with self._lock:
            if scenario is not None:
                candidates = [self._runs[rid] for rid in self._by_scenario.get(scenario, [])]
            else:
                candidates = list(self._runs.values())

            results = [
                run
                for run in candidates
                if (state is None or run.state == state)
                and (since is None or run.started_at >= since)
            ]
            results.sort(key=lambda r: r.started_at, reverse=True)

            if limit:
                results = results[:limit]
            return results

    def get_latest(self, scenario: str | None = None) -> ScenarioRun | None:
        results = self.query(scenario=scenario, limit=1)
        return results[0] if results else None

    def success_rate(self, scenario: str | None = None, last_n: int = 100) -> float:
        """Share of the last N runs that completed."""
        runs = self.query(scenario=scenario, limit=last_n)
        if not runs:
            return 0.0
        return sum(1 for r in runs if r.completed) / len(runs)

    def failure_breakdown(self, scenario: str | None = None, last_n: int = 100) -> dict[str, int]:
        """Count aborted runs by outcome kind (SATISFIED never appears).

        Aborts recorded without an outcome kind count as "FAILED".
        """
        counts: Counter[str] = Counter()
        for run in self.query(scenario=scenario, state=PipelineState.ABORTED, limit=last_n):
            kind = run.aborted_outcome.value if run.aborted_outcome else "FAILED"
            counts[kind] += 1
        return dict(counts)

    def failing_steps(self, scenario: str | None = None, last_n: int = 100) -> dict[str, int]:
        """Count aborted runs by the step they aborted at."""
        counts: Counter[str] = Counter()
        for run in self.query(scenario=scenario, state=PipelineState.ABORTED, limit=last_n):
            if run.aborted_step:
                counts[run.aborted_step] += 1
        return dict(counts.most_common())

    def count(self, scenario: str | None = None) -> int:
        with self._lock:
            if scenario is not None:
                return len(self._by_scenario.get(scenario, []))
            return len(self._runs)

    @property
    def scenarios(self) -> list[str]:
        with self._lock:
            return sorted(self._by_scenario)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist_one(self, run: ScenarioRun) -> None:
        """Append a single run to the JSON-lines file."""
        try:
            self._persist_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._persist_path, "a") as f:
                f.write(run.model_dump_json() + "\n")
        except OSError as exc:
            logger.error(
                "Failed to persist run",
                run_id=str(run.run_id),
                error=str(exc),
            )

    def _load_from_disk(self) -> None:
        """Load runs from the JSON-lines file, skipping unreadable lines."""
        count = 0
        skipped = 0
        try:
            with open(self._persist_path) as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        run = ScenarioRun.model_validate_json(line)
                    except ValidationError:
                        skipped += 1
                        continue
                    if run.run_id not in self._runs:
                        self._index(run)
                        count += 1
        except OSError as exc:
            logger.error(
                "Failed to load runs from disk",
                path=str(self._persist_path),
                error=str(exc),
            )
        if skipped:
            logger.warning("Skipped unreadable run records", path=str(self._persist_path), skipped=skipped)
        logger.info("Runs loaded from disk", count=count)
