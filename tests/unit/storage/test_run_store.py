"""Tests for RunStore — append-only ScenarioRun history."""

from datetime import datetime, timedelta, timezone

from converge.engine.models import OutcomeKind, PipelineState, ScenarioRun
from converge.storage.run_store import RunStore


NOW = datetime(2026, 2, 20, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_run(
    *,
    scenario: str = "backup-restore",
    state: PipelineState = PipelineState.COMPLETED,
    started_at: datetime | None = None,
    aborted_step: str | None = None,
    aborted_outcome: OutcomeKind | None = None,
) -> ScenarioRun:
    return ScenarioRun(
        scenario=scenario,
        state=state,
        started_at=started_at or NOW,
        finished_at=started_at or NOW,
        aborted_index=0 if aborted_step else None,
        aborted_step=aborted_step,
        aborted_outcome=aborted_outcome,
        reason="it broke" if aborted_step else None,
    )


def _aborted(step: str, outcome: OutcomeKind, **kwargs) -> ScenarioRun:
    return _make_run(state=PipelineState.ABORTED, aborted_step=step, aborted_outcome=outcome, **kwargs)


# ===========================================================================
# Append / get
# ===========================================================================

class TestRunAppendAndGet:
    def test_append_new(self):
        store = RunStore()
        assert store.append(_make_run()) is True
        assert store.count() == 1

    def test_append_duplicate(self):
        store = RunStore()
        run = _make_run()
        store.append(run)
        assert store.append(run) is False
        assert store.count() == 1

    def test_get_by_id(self):
        store = RunStore()
        run = _make_run()
        store.append(run)
        assert store.get(run.run_id) == run

    def test_count_by_scenario(self):
        store = RunStore()
        store.append(_make_run(scenario="a"))
        store.append(_make_run(scenario="a"))
        store.append(_make_run(scenario="b"))
        assert store.count("a") == 2
        assert store.count("missing") == 0
        assert store.scenarios == ["a", "b"]


# ===========================================================================
# Query
# ===========================================================================

class TestRunQuery:
    def test_filter_by_scenario_and_state(self):
        store = RunStore()
        store.append(_make_run(scenario="a"))
        store.append(_aborted("install", OutcomeKind.FAILED))
        store.append(_make_run(scenario="b", state=PipelineState.ABORTED))

        assert len(store.query(scenario="backup-restore", state=PipelineState.ABORTED)) == 1
        assert len(store.query(state=PipelineState.ABORTED)) == 2

    def test_newest_first_with_limit(self):
        store = RunStore()
        for hours in range(5):
            store.append(_make_run(started_at=NOW + timedelta(hours=hours)))

        results = store.query(limit=2)
        assert [r.started_at for r in results] == [NOW + timedelta(hours=4), NOW + timedelta(hours=3)]
        assert store.get_latest().started_at == NOW + timedelta(hours=4)

    def test_since_filter(self):
        store = RunStore()
        store.append(_make_run(started_at=NOW - timedelta(days=2)))
        store.append(_make_run(started_at=NOW))
        assert len(store.query(since=NOW - timedelta(hours=1))) == 1

    def test_get_latest_empty(self):
        assert RunStore().get_latest() is None


# ===========================================================================
# Triage
# ===========================================================================

class TestRunTriage:
    def test_success_rate(self):
        store = RunStore()
        store.append(_make_run())
        store.append(_make_run())
        store.append(_aborted("restore ready", OutcomeKind.TIMED_OUT))
        store.append(_aborted("restore ready", OutcomeKind.TIMED_OUT))
        assert store.success_rate() == 0.5
        assert RunStore().success_rate() == 0.0

    def test_failure_breakdown_by_outcome(self):
        store = RunStore()
        store.append(_make_run())
        store.append(_aborted("restore ready", OutcomeKind.TIMED_OUT))
        store.append(_aborted("restore ready", OutcomeKind.TIMED_OUT))
        store.append(_aborted("install", OutcomeKind.FAILED))

        assert store.failure_breakdown("backup-restore") == {"TIMED_OUT": 2, "FAILED": 1}

    def test_failing_steps_most_common_first(self):
        store = RunStore()
        store.append(_aborted("install", OutcomeKind.FAILED))
        store.append(_aborted("restore ready", OutcomeKind.TIMED_OUT))
        store.append(_aborted("restore ready", OutcomeKind.TIMED_OUT))

        assert list(store.failing_steps()) == ["restore ready", "install"]


# ===========================================================================
# Persistence
# ===========================================================================

class TestRunPersistence:
    def test_roundtrip(self, tmp_path):
        path = tmp_path / "data" / "runs.jsonl"
        store = RunStore(persist_path=path)
        run = _aborted("backup ready", OutcomeKind.TIMED_OUT)
        store.append(run)
        store.append(_make_run())

        reloaded = RunStore(persist_path=path)
        assert reloaded.count() == 2
        restored = reloaded.get(run.run_id)
        assert restored.aborted_outcome == OutcomeKind.TIMED_OUT
        assert restored.aborted_step == "backup ready"

    def test_unreadable_lines_skipped(self, tmp_path):
        path = tmp_path / "runs.jsonl"
        run = _make_run()
        path.write_text("not json at all\n\n" + run.model_dump_json() + "\n")

        store = RunStore(persist_path=path)
        assert store.count() == 1
        assert store.get(run.run_id) is not None

    def test_persist_failure_is_logged_not_raised(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        store = RunStore(persist_path=blocker / "runs.jsonl")

        assert store.append(_make_run()) is True
        assert store.count() == 1
