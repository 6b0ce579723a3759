"""Tests for the converge CLI."""

import textwrap

import pytest
import structlog

from converge.__main__ import EXIT_ABORTED, EXIT_CLEANUP_ERRORS, EXIT_COMPLETED, load_factory, main
from converge.exceptions import ConfigurationError
from converge.storage import RunStore

SCENARIOS = textwrap.dedent(
    """
    from converge.engine.models import Observation
    from converge.engine.step import Poll, Step, defer


    def completed(ctx):
        return [
            Step("create", action=lambda c: "thing"),
            Step("ready", convergence=Poll(lambda c: True, interval_seconds=0.01, timeout_seconds=1)),
        ]


    def aborted(ctx):
        return [
            Step("create", action=lambda c: "thing"),
            Step("ready", convergence=Poll(lambda c: Observation.failed(reason="state=error"), timeout_seconds=1)),
            Step("after", action=lambda c: None),
        ]


    def dirty(ctx):
        def broken(c, value):
            raise RuntimeError("finalizer stuck")

        return [Step("create", action=lambda c: "thing", cleanups=(defer("delete", broken),))]


    def uses_profile(ctx):
        profile = ctx.profile("backup-ready")
        return [Step("ready", convergence=profile.poll(lambda c: True))]


    def not_steps(ctx):
        return 42
    """
)


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


@pytest.fixture
def scenarios(tmp_path, monkeypatch):
    module_dir = tmp_path / "mods"
    module_dir.mkdir()
    (module_dir / "cli_scenarios.py").write_text(SCENARIOS)
    monkeypatch.syspath_prepend(str(module_dir))
    return "cli_scenarios"


def _argv(tmp_path, *args):
    return ["--data-dir", str(tmp_path / "data"), "--profiles", str(tmp_path / "profiles.yaml"), *args]


# ===========================================================================
# run
# ===========================================================================

class TestRunCommand:
    def test_completed_exit_zero_and_history(self, tmp_path, scenarios, capsys):
        code = main(_argv(tmp_path, "run", f"{scenarios}:completed"))

        assert code == EXIT_COMPLETED
        assert "completed: COMPLETED" in capsys.readouterr().out
        store = RunStore(persist_path=tmp_path / "data" / "runs.jsonl")
        assert store.count("completed") == 1

    def test_aborted_exit_one_with_trail(self, tmp_path, scenarios, capsys):
        code = main(_argv(tmp_path, "run", f"{scenarios}:aborted", "--name", "nightly"))

        assert code == EXIT_ABORTED
        out = capsys.readouterr().out
        assert "Scenario 'nightly' aborted at step 1 'ready'" in out
        assert "[1] ready: FAILED (state=error)" in out

    def test_cleanup_errors_only_fail_under_strict(self, tmp_path, scenarios):
        assert main(_argv(tmp_path, "run", f"{scenarios}:dirty", "--no-history")) == EXIT_COMPLETED
        assert main(_argv(tmp_path, "run", f"{scenarios}:dirty", "--strict-cleanup", "--no-history")) == EXIT_CLEANUP_ERRORS

    def test_no_history_flag(self, tmp_path, scenarios):
        main(_argv(tmp_path, "run", f"{scenarios}:completed", "--no-history"))
        assert not (tmp_path / "data" / "runs.jsonl").exists()

    def test_profiles_available_to_factory(self, tmp_path, scenarios):
        assert main(_argv(tmp_path, "run", f"{scenarios}:uses_profile", "--no-history")) == EXIT_COMPLETED

    def test_factory_returning_garbage(self, tmp_path, scenarios, capsys):
        assert main(_argv(tmp_path, "run", f"{scenarios}:not_steps")) == 1
        assert "expected a list of Steps" in capsys.readouterr().err


class TestLoadFactory:
    def test_malformed_target(self):
        with pytest.raises(ConfigurationError, match="module:callable"):
            load_factory("no_colon_here")

    def test_missing_module(self):
        with pytest.raises(ConfigurationError, match="Cannot import"):
            load_factory("definitely_not_a_module_xyz:factory")

    def test_missing_attribute(self, scenarios):
        with pytest.raises(ConfigurationError, match="no attribute"):
            load_factory(f"{scenarios}:nope")


# ===========================================================================
# profiles / history
# ===========================================================================

class TestInfoCommands:
    def test_profiles_lists_defaults(self, tmp_path, capsys):
        assert main(_argv(tmp_path, "profiles")) == 0
        out = capsys.readouterr().out
        assert "restore-ready" in out
        assert "1200s" in out

    def test_history_empty(self, tmp_path, capsys):
        assert main(_argv(tmp_path, "history")) == 0
        assert "No runs recorded" in capsys.readouterr().out

    def test_history_shows_breakdown(self, tmp_path, scenarios, capsys):
        main(_argv(tmp_path, "run", f"{scenarios}:completed"))
        main(_argv(tmp_path, "run", f"{scenarios}:aborted"))
        capsys.readouterr()

        assert main(_argv(tmp_path, "history")) == 0
        out = capsys.readouterr().out
        assert "Success rate: 50.0%" in out
        assert "Aborts by outcome: FAILED: 1" in out
        assert "Aborts by step: ready: 1" in out
