"""Tests for Step declarations and ScenarioContext."""

import os
from dataclasses import replace
from unittest.mock import patch

import pytest

from converge.config.profiles import ProfileRegistry
from converge.config.settings import HarnessSettings, get_settings
from converge.engine.deadline import Deadline
from converge.engine.retry import RetryPolicy
from converge.engine.step import Poll, Race, ScenarioContext, Step, Watch, defer
from converge.engine.watch import ResourceRef
from converge.exceptions import ConfigurationError


def _noop(ctx):
    return None


RELEASE = ResourceRef(api_version="catalog.cattle.io/v1", plural="apps", namespace="ns", name="app")


class TestStepValidation:
    def test_needs_action_or_convergence(self):
        with pytest.raises(ValueError, match="needs an action"):
            Step("empty")

    def test_label_required(self):
        with pytest.raises(ValueError):
            Step("", action=_noop)

    def test_retry_without_action_rejected(self):
        with pytest.raises(ValueError, match="retry policy"):
            Step("wait", convergence=Poll(_noop), retry=RetryPolicy())

    def test_defer_builds_cleanup(self):
        cleanup = defer("uninstall", lambda ctx, value: None)
        step = Step("install", action=_noop, cleanups=(cleanup,))
        assert step.cleanups[0].label == "uninstall"


class TestStepDeadline:
    def test_fresh_deadline_from_convergence_timeout(self, clock):
        step = Step("wait", convergence=Poll(_noop, interval_seconds=2, timeout_seconds=180))
        deadline = step.deadline_for(None, clock=clock)
        assert deadline.duration_seconds == 180
        assert deadline.started_at == clock.now

    def test_clipped_by_scenario_deadline(self, clock):
        scenario = Deadline(duration_seconds=100, clock=clock)
        clock.advance(70)
        step = Step("wait", convergence=Poll(_noop, timeout_seconds=180))
        assert step.deadline_for(scenario, clock=clock).duration_seconds == 30

    def test_no_convergence(self, clock):
        with pytest.raises(ValueError):
            Step("act", action=_noop).deadline_for(None, clock=clock)


class TestDeclarations:
    def test_poll_build_binds_context(self, clock, context):
        seen = []

        def probe(ctx):
            seen.append(ctx)
            return True

        spec = Poll(probe, interval_seconds=2).build(context, Deadline(duration_seconds=5, clock=clock))
        spec.probe()
        assert seen == [context]
        assert spec.description == "probe"

    def test_watch_resource_from_context(self, clock, context):
        context.values["release"] = "rancher-monitoring"
        watch = Watch(
            resource=lambda ctx: ResourceRef(
                api_version="catalog.cattle.io/v1",
                plural="apps",
                namespace="cattle-monitoring-system",
                name=ctx.values["release"],
            ),
        )
        spec = watch.build(context, Deadline(duration_seconds=5, clock=clock))
        assert spec.resource.name == "rancher-monitoring"

    def test_race_defaults(self):
        race = Race(_noop)
        assert race.timeout_seconds is None
        assert race.blocking is True


class TestSettingsFallbacks:
    def test_poll_interval_from_settings(self, clock, context):
        context.settings = replace(context.settings, poll_interval=7.0)
        spec = Poll(_noop).build(context, Deadline(duration_seconds=5, clock=clock))
        assert spec.interval_seconds == 7.0

    def test_explicit_interval_wins(self, clock, context):
        context.settings = replace(context.settings, poll_interval=7.0)
        spec = Poll(_noop, interval_seconds=2).build(context, Deadline(duration_seconds=5, clock=clock))
        assert spec.interval_seconds == 2

    @pytest.mark.parametrize("declaration", [Poll(_noop), Race(_noop), Watch(resource=RELEASE)])
    def test_unset_timeout_from_settings(self, declaration, clock):
        settings = HarnessSettings(convergence_timeout=42.0)
        step = Step("wait", convergence=declaration)
        assert step.timeout_for(settings) == 42.0
        assert step.deadline_for(None, clock=clock, settings=settings).duration_seconds == 42.0

    def test_env_poll_interval_reaches_declaration(self, clock):
        with patch.dict(os.environ, {"CONVERGE_POLL_INTERVAL": "11", "CONVERGE_CONVERGENCE_TIMEOUT": "90"}):
            context = ScenarioContext(settings=get_settings())
        step = Step("wait", convergence=Poll(_noop))
        assert step.convergence.build(context, Deadline(duration_seconds=5, clock=clock)).interval_seconds == 11.0
        assert step.timeout_for(context.settings) == 90.0


class TestScenarioContext:
    def test_result_lookup(self, context):
        context.results["create backup"] = "backup-1"
        assert context.result("create backup") == "backup-1"

    def test_missing_result(self, context):
        with pytest.raises(KeyError):
            context.result("never ran")

    def test_profile_lookup(self, context):
        context.profiles = ProfileRegistry.defaults()
        assert context.profile("backup-ready").timeout_seconds == 180

    def test_profile_without_registry(self):
        with pytest.raises(ConfigurationError):
            ScenarioContext().profile("backup-ready")
