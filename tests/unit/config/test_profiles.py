"""Tests for convergence profiles and the ProfileRegistry."""

from pathlib import Path

import pytest

from converge.config.profiles import (
    DEFAULT_PROFILES,
    ConvergenceProfile,
    ProfileRegistry,
    Strategy,
)
from converge.engine.step import Poll, Race, Watch
from converge.engine.watch import ResourceRef
from converge.exceptions import ConfigurationError, RetryableActionError

APP = ResourceRef(api_version="catalog.cattle.io/v1", plural="apps", namespace="ns", name="app")


# ===========================================================================
# Defaults
# ===========================================================================

class TestDefaultProfiles:
    @pytest.mark.parametrize(
        "name,strategy,interval,timeout",
        [
            ("chart-install", Strategy.WATCH, None, 300),
            ("chart-uninstall", Strategy.WATCH, None, 300),
            ("backup-ready", Strategy.POLL, 2, 180),
            ("restore-ready", Strategy.POLL, 2, 1200),
            ("object-present", Strategy.POLL, 5, 60),
            ("cluster-active", Strategy.POLL, 30, 900),
            ("deployments-cleanup", Strategy.POLL, 5, 120),
            ("deployments-rollout", Strategy.RACE, None, 120),
        ],
    )
    def test_timings(self, name, strategy, interval, timeout):
        profile = ProfileRegistry.defaults().get_or_raise(name)
        assert profile.strategy == strategy
        assert profile.interval_seconds == interval
        assert profile.timeout_seconds == timeout

    def test_all_defaults_load(self):
        assert ProfileRegistry.defaults().names == sorted(DEFAULT_PROFILES)


# ===========================================================================
# Builders
# ===========================================================================

class TestProfileBuilders:
    def test_poll(self):
        poll = ProfileRegistry.defaults().get_or_raise("backup-ready").poll(lambda ctx: True)
        assert isinstance(poll, Poll)
        assert poll.interval_seconds == 2
        assert poll.timeout_seconds == 180

    def test_watch(self):
        watch = ProfileRegistry.defaults().get_or_raise("chart-uninstall").watch(APP, deletion_is_success=True)
        assert isinstance(watch, Watch)
        assert watch.deletion_is_success
        assert watch.timeout_seconds == 300

    def test_race(self):
        race = ProfileRegistry.defaults().get_or_raise("deployments-rollout").race(lambda ctx: None)
        assert isinstance(race, Race)
        assert race.timeout_seconds == 120

    def test_strategy_mismatch(self):
        with pytest.raises(ConfigurationError, match="poll profile"):
            ProfileRegistry.defaults().get_or_raise("backup-ready").watch(APP)

    def test_retry_policy(self):
        profile = ProfileRegistry.defaults().get_or_raise("chart-install")
        policy = profile.retry_policy(retry_on=(RetryableActionError,))
        assert policy.max_attempts == 3
        assert policy.delay_seconds == 10

    def test_single_attempt_has_no_policy(self):
        assert ProfileRegistry.defaults().get_or_raise("backup-ready").retry_policy() is None


# ===========================================================================
# Validation and loading
# ===========================================================================

class TestProfileValidation:
    def test_poll_requires_interval(self):
        with pytest.raises(ValueError, match="interval_seconds"):
            ConvergenceProfile(name="p", strategy="poll", timeout_seconds=10)

    def test_invalid_profile_is_configuration_error(self):
        with pytest.raises(ConfigurationError, match="bad"):
            ProfileRegistry.from_dict({"bad": {"strategy": "poll", "interval_seconds": 1, "timeout_seconds": -5}})

    def test_unknown_profile(self):
        with pytest.raises(ConfigurationError):
            ProfileRegistry.defaults().get_or_raise("nope")
        assert ProfileRegistry.defaults().get("nope") is None
        assert "nope" not in ProfileRegistry.defaults()


class TestProfileYaml:
    def test_missing_file_gives_defaults(self, tmp_path):
        registry = ProfileRegistry.from_yaml(tmp_path / "absent.yaml")
        assert registry.names == sorted(DEFAULT_PROFILES)

    def test_overrides_and_additions(self, tmp_path):
        path = tmp_path / "profiles.yaml"
        path.write_text(
            "profiles:\n"
            "  restore-ready:\n"
            "    timeout_seconds: 2400\n"
            "  logging-ready:\n"
            "    strategy: poll\n"
            "    interval_seconds: 10\n"
            "    timeout_seconds: 300\n"
        )
        registry = ProfileRegistry.from_yaml(path)

        restore = registry.get_or_raise("restore-ready")
        assert restore.timeout_seconds == 2400
        assert restore.interval_seconds == 2
        assert "logging-ready" in registry

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "profiles.yaml"
        path.write_text("profiles: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Could not parse"):
            ProfileRegistry.from_yaml(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "profiles.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            ProfileRegistry.from_yaml(path)

    def test_shipped_file_loads(self):
        shipped = Path(__file__).resolve().parents[3] / "config" / "profiles.yaml"
        registry = ProfileRegistry.from_yaml(shipped)
        assert registry.get_or_raise("cluster-active").interval_seconds == 30
