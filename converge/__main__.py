"""converge CLI — run scenarios and inspect convergence history.

Usage:
    python -m converge run package.module:factory   Run one scenario
    python -m converge profiles                     List convergence profiles
    python -m converge history [--scenario NAME]    Recent runs and failure breakdown

Exit codes for ``run``: 0 completed, 1 aborted, 2 completed with
cleanup errors under --strict-cleanup.
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Sequence

import structlog

from converge.config.profiles import ProfileRegistry
from converge.config.settings import HarnessSettings, get_settings
from converge.engine.invoke import invoke
from converge.engine.models import ScenarioRun
from converge.engine.pipeline import ScenarioPipeline
from converge.engine.step import ScenarioContext
from converge.exceptions import ConfigurationError, ConvergeError
from converge.probes.kube_watch import HttpWatchSource
from converge.storage import RunStore
from converge.utils.logging import configure_logging

logger = structlog.get_logger()

EXIT_COMPLETED = 0
EXIT_ABORTED = 1
EXIT_CLEANUP_ERRORS = 2


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="converge",
        description="Convergence engine for end-to-end cluster tests",
    )
    parser.add_argument(
        "--profiles",
        type=Path,
        default=None,
        help="Path to profiles.yaml (default: CONVERGE_PROFILES_PATH or config/profiles.yaml)",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Directory for run history (default: CONVERGE_DATA_DIR or data)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: CONVERGE_LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Render logs as JSON lines",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # run
    run = subparsers.add_parser("run", help="Run one scenario")
    run.add_argument(
        "scenario",
        help="Scenario factory as module:callable, taking a ScenarioContext",
    )
    run.add_argument(
        "--name",
        default=None,
        help="Scenario name for logs and history (default: the factory name)",
    )
    run.add_argument(
        "--deadline",
        type=float,
        default=None,
        help="Whole-scenario deadline in seconds (default: CONVERGE_SCENARIO_DEADLINE)",
    )
    run.add_argument(
        "--strict-cleanup",
        action="store_true",
        help=f"Exit {EXIT_CLEANUP_ERRORS} when the scenario completed but a cleanup failed",
    )
    run.add_argument(
        "--api-server",
        default=None,
        help="Kubernetes API server URL used for Watch steps",
    )
    run.add_argument(
        "--token-env",
        default="KUBE_TOKEN",
        help="Environment variable holding the API bearer token (default: KUBE_TOKEN)",
    )
    run.add_argument(
        "--insecure",
        action="store_true",
        help="Skip TLS verification against the API server",
    )
    run.add_argument(
        "--no-history",
        action="store_true",
        help="Do not append this run to the history file",
    )

    # profiles
    subparsers.add_parser("profiles", help="List convergence profiles")

    # history
    history = subparsers.add_parser("history", help="Show recent runs and failure breakdown")
    history.add_argument("--scenario", default=None, help="Only this scenario")
    history.add_argument("--limit", type=int, default=20, help="Runs to show (default: 20)")

    return parser.parse_args(argv)


def _settings_from_args(args: argparse.Namespace) -> HarnessSettings:
    settings = get_settings()
    overrides: dict[str, Any] = {}
    if args.profiles is not None:
        overrides["profiles_path"] = args.profiles
    if args.data_dir is not None:
        overrides["data_dir"] = args.data_dir
    if args.log_level is not None:
        overrides["log_level"] = args.log_level
    if args.json_logs:
        overrides["json_logs"] = True
    if getattr(args, "deadline", None) is not None:
        overrides["scenario_deadline"] = args.deadline if args.deadline > 0 else None
    if not overrides:
        return settings
    return replace(settings, **overrides)


def load_factory(target: str) -> Callable[[ScenarioContext], Any]:
    """Resolve ``module:callable`` into the scenario factory.

    Raises:
        ConfigurationError: Malformed target, missing module or attribute.
    """
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"Scenario must be given as module:callable, got '{target}'")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import scenario module '{module_name}': {e}") from e

    factory: Any = module
    for part in attr.split("."):
        factory = getattr(factory, part, None)
        if factory is None:
            raise ConfigurationError(f"Module '{module_name}' has no attribute '{attr}'")
    if not callable(factory):
        raise ConfigurationError(f"'{target}' is not callable")
    return factory


async def build_pipeline(
    factory: Callable[[ScenarioContext], Any],
    context: ScenarioContext,
) -> ScenarioPipeline:
    """Call the factory and wrap a plain step list in a ScenarioPipeline."""
    built = await invoke(factory, context)
    if isinstance(built, ScenarioPipeline):
        return built
    if isinstance(built, (list, tuple)):
        return ScenarioPipeline(
            context.scenario,
            built,
            context=context,
            deadline_seconds=context.settings.scenario_deadline,
        )
    raise ConfigurationError(
        f"Scenario factory returned {type(built).__name__}; expected a list of Steps or a ScenarioPipeline"
    )


def exit_code(run: ScenarioRun, strict_cleanup: bool = False) -> int:
    if not run.completed:
        return EXIT_ABORTED
    if strict_cleanup and run.cleanup_errors:
        return EXIT_CLEANUP_ERRORS
    return EXIT_COMPLETED


def _print_run(run: ScenarioRun) -> None:
    status = "COMPLETED" if run.completed else "ABORTED"
    print(f"\n--- {run.scenario}: {status} ---")
    print(
        f"Steps: {run.succeeded_count} succeeded, "
        f"{run.skipped_count} skipped "
        f"(total: {len(run.step_results)}, {run.total_duration_ms:.0f} ms)"
    )
    for line in run.failure_trail():
        print(line)


async def _cmd_run(args: argparse.Namespace, settings: HarnessSettings) -> int:
    """Build and execute one scenario."""
    factory = load_factory(args.scenario)
    name = args.name or getattr(factory, "__name__", args.scenario)

    context = ScenarioContext(
        scenario=name,
        settings=settings,
        profiles=ProfileRegistry.from_yaml(settings.profiles_path),
    )
    watch_source: HttpWatchSource | None = None
    if args.api_server:
        token = os.environ.get(args.token_env, "")
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        watch_source = HttpWatchSource(
            base_url=args.api_server,
            headers=headers,
            verify=not args.insecure,
        )
        context.event_source = watch_source

    try:
        pipeline = await build_pipeline(factory, context)
        run = await pipeline.run()
    finally:
        if watch_source is not None:
            await watch_source.close()

    if settings.persist_history and not args.no_history:
        RunStore(persist_path=settings.history_path).append(run)

    _print_run(run)
    return exit_code(run, strict_cleanup=args.strict_cleanup)


def _cmd_profiles(settings: HarnessSettings) -> int:
    """Print every configured convergence profile."""
    registry = ProfileRegistry.from_yaml(settings.profiles_path)

    print(f"\n{'Profile':<22} {'Strategy':<9} {'Interval':>9} {'Timeout':>9} {'Attempts':>9}")
    print("-" * 62)
    for name in registry.names:
        profile = registry.get_or_raise(name)
        interval = f"{profile.interval_seconds:g}s" if profile.interval_seconds else "-"
        print(
            f"{name:<22} {profile.strategy.value:<9} {interval:>9} "
            f"{profile.timeout_seconds:>8g}s {profile.retry_attempts:>9}"
        )
    return 0


def _cmd_history(args: argparse.Namespace, settings: HarnessSettings) -> int:
    """Print recent runs, success rate and failure breakdown."""
    store = RunStore(persist_path=settings.history_path)
    runs = store.query(scenario=args.scenario, limit=args.limit)
    if not runs:
        print("No runs recorded")
        return 0

    print(f"\n{'Started':<26} {'Scenario':<24} {'State':<10} {'Aborted at'}")
    print("-" * 80)
    for run in runs:
        aborted_at = ""
        if run.aborted_step:
            outcome = run.aborted_outcome.value if run.aborted_outcome else ""
            aborted_at = f"{run.aborted_step} ({outcome})"
        print(
            f"{run.started_at.isoformat(timespec='seconds'):<26} "
            f"{run.scenario:<24} {run.state.value:<10} {aborted_at}"
        )

    breakdown = store.failure_breakdown(scenario=args.scenario)
    print(f"\nSuccess rate: {store.success_rate(scenario=args.scenario):.1%}")
    if breakdown:
        kinds = ", ".join(f"{kind}: {count}" for kind, count in sorted(breakdown.items()))
        print(f"Aborts by outcome: {kinds}")
        steps = store.failing_steps(scenario=args.scenario)
        print("Aborts by step: " + ", ".join(f"{step}: {count}" for step, count in steps.items()))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = _settings_from_args(args)
    configure_logging(json_output=settings.json_logs, level=settings.log_level)

    try:
        if args.command == "run":
            return asyncio.run(_cmd_run(args, settings))
        elif args.command == "profiles":
            return _cmd_profiles(settings)
        elif args.command == "history":
            return _cmd_history(args, settings)
        else:
            print(f"Unknown command: {args.command}", file=sys.stderr)
            return 1
    except ConvergeError as e:
        logger.error("Command failed", command=args.command, error=str(e))
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
