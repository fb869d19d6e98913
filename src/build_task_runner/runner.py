#!/usr/bin/env python3
"""Provide the CLI entrypoint and subcommands for Build Task Runner.

Positional arguments name the tasks to run; `list`, `graph`, `watch`, and
`bump` select subcommands (use `run NAME` for a task that shares one of
those names).
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from .bump import bump_version
from .commands import build_graph
from .config import (
    get_bump_config,
    get_concurrency_config,
    get_environment_config,
    get_watch_config,
    load_runner_config,
)
from .constants import DEFAULT_TASK_NAME, DEFAULT_WATCH_PROFILE
from .errors import ConfigError, TaskRunnerError
from .graph import TaskGraph
from .models import RunReport
from .reporting import format_dependency_tree, format_report, format_task_list
from .scheduler import Scheduler

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_USAGE = 2


def _configure_logging(level: str = "INFO") -> None:
    """Configure loguru logger with the specified level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
            "{message}"
        ),
    )


# Initialize with default level; will be reconfigured in main() based on CLI args
_configure_logging()


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--project-dir",
        type=Path,
        default=Path("."),
        help="Project directory (default: current directory)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def _add_run_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--concurrency",
        type=_positive_int,
        default=None,
        help="Maximum number of tasks running at once (default: config value or unlimited)",
    )
    parser.add_argument(
        "--env",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Environment variable passed to every task (repeatable)",
    )


def _build_run_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="build-task-runner",
        description="Build Task Runner - run project tasks in dependency order",
    )
    parser.add_argument(
        "tasks",
        nargs="*",
        help=f"Tasks to run (default: '{DEFAULT_TASK_NAME}')",
    )
    _add_common_arguments(parser)
    _add_run_arguments(parser)
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the run report as JSON",
    )
    return parser


def _build_list_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="build-task-runner list",
        description="List registered tasks",
    )
    _add_common_arguments(parser)
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print tasks as JSON",
    )
    return parser


def _build_graph_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="build-task-runner graph",
        description="Show the dependency tree of tasks",
    )
    parser.add_argument(
        "tasks",
        nargs="*",
        help="Root tasks (default: tasks nothing depends on)",
    )
    _add_common_arguments(parser)
    return parser


def _build_watch_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="build-task-runner watch",
        description="Re-run tasks whenever watched paths change",
    )
    parser.add_argument(
        "tasks",
        nargs="*",
        help="Tasks to run on change (default: the profile's tasks from config)",
    )
    _add_common_arguments(parser)
    _add_run_arguments(parser)
    parser.add_argument(
        "--path",
        dest="paths",
        action="append",
        default=[],
        help="Path to watch (repeatable; default: the profile's paths from config)",
    )
    parser.add_argument(
        "--profile",
        type=str,
        default=DEFAULT_WATCH_PROFILE,
        help=f"Watch profile from config.yaml (default: '{DEFAULT_WATCH_PROFILE}')",
    )
    parser.add_argument(
        "--debounce",
        type=float,
        default=None,
        help="Seconds of quiet before a burst of changes triggers a run",
    )
    parser.add_argument(
        "--no-initial-run",
        action="store_true",
        help="Wait for the first change instead of running immediately",
    )
    return parser


def _build_bump_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="build-task-runner bump",
        description="Bump the version string in the project's versioned files",
    )
    _add_common_arguments(parser)
    parser.add_argument(
        "--version",
        type=str,
        default=None,
        help="New version (must have a changelog entry)",
    )
    parser.add_argument(
        "--changelog",
        type=str,
        default=None,
        help="Changelog path (default: bump.changelog from config)",
    )
    parser.add_argument(
        "--file",
        dest="files",
        action="append",
        default=[],
        help="Versioned file (repeatable; default: bump.files from config)",
    )
    return parser


def _parse_env(pairs: list[str]) -> dict[str, str]:
    env: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ConfigError(f"Invalid --env value {pair!r}; expected KEY=VALUE")
        env[key] = value
    return env


def _load_project(project_dir: Path) -> tuple[dict, TaskGraph]:
    config, err = load_runner_config(project_dir)
    if err:
        raise ConfigError(f"config.yaml parse error: {err}")
    return config, build_graph(config)


def _scheduler_for(project_dir: Path, config: dict, graph: TaskGraph, env_pairs: list[str]) -> Scheduler:
    environment = get_environment_config(config)
    environment.update(_parse_env(env_pairs))
    return Scheduler(
        graph,
        concurrency_limit=get_concurrency_config(config),
        project_dir=project_dir.resolve(),
        environment=environment,
    )


def _report_failures(report: RunReport) -> None:
    for name in report.failed:
        sys.stderr.write(f"{name}: {report.outcomes[name].reason}\n")


def _run_command(args: argparse.Namespace) -> int:
    config, graph = _load_project(args.project_dir)
    names = list(args.tasks)
    if not names:
        if DEFAULT_TASK_NAME not in graph:
            sys.stderr.write(f"No tasks given and no '{DEFAULT_TASK_NAME}' task is defined\n")
            return EXIT_USAGE
        names = [DEFAULT_TASK_NAME]

    scheduler = _scheduler_for(args.project_dir, config, graph, args.env)
    report = scheduler.run(names, concurrency_limit=args.concurrency)
    if args.json:
        sys.stdout.write(json.dumps(report.to_dict(), indent=2) + "\n")
    else:
        sys.stdout.write(format_report(report))
    _report_failures(report)
    return EXIT_OK if report.success else EXIT_RUN_FAILED


def _list_command(args: argparse.Namespace) -> int:
    _, graph = _load_project(args.project_dir)
    if args.json:
        payload = {
            "tasks": [
                {"name": task.name, "deps": list(task.deps), "description": task.description}
                for task in graph
            ]
        }
        sys.stdout.write(json.dumps(payload, indent=2) + "\n")
    else:
        sys.stdout.write(format_task_list(graph))
    return EXIT_OK


def _graph_command(args: argparse.Namespace) -> int:
    _, graph = _load_project(args.project_dir)
    for name in args.tasks:
        graph.get(name)
    sys.stdout.write(format_dependency_tree(graph, args.tasks or None))
    return EXIT_OK


def _watch_command(args: argparse.Namespace) -> int:
    config, graph = _load_project(args.project_dir)
    watch_cfg = get_watch_config(config, args.profile)
    names = list(args.tasks) or watch_cfg["tasks"]
    raw_paths = list(args.paths) or watch_cfg["paths"]
    if not names or not raw_paths:
        sys.stderr.write("watch needs tasks and paths (arguments or `watch:` in config.yaml)\n")
        return EXIT_USAGE

    project_dir = args.project_dir.resolve()
    paths = [path if path.is_absolute() else project_dir / path for path in map(Path, raw_paths)]
    debounce = args.debounce if args.debounce is not None else watch_cfg["debounce_seconds"]
    scheduler = _scheduler_for(args.project_dir, config, graph, args.env)

    def _on_report(report: RunReport) -> None:
        sys.stdout.write(format_report(report))
        _report_failures(report)

    scheduler.watch(
        paths,
        names,
        debounce_seconds=debounce,
        concurrency_limit=args.concurrency,
        on_report=_on_report,
        initial_run=not args.no_initial_run,
    )
    return EXIT_OK


def _bump_command(args: argparse.Namespace) -> int:
    config, err = load_runner_config(args.project_dir)
    if err:
        raise ConfigError(f"config.yaml parse error: {err}")
    bump_cfg = get_bump_config(config)
    files = list(args.files) or bump_cfg["files"]
    if not files:
        sys.stderr.write("No versioned files given (--file or `bump.files` in config.yaml)\n")
        return EXIT_USAGE
    changed = bump_version(
        args.version,
        project_dir=args.project_dir.resolve(),
        changelog=args.changelog or bump_cfg["changelog"],
        files=files,
    )
    sys.stdout.write(json.dumps({"version": args.version, "changed": [str(p) for p in changed]}) + "\n")
    return EXIT_OK


_SUBCOMMANDS = {
    "run": (_build_run_parser, _run_command),
    "list": (_build_list_parser, _list_command),
    "graph": (_build_graph_parser, _graph_command),
    "watch": (_build_watch_parser, _watch_command),
    "bump": (_build_bump_parser, _bump_command),
}


def main(argv: Optional[list[str]] = None) -> None:
    """Run the `build-task-runner` CLI.

    Args:
        argv: Optional argument list (excluding the executable name). When omitted,
            uses `sys.argv[1:]`.

    Raises:
        SystemExit: Always, carrying the process exit code.
    """
    argv = list(sys.argv[1:] if argv is None else argv)
    build_parser, handler = _SUBCOMMANDS["run"]
    if argv and argv[0] in _SUBCOMMANDS:
        build_parser, handler = _SUBCOMMANDS[argv[0]]
        argv = argv[1:]

    args = build_parser().parse_args(argv)
    _configure_logging(args.log_level)
    try:
        code = handler(args)
    except TaskRunnerError as exc:
        logger.debug("Command failed: {!r}", exc)
        sys.stderr.write(f"error: {exc}\n")
        code = EXIT_USAGE
    raise SystemExit(code)


if __name__ == "__main__":
    main()
