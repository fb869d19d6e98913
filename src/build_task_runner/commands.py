"""Shell-command task bodies and building a task graph from the project config."""

from __future__ import annotations

import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .config import get_tasks_config
from .constants import DEFAULT_LOG_TAIL_CHARS, LOGS_DIR, STATE_DIR_NAME, TIMEOUT_EXIT_CODE
from .errors import ConfigError, TaskBodyError
from .graph import TaskGraph
from .io_utils import _read_text_tail
from .models import RunContext

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]+")


def _log_name(task_name: str) -> str:
    return _UNSAFE_CHARS_RE.sub("_", task_name) or "task"


def _run_command(
    command: str,
    cwd: Path,
    log_path: Path,
    *,
    env: Optional[dict[str, str]] = None,
    timeout_seconds: Optional[float] = None,
) -> dict[str, Any]:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with open(log_path, "w") as handle:
        try:
            result = subprocess.run(
                command,
                cwd=cwd,
                shell=True,
                stdout=handle,
                stderr=subprocess.STDOUT,
                text=True,
                env=env,
                timeout=timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            handle.write(f"\n[runner] Command timed out after {timeout_seconds}s\n")
            return {
                "command": command,
                "exit_code": TIMEOUT_EXIT_CODE,
                "log_path": str(log_path),
                "timed_out": True,
            }
    return {
        "command": command,
        "exit_code": result.returncode,
        "log_path": str(log_path),
        "timed_out": False,
    }


@dataclass(frozen=True)
class ShellCommand:
    """Task body that runs a shell command in the project directory.

    Output goes to `.taskrunner/logs/<task>.log`; a non-zero exit fails the task
    with the exit code and the tail of that log as the reason.
    """

    task: str
    command: str
    cwd: Optional[str] = None
    timeout_seconds: Optional[float] = None

    def __call__(self, context: RunContext) -> None:
        project_dir = Path(context.project_dir)
        cwd = project_dir / self.cwd if self.cwd else project_dir
        log_path = project_dir / STATE_DIR_NAME / LOGS_DIR / f"{_log_name(self.task)}.log"
        env = dict(os.environ)
        env.update(context.environment)
        env["TASKRUNNER_RUN_ID"] = context.run_id
        env["TASKRUNNER_TASK"] = self.task

        logger.debug("Task {}: running `{}` in {}", self.task, self.command, cwd)
        result = _run_command(
            self.command,
            cwd,
            log_path,
            env=env,
            timeout_seconds=self.timeout_seconds,
        )
        if result["exit_code"] == 0:
            return

        tail = _read_text_tail(log_path, max_chars=DEFAULT_LOG_TAIL_CHARS).strip()
        if result["timed_out"]:
            reason = f"`{self.command}` timed out after {self.timeout_seconds}s"
        else:
            reason = f"`{self.command}` exited with status {result['exit_code']}"
        reason += f" (log: {log_path})"
        if tail:
            reason += "\n" + tail
        raise TaskBodyError(self.task, reason)


def _parse_task_entry(name: str, raw: Any) -> dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, str):
        return {"command": raw}
    if not isinstance(raw, dict):
        raise ConfigError(f"Task '{name}': expected a command string or a mapping, got {type(raw).__name__}")

    entry: dict[str, Any] = {}
    command = raw.get("command")
    if command is not None and not isinstance(command, str):
        raise ConfigError(f"Task '{name}': `command` must be a string")
    if command:
        entry["command"] = command

    deps = raw.get("deps", [])
    if isinstance(deps, str):
        deps = [deps]
    if not isinstance(deps, list) or not all(isinstance(dep, str) for dep in deps):
        raise ConfigError(f"Task '{name}': `deps` must be a list of task names")
    entry["deps"] = deps

    description = raw.get("description")
    if description is not None:
        entry["description"] = str(description)

    cwd = raw.get("cwd")
    if cwd is not None:
        if not isinstance(cwd, str):
            raise ConfigError(f"Task '{name}': `cwd` must be a string")
        entry["cwd"] = cwd

    timeout = raw.get("timeout_seconds")
    if timeout is not None:
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ConfigError(f"Task '{name}': `timeout_seconds` must be a positive number")
        entry["timeout_seconds"] = float(timeout)
    return entry


def register_config_tasks(graph: TaskGraph, config: dict[str, Any]) -> list[str]:
    """Register every task declared under `tasks:` in the config.

    Tasks without a `command` are aggregates of their dependencies. The graph
    is not finalized here.

    Returns:
        Names of the registered tasks, in config order.

    Raises:
        ConfigError: If a task entry is malformed.
        DuplicateTaskError: If a config task clashes with one already registered.
    """
    names: list[str] = []
    for name, raw in get_tasks_config(config).items():
        name = str(name)
        entry = _parse_task_entry(name, raw)
        body = None
        if entry.get("command"):
            body = ShellCommand(
                task=name,
                command=entry["command"],
                cwd=entry.get("cwd"),
                timeout_seconds=entry.get("timeout_seconds"),
            )
        graph.register(
            name,
            entry.get("deps", []),
            body,
            entry.get("description") or entry.get("command", ""),
        )
        names.append(name)
    return names


def build_graph(config: dict[str, Any]) -> TaskGraph:
    """Build and finalize a task graph from the config's `tasks:` block."""
    graph = TaskGraph()
    register_config_tasks(graph, config)
    graph.finalize()
    return graph
