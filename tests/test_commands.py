"""Tests for shell-command tasks declared in the project config."""
from __future__ import annotations

from pathlib import Path

import pytest

from build_task_runner.commands import ShellCommand, build_graph, register_config_tasks
from build_task_runner.errors import ConfigError, TaskBodyError, UnknownTaskError
from build_task_runner.graph import TaskGraph
from build_task_runner.models import RunContext, TaskState
from build_task_runner.scheduler import Scheduler


def _context(tmp_path: Path, **env: str) -> RunContext:
    return RunContext(run_id="run-test", project_dir=tmp_path, environment=env)


def test_register_config_tasks_shapes() -> None:
    config = {
        "tasks": {
            "lint": "ruff check .",
            "style": {"command": "ruff format .", "deps": ["lint"], "description": "Fix style"},
            "test": {"deps": "style"},
            "all": None,
        }
    }
    graph = TaskGraph()

    names = register_config_tasks(graph, config)

    assert names == ["lint", "style", "test", "all"]
    lint = graph.get("lint")
    assert isinstance(lint.body, ShellCommand)
    assert lint.body.command == "ruff check ."
    assert lint.description == "ruff check ."
    assert graph.get("style").deps == ("lint",)
    assert graph.get("style").description == "Fix style"
    assert graph.get("test").body is None
    assert graph.get("test").deps == ("style",)
    assert graph.get("all").body is None


@pytest.mark.parametrize(
    "entry, message",
    [
        (["not", "a", "mapping"], "expected a command string or a mapping"),
        ({"command": 3}, "`command` must be a string"),
        ({"deps": [1, 2]}, "`deps` must be a list"),
        ({"command": "true", "timeout_seconds": 0}, "`timeout_seconds`"),
        ({"command": "true", "cwd": 5}, "`cwd` must be a string"),
    ],
)
def test_malformed_task_entries(entry, message) -> None:
    with pytest.raises(ConfigError, match=message):
        register_config_tasks(TaskGraph(), {"tasks": {"bad": entry}})


def test_build_graph_finalizes() -> None:
    graph = build_graph({"tasks": {"a": "true", "b": {"command": "true", "deps": ["a"]}}})
    assert graph.finalized


def test_build_graph_reports_unknown_dependency() -> None:
    with pytest.raises(UnknownTaskError, match="missing"):
        build_graph({"tasks": {"a": {"deps": ["missing"]}}})


def test_shell_command_success_writes_log(tmp_path: Path) -> None:
    body = ShellCommand(task="mocha:src", command="echo hello")

    body(_context(tmp_path))

    log = tmp_path / ".taskrunner" / "logs" / "mocha_src.log"
    assert log.read_text().strip() == "hello"


def test_shell_command_failure_raises_with_tail(tmp_path: Path) -> None:
    body = ShellCommand(task="lint", command="echo 'src/a.js: bad indent'; exit 3")

    with pytest.raises(TaskBodyError) as excinfo:
        body(_context(tmp_path))

    assert excinfo.value.task == "lint"
    assert "exited with status 3" in excinfo.value.reason
    assert "bad indent" in excinfo.value.reason


def test_shell_command_receives_environment(tmp_path: Path) -> None:
    body = ShellCommand(task="mocha", command='printf "%s %s" "$TEST_ENV" "$TASKRUNNER_TASK" > env.txt')

    body(_context(tmp_path, TEST_ENV="dist"))

    assert (tmp_path / "env.txt").read_text() == "dist mocha"


def test_shell_command_runs_in_cwd(tmp_path: Path) -> None:
    (tmp_path / "sub").mkdir()
    body = ShellCommand(task="where", command="pwd > here.txt", cwd="sub")

    body(_context(tmp_path))

    assert (tmp_path / "sub" / "here.txt").exists()


def test_shell_command_timeout(tmp_path: Path) -> None:
    body = ShellCommand(task="slow", command="sleep 5", timeout_seconds=0.2)

    with pytest.raises(TaskBodyError, match="timed out"):
        body(_context(tmp_path))


def test_config_tasks_run_through_scheduler(tmp_path: Path) -> None:
    graph = build_graph(
        {
            "tasks": {
                "lint": "echo lint >> order.txt",
                "style": {"command": "echo style >> order.txt; exit 1", "deps": ["lint"]},
                "test": {"command": "echo test >> order.txt", "deps": ["style"]},
                "docs": "echo docs > docs.txt",
            }
        }
    )

    report = Scheduler(graph, project_dir=tmp_path).run(["test", "docs"])

    assert report.state_of("lint") == TaskState.DONE
    assert report.state_of("style") == TaskState.FAILED
    assert report.state_of("test") == TaskState.SKIPPED
    assert report.state_of("docs") == TaskState.DONE
    assert (tmp_path / "order.txt").read_text().split() == ["lint", "style"]
