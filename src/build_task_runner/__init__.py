"""Provide the public `build_task_runner` package exports."""

from __future__ import annotations

from .errors import (
    CyclicDependencyError,
    DuplicateTaskError,
    NotFinalizedError,
    TaskBodyError,
    TaskRunnerError,
    UnknownTaskError,
)
from .graph import TaskGraph
from .models import RunContext, RunReport, Task, TaskOutcome, TaskState
from .scheduler import Scheduler
from .watch import ChangeWatcher

__all__ = [
    "ChangeWatcher",
    "CyclicDependencyError",
    "DuplicateTaskError",
    "NotFinalizedError",
    "RunContext",
    "RunReport",
    "Scheduler",
    "Task",
    "TaskBodyError",
    "TaskGraph",
    "TaskOutcome",
    "TaskRunnerError",
    "TaskState",
    "UnknownTaskError",
]
