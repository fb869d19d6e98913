"""Define the error taxonomy raised by the task graph, scheduler, and bump utility."""

from __future__ import annotations

from typing import Optional, Sequence


class TaskRunnerError(Exception):
    """Base class for every error raised by the runner."""


class DuplicateTaskError(TaskRunnerError):
    """Raised when a task name is registered twice."""

    def __init__(self, name: str):
        super().__init__(f"Task '{name}' is already registered")
        self.name = name


class UnknownTaskError(TaskRunnerError):
    """Raised when a dependency or requested task name is not registered."""

    def __init__(self, name: str, required_by: Optional[str] = None):
        if required_by:
            message = f"Task '{required_by}' depends on unknown task '{name}'"
        else:
            message = f"Unknown task '{name}'"
        super().__init__(message)
        self.name = name
        self.required_by = required_by


class CyclicDependencyError(TaskRunnerError):
    """Raised by `finalize()` when the dependency graph contains a cycle."""

    def __init__(self, cycle: Sequence[str]):
        super().__init__(f"Circular dependency detected: {' -> '.join(cycle)}")
        self.cycle = list(cycle)


class NotFinalizedError(TaskRunnerError):
    """Raised when a graph is run before `finalize()` succeeded."""

    def __init__(self) -> None:
        super().__init__("Task graph must be finalized before it can run")


class TaskBodyError(TaskRunnerError):
    """A task body's own failure.

    Never raised out of a run; the scheduler records it on the task outcome and
    skips the task's dependents.
    """

    def __init__(self, task: str, reason: str):
        super().__init__(f"Task '{task}' failed: {reason}")
        self.task = task
        self.reason = reason


class ConfigError(TaskRunnerError):
    """Raised when the project config cannot be turned into tasks or settings."""


class MissingVersionError(TaskRunnerError):
    """Raised when a version bump is requested without a version."""

    def __init__(self) -> None:
        super().__init__("No version specified")


class VersionNotInChangelogError(TaskRunnerError):
    """Raised when the requested version has no changelog entry."""

    def __init__(self, version: str, changelog: str):
        super().__init__(f"Version {version} has no entry in {changelog}")
        self.version = version
        self.changelog = changelog
