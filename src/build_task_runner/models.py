"""Define tasks, per-run context, and the immutable run report."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

# A task body returns None/True on success; False, a non-zero int, or a raised
# exception mark failure. Bodies may be coroutine functions.
TaskBody = Callable[..., Any]


class TaskState(str, Enum):
    """Per-run state of a task."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (TaskState.DONE, TaskState.FAILED, TaskState.SKIPPED)


@dataclass(frozen=True)
class Task:
    """A named unit of work with declared dependencies and a body.

    A task without a body is an aggregate: it succeeds as soon as its
    dependencies have.
    """

    name: str
    deps: tuple[str, ...] = ()
    body: Optional[TaskBody] = None
    description: str = ""


def _new_run_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class RunContext:
    """Explicit per-run parameters threaded into every task body."""

    run_id: str = field(default_factory=_new_run_id)
    project_dir: Path = field(default_factory=Path.cwd)
    environment: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TaskOutcome:
    """Terminal outcome of one task within a run."""

    name: str
    state: TaskState
    reason: Optional[str] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def succeeded(self) -> bool:
        return self.state == TaskState.DONE

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return max(0.0, self.finished_at - self.started_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "reason": self.reason,
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass(frozen=True)
class RunReport:
    """Result of one `Scheduler.run()` call. Immutable once returned."""

    run_id: str
    requested: tuple[str, ...]
    outcomes: Mapping[str, TaskOutcome]
    order: tuple[str, ...] = ()  # tasks in the order they were started
    started_at: float = 0.0
    finished_at: float = 0.0

    def __post_init__(self) -> None:
        if not isinstance(self.outcomes, MappingProxyType):
            object.__setattr__(self, "outcomes", MappingProxyType(dict(self.outcomes)))

    @property
    def success(self) -> bool:
        return all(outcome.state == TaskState.DONE for outcome in self.outcomes.values())

    @property
    def duration_seconds(self) -> float:
        return max(0.0, self.finished_at - self.started_at)

    def state_of(self, name: str) -> TaskState:
        return self.outcomes[name].state

    def names_in(self, state: TaskState) -> list[str]:
        return sorted(name for name, outcome in self.outcomes.items() if outcome.state == state)

    @property
    def failed(self) -> list[str]:
        return self.names_in(TaskState.FAILED)

    @property
    def skipped(self) -> list[str]:
        return self.names_in(TaskState.SKIPPED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "requested": list(self.requested),
            "success": self.success,
            "order": list(self.order),
            "duration_seconds": round(self.duration_seconds, 3),
            "tasks": {name: outcome.to_dict() for name, outcome in self.outcomes.items()},
        }
