"""Task registry with deferred validation of dependencies and cycles.

Tasks may be registered in any order; `finalize()` checks that every declared
dependency exists and that no task depends on itself, directly or transitively.
"""

from __future__ import annotations

from typing import Callable, Iterable, Iterator, Optional, Sequence

from loguru import logger

from .errors import CyclicDependencyError, DuplicateTaskError, UnknownTaskError
from .models import Task, TaskBody

_UNVISITED = 0
_IN_PROGRESS = 1
_DONE = 2


class TaskGraph:
    """Mapping from task name to `Task`, validated by `finalize()`."""

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._finalized = False

    def register(
        self,
        name: str,
        deps: Sequence[str] = (),
        body: Optional[TaskBody] = None,
        description: str = "",
    ) -> Task:
        """Register a task.

        Args:
            name: Unique task name.
            deps: Names of tasks that must be done before this one starts.
            body: Callable run for the task, or None for an aggregate task.
            description: Optional human-readable summary.

        Returns:
            The registered `Task`.

        Raises:
            DuplicateTaskError: If `name` is already registered.
        """
        if name in self._tasks:
            raise DuplicateTaskError(name)
        task = Task(name=name, deps=tuple(deps), body=body, description=description)
        self._tasks[name] = task
        # The graph changed, so it has to be validated again.
        self._finalized = False
        return task

    def task(
        self,
        name: Optional[str] = None,
        deps: Sequence[str] = (),
        description: str = "",
    ) -> Callable[[TaskBody], TaskBody]:
        """Register the decorated function as a task body."""

        def decorator(fn: TaskBody) -> TaskBody:
            doc = (fn.__doc__ or "").strip().splitlines()
            self.register(
                name or fn.__name__.replace("_", "-"),
                deps,
                fn,
                description or (doc[0] if doc else ""),
            )
            return fn

        return decorator

    @property
    def finalized(self) -> bool:
        return self._finalized

    def __contains__(self, name: object) -> bool:
        return name in self._tasks

    def __iter__(self) -> Iterator[Task]:
        return iter(self._tasks.values())

    def __len__(self) -> int:
        return len(self._tasks)

    def get(self, name: str) -> Task:
        try:
            return self._tasks[name]
        except KeyError:
            raise UnknownTaskError(name) from None

    def names(self) -> list[str]:
        return list(self._tasks)

    def finalize(self) -> None:
        """Validate the graph.

        Raises:
            UnknownTaskError: If a task depends on an unregistered name.
            CyclicDependencyError: If a dependency cycle exists.
        """
        for task in self._tasks.values():
            for dep in task.deps:
                if dep not in self._tasks:
                    raise UnknownTaskError(dep, required_by=task.name)

        cycle = self.find_cycle()
        if cycle:
            raise CyclicDependencyError(cycle)

        self._finalized = True
        logger.debug("Task graph finalized with {} task(s)", len(self._tasks))

    def find_cycle(self) -> Optional[list[str]]:
        """Return one dependency cycle as a closed path, or None.

        Only dependencies that are registered are followed.
        """
        state: dict[str, int] = {name: _UNVISITED for name in self._tasks}

        def dfs(node: str, path: list[str]) -> Optional[list[str]]:
            if state[node] == _IN_PROGRESS:
                cycle_start = path.index(node)
                return path[cycle_start:] + [node]
            if state[node] == _DONE:
                return None

            state[node] = _IN_PROGRESS
            path.append(node)
            for dep in self._tasks[node].deps:
                if dep not in self._tasks:
                    continue
                cycle = dfs(dep, path)
                if cycle:
                    return cycle
            path.pop()
            state[node] = _DONE
            return None

        for name in self._tasks:
            if state[name] == _UNVISITED:
                cycle = dfs(name, [])
                if cycle:
                    return cycle
        return None

    def closure(self, names: Iterable[str]) -> set[str]:
        """Return the requested names plus all of their transitive dependencies.

        Raises:
            UnknownTaskError: If a requested name is not registered.
        """
        result: set[str] = set()
        stack: list[str] = []
        for name in names:
            if name not in self._tasks:
                raise UnknownTaskError(name)
            stack.append(name)
        while stack:
            name = stack.pop()
            if name in result:
                continue
            result.add(name)
            stack.extend(self._tasks[name].deps)
        return result

    def dependents(self, names: Optional[Iterable[str]] = None) -> dict[str, list[str]]:
        """Map each task to the tasks that directly depend on it.

        Args:
            names: Restrict both sides of the mapping to these tasks.
        """
        scope = set(self._tasks) if names is None else set(names)
        reverse: dict[str, list[str]] = {name: [] for name in self._tasks if name in scope}
        for task in self._tasks.values():
            if task.name not in scope:
                continue
            for dep in task.deps:
                if dep in reverse and task.name not in reverse[dep]:
                    reverse[dep].append(task.name)
        return reverse

    def topological_order(self, names: Optional[Iterable[str]] = None) -> list[str]:
        """Return tasks (optionally a closure) so that dependencies come first."""
        scope = set(self._tasks) if names is None else self.closure(names)
        order: list[str] = []
        seen: set[str] = set()

        def visit(node: str) -> None:
            if node in seen:
                return
            seen.add(node)
            for dep in self._tasks[node].deps:
                visit(dep)
            order.append(node)

        for name in self._tasks:
            if name in scope:
                visit(name)
        return order
