"""Run tasks from a finalized `TaskGraph` in dependency order.

Eligible tasks start as soon as their dependencies are done, on a thread pool
driven by a single control loop. A failed task marks every task depending on
it as skipped before any further task is considered; unrelated branches keep
running. Already-started bodies always run to completion.

Tasks without a dependency relation may run concurrently. The scheduler
orders work but does not isolate it: task authors must not let such tasks
write the same resources unsynchronized.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import inspect
import threading
import time
from collections import deque
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from loguru import logger

from .constants import DEFAULT_DEBOUNCE_SECONDS
from .errors import NotFinalizedError, TaskBodyError
from .graph import TaskGraph
from .models import RunContext, RunReport, Task, TaskBody, TaskOutcome, TaskState
from .watch import ChangeWatcher, EventSource, WatchdogEventSource


def _accepts_context(body: TaskBody) -> bool:
    try:
        params = inspect.signature(body).parameters.values()
    except (TypeError, ValueError):
        return False
    return any(
        p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD, p.VAR_POSITIONAL)
        for p in params
    )


async def _await(awaitable: Any) -> Any:
    return await awaitable


def run_body(task: Task, context: RunContext) -> None:
    """Invoke a task body and translate its result.

    Raises:
        TaskBodyError: If the body returned False or a non-zero exit status.
    """
    if task.body is None:
        return
    result = task.body(context) if _accepts_context(task.body) else task.body()
    if inspect.isawaitable(result):
        result = asyncio.run(_await(result))
    if result is False:
        raise TaskBodyError(task.name, "returned False")
    if isinstance(result, int) and not isinstance(result, bool) and result != 0:
        raise TaskBodyError(task.name, f"exited with status {result}")


class Scheduler:
    """Execute the closure of requested tasks with bounded or unbounded parallelism."""

    def __init__(
        self,
        graph: TaskGraph,
        *,
        concurrency_limit: Optional[int] = None,
        project_dir: Optional[Path] = None,
        environment: Optional[Mapping[str, str]] = None,
    ):
        """Initialize the scheduler.

        Args:
            graph: Task graph to run. Must be finalized before `run()`.
            concurrency_limit: Default cap on concurrently running bodies (None = unlimited).
            project_dir: Directory exposed to bodies through `RunContext`.
            environment: Default environment mapping exposed through `RunContext`.
        """
        self.graph = graph
        self.concurrency_limit = concurrency_limit
        self.project_dir = project_dir or Path.cwd()
        self.environment = dict(environment or {})
        self._lock = threading.Lock()
        self._task_status: dict[str, TaskState] = {}

    def new_context(self, environment: Optional[Mapping[str, str]] = None) -> RunContext:
        env = dict(self.environment)
        env.update(environment or {})
        return RunContext(project_dir=self.project_dir, environment=env)

    def get_status(self) -> dict[str, TaskState]:
        """Return the state of every task in the current (or last) run."""
        with self._lock:
            return dict(self._task_status)

    def _set_status(self, states: dict[str, TaskState], name: str, state: TaskState) -> None:
        states[name] = state
        with self._lock:
            self._task_status[name] = state

    def run(
        self,
        names: Iterable[str],
        concurrency_limit: Optional[int] = None,
        context: Optional[RunContext] = None,
    ) -> RunReport:
        """Run the requested tasks and everything they depend on.

        Args:
            names: Requested task names.
            concurrency_limit: Override the scheduler's default limit for this run.
            context: Per-run context passed to bodies (a fresh one by default).

        Returns:
            A `RunReport` with one terminal outcome per task in the closure.

        Raises:
            NotFinalizedError: If the graph has not been finalized.
            UnknownTaskError: If a requested name is not registered.
            ValueError: If the concurrency limit is below 1.
        """
        if not self.graph.finalized:
            raise NotFinalizedError()
        requested = tuple(dict.fromkeys(names))
        closure = self.graph.closure(requested)
        limit = concurrency_limit if concurrency_limit is not None else self.concurrency_limit
        if limit is not None and limit < 1:
            raise ValueError(f"concurrency limit must be at least 1, got {limit}")
        context = context or self.new_context()

        ordered = self.graph.topological_order(requested)
        dependents = self.graph.dependents(closure)
        states: dict[str, TaskState] = {}
        reasons: dict[str, str] = {}
        started: dict[str, float] = {}
        finished: dict[str, float] = {}
        order: list[str] = []
        with self._lock:
            self._task_status = {}
        for name in ordered:
            self._set_status(states, name, TaskState.PENDING)

        logger.info(
            "Run {}: {} requested, {} task(s) in closure, concurrency={}",
            context.run_id,
            ", ".join(requested) or "(nothing)",
            len(ordered),
            limit or "unlimited",
        )
        run_started = time.time()

        workers = max(1, limit or len(ordered))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="task") as pool:
            running: dict[concurrent.futures.Future[Optional[str]], str] = {}
            while True:
                for name in ordered:
                    if limit is not None and len(running) >= limit:
                        break
                    if states[name] != TaskState.PENDING:
                        continue
                    task = self.graph.get(name)
                    if not all(states[dep] == TaskState.DONE for dep in task.deps):
                        continue
                    self._set_status(states, name, TaskState.RUNNING)
                    started[name] = time.time()
                    order.append(name)
                    logger.info("Starting task {}", name)
                    running[pool.submit(self._execute, task, context)] = name

                if not running:
                    break

                done, _ = concurrent.futures.wait(running, return_when=concurrent.futures.FIRST_COMPLETED)
                for future in done:
                    name = running.pop(future)
                    finished[name] = time.time()
                    error = future.result()
                    elapsed = finished[name] - started[name]
                    if error is None:
                        self._set_status(states, name, TaskState.DONE)
                        logger.info("Task {} done in {:.2f}s", name, elapsed)
                        continue
                    self._set_status(states, name, TaskState.FAILED)
                    reasons[name] = error
                    logger.warning("Task {} failed after {:.2f}s: {}", name, elapsed, error)
                    for skipped in self._skip_dependents(name, dependents, states):
                        reasons[skipped] = f"depends on failed task '{name}'"

        outcomes = {
            name: TaskOutcome(
                name=name,
                state=states[name],
                reason=reasons.get(name),
                started_at=started.get(name),
                finished_at=finished.get(name),
            )
            for name in ordered
        }
        report = RunReport(
            run_id=context.run_id,
            requested=requested,
            outcomes=outcomes,
            order=tuple(order),
            started_at=run_started,
            finished_at=time.time(),
        )
        if report.success:
            logger.info("Run {} succeeded in {:.2f}s", report.run_id, report.duration_seconds)
        else:
            logger.warning(
                "Run {} failed: failed={} skipped={}",
                report.run_id,
                report.failed,
                report.skipped,
            )
        return report

    def _skip_dependents(
        self,
        failed: str,
        dependents: dict[str, list[str]],
        states: dict[str, TaskState],
    ) -> list[str]:
        skipped: list[str] = []
        queue = deque(dependents.get(failed, []))
        while queue:
            name = queue.popleft()
            if states.get(name) != TaskState.PENDING:
                continue
            self._set_status(states, name, TaskState.SKIPPED)
            skipped.append(name)
            logger.info("Skipping task {} (depends on failed task {})", name, failed)
            queue.extend(dependents.get(name, []))
        return skipped

    def _execute(self, task: Task, context: RunContext) -> Optional[str]:
        """Run one body on a worker thread; return a failure reason or None."""
        try:
            run_body(task, context)
        except TaskBodyError as exc:
            return exc.reason
        except SystemExit as exc:
            # Bodies that wrap a CLI entrypoint exit instead of returning.
            if exc.code is None or exc.code == 0:
                return None
            if isinstance(exc.code, int):
                return f"exited with status {exc.code}"
            return str(exc.code)
        except Exception as exc:
            logger.opt(exception=exc).debug("Task {} raised", task.name)
            return f"{exc.__class__.__name__}: {exc}"
        return None

    def watch(
        self,
        paths: Sequence[Path | str],
        names: Iterable[str],
        *,
        source: Optional[EventSource] = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        concurrency_limit: Optional[int] = None,
        stop_event: Optional[threading.Event] = None,
        on_report: Optional[Callable[[RunReport], None]] = None,
        initial_run: bool = False,
    ) -> None:
        """Re-run `names` whenever something under `paths` changes.

        Blocks until `stop_event` is set or the process is interrupted.

        Args:
            paths: Files or directories to watch.
            names: Tasks to run on each change.
            source: Event source; a watchdog observer by default.
            debounce_seconds: Coalescing window for bursts of events.
            concurrency_limit: Passed through to every `run()`.
            stop_event: Set to stop watching.
            on_report: Called with every run's report.
            initial_run: Run the tasks once before waiting for changes.
        """
        if not self.graph.finalized:
            raise NotFinalizedError()
        names = tuple(dict.fromkeys(names))
        self.graph.closure(names)
        stop_event = stop_event or threading.Event()
        source = source or WatchdogEventSource()

        if initial_run:
            report = self.run(names, concurrency_limit=concurrency_limit)
            if on_report:
                on_report(report)

        watcher = ChangeWatcher(
            self,
            names,
            debounce_seconds=debounce_seconds,
            concurrency_limit=concurrency_limit,
            on_report=on_report,
        )
        try:
            watcher.start()
            source.start([Path(p) for p in paths], watcher.notify)
            logger.info("Watching {} for changes; tasks: {}", ", ".join(str(p) for p in paths), ", ".join(names))
            while not stop_event.wait(0.5):
                pass
        except KeyboardInterrupt:
            logger.info("Watch interrupted")
        finally:
            source.stop()
            watcher.stop()
