"""Tests for debounced re-runs on file changes."""
from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, Optional, Sequence

import pytest
from watchdog.events import DirModifiedEvent, FileCreatedEvent, FileModifiedEvent

from build_task_runner.errors import ConfigError, NotFinalizedError
from build_task_runner.graph import TaskGraph
from build_task_runner.models import RunReport
from build_task_runner.scheduler import Scheduler
from build_task_runner.watch import ChangeWatcher, WatchdogEventSource, _CallbackHandler


class FakeScheduler:
    def __init__(self, *, block_first: bool = False, fail_first: bool = False) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.started = threading.Event()
        self.release = threading.Event()
        self.block_first = block_first
        self.fail_first = fail_first

    def run(self, names, concurrency_limit=None):
        self.calls.append(tuple(names))
        self.started.set()
        if self.block_first and len(self.calls) == 1:
            self.release.wait(5)
        if self.fail_first and len(self.calls) == 1:
            raise NotFinalizedError()
        return f"report-{len(self.calls)}"


class FakeSource:
    def __init__(self) -> None:
        self.paths: list[Path] = []
        self.callback: Optional[Callable[[str], None]] = None
        self.started = threading.Event()
        self.stopped = False

    def start(self, paths: Sequence[Path], callback: Callable[[str], None]) -> None:
        self.paths = list(paths)
        self.callback = callback
        self.started.set()

    def stop(self) -> None:
        self.stopped = True

    def fire(self, path: str) -> None:
        assert self.callback is not None
        self.callback(path)


@pytest.fixture
def watcher_factory():
    created: list[ChangeWatcher] = []

    def _make(scheduler, **kwargs) -> ChangeWatcher:
        watcher = ChangeWatcher(scheduler, ["test"], **kwargs)
        watcher.start()
        created.append(watcher)
        return watcher

    yield _make
    for watcher in created:
        watcher.stop(timeout=5)


def test_burst_of_events_triggers_one_run(watcher_factory) -> None:
    scheduler = FakeScheduler()
    watcher = watcher_factory(scheduler, debounce_seconds=0.3)

    watcher.notify("src/a.js")
    watcher.notify("src/b.js")
    watcher.notify("test/a.spec.js")

    assert watcher.wait_idle(timeout=5)
    assert scheduler.calls == [("test",)]
    assert watcher.run_count == 1
    assert watcher.last_report == "report-1"


def test_events_during_run_collapse_into_one_queued_run(watcher_factory) -> None:
    scheduler = FakeScheduler(block_first=True)
    watcher = watcher_factory(scheduler, debounce_seconds=0.05)

    watcher.notify("src/a.js")
    assert scheduler.started.wait(5)
    assert watcher.running

    for name in ("b", "c", "d"):
        watcher.notify(f"src/{name}.js")
    assert watcher.pending
    scheduler.release.set()

    assert watcher.wait_idle(timeout=5)
    assert len(scheduler.calls) == 2
    assert watcher.run_count == 2


def test_separate_bursts_trigger_separate_runs(watcher_factory) -> None:
    scheduler = FakeScheduler()
    watcher = watcher_factory(scheduler, debounce_seconds=0.05)

    watcher.notify("a")
    assert watcher.wait_idle(timeout=5)
    watcher.notify("b")
    assert watcher.wait_idle(timeout=5)

    assert len(scheduler.calls) == 2


def test_on_report_receives_each_report(watcher_factory) -> None:
    reports: list[object] = []
    watcher = watcher_factory(FakeScheduler(), debounce_seconds=0.05, on_report=reports.append)

    watcher.notify("a")
    assert watcher.wait_idle(timeout=5)

    assert reports == ["report-1"]


def test_run_error_does_not_stop_watching(watcher_factory) -> None:
    scheduler = FakeScheduler(fail_first=True)
    watcher = watcher_factory(scheduler, debounce_seconds=0.05)

    watcher.notify("a")
    assert watcher.wait_idle(timeout=5)
    assert watcher.last_report is None

    watcher.notify("b")
    assert watcher.wait_idle(timeout=5)
    assert len(scheduler.calls) == 2
    assert watcher.last_report == "report-2"


def test_unexpected_run_error_does_not_stop_watching(watcher_factory) -> None:
    class BrokenOnce(FakeScheduler):
        def run(self, names, concurrency_limit=None):
            if not self.calls:
                self.calls.append(tuple(names))
                raise ValueError("concurrency limit must be at least 1, got 0")
            return super().run(names, concurrency_limit)

    scheduler = BrokenOnce()
    watcher = watcher_factory(scheduler, debounce_seconds=0.05)

    watcher.notify("a")
    assert watcher.wait_idle(timeout=5)
    watcher.notify("b")
    assert watcher.wait_idle(timeout=5)

    assert len(scheduler.calls) == 2
    assert watcher.run_count == 2


def test_failing_report_callback_does_not_stop_watching(watcher_factory) -> None:
    reports: list[object] = []

    def on_report(report) -> None:
        reports.append(report)
        raise OSError("stdout closed")

    scheduler = FakeScheduler()
    watcher = watcher_factory(scheduler, debounce_seconds=0.05, on_report=on_report)

    watcher.notify("a")
    assert watcher.wait_idle(timeout=5)
    watcher.notify("b")
    assert watcher.wait_idle(timeout=5)

    assert reports == ["report-1", "report-2"]
    assert watcher.run_count == 2
    assert watcher.last_report == "report-2"


def test_no_runs_after_stop() -> None:
    scheduler = FakeScheduler()
    watcher = ChangeWatcher(scheduler, ["test"], debounce_seconds=0.05)
    watcher.start()
    watcher.stop(timeout=5)

    watcher.notify("a")

    assert not watcher.pending
    assert scheduler.calls == []


def _graph_with_counter() -> tuple[TaskGraph, list[str]]:
    runs: list[str] = []
    lock = threading.Lock()

    def body() -> None:
        with lock:
            runs.append("test")

    graph = TaskGraph()
    graph.register("test", [], body)
    graph.finalize()
    return graph, runs


def test_scheduler_watch_runs_on_change_and_stops(tmp_path: Path) -> None:
    graph, runs = _graph_with_counter()
    scheduler = Scheduler(graph)
    source = FakeSource()
    stop = threading.Event()
    reports: list[RunReport] = []
    got_two = threading.Event()

    def on_report(report: RunReport) -> None:
        reports.append(report)
        if len(reports) >= 2:
            got_two.set()

    thread = threading.Thread(
        target=scheduler.watch,
        args=([tmp_path / "src"], ["test"]),
        kwargs={
            "source": source,
            "debounce_seconds": 0.3,
            "stop_event": stop,
            "on_report": on_report,
            "initial_run": True,
        },
    )
    thread.start()
    try:
        assert source.started.wait(5)
        source.fire(str(tmp_path / "src" / "a.py"))
        source.fire(str(tmp_path / "src" / "b.py"))
        assert got_two.wait(5)
    finally:
        stop.set()
        thread.join(5)

    assert not thread.is_alive()
    assert source.stopped
    assert source.paths == [tmp_path / "src"]
    assert len(reports) == 2
    assert all(report.success for report in reports)
    assert runs == ["test", "test"]


def test_scheduler_watch_requires_finalized_graph() -> None:
    graph = TaskGraph()
    graph.register("test", [], lambda: None)
    with pytest.raises(NotFinalizedError):
        Scheduler(graph).watch(["src"], ["test"], source=FakeSource())


def test_callback_handler_filters_directory_modifications() -> None:
    seen: list[str] = []
    handler = _CallbackHandler(seen.append)

    handler.dispatch(FileModifiedEvent("/repo/src/a.py"))
    handler.dispatch(DirModifiedEvent("/repo/src"))
    handler.dispatch(FileCreatedEvent("/repo/src/b.py"))

    assert seen == ["/repo/src/a.py", "/repo/src/b.py"]


def test_watchdog_source_rejects_missing_paths(tmp_path: Path) -> None:
    source = WatchdogEventSource()
    with pytest.raises(ConfigError, match="None of the watch paths exist"):
        source.start([tmp_path / "missing"], lambda path: None)
    source.stop()


def test_scheduler_watch_stops_watcher_when_source_fails() -> None:
    class MissingPathsSource(FakeSource):
        def start(self, paths, callback) -> None:
            raise ConfigError("None of the watch paths exist: src")

    graph, runs = _graph_with_counter()
    source = MissingPathsSource()

    with pytest.raises(ConfigError):
        Scheduler(graph).watch(["src"], ["test"], source=source, stop_event=threading.Event())

    assert source.stopped
    assert not any(t.name == "change-watcher" and t.is_alive() for t in threading.enumerate())
    assert runs == []
