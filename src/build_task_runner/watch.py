"""Re-run tasks when watched paths change.

`ChangeWatcher` turns a stream of change notifications into runs: a burst of
events inside the coalescing window counts as one trigger, and events that
arrive while a run is in progress collapse into a single queued re-run.
Event sources only have to call `notify(path)`; `WatchdogEventSource` feeds it
from filesystem notifications.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional, Protocol, Sequence

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .constants import DEFAULT_DEBOUNCE_SECONDS
from .errors import ConfigError, TaskRunnerError

if TYPE_CHECKING:
    from .models import RunReport

# Events that do not mean the content changed.
_IGNORED_EVENT_TYPES = {"opened", "closed_no_write"}


class EventSource(Protocol):
    def start(self, paths: Sequence[Path], callback: Callable[[str], None]) -> None: ...

    def stop(self) -> None: ...


class _CallbackHandler(FileSystemEventHandler):
    def __init__(self, callback: Callable[[str], None]):
        super().__init__()
        self._callback = callback

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in _IGNORED_EVENT_TYPES:
            return
        # Directory mtime updates accompany every file change inside them.
        if event.is_directory and event.event_type == "modified":
            return
        path = event.src_path
        self._callback(path.decode() if isinstance(path, bytes) else str(path))


class WatchdogEventSource:
    """Filesystem event source backed by a watchdog observer."""

    def __init__(self, recursive: bool = True):
        self.recursive = recursive
        self._observer: Optional[Any] = None

    def start(self, paths: Sequence[Path], callback: Callable[[str], None]) -> None:
        handler = _CallbackHandler(callback)
        observer = Observer()
        scheduled = 0
        for path in paths:
            if not path.exists():
                logger.warning("Watch path does not exist: {}", path)
                continue
            observer.schedule(handler, str(path), recursive=self.recursive and path.is_dir())
            scheduled += 1
        if not scheduled:
            raise ConfigError("None of the watch paths exist: " + ", ".join(str(p) for p in paths))
        observer.start()
        self._observer = observer

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=5)
        self._observer = None


class ChangeWatcher:
    """Debounce change notifications into at most one running and one queued run."""

    def __init__(
        self,
        scheduler: Any,
        names: Iterable[str],
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        concurrency_limit: Optional[int] = None,
        on_report: Optional[Callable[["RunReport"], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.scheduler = scheduler
        self.names = tuple(names)
        self.debounce_seconds = debounce_seconds
        self.concurrency_limit = concurrency_limit
        self.on_report = on_report
        self._clock = clock
        self._cond = threading.Condition()
        self._last_event_at: Optional[float] = None  # set while a trigger is pending
        self._changed: set[str] = set()
        self._running = False
        self._stopped = False
        self._thread: Optional[threading.Thread] = None
        self.run_count = 0
        self.last_report: Optional["RunReport"] = None

    @property
    def pending(self) -> bool:
        with self._cond:
            return self._last_event_at is not None

    @property
    def running(self) -> bool:
        with self._cond:
            return self._running

    def notify(self, path: str = "") -> None:
        """Record a change; safe to call from any thread."""
        with self._cond:
            if self._stopped:
                return
            self._last_event_at = self._clock()
            if path:
                self._changed.add(path)
            self._cond.notify_all()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._loop, name="change-watcher", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the loop. A run already in progress finishes first."""
        with self._cond:
            self._stopped = True
            self._cond.notify_all()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no run is active or pending. Returns False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._running or self._last_event_at is not None:
                if self._stopped and not self._running:
                    break
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._cond.wait(remaining)
        return True

    def _next_trigger(self) -> Optional[list[str]]:
        with self._cond:
            while not self._stopped and self._last_event_at is None:
                self._cond.wait()
            while not self._stopped and self._last_event_at is not None:
                remaining = self._last_event_at + self.debounce_seconds - self._clock()
                if remaining <= 0:
                    break
                self._cond.wait(remaining)
            if self._stopped:
                return None
            changed = sorted(self._changed)
            self._changed.clear()
            self._last_event_at = None
            self._running = True
            return changed

    def _loop(self) -> None:
        while True:
            changed = self._next_trigger()
            if changed is None:
                return
            logger.info(
                "Change detected ({} path(s)); running {}",
                len(changed),
                ", ".join(self.names),
            )
            report = None
            try:
                report = self.scheduler.run(self.names, concurrency_limit=self.concurrency_limit)
                if self.on_report:
                    try:
                        self.on_report(report)
                    except Exception:
                        logger.exception("Watch report callback failed")
            except TaskRunnerError as exc:
                logger.error("Watch run failed to start: {}", exc)
            except Exception:
                logger.exception("Watch run failed")
            finally:
                with self._cond:
                    self._running = False
                    self.run_count += 1
                    if report is not None:
                        self.last_report = report
                    self._cond.notify_all()
