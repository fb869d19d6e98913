"""Render run reports, task listings, and dependency trees with rich."""

from __future__ import annotations

import io
from typing import Iterable, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from .graph import TaskGraph
from .models import RunReport, TaskState

_STATE_STYLES = {
    TaskState.DONE: "[green]✓ Done[/green]",
    TaskState.FAILED: "[red]✗ Failed[/red]",
    TaskState.SKIPPED: "[yellow]- Skipped[/yellow]",
    TaskState.RUNNING: "[yellow]Running[/yellow]",
    TaskState.PENDING: "Pending",
}


def _recording_console() -> Console:
    return Console(record=True, width=100, file=io.StringIO())


def format_report(report: RunReport, *, max_reason_chars: int = 60) -> str:
    """Render a run report as a summary table.

    Args:
        report: Report to render.
        max_reason_chars: Failure reasons are cut to the first line and this length.

    Returns:
        Plain text of the rendered table and overall result.
    """
    console = _recording_console()

    table = Table(title=f"Run {report.run_id}", show_header=True)
    table.add_column("Task", style="cyan")
    table.add_column("Status", style="bold")
    table.add_column("Duration", justify="right")
    table.add_column("Reason", style="red")

    for name, outcome in report.outcomes.items():
        reason = (outcome.reason or "").strip().splitlines()
        reason_text = reason[0][:max_reason_chars] if reason else ""
        duration = f"{outcome.duration_seconds:.2f}s" if outcome.started_at is not None else ""
        table.add_row(
            escape(name),
            _STATE_STYLES.get(outcome.state, outcome.state.value),
            duration,
            escape(reason_text),
        )

    console.print(table)
    if report.success:
        console.print(f"[bold green]Succeeded[/bold green] in {report.duration_seconds:.2f}s")
    else:
        console.print(
            f"[bold red]Failed[/bold red]: {len(report.failed)} failed, "
            f"{len(report.skipped)} skipped"
        )
    return console.export_text()


def format_task_list(graph: TaskGraph) -> str:
    """Render every registered task with its dependencies and description."""
    console = _recording_console()

    table = Table(title="Tasks", show_header=True)
    table.add_column("Task", style="cyan")
    table.add_column("Depends on")
    table.add_column("Description", style="dim")

    for task in graph:
        table.add_row(escape(task.name), escape(", ".join(task.deps)), escape(task.description))

    console.print(table)
    return console.export_text()


def format_dependency_tree(graph: TaskGraph, names: Optional[Iterable[str]] = None) -> str:
    """Render tasks as trees of their dependencies.

    Args:
        graph: Finalized task graph.
        names: Roots of the tree; defaults to tasks nothing depends on.

    Returns:
        Plain text of the rendered tree.
    """
    console = _recording_console()

    if names is None:
        dependents = graph.dependents()
        roots = [name for name, users in dependents.items() if not users]
    else:
        roots = list(dict.fromkeys(names))

    tree = Tree("[bold]Task Dependency Tree[/bold]")
    expanded: set[str] = set()

    def add_deps(parent: Tree, name: str) -> None:
        # Each task's dependencies are listed once; later occurrences are marked.
        if name in expanded:
            if graph.get(name).deps:
                parent.label = f"{parent.label} [dim](see above)[/dim]"
            return
        expanded.add(name)
        for dep in graph.get(name).deps:
            branch = parent.add(f"[cyan]{escape(dep)}[/cyan]")
            add_deps(branch, dep)

    for root in roots:
        branch = tree.add(f"[green]{escape(root)}[/green]")
        add_deps(branch, root)

    console.print(tree)
    return console.export_text()
