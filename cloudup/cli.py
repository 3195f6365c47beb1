"""
Cloudup CLI - converge cloud infrastructure from a Python desired-state module.
"""

import asyncio
import inspect
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from .core import CloudupCore
from .graph import DependencyGraph
from .report import ConvergenceReport, TaskStatus
from .settings import get_settings

# Setup
app = typer.Typer(
    name="cloudup",
    help="Task-based reconciliation of cloud infrastructure",
    add_completion=False,
)
console = Console()

STATUS_STYLES = {
    TaskStatus.NO_OP: "dim",
    TaskStatus.CREATED: "green",
    TaskStatus.UPDATED: "yellow",
    TaskStatus.FAILED: "bold red",
    TaskStatus.BLOCKED: "magenta",
}


def configure_logging():
    """Configure logging based on settings."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


# Configure logging on module import
configure_logging()


def _get_main_file(file: Path) -> Path:
    """Resolve the desired-state file or exit with a hint."""
    main_file = file if file.is_absolute() else Path.cwd() / file
    if not main_file.exists():
        console.print(f"[bold red]✗ Error:[/bold red] No {file} found")
        console.print(
            "[dim]Hint: pass the Python file declaring your tasks, or cd into its directory[/dim]"
        )
        raise typer.Exit(code=1)
    return main_file


def _create_command_panel(title: str, color: str, main_file: Path) -> Panel:
    settings = get_settings()
    return Panel.fit(
        f"[bold {color}]{title}[/bold {color}]\n"
        f"File: {main_file.name}\n"
        f"Concurrency: {settings.max_concurrency}",
        border_style=color,
    )


def _handle_command_error(e: Exception, command_type: str) -> None:
    """Print the error and exit with code 1."""
    console.print(f"\n[bold red]✗ {command_type.capitalize()} failed:[/bold red] {e}")
    raise typer.Exit(code=1)


def _run_command(
    command_name: str,
    panel_title: str,
    panel_color: str,
    core_method: str,
    file: Path,
    concurrency: int | None = None,
    **kwargs,
):
    """Execute a Cloudup command with common setup and error handling.

    Returns:
        Whatever the core method returned
    """
    main_file = _get_main_file(file)
    console.print(_create_command_panel(panel_title, panel_color, main_file))

    try:
        core = CloudupCore(max_concurrency=concurrency)
        method = getattr(core, core_method)

        # Check if method is async and run accordingly
        if inspect.iscoroutinefunction(method):
            return asyncio.run(method(main_file, **kwargs))
        return method(main_file, **kwargs)
    except Exception as e:
        _handle_command_error(e, command_name)


def print_report(report: ConvergenceReport) -> None:
    """Render a convergence report as rich tables."""
    table = Table(title="Dry run" if report.dry_run else "Convergence")
    table.add_column("Task")
    table.add_column("Status")
    table.add_column("Changes")
    table.add_column("Attempts", justify="right")
    table.add_column("Error", overflow="fold")

    for result in report.results:
        style = STATUS_STYLES[result.status]
        table.add_row(
            result.key,
            f"[{style}]{result.status.value}[/{style}]",
            ", ".join(change["field"] for change in result.changes),
            str(result.attempts),
            result.error or "",
        )
    console.print(table)

    if report.deletions:
        deletions = Table(title="Deletions")
        deletions.add_column("Deletion")
        deletions.add_column("Item")
        deletions.add_column("Result")
        for deletion in report.deletions:
            outcome = (
                "[green]deleted[/green]"
                if deletion.success
                else f"[red]failed: {deletion.error}[/red]"
            )
            deletions.add_row(deletion.task_name, deletion.item, outcome)
        console.print(deletions)

    summary = report.summary()
    console.print(
        f"\n[dim]Tasks: +{summary['created']} ~{summary['updated']} "
        f"={summary['no-op']} ✗{summary['failed']} ⊘{summary['blocked']}[/dim]"
    )


def build_tree(graph: DependencyGraph) -> Tree:
    """Dependency tree: each task lists what it depends on."""
    tree = Tree("[bold]Tasks[/bold]")

    def add(node: Tree, task) -> None:
        for dependency in graph.dependencies(task):
            add(node.add(dependency.key), dependency)

    for task in graph.topological_order():
        # Only tasks nothing depends on start a branch
        if graph.dependents(task):
            continue
        add(tree.add(f"[bold]{task.key}[/bold]"), task)
    return tree


@app.command()
def apply(
    file: Path = typer.Argument(Path("main.py"), help="Desired-state Python file"),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Find and diff only; do not change anything"
    ),
    concurrency: int = typer.Option(
        None, "--concurrency", min=1, help="Tasks converged in parallel (overrides .env)"
    ),
):
    """Converge live cloud resources to the declared state."""
    report = _run_command(
        command_name="apply",
        panel_title="Cloudup Apply" + (" (dry run)" if dry_run else ""),
        panel_color="blue",
        core_method="apply",
        file=file,
        concurrency=concurrency,
        dry_run=dry_run,
    )
    print_report(report)

    if not report.success:
        console.print("\n[bold red]✗ Convergence failed[/bold red]")
        for error in report.errors:
            console.print(f"  • {error}")
        raise typer.Exit(code=1)

    if dry_run:
        console.print("\n[dim]Run 'cloudup apply' to apply these changes.[/dim]")
    else:
        console.print("\n[bold green]✓ Infrastructure converged![/bold green]")


@app.command()
def render(
    file: Path = typer.Argument(Path("main.py"), help="Desired-state Python file"),
    out: Path = typer.Option(
        None, "--out", help="Terraform JSON output file (overrides .env)"
    ),
):
    """Render the declared state as a Terraform JSON document."""
    report = _run_command(
        command_name="render",
        panel_title="Cloudup Render",
        panel_color="cyan",
        core_method="render",
        file=file,
        output=out,
    )
    print_report(report)

    if not report.success:
        console.print("\n[bold red]✗ Render failed[/bold red]")
        for error in report.errors:
            console.print(f"  • {error}")
        raise typer.Exit(code=1)

    destination = out or Path(get_settings().iac_output)
    console.print(f"\n[bold green]✓ Wrote {destination}[/bold green]")


@app.command()
def graph(
    file: Path = typer.Argument(Path("main.py"), help="Desired-state Python file"),
):
    """Show the task dependency tree."""
    dependency_graph = _run_command(
        command_name="graph",
        panel_title="Cloudup Graph",
        panel_color="magenta",
        core_method="graph",
        file=file,
    )
    console.print(build_tree(dependency_graph))
    console.print(f"\n[dim]{len(dependency_graph)} tasks[/dim]")


@app.command()
def version():
    """Show Cloudup version."""
    from . import __version__

    console.print(f"Cloudup version: [bold]{__version__}[/bold]")


if __name__ == "__main__":
    app()
