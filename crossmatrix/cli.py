"""Thin CLI wrapper for crossmatrix.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from crossmatrix import __version__
from crossmatrix.config import get_settings, print_settings_json
from crossmatrix.profiles.registry import ProfileNotFoundError, ProfileRegistry
from crossmatrix.verify import format_size

app = typer.Typer(
    name="crossmatrix",
    help="Cross-compilation build matrix - build, package and publish per target",
    no_args_is_help=True,
)
console = Console()

STATUS_COLORS = {
    "success": "green",
    "verification_failed": "yellow",
    "cancelled": "yellow",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"crossmatrix version {__version__}")
        raise typer.Exit()


def setup_logging(level: str) -> None:
    """Send log records to stderr through Rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load_registry(matrix_file: Path | None) -> ProfileRegistry:
    try:
        return ProfileRegistry.load(matrix_file)
    except FileNotFoundError:
        console.print(f"[red]Matrix file not found: {matrix_file}[/red]")
        raise typer.Exit(code=1) from None
    except ValidationError as e:
        console.print("[red]Invalid matrix file:[/red]")
        console.print(str(e), markup=False)
        raise typer.Exit(code=1) from None
    except (ValueError, yaml.YAMLError, json.JSONDecodeError) as e:
        console.print(f"[red]Invalid matrix file: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Cross-compilation build matrix - build, package and publish per target."""


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        typer.echo(print_settings_json(settings))
        return

    publish_target = settings.publish_url or str(settings.publish_dir)
    parallel = settings.max_parallel_targets or "one per target"
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Work directory:      {settings.work_dir}")
    console.print(f"  Cache directory:     {settings.cache_dir}")
    console.print(f"  Dist directory:      {settings.dist_dir}")
    console.print(f"  Database URL:        {settings.db_url}")
    console.print(f"  Matrix file:         {settings.matrix_file or '(built-in)'}")
    console.print()
    console.print("[bold]Publication:[/bold]")
    console.print(f"  Destination:         {publish_target}")
    console.print(f"  Retention (days):    {settings.publish_retention_days}")
    console.print(f"  Publish binaries:    {settings.publish_binaries}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Use sudo:            {settings.use_sudo}")
    console.print(f"  Clean build:         {settings.clean_build}")
    console.print(f"  Parallel targets:    {parallel}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Probe timeout:       {settings.probe_timeout}")
    console.print(f"  Install timeout:     {settings.install_timeout}")
    console.print(f"  Configure timeout:   {settings.configure_timeout}")
    console.print(f"  Build timeout:       {settings.build_timeout}")
    console.print(f"  Publish timeout:     {settings.publish_timeout}")


targets_app = typer.Typer(help="Inspect target profiles")
app.add_typer(targets_app, name="targets")


@targets_app.command("list")
def targets_list(
    matrix: Annotated[
        Path | None,
        typer.Option("--matrix", "-m", help="Matrix file (default: configured or built-in)"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List target profiles of the matrix."""
    registry = _load_registry(matrix or get_settings().matrix_file)

    if json_output:
        output = [p.model_dump(mode="json") for p in registry.values()]
        typer.echo(json.dumps(output, indent=2))
        return

    table = Table(title=f"Targets for {registry.project.name}")
    table.add_column("ID", style="green")
    table.add_column("Name")
    table.add_column("Architecture")
    table.add_column("Compiler")
    table.add_column("Jobs", justify="right")
    for profile in registry.values():
        table.add_row(
            profile.id,
            profile.display_name,
            profile.architecture,
            profile.compiler.c,
            str(profile.parallelism),
        )
    console.print(table)


@targets_app.command("show")
def targets_show(
    target_id: Annotated[str, typer.Argument(help="Target ID to show")],
    matrix: Annotated[
        Path | None,
        typer.Option("--matrix", "-m", help="Matrix file (default: configured or built-in)"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show details of a specific target profile."""
    registry = _load_registry(matrix or get_settings().matrix_file)
    try:
        profile = registry[target_id]
    except ProfileNotFoundError:
        console.print(f"[red]Target not found: {target_id}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        typer.echo(profile.model_dump_json(indent=2))
    else:
        typer.echo(yaml.safe_dump(profile.model_dump(mode="json"), sort_keys=False))


@targets_app.command("validate")
def targets_validate(
    path: Annotated[Path, typer.Argument(help="Matrix file to validate")],
) -> None:
    """Validate a matrix file without building."""
    if not path.exists():
        console.print(f"[red]File not found: {path}[/red]")
        raise typer.Exit(code=1)

    registry = _load_registry(path)
    console.print(f"[green]✓ Valid matrix: {registry.project.name}[/green]")
    for profile in registry.values():
        console.print(f"  {profile.id}: {profile.description or profile.display_name}")


@targets_app.command("export")
def targets_export(
    path: Annotated[Path, typer.Argument(help="Output file (.yaml, .yml or .json)")],
    matrix: Annotated[
        Path | None,
        typer.Option("--matrix", "-m", help="Matrix file (default: configured or built-in)"),
    ] = None,
) -> None:
    """Export the matrix to a file, e.g. as a starting point for a custom one."""
    from crossmatrix.profiles.io import export_matrix

    registry = _load_registry(matrix or get_settings().matrix_file)
    try:
        export_matrix(registry.matrix, path)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None
    console.print(f"[green]Exported {len(registry)} target(s) to {path}[/green]")


@app.command("run")
def run_matrix(
    target_ids: Annotated[
        list[str] | None,
        typer.Option("--target", "-t", help="Target ID(s) to build (default: all)"),
    ] = None,
    matrix: Annotated[
        Path | None,
        typer.Option("--matrix", "-m", help="Matrix file (default: configured or built-in)"),
    ] = None,
    source_dir: Annotated[
        Path | None,
        typer.Option("--source-dir", "-s", help="Source tree (default: from the matrix)"),
    ] = None,
    trigger: Annotated[
        str,
        typer.Option("--trigger", help="What started this run: push, tag or manual"),
    ] = "manual",
    strict: Annotated[
        bool,
        typer.Option("--strict", help="Exit non-zero unless every target succeeds"),
    ] = False,
    no_record: Annotated[
        bool,
        typer.Option("--no-record", help="Do not store the run in the history database"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build, package, verify and publish every selected target.

    Targets run in parallel and fail independently. The command succeeds
    when at least one target was published (all of them with --strict).
    """
    from crossmatrix.db import history_session, open_history
    from crossmatrix.matrix.orchestrator import MatrixOrchestrator
    from crossmatrix.matrix.service import TRIGGERS, record_summary

    if trigger not in TRIGGERS:
        console.print(f"[red]Invalid trigger: {trigger}[/red]")
        console.print(f"Valid values: {', '.join(TRIGGERS)}")
        raise typer.Exit(code=1)

    settings = get_settings()
    setup_logging(settings.log_level)
    registry = _load_registry(matrix or settings.matrix_file)
    try:
        profiles = registry.select(target_ids)
    except ProfileNotFoundError as e:
        console.print(f"[red]Target not found: {e.target_id}[/red]")
        raise typer.Exit(code=1) from None

    orchestrator = MatrixOrchestrator.from_settings(registry.project, settings, source_dir)
    summary = orchestrator.run(profiles)

    run_id: int | None = None
    if not no_record:
        with history_session(open_history(settings)) as session:
            run_id = record_summary(session, summary, trigger=trigger).id

    if json_output:
        output = summary.to_dict()
        output["run_id"] = run_id
        typer.echo(json.dumps(output, indent=2))
    else:
        table = Table(title=f"Build summary for {summary.project}")
        table.add_column("Target")
        table.add_column("Status")
        table.add_column("Size", justify="right")
        table.add_column("Time", justify="right")
        table.add_column("Published")
        for result in summary.results.values():
            color = STATUS_COLORS.get(result.status.value, "red")
            table.add_row(
                result.target_id,
                f"[{color}]{result.status.value}[/{color}]",
                format_size(result.binary_size_bytes) if result.binary_paths else "-",
                f"{result.duration_seconds:.0f}s",
                "\n".join(result.publication_handles[:1]) or "-",
            )
        console.print(table)
        console.print(
            f"{len(summary.succeeded)} of {len(summary.results)} target(s) published"
        )
        if run_id is not None:
            console.print(f"Recorded as run #{run_id}")

    if not summary.any_succeeded or (strict and not summary.all_succeeded):
        raise typer.Exit(code=1)


runs_app = typer.Typer(help="Inspect run history")
app.add_typer(runs_app, name="runs")


@runs_app.command("list")
def runs_list(
    project: Annotated[
        str | None,
        typer.Option("--project", "-p", help="Filter by project name"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Maximum number of runs to return"),
    ] = 20,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List recorded matrix runs."""
    from crossmatrix.db import open_history
    from crossmatrix.matrix.service import list_runs

    sessions = open_history()
    with sessions() as session:
        runs = list_runs(session, project=project, limit=limit)

        if not runs:
            if json_output:
                typer.echo("[]")
            else:
                console.print("[yellow]No runs found[/yellow]")
            return

        if json_output:
            output = [
                {
                    "id": r.id,
                    "project": r.project,
                    "trigger": r.trigger,
                    "started_at": r.started_at.isoformat() if r.started_at else None,
                    "finished_at": r.finished_at.isoformat() if r.finished_at else None,
                    "succeeded": r.succeeded_count,
                    "failed": r.failed_count,
                    "cancelled": r.cancelled,
                    "targets": {t.target_id: t.status for t in r.targets},
                }
                for r in runs
            ]
            typer.echo(json.dumps(output, indent=2))
        else:
            console.print(f"[bold]Found {len(runs)} run(s):[/bold]")
            console.print()
            for r in runs:
                color = "green" if r.failed_count == 0 else "yellow"
                if r.succeeded_count == 0:
                    color = "red"
                console.print(f"  [{color}]Run #{r.id}[/{color}] {r.project} ({r.trigger})")
                console.print(
                    f"    Started: {r.started_at.isoformat() if r.started_at else 'N/A'}"
                )
                console.print(
                    f"    Succeeded: {r.succeeded_count}  Failed: {r.failed_count}"
                )
                console.print()


@runs_app.command("show")
def runs_show(
    run_id: Annotated[int, typer.Argument(help="Run ID to show")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show per-target results of a recorded run."""
    from crossmatrix.db import open_history
    from crossmatrix.matrix.service import RunNotFoundError, get_run

    sessions = open_history()
    with sessions() as session:
        try:
            run = get_run(session, run_id)
        except RunNotFoundError:
            console.print(f"[red]Run not found: {run_id}[/red]")
            raise typer.Exit(code=1) from None

        if json_output:
            output = {
                "id": run.id,
                "project": run.project,
                "trigger": run.trigger,
                "cancelled": run.cancelled,
                "targets": [
                    {
                        "target_id": t.target_id,
                        "status": t.status,
                        "duration_seconds": t.duration_seconds,
                        "binary_size_bytes": t.binary_size_bytes,
                        "archive_path": t.archive_path,
                        "publication_handles": t.publication_handles or [],
                        "verified": t.verified,
                        "error_message": t.error_message,
                    }
                    for t in run.targets
                ],
            }
            typer.echo(json.dumps(output, indent=2))
            return

        console.print(f"[bold]Run #{run.id}[/bold] {run.project} ({run.trigger})")
        for t in run.targets:
            color = STATUS_COLORS.get(t.status, "red")
            console.print(f"  [{color}]{t.target_id}: {t.status}[/{color}]")
            if t.archive_path:
                console.print(f"    Archive: {t.archive_path}")
            for handle in t.publication_handles or []:
                console.print(f"    Published: {handle}")
            if t.error_message:
                console.print(f"    Error: {t.error_message.splitlines()[0]}")


if __name__ == "__main__":
    app()
