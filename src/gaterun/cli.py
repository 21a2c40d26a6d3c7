"""CLI entrypoint.

Primary command:
- gaterun run ...

Utilities:
- gaterun init
- gaterun doctor
- gaterun status

CONTRACT
- Inputs: Command line arguments (parsed by Typer)
- Outputs (required):
  - Exit code 0 if every step passed, 1 if a step failed, 2 on invalid
    configuration or failed preflight
  - Console output: per-step table, then the first failing step's name and
    its captured error output verbatim
- Invariants:
  - The pipeline is fully loaded and validated before any step runs
  - Failures are never retried or hidden
- Failure:
  - Invalid arguments raise Typer exit/error
  - ConfigurationError is printed and mapped to exit code 2
"""

from __future__ import annotations

import sys
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .artifacts.store import EVENTS_FILE, REPORT_FILE, ArtifactStore
from .config import DEFAULT_PIPELINE_FILE, ConfigurationError, Pipeline, load_pipeline_file
from .doctor import doctor_report
from .executor import Report, run as run_pipeline
from .util.events import EventLog
from .util.ids import new_run_id, validate_run_id
from .util.paths import ensure_dir

EXIT_FAILED = 1
EXIT_CONFIG = 2

app = typer.Typer(
    add_completion=False,
    help="Sequential build gate: run steps in order, stop at the first failure.",
)
console = Console()


def _version_callback(value: bool):
    if value:
        from . import __version__

        console.print(f"gaterun version: {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show step-level log lines."),
):
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "WARNING",
        format="{time:HH:mm:ss} | {level: <7} | {message}",
    )


_REPO_OPTION = typer.Option(
    Path("."),
    "--repo",
    help="Pipeline root (default: current dir).",
)
_FILE_OPTION = typer.Option(
    None,
    "--file",
    "-f",
    help="Pipeline YAML file (default: <repo>/.gaterun/pipeline.yaml).",
)
_ARTIFACTS_DIR_OPTION = typer.Option(
    Path(".gaterun/runs"),
    "--artifacts-dir",
    help="Artifacts root dir.",
)
_RUN_ID_OPTION = typer.Option(
    None,
    "--run-id",
    help="Run id (default: auto).",
)
_RUN_ID_REQUIRED_OPTION = typer.Option(
    ...,
    "--run",
    help="Run id.",
)


def _load(repo: Path, file: Path | None) -> Pipeline:
    path = file if file is not None else repo / DEFAULT_PIPELINE_FILE
    try:
        return load_pipeline_file(path, root=repo.resolve())
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}", highlight=False)
        raise typer.Exit(code=EXIT_CONFIG) from e


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def render_report(report: Report, pipeline: Pipeline) -> None:
    table = Table(title=f"gaterun: {escape(report.pipeline)}")
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Exit", justify="right")
    table.add_column("Time", justify="right")
    for r in report.results:
        if r.ok:
            status = "[green]PASS[/green]"
        elif r.failure_kind == "launch_failure":
            status = "[red]LAUNCH FAIL[/red]"
        else:
            status = "[red]FAIL[/red]"
        table.add_row(r.name, status, str(r.exit_code), f"{r.duration_s:.2f}s")
    for s in pipeline.steps[len(report.results):]:
        table.add_row(s.name, "[dim]not run[/dim]", "-", "-")
    console.print(table)

    failed = report.failed_result()
    if failed is None:
        console.print(f"[green]PASS[/green] ({len(report.results)} steps, {report.duration_s:.2f}s)")
        return

    console.print(
        f"[red]FAIL[/red] first failing step: [bold]{failed.name}[/bold] (exit {failed.exit_code})"
    )
    output = failed.stderr or failed.stdout
    if output:
        # Verbatim: no markup, no highlighting.
        console.out(_decode(output).rstrip("\n"), highlight=False)


@app.command()
def init(
    repo: Path = _REPO_OPTION,
    force: bool = typer.Option(False, "--force", help="Overwrite existing templates."),
) -> None:
    """Write a starter `.gaterun/pipeline.yaml` into a repo."""
    from .init import write_templates

    written = write_templates(repo, force=force)
    if written:
        for p in written:
            console.print(f"[green]Wrote[/green] {p}")
    else:
        console.print("[yellow]Templates already present (use --force to overwrite).[/yellow]")


@app.command()
def doctor(
    repo: Path = _REPO_OPTION,
    file: Path | None = _FILE_OPTION,
) -> None:
    """Preflight: check step commands and working directories."""
    pipeline = _load(repo, file)
    report = doctor_report(pipeline)
    table = Table(title="gaterun doctor")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Details")
    for item in report.items:
        table.add_row(escape(item.name), item.status, escape(item.details))
    console.print(table)
    if report.ok:
        console.print("[green]OK[/green]")
    else:
        raise typer.Exit(code=EXIT_CONFIG)


@app.command("run")
def run_command(
    repo: Path = _REPO_OPTION,
    file: Path | None = _FILE_OPTION,
    artifacts_dir: Path = _ARTIFACTS_DIR_OPTION,
    run_id: str | None = _RUN_ID_OPTION,
    no_artifacts: bool = typer.Option(False, "--no-artifacts", help="Do not write run artifacts."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Do not mirror step output live."),
    timeout: float | None = typer.Option(
        None, "--timeout", help="Per-step timeout in seconds (default: none)."
    ),
) -> None:
    """Run the pipeline and exit non-zero if any step fails."""
    try:
        rid = validate_run_id(run_id or new_run_id())
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e

    pipeline = _load(repo, file)

    store: ArtifactStore | None = None
    events: EventLog | None = None
    if not no_artifacts:
        root = artifacts_dir if artifacts_dir.is_absolute() else repo / artifacts_dir
        ensure_dir(root)
        store = ArtifactStore(root / rid)
        store.ensure()
        events = EventLog(store.path(EVENTS_FILE), run_id=rid)

    report = run_pipeline(pipeline, mirror=not quiet, events=events, timeout_s=timeout)

    render_report(report, pipeline)
    if store is not None:
        store.write_report(rid, pipeline, report)
        console.print(f"Artifacts: {store.run_dir}", highlight=False)

    if not report.ok:
        raise typer.Exit(code=EXIT_FAILED)


@app.command()
def status(
    repo: Path = _REPO_OPTION,
    run_id: str = _RUN_ID_REQUIRED_OPTION,
    artifacts_dir: Path = _ARTIFACTS_DIR_OPTION,
) -> None:
    """Print the stored report of a previous run."""
    try:
        validate_run_id(run_id)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e
    root = artifacts_dir if artifacts_dir.is_absolute() else repo / artifacts_dir
    store = ArtifactStore(root / run_id)
    report_path = store.path(REPORT_FILE)
    if not report_path.exists():
        raise typer.BadParameter(f"No report found: {report_path}")
    try:
        record = store.read_report()
    except ValueError as e:
        console.print(f"[red]Corrupt report[/red] {report_path}: {escape(str(e))}", highlight=False)
        raise typer.Exit(code=EXIT_CONFIG) from e
    console.print_json(record.model_dump_json())


if __name__ == "__main__":
    app()
