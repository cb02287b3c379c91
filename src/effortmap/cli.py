"""CLI interface for effortmap."""

import json
import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from pydantic import TypeAdapter, ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from effortmap.config import load_config, merge_cli_overrides
from effortmap.models import ActivityRecord, ClusteringRun
from effortmap.pipeline import cluster_activities
from effortmap.signals import extract_all
from effortmap.store import JsonClusterStore

app = typer.Typer(
    name="effortmap",
    help="Group work activity from many tools into coherent efforts.",
)

console = Console()

_RECORDS = TypeAdapter(list[ActivityRecord])


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        from effortmap import __version__

        console.print(f"effortmap {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging."),
    ] = False,
) -> None:
    """effortmap - cluster activities into efforts."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load_records(path: Path) -> list[ActivityRecord]:
    """Read an activities JSON file or exit with an error line."""
    try:
        return _RECORDS.validate_json(path.read_bytes())
    except (OSError, ValidationError) as exc:
        console.print(f"[red]Error:[/red] Could not read activities from {path}: {exc}")
        raise typer.Exit(code=1) from exc


ActivitiesArg = Annotated[
    Path,
    typer.Argument(
        help="JSON array of activity records.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
]
SelfOption = Annotated[
    Optional[list[str]],
    typer.Option("--self", "-s", help="Your identity (repeatable: handle, email)."),
]


@app.command(name="signals")
def signals_cmd(
    activities: ActivitiesArg,
    self_ids: SelfOption = None,
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to .effortmap.toml."),
    ] = None,
) -> None:
    """Print the clustering signals extracted from each activity."""
    config = merge_cli_overrides(load_config(config_path), self_identities=self_ids)
    records = _load_records(activities)
    signals = extract_all(records, config.identity.self_identities)
    console.print_json(json.dumps([s.model_dump(mode="json") for s in signals]))


def _render_run(run: ClusteringRun) -> None:
    table = Table(title="Clusters")
    table.add_column("Key", style="cyan")
    table.add_column("Kind")
    table.add_column("Name")
    table.add_column("Activities", justify="right")
    for group in run.partition.groups:
        table.add_row(
            group.key,
            str(group.kind),
            group.name or "",
            str(len(group.activity_ids)),
        )
    console.print(table)

    if run.partition.orphans:
        console.print(f"[yellow]Orphans ({len(run.partition.orphans)}):[/yellow]")
        for activity_id in run.partition.orphans:
            console.print(f"  - {activity_id}")

    refinement = run.refinement
    if refinement.skipped:
        console.print("Refinement: skipped")
    elif refinement.used_fallback:
        console.print(
            f"[yellow]Refinement: fell back after {refinement.attempts} attempt(s)[/yellow]"
        )
        for reason in refinement.failure_reasons:
            console.print(f"  - {reason}")
    else:
        console.print(
            f"[green]Refinement: {len(refinement.assignments)} assignment(s) "
            f"in {refinement.attempts} attempt(s)[/green]"
        )


@app.command(name="cluster")
def cluster_cmd(
    activities: ActivitiesArg,
    self_ids: SelfOption = None,
    store_path: Annotated[
        Optional[Path],
        typer.Option("--store", help="JSON array of existing cluster summaries."),
    ] = None,
    refine: Annotated[
        Optional[bool],
        typer.Option("--refine/--no-refine", help="Send ambiguous activities to the LLM."),
    ] = None,
    model: Annotated[
        Optional[str],
        typer.Option("--model", "-m", help="Model for refinement (e.g. haiku, sonnet)."),
    ] = None,
    timeout: Annotated[
        Optional[float],
        typer.Option("--timeout", help="Refinement deadline in seconds."),
    ] = None,
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to .effortmap.toml."),
    ] = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the full run as JSON."),
    ] = False,
) -> None:
    """Run the full clustering pipeline over an activities file."""
    config = merge_cli_overrides(
        load_config(config_path),
        self_identities=self_ids,
        refine=refine,
        model=model,
        timeout=timeout,
    )
    records = _load_records(activities)
    store = JsonClusterStore(store_path) if store_path else JsonClusterStore(Path("."))

    run = cluster_activities(
        records,
        config.identity.self_identities,
        store,
        config=config,
    )

    if as_json:
        console.print_json(run.model_dump_json())
        return
    _render_run(run)
