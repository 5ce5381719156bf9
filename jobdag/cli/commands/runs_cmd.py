"""Runs commands for jobdag CLI - inspect persisted pipeline runs."""

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from jobdag.builtin.adapters.local.file_state_store import FileStateStore
from jobdag.cli.utils import (
    console,
    get_output_format,
    jobs_table,
    print_output,
    run_to_data,
    styled_status,
)
from jobdag.core.config import load_config
from jobdag.core.domain.pipeline_run import PipelineRun
from jobdag.core.exceptions import RunNotFoundError, StateStoreError

app = typer.Typer()

StateDirOption = Annotated[
    Path | None,
    typer.Option("--state-dir", help="Directory holding persisted runs"),
]


def _store(ctx: typer.Context, state_dir: Path | None) -> FileStateStore:
    if state_dir is None:
        config_path = ctx.obj.get("config_path") if ctx.obj else None
        state_dir = Path(load_config(config_path).engine.state_dir)
    return FileStateStore(state_dir, create_if_missing=False)


async def _load_all(store: FileStateStore) -> list[PipelineRun]:
    runs = []
    for run_id in await store.alist_run_ids():
        try:
            runs.append(await store.aload(run_id))
        except StateStoreError as e:
            console.print(f"[yellow]⚠ Skipping {run_id}: {e}[/yellow]")
    return sorted(runs, key=lambda r: (r.started_at is None, r.started_at, r.run_id))


def _format_time(run_time: object) -> str:
    return f"{run_time:%Y-%m-%d %H:%M:%S}" if run_time is not None else "-"


@app.command("list")
def list_runs(
    ctx: typer.Context,
    state_dir: StateDirOption = None,
    limit: Annotated[int, typer.Option("--limit", min=1, help="Show at most N runs")] = 50,
) -> None:
    """List persisted runs, most recent last."""
    runs = asyncio.run(_load_all(_store(ctx, state_dir)))[-limit:]

    if get_output_format(ctx) != "pretty":
        print_output([run_to_data(run) for run in runs], ctx)
        return

    if not runs:
        console.print("[yellow]No runs found[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Run ID")
    table.add_column("Pipeline")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Started")
    table.add_column("Completed")
    for run in runs:
        table.add_row(
            run.run_id,
            run.definition_name,
            styled_status(run.status.value),
            f"{run.progress}%",
            _format_time(run.started_at),
            _format_time(run.completed_at),
        )
    console.print(table)


@app.command("show")
def show_run(
    ctx: typer.Context,
    run_id: Annotated[str, typer.Argument(help="Run id as printed by 'jobdag run'")],
    state_dir: StateDirOption = None,
) -> None:
    """Show the state of one run and its jobs."""
    store = _store(ctx, state_dir)
    try:
        run = asyncio.run(store.aload(run_id))
    except RunNotFoundError as e:
        console.print(f"[red]Run {run_id} not found[/red]")
        raise typer.Exit(1) from e
    except StateStoreError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1) from e

    if get_output_format(ctx) != "pretty":
        print_output(run_to_data(run), ctx)
        return

    console.print(
        f"[bold]{run.definition_name}[/bold] {styled_status(run.status.value)} "
        f"({run.progress}%)"
    )
    console.print(jobs_table(run))
