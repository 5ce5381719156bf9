"""CLI helper utilities for jobdag commands."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Protocol

import typer
import yaml
from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from jobdag.core.domain.pipeline_run import PipelineRun


class ContextProtocol(Protocol):
    """Protocol for common interface between Click and Typer contexts."""

    @property
    def obj(self) -> dict[str, Any] | None: ...


console = Console()
err_console = Console(stderr=True)

_STATUS_STYLES = {
    "completed": "green",
    "failed": "red",
    "cancelled": "yellow",
    "skipped": "dim",
    "running": "cyan",
    "retrying": "magenta",
}


def get_output_format(ctx: ContextProtocol | None) -> str:
    """Return ``pretty``, ``json`` or ``yaml`` from the global flags."""
    if ctx is None or not isinstance(ctx.obj, dict):
        return "pretty"
    return str(ctx.obj.get("output_format", "pretty"))


def print_output(data: Any, ctx: ContextProtocol | None = None) -> None:
    """Print ``data`` according to ``ctx.obj['output_format']``.

    If ctx is None or no format specified, pretty-print using rich.console.
    """
    fmt = get_output_format(ctx)
    if fmt == "json":
        typer.echo(json.dumps(data, default=str, indent=2))
    elif fmt == "yaml":
        typer.echo(yaml.safe_dump(data, sort_keys=False))
    elif isinstance(data, str | int | float):
        typer.echo(str(data))
    else:
        console.print(data)


def run_to_data(run: PipelineRun) -> dict[str, Any]:
    """JSON-compatible dict with the same camelCase keys as persisted state."""
    data: dict[str, Any] = json.loads(run.to_json(indent=None))
    return data


def styled_status(status: str) -> str:
    style = _STATUS_STYLES.get(status)
    return f"[{style}]{status}[/{style}]" if style else status


def jobs_table(run: PipelineRun) -> Table:
    """Per-job table for a single run."""
    table = Table(show_header=True, header_style="bold magenta", title=run.run_id)
    table.add_column("Job")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Error", overflow="fold")
    for job_id, state in run.jobs.items():
        duration = f"{state.duration_ms / 1000:.2f}s" if state.duration_ms is not None else ""
        table.add_row(
            job_id,
            styled_status(state.status.value),
            str(state.attempts),
            duration,
            state.error or "",
        )
    return table
