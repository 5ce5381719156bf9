"""Run command for jobdag CLI - executes a pipeline file to completion."""

import asyncio
import dataclasses
import json
from pathlib import Path
from typing import Annotated, Any

import typer

from jobdag.cli.utils import console, get_output_format, jobs_table, print_output, run_to_data
from jobdag.core.config import EngineConfig, load_config
from jobdag.core.domain.pipeline import PipelineDefinition
from jobdag.core.domain.pipeline_run import PipelineRun, RunStatus
from jobdag.core.exceptions import JobDAGError, PipelineValidationError
from jobdag.core.orchestration.engine import PipelineEngine
from jobdag.core.orchestration.events import Event, JobProgress
from jobdag.core.pipeline_builder.yaml_loader import load_pipeline
from jobdag.core.resolver import resolve_function


def _load_context(context_file: Path | None) -> dict[str, Any]:
    if context_file is None:
        return {}
    try:
        data = json.loads(context_file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]✗ Cannot read context file:[/red] {e}")
        raise typer.Exit(1) from e
    if not isinstance(data, dict):
        console.print("[red]✗ Context file must contain a JSON object[/red]")
        raise typer.Exit(1)
    return data


async def _execute(
    definition: PipelineDefinition,
    executor: Any,
    context: dict[str, Any],
    config: EngineConfig,
    show_events: bool,
) -> PipelineRun:
    async with PipelineEngine(executor, config) as engine:
        if show_events:

            def _print_event(event: Event) -> None:
                if not isinstance(event, JobProgress):
                    console.print(f"[dim]{event.timestamp:%H:%M:%S}[/dim] {event.log_message()}")

            engine.events.register(_print_event)
        return await engine.run_pipeline(definition, context)


def run(
    ctx: typer.Context,
    pipeline_file: Annotated[
        Path,
        typer.Argument(help="Pipeline YAML file", exists=True, dir_okay=False, readable=True),
    ],
    executor: Annotated[
        str,
        typer.Option("--executor", "-x", help="Executor callable, e.g. mypkg.executors.run"),
    ],
    context_file: Annotated[
        Path | None,
        typer.Option("--context", "-c", help="JSON file with the initial context"),
    ] = None,
    max_concurrent_jobs: Annotated[
        int | None,
        typer.Option("--max-concurrent-jobs", "-j", min=1, help="Concurrency limit per run"),
    ] = None,
    state_dir: Annotated[
        Path | None,
        typer.Option("--state-dir", help="Directory for persisted run state"),
    ] = None,
) -> None:
    """Run a pipeline and wait for it to finish.

    Exits with status 0 when the run completed, 1 otherwise.

    Examples
    --------
    jobdag run pipeline.yaml --executor mypkg.executors.run_agent
    jobdag run pipeline.yaml -x mypkg.executors.run_agent --context ctx.json -j 5
    """
    fmt = get_output_format(ctx)

    try:
        definition = load_pipeline(pipeline_file)
        executor_fn = resolve_function(executor)
        config = load_config(ctx.obj.get("config_path") if ctx.obj else None).engine
        overrides: dict[str, Any] = {}
        if max_concurrent_jobs is not None:
            overrides["max_concurrent_jobs"] = max_concurrent_jobs
        if state_dir is not None:
            overrides["state_dir"] = str(state_dir)
        config = dataclasses.replace(config, **overrides)
    except PipelineValidationError as e:
        console.print(f"[red]✗ Invalid pipeline:[/red] {e.reason}")
        raise typer.Exit(1) from e
    except (JobDAGError, OSError) as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1) from e

    context = _load_context(context_file)
    result = asyncio.run(_execute(definition, executor_fn, context, config, fmt == "pretty"))

    if fmt == "pretty":
        console.print()
        console.print(jobs_table(result))
        style = "green" if result.status is RunStatus.COMPLETED else "red"
        console.print(
            f"[{style}]Run {result.run_id} {result.status.value}[/{style}] "
            f"({result.progress}% of jobs finished)"
        )
    else:
        print_output(run_to_data(result), ctx)

    if result.status is not RunStatus.COMPLETED:
        raise typer.Exit(1)
