"""Pipeline validation command for jobdag CLI."""

from pathlib import Path
from typing import Annotated

import typer

from jobdag.cli.utils import console, get_output_format, print_output
from jobdag.core.domain.dag import DependencyGraph
from jobdag.core.exceptions import PipelineValidationError
from jobdag.core.pipeline_builder.yaml_loader import load_pipeline


def validate(
    ctx: typer.Context,
    yaml_file: Annotated[
        Path,
        typer.Argument(
            help="Path to YAML pipeline file to validate",
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
        ),
    ],
) -> None:
    """Validate a pipeline file without running it.

    Checks YAML syntax, field constraints, duplicate ids, unknown
    dependencies and cycles.

    Examples
    --------
    jobdag validate pipeline.yaml
    jobdag --json validate pipeline.yaml
    """
    fmt = get_output_format(ctx)
    try:
        definition = load_pipeline(yaml_file)
    except PipelineValidationError as e:
        if fmt == "pretty":
            console.print(f"[red]✗ Validation failed:[/red] {yaml_file}")
            console.print(f"  [red]✗[/red] {e.reason}")
        else:
            print_output({"valid": False, "file": str(yaml_file), "error": e.reason}, ctx)
        raise typer.Exit(1) from e

    order = DependencyGraph(definition).topological_order()
    if fmt == "pretty":
        console.print(f"[green]✓ Validation successful:[/green] {yaml_file}")
        console.print(f"  Pipeline [bold]{definition.name}[/bold] with {len(definition.jobs)} jobs")
        console.print(f"  Execution order: {' → '.join(order)}")
    else:
        print_output(
            {
                "valid": True,
                "file": str(yaml_file),
                "pipeline": definition.name,
                "jobs": len(definition.jobs),
                "order": order,
            },
            ctx,
        )
