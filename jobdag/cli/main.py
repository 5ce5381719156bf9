"""jobdag CLI - Main entrypoint."""

from pathlib import Path

import typer

from jobdag import __version__
from jobdag.cli.commands import run_cmd, runs_cmd, validate_cmd
from jobdag.cli.utils import console
from jobdag.core.config import load_config
from jobdag.core.exceptions import ConfigurationError
from jobdag.core.logging import configure_logging

# Create the main Typer app
app = typer.Typer(
    name="jobdag",
    help="jobdag - DAG job orchestrator with retries, persisted state and cancellation.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=False,
)

# Add subcommands
app.command("validate", help="Validate a pipeline file")(validate_cmd.validate)
app.command("run", help="Run a pipeline to completion")(run_cmd.run)
app.add_typer(runs_cmd.app, name="runs", help="Inspect persisted pipeline runs")

_LOG_LEVELS = {"trace", "debug", "info", "warning", "error", "critical"}


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"[bold blue]jobdag[/bold blue] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def callback(
    ctx: typer.Context,
    *,
    json_out: bool = typer.Option(False, "--json", help="Output machine-readable JSON"),
    yaml_out: bool = typer.Option(False, "--yaml", help="Output machine-readable YAML"),
    log_level: str = typer.Option(
        "warning", "--log-level", help="Log level: debug|info|warning|error"
    ),
    config_path: Path | None = typer.Option(None, "--config", help="Path to jobdag.toml"),
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """jobdag CLI.

    Global flags are parsed here and stored on `ctx.obj` for subcommands.
    """
    if ctx.obj is None:
        ctx.obj = {}

    # Normalize output format preference
    output_format = "pretty"
    if json_out:
        output_format = "json"
    elif yaml_out:
        output_format = "yaml"

    level = "warning" if log_level.lower() == "warn" else log_level.lower()
    if level not in _LOG_LEVELS:
        raise typer.BadParameter(f"unknown log level {log_level!r}", param_hint="--log-level")

    try:
        config = load_config(config_path)
    except (ConfigurationError, FileNotFoundError) as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1) from e

    ctx.obj.update({
        "output_format": output_format,
        "log_level": level,
        "config_path": config_path,
    })

    # The flag wins over the configured level so CLI output stays quiet by default
    configure_logging(
        level=level.upper(),  # type: ignore[arg-type]
        format=config.logging.format,
        output_file=config.logging.output_file,
        use_color=config.logging.use_color,
    )


def main() -> None:
    """Main CLI entrypoint."""
    app()


if __name__ == "__main__":
    main()
