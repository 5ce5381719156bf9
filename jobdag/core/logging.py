"""Centralized logging configuration for jobdag using Loguru.

Provides consistent logging across the engine with support for:
- Multiple output formats (console, JSON, structured, rich)
- Environment-based configuration
- Correlation IDs (the run id inside a scheduler task)
- Idempotent configuration

Examples
--------
Basic usage:

>>> from jobdag.core.logging import get_logger
>>> logger = get_logger(__name__)
>>> logger.info("Pipeline started", run_id="build-1")

Configure logging globally::

    from jobdag.core.logging import configure_logging
    configure_logging(level="DEBUG", format="json")
"""

from __future__ import annotations

import contextvars
import logging
import os
import sys
from contextlib import suppress
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from loguru import logger
from rich.logging import RichHandler

if TYPE_CHECKING:
    import types

    from loguru import Logger

LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["console", "json", "structured", "rich"]

_CURRENT_CONFIG: dict | None = None
_HANDLER_IDS: list[int] = []
_DEFAULT_SINK_REMOVED = False

# Correlation ID context variable; the scheduler sets it to the run id
correlation_id: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="-")


def _inject_correlation_id(record: dict[str, Any]) -> None:
    record["extra"].setdefault("cid", correlation_id.get())


def _write_stderr(message: str) -> None:
    # Resolved per write so redirected streams (pytest, CliRunner) are honoured
    sys.stderr.write(message)


def configure_logging(
    level: LogLevel = "INFO",
    format: LogFormat = "structured",
    output_file: str | Path | None = None,
    use_color: bool = True,
    include_timestamp: bool = True,
    force_reconfigure: bool = False,
    enable_stdlib_bridge: bool = False,
    backtrace: bool = True,
    diagnose: bool = False,
) -> None:
    """Configure global logging for jobdag.

    Calling it again with the same configuration is a no-op.

    Parameters
    ----------
    level : LogLevel, default="INFO"
        Minimum log level to output
    format : LogFormat, default="structured"
        Output format:
        - "console": Simple console output (no colors, basic format)
        - "json": JSON lines for log aggregation
        - "structured": Colored structured format (Loguru native)
        - "rich": Rich console handler
    output_file : str | Path | None, default=None
        Optional file path to write JSON logs to (in addition to console)
    use_color : bool, default=True
        Use ANSI color codes in structured format (auto-disabled for non-TTY)
    include_timestamp : bool, default=True
        Include timestamp in log output
    force_reconfigure : bool, default=False
        Force reconfiguration even if already configured with same settings
    enable_stdlib_bridge : bool, default=False
        Route stdlib logging of third-party libraries through Loguru
    backtrace : bool, default=True
        Enable extended backtraces
    diagnose : bool, default=False
        Show variable values in tracebacks (keep off in production)
    """
    global _CURRENT_CONFIG, _DEFAULT_SINK_REMOVED

    current_config = {
        "level": level,
        "format": format,
        "output_file": str(output_file) if output_file else None,
        "use_color": use_color,
        "include_timestamp": include_timestamp,
        "enable_stdlib_bridge": enable_stdlib_bridge,
        "backtrace": backtrace,
        "diagnose": diagnose,
    }

    if not force_reconfigure and current_config == _CURRENT_CONFIG:
        return

    # Remove only our previously added handlers so pytest's capture keeps working
    for handler_id in _HANDLER_IDS:
        with suppress(ValueError):
            logger.remove(handler_id)
    _HANDLER_IDS.clear()
    if not _DEFAULT_SINK_REMOVED:
        # Loguru's built-in stderr sink (id 0) would duplicate every record at DEBUG
        with suppress(ValueError):
            logger.remove(0)
        _DEFAULT_SINK_REMOVED = True
    logger.configure(extra={"cid": "-"})

    if format == "rich":
        rich_handler = RichHandler(
            rich_tracebacks=True,
            markup=False,
            show_time=include_timestamp,
            show_level=True,
            show_path=True,
        )
        handler_id = logger.add(
            sink=rich_handler,
            level=level,
            format="{message}",
            backtrace=backtrace,
            diagnose=diagnose,
        )
        _HANDLER_IDS.append(handler_id)

    elif format == "json":
        handler_id = logger.add(
            sink=_write_stderr,
            level=level,
            serialize=True,
            backtrace=backtrace,
            diagnose=diagnose,
        )
        _HANDLER_IDS.append(handler_id)

    elif format == "structured":
        timestamp_fmt = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> " if include_timestamp else ""
        colorize = use_color and sys.stderr.isatty()
        color_level = "<level>{level: <8}</level>" if colorize else "{level: <8}"
        structured_format = (
            f"{timestamp_fmt}[{color_level}]"
            "<cyan>{name}:{function}:{line}</cyan> | cid={extra[cid]} | <level>{message}</level>"
        )

        handler_id = logger.add(
            sink=_write_stderr,
            level=level,
            format=structured_format,
            colorize=colorize,
            backtrace=backtrace,
            diagnose=diagnose,
        )
        _HANDLER_IDS.append(handler_id)

    else:  # console
        timestamp_fmt = "{time:YYYY-MM-DD HH:mm:ss} " if include_timestamp else ""
        console_format = f"{timestamp_fmt}{{level: <8}} | {{name}} | {{message}}"

        handler_id = logger.add(
            sink=_write_stderr,
            level=level,
            format=console_format,
            colorize=False,
            backtrace=backtrace,
            diagnose=diagnose,
        )
        _HANDLER_IDS.append(handler_id)

    if output_file:
        output_path = Path(output_file)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        # File output always uses JSON for easier parsing
        handler_id = logger.add(
            sink=output_path,
            level=level,
            serialize=True,
            rotation="10 MB",
            retention="1 week",
            backtrace=backtrace,
            diagnose=diagnose,
        )
        _HANDLER_IDS.append(handler_id)

    if enable_stdlib_bridge:
        enable_stdlib_logging_bridge()

    _CURRENT_CONFIG = current_config


@lru_cache(maxsize=256)
def get_logger(name: str) -> Logger:
    """Get a logger instance bound with the given module name (cached).

    Parameters
    ----------
    name : str
        Logger name, typically __name__ from the calling module

    Returns
    -------
    loguru.Logger
        Logger bound with the module name; every record carries the
        current correlation id under ``extra["cid"]``

    Examples
    --------
    >>> from jobdag.core.logging import get_logger, set_correlation_id
    >>> set_correlation_id("build-1")
    >>> logger = get_logger(__name__)
    >>> logger.info("Dispatching job")  # record carries cid=build-1
    """
    _ensure_configured()
    return logger.patch(_inject_correlation_id).bind(module=name)


def enable_stdlib_logging_bridge() -> None:
    """Redirect stdlib logging records to Loguru."""

    class InterceptHandler(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            level: str | int
            try:
                level = logger.level(record.levelname).name
            except ValueError:
                level = record.levelno

            # Find caller from where originated the logged message
            frame: types.FrameType | None = sys._getframe(6)
            depth = 6
            while frame and frame.f_code.co_filename == logging.__file__:
                frame = frame.f_back
                depth += 1

            logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)


def set_correlation_id(cid: str) -> contextvars.Token[str]:
    """Set correlation ID for the current context.

    Returns the context token so callers can restore the previous value.
    """
    return correlation_id.set(cid)


def get_correlation_id() -> str:
    """Get the current correlation ID.

    Examples
    --------
    >>> from jobdag.core.logging import get_correlation_id
    >>> get_correlation_id()
    '-'
    """
    return correlation_id.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID for the current context."""
    correlation_id.set("-")


def _ensure_configured() -> None:
    """Apply a default configuration the first time a logger is requested."""
    if _CURRENT_CONFIG is None:
        level = os.getenv("JOBDAG_LOG_LEVEL", "INFO").upper()
        format_type = os.getenv("JOBDAG_LOG_FORMAT", "structured").lower()
        configure_logging(level=level, format=format_type)  # type: ignore[arg-type]
