"""Configuration data models for jobdag."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from jobdag.core.exceptions import ConfigurationError

_LOG_LEVELS = frozenset({"TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
_LOG_FORMATS = frozenset({"console", "json", "structured", "rich"})


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Execution defaults for the pipeline engine.

    Attributes
    ----------
    max_concurrent_jobs : int, default=3
        Jobs of one run that may be running (or backing off) at the same time
    state_dir : str, default=".jobdag/pipelines"
        Directory holding ``runs/<run_id>.json`` snapshots
    enable_persistence : bool, default=True
        Persist to ``state_dir``; when False runs are kept in memory only
    default_job_timeout_ms : int | None, default=1_800_000
        Timeout for jobs that do not declare one (30 minutes)
    cancel_grace_period : float, default=5.0
        Seconds executors get to honour the abort signal after a cancel

    Examples
    --------
    TOML configuration:

    ```toml
    [tool.jobdag.engine]
    max_concurrent_jobs = 5
    state_dir = "/var/lib/jobdag"
    ```
    """

    max_concurrent_jobs: int = 3
    state_dir: str = ".jobdag/pipelines"
    enable_persistence: bool = True
    default_job_timeout_ms: int | None = 1_800_000
    cancel_grace_period: float = 5.0

    def __post_init__(self) -> None:
        """Validate numeric bounds.

        Raises
        ------
        ConfigurationError
            If a value is out of range
        """
        if self.max_concurrent_jobs < 1:
            raise ConfigurationError("engine", "max_concurrent_jobs must be >= 1")
        if self.default_job_timeout_ms is not None and self.default_job_timeout_ms < 1:
            raise ConfigurationError("engine", "default_job_timeout_ms must be >= 1")
        if self.cancel_grace_period < 0:
            raise ConfigurationError("engine", "cancel_grace_period must be >= 0")
        if not self.state_dir:
            raise ConfigurationError("engine", "state_dir cannot be empty")


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Logging configuration for jobdag.

    Attributes
    ----------
    level : str, default="INFO"
        Log level (TRACE, DEBUG, INFO, WARNING, ERROR, CRITICAL)
    format : str, default="structured"
        Output format (console, json, structured, rich)
    output_file : str | None, default=None
        Optional file path to write logs to
    use_color : bool, default=True
        Use ANSI color codes (auto-disabled for non-TTY)
    include_timestamp : bool, default=True
        Include timestamp in log output
    enable_stdlib_bridge : bool, default=False
        Route stdlib logging records through loguru
    backtrace : bool, default=True
        Extended tracebacks
    diagnose : bool, default=False
        Show variable values in tracebacks (keep off in production)

    Examples
    --------
    Environment variable overrides:

    ```bash
    export JOBDAG_LOG_LEVEL=DEBUG
    export JOBDAG_LOG_FORMAT=json
    ```
    """

    level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "structured", "rich"] = "structured"
    output_file: str | None = None
    use_color: bool = True
    include_timestamp: bool = True
    enable_stdlib_bridge: bool = False
    backtrace: bool = True
    diagnose: bool = False

    def __post_init__(self) -> None:
        if self.level not in _LOG_LEVELS:
            raise ConfigurationError("logging", f"unknown level {self.level!r}")
        if self.format not in _LOG_FORMATS:
            raise ConfigurationError("logging", f"unknown format {self.format!r}")


@dataclass(slots=True)
class JobDAGConfig:
    """Complete jobdag configuration.

    Examples
    --------
    TOML configuration in pyproject.toml:

    ```toml
    [tool.jobdag.engine]
    max_concurrent_jobs = 2
    state_dir = "${HOME}/.jobdag"

    [tool.jobdag.logging]
    level = "DEBUG"
    format = "rich"
    ```
    """

    engine: EngineConfig = field(default_factory=EngineConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    settings: dict[str, Any] = field(default_factory=dict)
