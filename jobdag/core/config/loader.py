"""TOML configuration loader for jobdag."""

from __future__ import annotations

import dataclasses
import os
import re
import tomllib
from pathlib import Path
from typing import Any

from jobdag.core.config.models import EngineConfig, JobDAGConfig, LoggingConfig
from jobdag.core.exceptions import ConfigurationError
from jobdag.core.logging import get_logger

# Constants for boolean environment variable parsing
_TRUTHY_VALUES = frozenset({"true", "1", "yes", "on", "enabled"})
_FALSY_VALUES = frozenset({"false", "0", "no", "off", "disabled"})

# Environment overrides: variable -> (section, field, parser)
_ENV_OVERRIDES: dict[str, tuple[str, str, str]] = {
    "JOBDAG_MAX_CONCURRENT_JOBS": ("engine", "max_concurrent_jobs", "int"),
    "JOBDAG_STATE_DIR": ("engine", "state_dir", "str"),
    "JOBDAG_ENABLE_PERSISTENCE": ("engine", "enable_persistence", "bool"),
    "JOBDAG_DEFAULT_JOB_TIMEOUT_MS": ("engine", "default_job_timeout_ms", "int"),
    "JOBDAG_CANCEL_GRACE_PERIOD": ("engine", "cancel_grace_period", "float"),
    "JOBDAG_LOG_LEVEL": ("logging", "level", "upper"),
    "JOBDAG_LOG_FORMAT": ("logging", "format", "lower"),
    "JOBDAG_LOG_FILE": ("logging", "output_file", "str"),
    "JOBDAG_LOG_COLOR": ("logging", "use_color", "bool"),
}

logger = get_logger(__name__)


def _parse_bool_env(value: str) -> bool:
    """Parse boolean from environment variable value.

    Raises
    ------
    ValueError
        If value is not a recognized boolean string
    """
    normalized = value.lower().strip()
    if normalized in _TRUTHY_VALUES:
        return True
    if normalized in _FALSY_VALUES:
        return False
    expected = sorted(_TRUTHY_VALUES | _FALSY_VALUES)
    raise ValueError(f"Invalid boolean value: {value!r}. Expected one of: {expected}")


def _parse_env_value(value: str, kind: str) -> Any:
    if kind == "int":
        return int(value)
    if kind == "float":
        return float(value)
    if kind == "bool":
        return _parse_bool_env(value)
    if kind == "upper":
        return value.upper()
    if kind == "lower":
        return value.lower()
    return value


class ConfigLoader:
    """Loads and processes jobdag configuration from TOML files."""

    ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")
    SEARCH_PATHS = ("jobdag.toml", ".jobdag.toml", "pyproject.toml")

    def load_from_toml(self, path: str | Path | None = None) -> JobDAGConfig:
        """Load configuration from a TOML file.

        Parameters
        ----------
        path : str | Path | None
            Path to TOML file. If None, searches for jobdag.toml or pyproject.toml

        Raises
        ------
        FileNotFoundError
            If no configuration file is found
        ConfigurationError
            If the file is not valid TOML or holds invalid values
        """
        config_path = self._find_config_file(path)
        logger.debug("Loading configuration from {path}", path=config_path)

        try:
            with config_path.open("rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(str(config_path), f"invalid TOML: {e}") from e

        tool_section = data.get("tool", {}).get("jobdag")
        if tool_section is not None:
            jobdag_data = tool_section
        elif config_path.name == "pyproject.toml":
            logger.debug("No [tool.jobdag] section found in pyproject.toml, using defaults")
            jobdag_data = {}
        else:
            # Flat format (top-level keys)
            jobdag_data = data

        return self.parse(self._substitute_env_vars(jobdag_data))

    def parse(self, data: dict[str, Any], *, apply_env: bool = True) -> JobDAGConfig:
        """Build a JobDAGConfig from already-loaded mapping data."""
        engine_data = dict(data.get("engine", {}))
        logging_data = dict(data.get("logging", {}))
        if apply_env:
            self._apply_env_overrides({"engine": engine_data, "logging": logging_data})

        return JobDAGConfig(
            engine=self._build(EngineConfig, engine_data, "engine"),
            logging=self._build(LoggingConfig, logging_data, "logging"),
            settings=dict(data.get("settings", {})),
        )

    def _find_config_file(self, path: str | Path | None) -> Path:
        if path:
            config_path = Path(path)
            if not config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {config_path}")
            return config_path

        if env_path := os.getenv("JOBDAG_CONFIG_PATH"):
            config_path = Path(env_path)
            if config_path.exists():
                return config_path
            logger.warning("JOBDAG_CONFIG_PATH set but file not found: {path}", path=config_path)

        for name in self.SEARCH_PATHS:
            candidate = Path(name)
            if candidate.exists():
                return candidate

        raise FileNotFoundError(
            f"No configuration file found. Searched for: {', '.join(self.SEARCH_PATHS)}"
        )

    def _substitute_env_vars(self, data: Any) -> Any:
        """Recursively replace ``${VAR}`` placeholders; unknown variables are kept."""
        if isinstance(data, str):

            def replacer(match: re.Match[str]) -> str:
                value = os.environ.get(match.group(1))
                if value is None:
                    logger.debug(
                        "Environment variable {name} not found, keeping placeholder",
                        name=match.group(1),
                    )
                    return match.group(0)
                return value

            return self.ENV_VAR_PATTERN.sub(replacer, data)

        if isinstance(data, dict):
            return {key: self._substitute_env_vars(value) for key, value in data.items()}

        if isinstance(data, list):
            return [self._substitute_env_vars(item) for item in data]

        return data

    def _apply_env_overrides(self, sections: dict[str, dict[str, Any]]) -> None:
        """Environment variables take precedence over TOML values."""
        for env_name, (section, field_name, kind) in _ENV_OVERRIDES.items():
            raw = os.getenv(env_name)
            if raw is None or raw == "":
                continue
            try:
                sections[section][field_name] = _parse_env_value(raw, kind)
            except ValueError as e:
                raise ConfigurationError(env_name, str(e)) from e
            logger.debug(
                "Overriding {section}.{field} from {env}",
                section=section,
                field=field_name,
                env=env_name,
            )

    @staticmethod
    def _build(model: type[Any], data: dict[str, Any], section: str) -> Any:
        known = {f.name for f in dataclasses.fields(model)}
        if unknown := sorted(set(data) - known):
            raise ConfigurationError(section, f"unknown option(s): {', '.join(unknown)}")
        try:
            return model(**data)
        except TypeError as e:
            raise ConfigurationError(section, str(e)) from e


def get_default_config() -> JobDAGConfig:
    """Defaults with environment overrides applied."""
    return ConfigLoader().parse({})


def load_config(path: str | Path | None = None) -> JobDAGConfig:
    """Load configuration from a TOML file or return defaults.

    Parameters
    ----------
    path : str | Path | None
        Explicit file. When omitted, ``JOBDAG_CONFIG_PATH`` and then
        ``jobdag.toml``, ``.jobdag.toml`` and ``pyproject.toml`` in the
        working directory are tried.

    Raises
    ------
    FileNotFoundError
        If ``path`` is given but does not exist
    ConfigurationError
        If the configuration is invalid

    Examples
    --------
    Example usage::

        config = load_config()
        engine = PipelineEngine(executor, config=config.engine)
    """
    loader = ConfigLoader()
    if path is not None:
        return loader.load_from_toml(path)
    try:
        return loader.load_from_toml(None)
    except FileNotFoundError:
        logger.debug("No configuration file found, using defaults")
        return get_default_config()
