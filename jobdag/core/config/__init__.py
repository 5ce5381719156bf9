"""Configuration loading for jobdag."""

from jobdag.core.config.loader import ConfigLoader, get_default_config, load_config
from jobdag.core.config.models import EngineConfig, JobDAGConfig, LoggingConfig

__all__ = [
    "ConfigLoader",
    "EngineConfig",
    "JobDAGConfig",
    "LoggingConfig",
    "get_default_config",
    "load_config",
]
