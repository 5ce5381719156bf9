"""Load pipeline definitions from YAML.

A pipeline file is a single mapping::

    name: build-and-test
    jobs:
      - id: analyze
        agent: architect
        task: Analyze the codebase
      - id: test
        agent: tester
        dependsOn: analyze
        retry: {maxAttempts: 3, backoff: fixed, delayMs: 100}

Both ``depends_on`` and ``dependsOn`` style keys are accepted.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import aiofiles
import yaml
from pydantic import ValidationError

from jobdag.core.domain.pipeline import PipelineDefinition
from jobdag.core.exceptions import DefinitionLoadError
from jobdag.core.logging import get_logger
from jobdag.core.validation.definition import validate_definition

logger = get_logger(__name__)


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "<root>"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def build_definition(data: Any, source: str = "<data>") -> PipelineDefinition:
    """Build and validate a definition from already-parsed mapping data.

    Raises
    ------
    DefinitionLoadError
        If the data does not describe a pipeline
    PipelineValidationError
        If the pipeline is structurally invalid (cycles, unknown dependencies, ...)
    """
    if not isinstance(data, dict):
        raise DefinitionLoadError(source, f"expected a mapping, got {type(data).__name__}")
    try:
        definition = PipelineDefinition.model_validate(data)
    except ValidationError as e:
        raise DefinitionLoadError(source, _format_validation_error(e)) from e

    validate_definition(definition)
    return definition


def parse_pipeline(content: str, source: str = "<string>") -> PipelineDefinition:
    """Parse YAML text into a validated :class:`PipelineDefinition`."""
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise DefinitionLoadError(source, f"invalid YAML: {e}") from e
    return build_definition(data, source)


def load_pipeline(path: str | Path) -> PipelineDefinition:
    """Read a pipeline YAML file.

    Raises
    ------
    DefinitionLoadError
        If the file cannot be read or parsed
    """
    file_path = Path(path)
    try:
        content = file_path.read_text(encoding="utf-8")
    except OSError as e:
        raise DefinitionLoadError(str(file_path), f"cannot read file: {e}") from e

    definition = parse_pipeline(content, str(file_path))
    logger.debug(
        "Loaded pipeline '{name}' ({count} jobs) from {path}",
        name=definition.name,
        count=len(definition.jobs),
        path=file_path,
    )
    return definition


async def aload_pipeline(path: str | Path) -> PipelineDefinition:
    """Async variant of :func:`load_pipeline` for use inside the event loop."""
    file_path = Path(path)
    try:
        async with aiofiles.open(file_path, encoding="utf-8") as f:
            content = await f.read()
    except OSError as e:
        raise DefinitionLoadError(str(file_path), f"cannot read file: {e}") from e
    return parse_pipeline(content, str(file_path))
