"""Pipeline definition loading."""

from jobdag.core.pipeline_builder.yaml_loader import (
    aload_pipeline,
    build_definition,
    load_pipeline,
    parse_pipeline,
)

__all__ = ["aload_pipeline", "build_definition", "load_pipeline", "parse_pipeline"]
