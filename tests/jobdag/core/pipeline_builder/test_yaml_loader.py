"""Tests for loading pipeline definitions from YAML."""

import pytest

from jobdag.core.domain.pipeline import BackoffStrategy
from jobdag.core.exceptions import (
    CycleDetectedError,
    DefinitionLoadError,
    InvalidConditionError,
    MissingDependencyError,
)
from jobdag.core.pipeline_builder import aload_pipeline, build_definition, load_pipeline, parse_pipeline

PIPELINE = """
name: build-and-test
description: Analyze then test
jobs:
  - id: analyze
    agent: architect
    task: Analyze the codebase
  - id: test
    agent: tester
    task: Run the suite
    dependsOn: analyze
    continueOnError: true
    timeoutMs: 60000
    retry:
      maxAttempts: 3
      backoff: fixed
      delayMs: 100
    inputs:
      suite: unit
"""


class TestParsePipeline:
    def test_camel_case_keys(self):
        definition = parse_pipeline(PIPELINE)

        test = definition.get_job("test")
        assert definition.name == "build-and-test"
        assert test.depends_on == ("analyze",)
        assert test.continue_on_error is True
        assert test.timeout_ms == 60000
        assert test.retry.max_attempts == 3
        assert test.retry.backoff is BackoffStrategy.FIXED
        assert test.inputs == {"suite": "unit"}

    def test_snake_case_keys(self):
        definition = parse_pipeline(
            "name: p\njobs:\n  - {id: a, agent: x}\n  - {id: b, agent: x, depends_on: [a]}\n"
        )
        assert definition.get_job("b").depends_on == ("a",)

    def test_invalid_yaml(self):
        with pytest.raises(DefinitionLoadError, match="invalid YAML"):
            parse_pipeline("jobs: [unclosed", "broken.yaml")

    @pytest.mark.parametrize("content", ["", "- just\n- a list\n"])
    def test_not_a_mapping(self, content):
        with pytest.raises(DefinitionLoadError, match="expected a mapping"):
            parse_pipeline(content)

    def test_field_errors_name_location(self):
        with pytest.raises(DefinitionLoadError, match=r"jobs\.0\.agent"):
            parse_pipeline("name: p\njobs:\n  - id: a\n")

    def test_structural_errors(self):
        with pytest.raises(MissingDependencyError):
            parse_pipeline("name: p\njobs:\n  - {id: a, agent: x, dependsOn: ghost}\n")
        with pytest.raises(CycleDetectedError):
            parse_pipeline("name: p\njobs:\n  - {id: a, agent: x, dependsOn: a}\n")

    def test_when_condition(self):
        definition = parse_pipeline(
            "name: p\njobs:\n"
            "  - {id: lint, agent: x, continueOnError: true}\n"
            "  - {id: fix, agent: x, when: \"lint.status == 'failed'\"}\n"
        )
        assert definition.get_job("fix").when == "lint.status == 'failed'"

        with pytest.raises(InvalidConditionError):
            parse_pipeline("name: p\njobs:\n  - {id: a, agent: x, when: \"b.status == 'failed'\"}\n")


class TestLoadPipeline:
    def test_load_from_file(self, tmp_path):
        path = tmp_path / "pipeline.yaml"
        path.write_text(PIPELINE)

        assert load_pipeline(path).job_ids == ["analyze", "test"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(DefinitionLoadError, match="cannot read file"):
            load_pipeline(tmp_path / "missing.yaml")

    @pytest.mark.asyncio
    async def test_async_load(self, tmp_path):
        path = tmp_path / "pipeline.yaml"
        path.write_text(PIPELINE)

        definition = await aload_pipeline(path)

        assert definition.name == "build-and-test"

    def test_build_from_mapping(self):
        definition = build_definition({"name": "p", "jobs": [{"id": "a", "agent": "x"}]})
        assert definition.job_ids == ["a"]
