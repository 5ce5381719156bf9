"""Tests for pipeline definition models."""

import pytest
from pydantic import ValidationError

from jobdag.core.domain.pipeline import (
    BackoffStrategy,
    JobDefinition,
    PipelineDefinition,
    RetryPolicy,
)


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 1
        assert policy.backoff is BackoffStrategy.EXPONENTIAL
        assert policy.delay_ms == 2000
        assert policy.max_delay_ms is None

    def test_accepts_camel_case_keys(self):
        policy = RetryPolicy.model_validate({"maxAttempts": 3, "backoff": "fixed", "delayMs": 100})
        assert policy.max_attempts == 3
        assert policy.backoff is BackoffStrategy.FIXED
        assert policy.delay_ms == 100

    @pytest.mark.parametrize("data", [{"max_attempts": 0}, {"delay_ms": -1}, {"backoff": "random"}])
    def test_rejects_invalid_values(self, data):
        with pytest.raises(ValidationError):
            RetryPolicy.model_validate(data)


class TestJobDefinition:
    def test_depends_on_accepts_single_string(self):
        job = JobDefinition(id="b", agent="tester", depends_on="a")
        assert job.depends_on == ("a",)

    def test_depends_on_absent_means_none(self):
        job = JobDefinition.model_validate({"id": "a", "agent": "tester", "dependsOn": None})
        assert job.depends_on == ()

    def test_depends_on_drops_duplicates_keeping_order(self):
        job = JobDefinition(id="c", agent="tester", depends_on=["b", "a", "b"])
        assert job.depends_on == ("b", "a")

    def test_camel_case_fields(self):
        job = JobDefinition.model_validate(
            {
                "id": "deploy",
                "agent": "ops",
                "dependsOn": ["build"],
                "continueOnError": True,
                "timeoutMs": 500,
                "retry": {"maxAttempts": 2},
            }
        )
        assert job.continue_on_error is True
        assert job.timeout_ms == 500
        assert job.max_attempts == 2

    def test_display_name_falls_back_to_id(self):
        assert JobDefinition(id="a", agent="x").display_name == "a"
        assert JobDefinition(id="a", agent="x", name="Analyze").display_name == "Analyze"

    def test_is_frozen(self):
        job = JobDefinition(id="a", agent="x")
        with pytest.raises(ValidationError):
            job.id = "b"

    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValidationError):
            JobDefinition(id="a", agent="x", timeout_ms=0)


class TestPipelineDefinition:
    def test_job_ids_keep_declared_order(self):
        definition = PipelineDefinition(
            name="p",
            jobs=[JobDefinition(id="c", agent="x"), JobDefinition(id="a", agent="x")],
        )
        assert definition.job_ids == ["c", "a"]

    def test_get_job(self):
        definition = PipelineDefinition(name="p", jobs=[JobDefinition(id="a", agent="x")])
        assert definition.get_job("a").agent == "x"
        with pytest.raises(KeyError):
            definition.get_job("missing")

    def test_empty_name_rejected(self):
        with pytest.raises(ValidationError):
            PipelineDefinition(name="", jobs=[])
