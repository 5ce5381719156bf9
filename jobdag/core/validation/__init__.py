"""Definition validation and retry decisions."""

from jobdag.core.validation.definition import validate_definition
from jobdag.core.validation.retry import NO_RETRY, delay_for, effective_policy, should_retry

__all__ = [
    "NO_RETRY",
    "delay_for",
    "effective_policy",
    "should_retry",
    "validate_definition",
]
