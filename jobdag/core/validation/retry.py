"""Retry decisions for failed job attempts.

Pure functions over a :class:`~jobdag.core.domain.pipeline.RetryPolicy`: the
scheduler asks whether another attempt is allowed and how long to back off
before dispatching it. A job without a policy gets exactly one attempt.

Examples
--------
Fixed backoff::

    policy = RetryPolicy(max_attempts=3, backoff="fixed", delay_ms=100)
    should_retry(1, policy)  # True
    delay_for(2, policy)     # 100

Exponential backoff::

    policy = RetryPolicy(max_attempts=5, backoff="exponential", delay_ms=500)
    delay_for(3, policy)     # 2000
"""

from __future__ import annotations

from jobdag.core.domain.pipeline import BackoffStrategy, RetryPolicy

NO_RETRY = RetryPolicy(max_attempts=1, backoff=BackoffStrategy.FIXED, delay_ms=0)


def effective_policy(policy: RetryPolicy | None) -> RetryPolicy:
    """Return ``policy`` or the single-attempt policy when it is absent."""
    return policy if policy is not None else NO_RETRY


def should_retry(attempts: int, policy: RetryPolicy | None) -> bool:
    """Whether another dispatch is allowed after ``attempts`` dispatches.

    Examples
    --------
    >>> should_retry(1, None)
    False
    >>> should_retry(2, RetryPolicy(max_attempts=3))
    True
    >>> should_retry(3, RetryPolicy(max_attempts=3))
    False
    """
    return attempts < effective_policy(policy).max_attempts


def delay_for(attempts: int, policy: RetryPolicy | None) -> int:
    """Compute the back-off delay in milliseconds after attempt ``attempts`` (1-indexed).

    Examples
    --------
    >>> delay_for(3, RetryPolicy(backoff="fixed", delay_ms=100))
    100
    >>> delay_for(3, RetryPolicy(backoff="exponential", delay_ms=100))
    400
    >>> delay_for(3, RetryPolicy(backoff="linear", delay_ms=100))
    300
    >>> delay_for(10, RetryPolicy(backoff="exponential", delay_ms=100, max_delay_ms=1000))
    1000
    """
    policy = effective_policy(policy)
    attempt = max(attempts, 1)

    if policy.backoff is BackoffStrategy.EXPONENTIAL:
        delay = policy.delay_ms * (2 ** (attempt - 1))
    elif policy.backoff is BackoffStrategy.LINEAR:
        delay = policy.delay_ms * attempt
    else:
        delay = policy.delay_ms

    if policy.max_delay_ms is not None:
        delay = min(delay, policy.max_delay_ms)
    return delay
