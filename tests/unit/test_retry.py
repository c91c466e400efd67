"""Tests for retry backoff calculations."""

import asyncio

import pytest

from gagiteck.definitions import BackoffKind, RetryPolicy
from gagiteck.errors import ErrorKind
from gagiteck.utils import retry


def test_exponential_backoff_doubles():
    delays = [retry.compute_backoff(n, base_delay=0.5) for n in range(1, 5)]
    assert delays == [0.5, 1.0, 2.0, 4.0]


def test_fixed_backoff_is_constant():
    delays = [
        retry.compute_backoff(n, base_delay=2, backoff=BackoffKind.FIXED) for n in (1, 5)
    ]
    assert delays == [2, 2]


def test_backoff_is_capped():
    assert retry.compute_backoff(10, base_delay=1, max_delay=30) == 30


def test_jitter_stays_within_bounds():
    delay = retry.compute_backoff(1, base_delay=1, jitter=0.5)
    assert 1 <= delay <= 1.5


def test_policy_jitter_is_applied_and_capped():
    policy = RetryPolicy(base_delay=1, jitter=0.5)
    for _ in range(20):
        assert 1 <= retry.policy_backoff(policy, 1) <= 1.5
    capped = RetryPolicy(base_delay=4, jitter=1, max_delay=4)
    assert retry.policy_backoff(capped, 1) == 4


def test_policy_cap_wins_over_global_cap():
    policy = RetryPolicy(base_delay=1, max_delay=3)
    assert retry.policy_backoff(policy, 6, max_backoff=60) == 3
    assert retry.policy_backoff(RetryPolicy(base_delay=1), 8, max_backoff=60) == 60


def test_default_policy_retries_transient_errors_only():
    policy = RetryPolicy()
    assert policy.max_attempts == 3
    assert policy.should_retry(ErrorKind.TIMEOUT)
    assert policy.should_retry(ErrorKind.RATE_LIMIT)
    assert not policy.should_retry(ErrorKind.AGENT_ERROR)
    assert not policy.should_retry(ErrorKind.TEMPLATE_ERROR)


@pytest.mark.asyncio
async def test_schedule_retry_waits_for_delay():
    loop = asyncio.get_running_loop()
    start = loop.time()
    await retry.schedule_retry(0)
    await retry.schedule_retry(0.05)
    assert loop.time() - start >= 0.04
