from __future__ import annotations

import asyncio
import random
from typing import Optional

from ..definitions import BackoffKind, RetryPolicy


def compute_backoff(
    attempt: int,
    base_delay: float = 1.0,
    backoff: BackoffKind = BackoffKind.EXPONENTIAL,
    max_delay: Optional[float] = None,
    jitter: float = 0.0,
) -> float:
    """Delay in seconds before the attempt that follows ``attempt`` (1-based).

    Up to ``jitter`` seconds of random delay are added before the cap applies.
    """
    if backoff is BackoffKind.FIXED:
        delay = base_delay
    else:
        delay = base_delay * 2 ** (attempt - 1)
    if jitter:
        delay += random.uniform(0, jitter)
    if max_delay is not None:
        delay = min(delay, max_delay)
    return delay


def policy_backoff(
    policy: RetryPolicy, attempt: int, max_backoff: Optional[float] = None
) -> float:
    """Backoff for ``policy``; the policy's own cap wins over ``max_backoff``."""
    cap = policy.max_delay if policy.max_delay is not None else max_backoff
    return compute_backoff(
        attempt, policy.base_delay, policy.backoff, cap, jitter=policy.jitter
    )


async def schedule_retry(delay: float) -> None:
    """Sleep for ``delay`` seconds before retrying."""
    if delay > 0:
        await asyncio.sleep(delay)
