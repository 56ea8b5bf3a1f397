"""Delay helpers shared across crawler components."""

from __future__ import annotations

import random


def get_random_delay(base: float, random_range: float) -> float:
    """Return a randomized delay in seconds."""
    return base + random.uniform(0, random_range)


def uniform_between(low: float, high: float) -> float:
    """Return a delay drawn uniformly from ``[low, high]``; bounds may be given in any order."""
    if high < low:
        low, high = high, low
    return get_random_delay(low, high - low)


def backoff_delay(base: float, multiplier: float, attempt: int, jitter: float = 0.0) -> float:
    """Delay before retry number ``attempt`` (1-based): ``base * multiplier**(attempt-1)`` plus jitter."""
    exponent = max(attempt - 1, 0)
    return get_random_delay(base * (multiplier**exponent), jitter)
