"""Exponential reconnect backoff with jitter."""

import random
from typing import Callable

JITTER = 0.2  # +/- 20%


def base_delay(attempt: int, initial: float, maximum: float) -> float:
    """Un-jittered delay for the given attempt: min(initial * 2^attempt, maximum)."""
    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    # Cap the exponent so huge attempt counts cannot overflow a float
    return min(initial * (2 ** min(attempt, 62)), maximum)


def reconnect_delay(
    attempt: int,
    initial: float,
    maximum: float,
    rng: Callable[[], float] = random.random,
) -> float:
    """Jittered delay in [0.8x, 1.2x] of base_delay().

    Args:
        attempt: Attempt count after the failure that triggered this reconnect
        initial: Backoff base in seconds
        maximum: Backoff cap in seconds
        rng: Source of uniform floats in [0, 1)
    """
    return base_delay(attempt, initial, maximum) * (1 - JITTER + rng() * 2 * JITTER)
