from __future__ import annotations

import random


def compute_backoff_seconds(*, attempt: int, base: int, maximum: int, factor: int = 2) -> int:
    """Delay before retry number ``attempt`` (1-based), capped at ``maximum``."""
    if attempt <= 1:
        return min(base, maximum)
    value = base * (factor ** (attempt - 1))
    return min(int(value), int(maximum))


def compute_jittered_backoff(
    *,
    attempt: int,
    base: float,
    maximum: float,
    jitter_ratio: float = 0.3,
) -> float:
    """Exponential delay for a 0-based ``attempt`` plus up to ``jitter_ratio`` jitter."""
    delay = base * (2**attempt)
    jitter = random.random() * jitter_ratio * delay
    return min(delay + jitter, maximum)

