from __future__ import annotations

import pytest

from mantle.ops import retry_policy
from mantle.ops.retry_policy import compute_backoff_seconds, compute_jittered_backoff


def test_compute_backoff_seconds_exponential_and_capped() -> None:
    assert compute_backoff_seconds(attempt=1, base=1, maximum=30) == 1
    assert compute_backoff_seconds(attempt=2, base=1, maximum=30) == 2
    assert compute_backoff_seconds(attempt=3, base=1, maximum=30) == 4
    assert compute_backoff_seconds(attempt=10, base=1, maximum=30) == 30


def test_compute_backoff_seconds_respects_factor() -> None:
    assert compute_backoff_seconds(attempt=3, base=2, maximum=600, factor=3) == 18


def test_compute_jittered_backoff_bounds(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(retry_policy.random, "random", lambda: 0.0)
    assert compute_jittered_backoff(attempt=2, base=1.0, maximum=60.0) == 4.0

    monkeypatch.setattr(retry_policy.random, "random", lambda: 1.0)
    assert compute_jittered_backoff(attempt=2, base=1.0, maximum=60.0) == pytest.approx(5.2)
    assert compute_jittered_backoff(attempt=10, base=1.0, maximum=60.0) == 60.0
