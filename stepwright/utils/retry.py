from __future__ import annotations

import random
from datetime import datetime, timedelta
from typing import Optional


def compute_backoff(
    attempt: int,
    base: float = 1.5,
    jitter: float = 0.5,
    rng: Optional[random.Random] = None,
) -> float:
    """Compute exponential backoff with jitter, in seconds."""
    delay = base ** attempt
    return delay + (rng or random).uniform(0, jitter)


def retry_due(
    last_attempt_at: datetime,
    attempt: int,
    now: datetime,
    base: float = 1.5,
    jitter: float = 0.5,
    rng: Optional[random.Random] = None,
) -> bool:
    """Return ``True`` once the backoff for ``attempt`` has elapsed."""
    delay = compute_backoff(attempt, base=base, jitter=jitter, rng=rng)
    return now >= last_attempt_at + timedelta(seconds=delay)
