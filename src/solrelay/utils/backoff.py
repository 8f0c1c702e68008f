"""Exponential backoff with jitter for bundle retries."""

import random
from dataclasses import dataclass
from typing import Optional

BACKOFF_FACTOR = 1.5
JITTER_RANGE = (0.85, 1.15)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget for the critical (first) bundle.

    The loop runs while attempts < max_attempts AND consecutive errors <
    max_consecutive_errors. Consecutive errors never reset inside the loop
    (a success exits it), so the smaller of the two limits is the effective
    budget: 3 attempts with the defaults, not 50.
    """

    max_attempts: int = 50
    max_consecutive_errors: int = 3
    base_delay: float = 0.2

    @property
    def effective_attempts(self) -> int:
        return min(self.max_attempts, self.max_consecutive_errors)


def retry_delay(
    attempt: int,
    base: float = 0.2,
    factor: float = BACKOFF_FACTOR,
    jitter: tuple[float, float] = JITTER_RANGE,
    rng: Optional[random.Random] = None,
) -> float:
    """Get the backoff delay in seconds for a zero-based attempt number.

    delay = base * factor**attempt * uniform(jitter), floored to whole ms.
    """
    rand = rng.random() if rng else random.random()
    low, high = jitter
    scale = low + rand * (high - low)
    delay_ms = int(base * 1000 * (factor ** attempt) * scale)
    return delay_ms / 1000
