"""Bounded retry for Result-returning boundary calls."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from .result import Err, Ok, Result

__all__ = ["RetryPolicy", "retry"]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """``attempts`` tries, waiting ``base_delay * factor**n`` before try n+2.

    The defaults give three tries separated by 1s and 2s waits.
    """

    attempts: int = 3
    base_delay: float = 1.0
    factor: float = 2.0

    def delay_before(self, attempt: int) -> float:
        """Wait before 1-based ``attempt`` (0 for the first try)."""
        if attempt <= 1:
            return 0.0
        return self.base_delay * (self.factor ** (attempt - 2))

    @property
    def schedule(self) -> tuple[float, ...]:
        return tuple(self.delay_before(n) for n in range(2, self.attempts + 1))


def retry[T, E](
    operation: Callable[[int], Result[T, E]],
    *,
    policy: RetryPolicy,
    is_transient: Callable[[E], bool],
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Callable[[int, E, float], None] | None = None,
) -> Result[T, E]:
    """Run ``operation(attempt)`` until it succeeds, fails permanently or attempts run out.

    The attempt number (1-based) is passed in so the operation can stamp it
    on the error it returns. The last error is returned unchanged; nothing
    stale is ever substituted for it.
    """
    attempts = max(1, policy.attempts)
    attempt = 1
    while True:
        result = operation(attempt)
        if isinstance(result, Ok):
            return result

        error = result.error
        if attempt >= attempts or not is_transient(error):
            return Err(error)

        attempt += 1
        delay = policy.delay_before(attempt)
        if on_retry is not None:
            on_retry(attempt, error, delay)
        sleep(delay)
