from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar

T = TypeVar("T")


class RetryExhaustedError(RuntimeError):
    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


def run_with_retries(
    fn: Callable[[], T],
    *,
    max_retries: int,
    backoff_seconds: float = 0.0,
    on_attempt_failure: Callable[[int, Exception], None] | None = None,
) -> tuple[T, int]:
    """Call ``fn`` up to ``max_retries + 1`` times; return (result, attempts used)."""
    last_error: Exception | None = None

    for attempt in range(1, max_retries + 2):
        try:
            return fn(), attempt
        except Exception as exc:
            last_error = exc
            if on_attempt_failure:
                on_attempt_failure(attempt, exc)
            if attempt > max_retries:
                break
            if backoff_seconds:
                time.sleep(backoff_seconds * attempt)

    raise RetryExhaustedError(str(last_error), attempts=max_retries + 1) from last_error
