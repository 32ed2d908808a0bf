from __future__ import annotations

import random
import threading
import time
from typing import Any, Callable, TypeVar

from radio.errors import PipelineCancelled

T = TypeVar("T")


def _always(_: BaseException) -> bool:
    return True


class RetryPolicy:
    """
    Exponential backoff with jitter.

    `attempts` is the total number of calls, not the number of retries.
    Delays start at `initial_delay` seconds, double per attempt and never
    exceed `max_delay`. Jitter keeps a random 50-100% of each delay.
    """

    def __init__(
        self,
        attempts: int = 5,
        *,
        max_delay: float = 150.0,
        initial_delay: float = 1.0,
        should_retry: Callable[[BaseException], bool] | None = None,
        sleep: Callable[[float], None] | None = None,
        name: str = "retry",
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        self.attempts = attempts
        self.max_delay = max(0.0, float(max_delay))
        self.initial_delay = max(0.0, float(initial_delay))
        self.should_retry = should_retry or _always
        self._sleep = sleep
        self.name = name

    @classmethod
    def from_options(
        cls,
        options: Any,
        *,
        should_retry: Callable[[BaseException], bool] | None = None,
        name: str = "retry",
    ) -> RetryPolicy:
        return cls(
            int(options.retry_count),
            max_delay=float(options.retry_max_delay) / 1000.0,
            should_retry=should_retry,
            name=name,
        )

    def with_predicate(self, should_retry: Callable[[BaseException], bool]) -> RetryPolicy:
        return RetryPolicy(
            self.attempts,
            max_delay=self.max_delay,
            initial_delay=self.initial_delay,
            should_retry=should_retry,
            sleep=self._sleep,
            name=self.name,
        )

    def delay_for(self, attempt: int) -> float:
        base = min(self.max_delay, self.initial_delay * (2 ** max(0, attempt - 1)))
        return base * random.uniform(0.5, 1.0)

    def _wait(self, seconds: float, cancel_event: threading.Event | None) -> None:
        if self._sleep is not None:
            self._sleep(seconds)
            return
        if cancel_event is not None:
            cancel_event.wait(seconds)
            return
        time.sleep(seconds)

    def call(
        self,
        func: Callable[..., T],
        *args: Any,
        cancel_event: threading.Event | None = None,
        **kwargs: Any,
    ) -> T:
        last_error: BaseException | None = None
        for attempt in range(1, self.attempts + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise PipelineCancelled(f"{self.name} cancelled before attempt {attempt}")
            try:
                return func(*args, **kwargs)
            except PipelineCancelled:
                raise
            except Exception as exc:
                last_error = exc
                if attempt >= self.attempts or not self.should_retry(exc):
                    break
                delay = self.delay_for(attempt)
                print(
                    f"[retry] {self.name} attempt={attempt}/{self.attempts} "
                    f"sleep={delay:.2f}s error={exc}"
                )
                self._wait(delay, cancel_event)
        assert last_error is not None
        raise last_error
